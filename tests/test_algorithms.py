"""
Tests for the CTM environment, simple update and full update.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal


def neel_store(D=2, chi=4, noise=0.1, seed=11, dtype=np.complex128):
    """2x2 store around the Neel state."""
    from ctmpeps.lattice.unit_cell import UnitCell
    from ctmpeps.core.tensor_store import TensorStore

    up, down = [1.0, 0.0], [0.0, 1.0]
    uc = UnitCell(2, 2, physical_dims=2, virtual_dims=D,
                  initial_dirs=[up, down, down, up], noises=noise)
    store = TensorStore(uc, chi=chi, dtype=dtype)
    store.initialize(seed)
    return store


class TestCTMRG:
    """Tests for the CTMRG environment engine."""

    def test_chi_mismatch(self):
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig

        store = neel_store(chi=4)
        with pytest.raises(ValueError):
            CTMRG(store, CTMRGConfig(chi=6))

    def test_single_site_trivial_environment(self):
        """1x1, D=1, chi=1: every boundary tensor converges to 1."""
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.core.tensor_store import TensorStore
        from ctmpeps.core.environment import KINDS
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig

        uc = UnitCell(1, 1, physical_dims=2, virtual_dims=1, noises=0.0)
        store = TensorStore(uc, chi=1, dtype=np.complex128)
        store.initialize(seed=11)

        result = CTMRG(store, CTMRGConfig(chi=1, tol=1e-12, verbosity=0)).run()

        assert result.converged
        for kind in KINDS:
            assert_allclose(getattr(store.env, kind)[0].data.ravel(), [1.0])

    def test_shapes_preserved(self):
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig

        store = neel_store(D=2, chi=5)
        ctm = CTMRG(store, CTMRGConfig(chi=5, max_iter=3, verbosity=0))
        ctm.run()
        store.check_consistency()

    def test_moves_create_new_snapshots(self):
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig, CTMRGDirection

        store = neel_store()
        env0 = store.env
        ctm = CTMRG(store, CTMRGConfig(chi=4, verbosity=0))

        ctm.move(CTMRGDirection.LEFT)

        assert store.env is not env0
        # one snapshot per column of the unit cell
        assert store.env.version == env0.version + 2
        # untouched kinds are shared
        assert store.env.Et is env0.Et

    def test_converged_environment_is_stationary(self):
        """Another sweep on a converged environment barely moves the corners."""
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig, corner_spectra

        tol = 1e-8
        store = neel_store(D=2, chi=4, noise=0.05)
        ctm = CTMRG(store, CTMRGConfig(chi=4, max_iter=500, tol=tol, verbosity=0))

        result = ctm.run()
        assert result.converged

        before = corner_spectra(store.env, 4)
        again = ctm.run(max_iter=1)
        after = corner_spectra(store.env, 4)

        assert again.converged
        assert np.max(np.abs(after - before)) < tol

    def test_corner_spectra_normalized(self):
        from ctmpeps.algorithms.ctmrg import corner_spectra

        store = neel_store(chi=3)
        spectra = corner_spectra(store.env, 3)

        assert spectra.shape == (4, 4, 3)
        assert_allclose(spectra.sum(axis=2), np.ones((4, 4)))

    def test_refresh_single_column(self):
        """A refresh touches only the boundary tensors next to one column."""
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig, CTMRGDirection

        store = neel_store()
        env0 = store.env
        ctm = CTMRG(store, CTMRGConfig(chi=4, verbosity=0))

        ctm.refresh(CTMRGDirection.LEFT, 0)

        assert store.env.version == env0.version + 1
        # column 0 is absorbed into the boundary of column 1 (sites 1 and 3)
        assert store.env.C1[0] is env0.C1[0]
        assert store.env.C1[1] is not env0.C1[1]
        assert store.env.El[3] is not env0.El[3]
        assert store.env.Er is env0.Er

    def test_refresh_checks_shapes(self):
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig, CTMRGDirection

        store = neel_store(D=2)
        ctm = CTMRG(store, CTMRGConfig(chi=4, verbosity=0))
        store.Tn[1] = Tensor(np.ones((3, 2, 2, 2, 2), dtype=np.complex128))

        with pytest.raises(ValueError):
            ctm.refresh(CTMRGDirection.TOP, 0)

    @pytest.mark.parametrize("projector_corner", [True, False])
    def test_projector_modes(self, projector_corner):
        """Both projector constructions give the expected sublattice magnetization."""
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.algorithms.local_contractions import contract_onesite

        store = neel_store(D=2, chi=4, noise=0.05)
        config = CTMRGConfig(chi=4, max_iter=300, tol=1e-10,
                             projector_corner=projector_corner, verbosity=0)
        CTMRG(store, config).run()

        Sz = np.diag([0.5, -0.5]).astype(np.complex128)
        value = contract_onesite(store.env.site(0), store.Tn[0], Tensor(Sz))
        norm = contract_onesite(store.env.site(0), store.Tn[0])

        # the Neel state with small noise keeps site 0 mostly up
        assert 0.4 < np.real(value / norm) <= 0.5 + 1e-6

    def test_randomized_svd_projectors(self):
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig

        store = neel_store(D=2, chi=4, noise=0.05)
        config = CTMRGConfig(chi=4, max_iter=5, use_rsvd=True, verbosity=0)

        CTMRG(store, config).run()
        store.check_consistency()


class TestSimpleUpdate:
    """Tests for the simple update."""

    def test_zero_steps_leave_store_unchanged(self):
        from ctmpeps.models.heisenberg import HeisenbergModel
        from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig

        store = neel_store()
        before = store.copy()
        model = HeisenbergModel(store.unit_cell)

        SimpleUpdate(model.evolutions(), SimpleUpdateConfig(num_steps=0, verbosity=0)).run(store)

        for i in store.unit_cell:
            assert_array_equal(store.Tn[i].data, before.Tn[i].data)
            for leg in range(4):
                assert_array_equal(store.lambdas[i][leg], before.lambdas[i][leg])

    def test_identity_gate_keeps_state(self):
        """With unit lambdas, an identity gate leaves the bond state unchanged."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.core.contractions import contract
        from ctmpeps.lattice.unit_cell import RIGHT
        from ctmpeps.algorithms.simple_update import simple_update_bond

        rng = np.random.default_rng(2)
        D, d = 2, 2
        T1 = Tensor(rng.standard_normal((D, D, D, D, d)))
        T2 = Tensor(rng.standard_normal((D, D, D, D, d)))
        ones = [np.ones(D)] * 4
        identity = Tensor(np.eye(d * d).reshape(d, d, d, d))

        new1, new2, lam = simple_update_bond(T1, T2, ones, ones, identity, RIGHT)

        before = contract('abcde,cfghi->abdefghi', T1, T2)
        after = contract('abcde,cfghi->abdefghi', new1, new2)
        # same state up to normalisation
        ratio = before.norm() / after.norm()
        assert_allclose(after.data * ratio, before.data, atol=1e-10)
        assert_allclose(np.linalg.norm(lam), 1.0)

    def test_lambda_normalized_and_sorted(self):
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams
        from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig

        store = neel_store()
        model = HeisenbergModel(store.unit_cell, HeisenbergParams(tau=0.05))

        SimpleUpdate(model.evolutions(), SimpleUpdateConfig(num_steps=5, verbosity=0)).run(store)

        for i in store.unit_cell:
            for leg in range(4):
                lam = store.lambdas[i][leg]
                assert_allclose(np.linalg.norm(lam), 1.0)
                assert np.all(np.diff(lam) <= 1e-14)
        store.check_consistency()

    def test_shared_bond_lambdas_agree(self):
        from ctmpeps.lattice.unit_cell import opposite_leg
        from ctmpeps.models.heisenberg import HeisenbergModel
        from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig

        store = neel_store()
        model = HeisenbergModel(store.unit_cell)
        SimpleUpdate(model.evolutions(), SimpleUpdateConfig(num_steps=2, verbosity=0)).run(store)

        uc = store.unit_cell
        for bond in uc.bonds():
            assert_allclose(
                store.lambdas[bond.source][bond.source_leg],
                store.lambdas[bond.target][opposite_leg(bond.source_leg)],
            )

    def test_timer_region(self):
        from ctmpeps.models.heisenberg import HeisenbergModel
        from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig
        from ctmpeps.hpc.profiling import Timer

        store = neel_store()
        timer = Timer()
        model = HeisenbergModel(store.unit_cell)
        SimpleUpdate(model.evolutions(), SimpleUpdateConfig(num_steps=1, verbosity=0)).run(
            store, timer=timer
        )

        assert timer.stats['simple_update'].calls == 1


class TestFullUpdate:
    """Tests for the full update."""

    def test_als_refit_exact_for_low_rank_target(self):
        """A target of bond rank <= D is reproduced with zero cost."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.algorithms.full_update import als_refit, _pair

        rng = np.random.default_rng(4)
        k, D, d = 3, 2, 2
        a_L = Tensor(rng.standard_normal((k, D, d)))
        a_R = Tensor(rng.standard_normal((k, D, d)))
        theta = _pair(a_L, a_R)
        N = Tensor(np.einsum('ab,cd->abcd', np.eye(k), np.eye(k)))

        fit_L, fit_R, result = als_refit(N, theta, D)

        assert result.cost < 1e-10
        assert_allclose(_pair(fit_L, fit_R).data, theta.data, atol=1e-8)

    def test_bond_norm_matrix_is_positive(self):
        from ctmpeps.core.decompositions import tensor_qr
        from ctmpeps.algorithms.full_update import bond_norm_matrix

        store = neel_store()
        Q_L, _ = tensor_qr(store.Tn[0], (0, 1, 3), (2, 4))
        Q_R, _ = tensor_qr(store.Tn[1], (1, 2, 3), (0, 4))

        N = bond_norm_matrix(store.env.site(0), store.env.site(1), Q_L, Q_R)
        k, K, m, M = N.shape
        matrix = N.transpose((0, 2, 1, 3)).reshape((k * m, K * M)).data

        assert_allclose(matrix, matrix.conj().T, atol=1e-12)
        assert np.min(np.linalg.eigvalsh(matrix)) > -1e-10

    @pytest.mark.parametrize("leg", [0, 1, 2, 3])
    def test_full_update_bond_shapes(self, leg):
        from ctmpeps.lattice.unit_cell import opposite_leg
        from ctmpeps.models.heisenberg import HeisenbergModel
        from ctmpeps.algorithms.full_update import full_update_bond, FullUpdateConfig

        store = neel_store()
        uc = store.unit_cell
        target = uc.neighbor(0, leg)
        gate = HeisenbergModel(uc).evolutions()[0].op

        T_s, T_t, result = full_update_bond(
            store.Tn[0], store.Tn[target], store.env.site(0), store.env.site(target),
            gate, leg, FullUpdateConfig(max_iteration=20),
        )

        assert T_s.shape == store.Tn[0].shape
        assert T_t.shape == store.Tn[target].shape
        assert_allclose(T_s.max_abs(), 1.0)
        assert np.all(np.isfinite(T_s.data))
        assert T_t.shape[opposite_leg(leg)] == T_s.shape[leg]

    @pytest.mark.parametrize("fast", [True, False])
    def test_run(self, fast):
        """A couple of steps keep the store consistent and change the tensors."""
        import warnings
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
        from ctmpeps.algorithms.full_update import FullUpdate, FullUpdateConfig
        from ctmpeps.hpc.profiling import Timer

        store = neel_store()
        before = store.copy()
        timer = Timer()
        model = HeisenbergModel(store.unit_cell, HeisenbergParams(tau=0.05))
        ctm = CTMRG(store, CTMRGConfig(chi=4, max_iter=20, verbosity=0), timer=timer)
        config = FullUpdateConfig(num_steps=1, max_iteration=20, fast_update=fast, verbosity=0)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            FullUpdate(model.evolutions(), config, ctm).run(store, timer=timer)

        store.check_consistency()
        assert not np.allclose(store.Tn[0].data, before.Tn[0].data)
        assert timer.total('full_update') > 0.0
        assert 'full_update/environment' in timer.stats

    def test_lowers_energy(self):
        import warnings
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams
        from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
        from ctmpeps.algorithms.full_update import FullUpdate, FullUpdateConfig
        from ctmpeps.algorithms.observables import ObservableEngine

        store = neel_store()
        model = HeisenbergModel(store.unit_cell, HeisenbergParams(tau=0.05))
        ctm = CTMRG(store, CTMRGConfig(chi=4, max_iter=50, verbosity=0))

        def energy():
            ctm.run()
            engine = ObservableEngine(store, model.onesite_operators(), model.twosite_operators())
            return engine.energy(engine.measure_twosite())

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            before = energy()
            config = FullUpdateConfig(num_steps=5, max_iteration=50, verbosity=0)
            FullUpdate(model.evolutions(), config, ctm).run(store)
            after = energy()

        assert after < before - 1e-3

    def test_zero_steps_do_nothing(self):
        from ctmpeps.models.heisenberg import HeisenbergModel
        from ctmpeps.algorithms.full_update import FullUpdate, FullUpdateConfig

        store = neel_store()
        version = store.env.version
        FullUpdate(HeisenbergModel(store.unit_cell).evolutions(), FullUpdateConfig(num_steps=0)).run(store)

        assert store.env.version == version


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
