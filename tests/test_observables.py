"""
Tests for one-site, two-site and long-range measurements.

The Neel product state (D = 1, chi = 1) has exactly known expectation
values, so those tests pin down layouts and normalizations. A random
D = 2 state checks that the adjacent, block and correlation contractions
agree with each other.
"""

import functools
import warnings

import pytest
import numpy as np
from numpy.testing import assert_allclose


def neel_engine(config=None):
    """Engine on the converged 2x2 Neel product state."""
    from ctmpeps.lattice.unit_cell import UnitCell
    from ctmpeps.core.tensor_store import TensorStore
    from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
    from ctmpeps.models.heisenberg import HeisenbergModel
    from ctmpeps.algorithms.observables import ObservableEngine

    up, down = [1.0, 0.0], [0.0, 1.0]
    uc = UnitCell(2, 2, physical_dims=2, virtual_dims=1,
                  initial_dirs=[up, down, down, up], noises=0.0)
    store = TensorStore(uc, chi=1, dtype=np.complex128)
    store.initialize(seed=11)
    CTMRG(store, CTMRGConfig(chi=1, verbosity=0)).run()

    model = HeisenbergModel(uc)
    engine = ObservableEngine(
        store, model.onesite_operators(), model.twosite_operators(), config
    )
    return engine, model


SZ = np.diag([0.5, -0.5])
SIGN = np.array([1.0, -1.0, -1.0, 1.0])  # up, down, down, up


class TestOnesite:
    """Tests for one-site measurements."""

    def test_neel_magnetization(self):
        engine, _ = neel_engine()
        onesite = engine.measure_onesite()

        assert onesite.shape == (3, 4)
        assert_allclose(onesite[0], 0.5 * SIGN, atol=1e-12)
        assert_allclose(onesite[1], np.zeros(4), atol=1e-12)
        assert_allclose(onesite[2], np.zeros(4), atol=1e-12)

    def test_unassigned_sites_are_nan(self):
        from ctmpeps.models.operators import Operator
        from ctmpeps.algorithms.observables import ObservableEngine

        engine, _ = neel_engine()
        partial = ObservableEngine(engine.store, [Operator(SZ, 1, 2)], [])
        onesite = partial.measure_onesite()

        assert onesite.shape == (2, 4)
        assert np.all(np.isnan(onesite[0]))
        assert_allclose(onesite[1, 2], -0.5, atol=1e-12)
        assert np.isnan(onesite[1, 0])

    def test_densities_ignore_nan(self):
        from ctmpeps.models.operators import Operator
        from ctmpeps.algorithms.observables import ObservableEngine

        engine, _ = neel_engine()
        partial = ObservableEngine(engine.store, [Operator(SZ, 0, 0)], [])

        densities = partial.onesite_densities(partial.measure_onesite())

        assert_allclose(densities, [0.5 / 4], atol=1e-12)


class TestTwosite:
    """Tests for two-site measurements."""

    def test_neel_energy(self):
        """Every bond gives -1/4, so the energy per site is -1/2."""
        engine, _ = neel_engine()
        twosite = engine.measure_twosite()

        assert len(twosite) == 4
        assert len(twosite[0]) == 8
        for value in twosite[0].values():
            assert_allclose(value, -0.25, atol=1e-12)
        assert_allclose(engine.energy(twosite), -0.5, atol=1e-12)

    def test_neel_nearest_neighbour_correlators(self):
        engine, _ = neel_engine()
        twosite = engine.measure_twosite()

        for value in twosite[1].values():
            assert_allclose(value, -0.25, atol=1e-12)
        for group in (2, 3):
            for value in twosite[group].values():
                assert_allclose(value, 0.0, atol=1e-12)

    @pytest.mark.parametrize("dx,dy", [(1, 0), (-1, 0), (0, 1), (0, -1)])
    def test_identity_adjacent(self, dx, dy):
        from ctmpeps.models.operators import Operator

        engine, _ = neel_engine()
        identity = np.eye(4).reshape(2, 2, 2, 2)

        value = engine.measure_twosite_operator(Operator(identity, 0, 1, (dx,), (dy,)))

        assert_allclose(value, 1.0, atol=1e-12)

    @pytest.mark.parametrize("dx,dy", [(1, 0), (-1, 0), (0, 1), (0, -1)])
    def test_adjacent_orientation(self, dx, dy):
        """Sz on the source only picks the source's magnetization."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import Operator, two_site_product

        engine, _ = neel_engine()
        op = two_site_product(Tensor(SZ), Tensor(np.eye(2)))

        for source in range(4):
            value = engine.measure_twosite_operator(Operator(op, 0, source, (dx,), (dy,)))
            assert_allclose(value, 0.5 * SIGN[source], atol=1e-12)

    @pytest.mark.parametrize("dx,dy", [(2, 0), (1, 1), (-1, 1), (0, -2)])
    def test_identity_block(self, dx, dy):
        """Non-factorized operators on larger patches go through their SVD."""
        from ctmpeps.models.operators import Operator

        engine, _ = neel_engine()
        identity = np.eye(4).reshape(2, 2, 2, 2)

        value = engine.measure_twosite_operator(Operator(identity, 0, 0, (dx,), (dy,)))

        assert_allclose(value, 1.0, atol=1e-12)

    @pytest.mark.parametrize("source", range(4))
    @pytest.mark.parametrize("dx,dy", [(2, 0), (1, 1), (1, -1), (0, 2)])
    def test_factorized_block(self, source, dx, dy):
        from ctmpeps.models.operators import Operator

        engine, _ = neel_engine()
        uc = engine.unit_cell
        op = Operator(None, 1, source, (dx,), (dy,), ops_indices=(0, 0))

        value = engine.measure_twosite_operator(op)

        target = uc.other(source, dx, dy)
        assert_allclose(value, 0.25 * SIGN[source] * SIGN[target], atol=1e-12)

    def test_block_matches_adjacent_kernel(self):
        """A dense product operator gives the factorized value on a block."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import Operator, two_site_product

        engine, _ = neel_engine()
        dense = Operator(two_site_product(Tensor(SZ), Tensor(SZ)), 0, 1, (1,), (1,))
        factorized = Operator(None, 1, 1, (1,), (1,), ops_indices=(0, 0))

        assert_allclose(
            engine.measure_twosite_operator(dense),
            engine.measure_twosite_operator(factorized),
            atol=1e-12,
        )

    def test_block_layout(self):
        engine, _ = neel_engine()

        grid, source, target = engine._block_layout(0, 1, 1)
        assert grid == [[2, 3], [0, 1]]
        assert source == (1, 0)
        assert target == (0, 1)

        grid, source, target = engine._block_layout(0, -1, -1)
        assert source == (0, 1)
        assert target == (1, 0)

    def test_oversized_block_is_skipped(self):
        from ctmpeps.models.operators import Operator
        from ctmpeps.algorithms.observables import ObservableConfig

        engine, _ = neel_engine(ObservableConfig(max_block_size=2))
        op = Operator(None, 1, 0, (2,), (0,), ops_indices=(0, 0))

        with pytest.warns(UserWarning):
            assert engine.measure_twosite_operator(op) is None

    def test_unresolved_factors_are_skipped(self):
        from ctmpeps.models.operators import Operator

        engine, _ = neel_engine()
        op = Operator(None, 0, 0, (1,), (0,), ops_indices=(0, 7))

        with pytest.warns(UserWarning):
            assert engine.measure_twosite_operator(op) is None

    def test_twosite_densities(self):
        engine, _ = neel_engine()
        densities = engine.twosite_densities(engine.measure_twosite())

        # eight bonds on four sites
        assert_allclose(densities, [-0.5, -0.5, 0.0, 0.0], atol=1e-12)


class TestCorrelation:
    """Tests for long-range correlations."""

    def test_record_count(self):
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = neel_engine()
        records = engine.measure_correlation(CorrelationConfig(r_max=3, pairs=[(0, 0)]))

        # 4 sites, 3 distances, 2 directions
        assert len(records) == 24

    def test_default_pairs(self):
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = neel_engine()
        records = engine.measure_correlation(CorrelationConfig(r_max=1))

        assert {(c.left_op, c.right_op) for c in records} == {
            (a, b) for a in range(3) for b in range(3)
        }

    def test_product_state_values(self):
        """Correlations factorize into one-site values."""
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = neel_engine()
        records = engine.measure_correlation(CorrelationConfig(r_max=4, pairs=[(0, 0), (1, 1)]))

        for c in records:
            if c.left_op == 0:
                expected = 0.25 * SIGN[c.left_index] * SIGN[c.right_index]
            else:
                expected = 0.0
            assert_allclose(c.value, expected, atol=1e-12)

    def test_x_direction_offsets(self):
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = neel_engine()
        records = engine.measure_correlation(CorrelationConfig(r_max=3, pairs=[(0, 0)]))
        along_x = [c for c in records if c.offset_y == 0 and c.left_index == 1]

        assert [c.right_index for c in along_x[:3]] == [0, 1, 0]
        assert [c.offset_x for c in along_x[:3]] == [1, 1, 2]

    def test_y_direction_right_sites(self):
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = neel_engine()
        records = engine.measure_correlation(CorrelationConfig(r_max=2, pairs=[(0, 0)]))
        along_y = records[len(records) // 2:]

        assert all(c.offset_x == 0 for c in along_y)
        for c in along_y:
            uc = engine.unit_cell
            assert uc.x(c.right_index) == uc.x(c.left_index)
            assert uc.y(c.right_index) != uc.y(c.left_index) or c.offset_y > 0


SX = np.array([[0.0, 0.5], [0.5, 0.0]])
DISPLACEMENTS = [(1, 0), (-1, 0), (0, 1), (0, -1), (2, 0), (1, 1), (1, -2)]


@functools.lru_cache(maxsize=None)
def random_engine():
    """Engine on a converged random D = 2 state of a 2x3 cell."""
    from ctmpeps.lattice.unit_cell import UnitCell
    from ctmpeps.core.tensor_store import TensorStore
    from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
    from ctmpeps.models.heisenberg import HeisenbergModel
    from ctmpeps.algorithms.observables import ObservableEngine

    uc = UnitCell(2, 3, physical_dims=2, virtual_dims=2, noises=0.5)
    store = TensorStore(uc, chi=8, dtype=np.complex128)
    store.initialize(seed=23)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        CTMRG(store, CTMRGConfig(chi=8, max_iter=300, tol=1e-10, verbosity=0)).run()

    model = HeisenbergModel(uc)
    engine = ObservableEngine(store, model.onesite_operators(), model.twosite_operators())
    return engine, engine.measure_onesite()


class TestRandomState:
    """Consistency of the contraction routes on a state with D > 1."""

    @pytest.mark.parametrize("dx,dy", DISPLACEMENTS)
    def test_identity_on_other_site(self, dx, dy):
        """Sz x 1 gives the one-site Sz of the source."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import Operator, two_site_product

        engine, onesite = random_engine()
        op = two_site_product(Tensor(SZ), Tensor(np.eye(2)))

        for source in engine.unit_cell:
            value = engine.measure_twosite_operator(Operator(op, 0, source, (dx,), (dy,)))
            assert_allclose(value, onesite[0, source], atol=2e-5)

    @pytest.mark.parametrize("dx,dy", DISPLACEMENTS)
    def test_identity_on_source(self, dx, dy):
        """1 x Sx gives the one-site Sx of the other site."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import Operator, two_site_product

        engine, onesite = random_engine()
        uc = engine.unit_cell
        op = two_site_product(Tensor(np.eye(2)), Tensor(SX))

        for source in uc:
            value = engine.measure_twosite_operator(Operator(op, 0, source, (dx,), (dy,)))
            assert_allclose(value, onesite[1, uc.other(source, dx, dy)], atol=2e-5)

    def test_magnetization_is_not_trivial(self):
        _, onesite = random_engine()

        assert np.max(np.abs(onesite[0])) > 1e-2
        assert np.max(np.abs(onesite[1])) > 1e-2

    @pytest.mark.parametrize("dx,dy", [(1, 0), (0, 1), (1, 1), (2, 0)])
    def test_dense_matches_factorized(self, dx, dy):
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import Operator, two_site_product

        engine, _ = random_engine()
        dense = two_site_product(Tensor(SZ), Tensor(SX))

        for source in engine.unit_cell:
            assert_allclose(
                engine.measure_twosite_operator(Operator(dense, 0, source, (dx,), (dy,))),
                engine.measure_twosite_operator(
                    Operator(None, 0, source, (dx,), (dy,), ops_indices=(0, 1))
                ),
                atol=2e-5,
            )

    def test_correlation_matches_twosite(self):
        """Correlations at separation r agree with block measurements."""
        from ctmpeps.models.operators import Operator
        from ctmpeps.algorithms.observables import CorrelationConfig

        engine, _ = random_engine()
        uc = engine.unit_cell
        r_max = 3
        records = engine.measure_correlation(CorrelationConfig(r_max=r_max, pairs=[(0, 1)]))

        assert len(records) == 2 * uc.N_UNIT * r_max
        along_x, along_y = records[:uc.N_UNIT * r_max], records[uc.N_UNIT * r_max:]
        for direction, chunk in ((0, along_x), (1, along_y)):
            for n, c in enumerate(chunk):
                r = n % r_max + 1
                dx, dy = (r, 0) if direction == 0 else (0, r)
                assert c.right_index == uc.other(c.left_index, dx, dy)

                op = Operator(None, 0, c.left_index, (dx,), (dy,), ops_indices=(0, 1))
                assert_allclose(c.value, engine.measure_twosite_operator(op), atol=2e-5)
