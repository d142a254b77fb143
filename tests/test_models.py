"""
Tests for operators and the Heisenberg model.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose


class TestSpinOperators:
    """Tests for spin operators."""

    def test_spin_half(self):
        from ctmpeps.models.operators import SpinOperators

        spin = SpinOperators(0.5)

        assert spin.dim == 2
        assert_allclose(spin.Sz.data, np.diag([0.5, -0.5]))
        assert_allclose(spin.Sx.data, [[0, 0.5], [0.5, 0]])
        assert_allclose(spin.Sp.data, [[0, 1], [0, 0]])

    @pytest.mark.parametrize("S", [0.5, 1.0, 1.5])
    def test_commutation(self, S):
        """[Sx, Sy] = i Sz."""
        from ctmpeps.models.operators import SpinOperators

        spin = SpinOperators(S)
        Sx, Sy, Sz = spin.Sx.data, spin.Sy.data, spin.Sz.data

        assert_allclose(Sx @ Sy - Sy @ Sx, 1j * Sz, atol=1e-12)

    @pytest.mark.parametrize("S", [0.5, 1.0, 1.5])
    def test_casimir(self, S):
        """S^2 = S(S+1)."""
        from ctmpeps.models.operators import SpinOperators

        spin = SpinOperators(S)
        S2 = sum(op.data @ op.data for op in (spin.Sx, spin.Sy, spin.Sz))

        assert_allclose(S2, S * (S + 1) * np.eye(spin.dim), atol=1e-12)

    def test_invalid_spin(self):
        from ctmpeps.models.operators import SpinOperators

        with pytest.raises(ValueError):
            SpinOperators(0.3)
        with pytest.raises(ValueError):
            SpinOperators(0.0)

    def test_get(self):
        from ctmpeps.models.operators import SpinOperators

        spin = SpinOperators(1.0)

        assert spin.get('Sz') is spin.Sz
        assert spin.get('S+') is spin.Sp
        with pytest.raises(ValueError):
            spin.get('Sw')


class TestBondOperators:
    """Tests for two-site operators and gates."""

    def test_two_site_product_layout(self):
        """op[out1, out2, in1, in2] = a[out1, in1] b[out2, in2]."""
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import two_site_product

        a = Tensor(np.random.randn(2, 2))
        b = Tensor(np.random.randn(3, 3))
        op = two_site_product(a, b)

        assert op.shape == (2, 3, 2, 3)
        assert_allclose(op.data[1, 2, 0, 1], a.data[1, 0] * b.data[2, 1])

    def test_heisenberg_spectrum(self):
        """Singlet at -3/4, triplet at 1/4."""
        from ctmpeps.models.operators import SpinOperators, heisenberg_bond, as_matrix

        h = as_matrix(heisenberg_bond(SpinOperators(0.5)))
        eigenvalues = np.linalg.eigvalsh(h.data)

        assert_allclose(eigenvalues, [-0.75, 0.25, 0.25, 0.25], atol=1e-12)

    def test_ising_and_xy_sum(self):
        from ctmpeps.models.operators import SpinOperators, heisenberg_bond, ising_bond, xy_bond

        spin = SpinOperators(1.0)

        assert_allclose(
            (ising_bond(spin, 2.0) + xy_bond(spin, 2.0)).data,
            heisenberg_bond(spin, 2.0).data,
            atol=1e-12,
        )

    def test_imaginary_time_gate(self):
        """exp(-tau h) is diagonal in the eigenbasis of h."""
        from ctmpeps.models.operators import (
            SpinOperators, heisenberg_bond, imaginary_time_gate, as_matrix,
        )

        tau = 0.1
        gate = imaginary_time_gate(heisenberg_bond(SpinOperators(0.5)), tau)

        assert gate.shape == (2, 2, 2, 2)
        eigenvalues = np.linalg.eigvalsh(as_matrix(gate).data)
        assert_allclose(
            eigenvalues,
            np.sort(np.exp(-tau * np.array([-0.75, 0.25, 0.25, 0.25]))),
            atol=1e-12,
        )

    def test_gate_rank_check(self):
        from ctmpeps.core.tensor import Tensor
        from ctmpeps.models.operators import imaginary_time_gate

        with pytest.raises(ValueError):
            imaginary_time_gate(Tensor(np.eye(4)), 0.1)


class TestOperatorDescriptors:
    """Tests for Operator and EvolutionOperator."""

    def test_onesite(self):
        from ctmpeps.models.operators import Operator

        op = Operator(np.eye(2), group=1, source_site=3)

        assert op.is_onesite
        assert op.nsites == 1
        assert op.has_tensor

    def test_twosite_other_site(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.operators import Operator

        uc = UnitCell(2, 2)
        op = Operator(np.eye(4).reshape(2, 2, 2, 2), 0, 0, dx=(1,), dy=(1,))

        assert op.nsites == 2
        assert op.other_site(uc) == 3

    def test_rank_mismatch(self):
        from ctmpeps.models.operators import Operator

        with pytest.raises(ValueError):
            Operator(np.eye(2), 0, 0, dx=(1,), dy=(0,))

    def test_needs_tensor_or_indices(self):
        from ctmpeps.models.operators import Operator

        with pytest.raises(ValueError):
            Operator(None, 0, 0, dx=(1,), dy=(0,))
        op = Operator(None, 0, 0, dx=(1,), dy=(0,), ops_indices=(0, 0))
        assert not op.has_tensor

    def test_zero_displacement(self):
        from ctmpeps.models.operators import Operator

        with pytest.raises(ValueError):
            Operator(None, 0, 0, dx=(0,), dy=(0,), ops_indices=(0, 0))

    def test_validate_against_unit_cell(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.operators import Operator

        uc = UnitCell(2, 1, physical_dims=[2, 3])

        Operator(np.eye(3), 0, 1).validate(uc)
        with pytest.raises(ValueError):
            Operator(np.eye(2), 0, 1).validate(uc)
        with pytest.raises(ValueError):
            Operator(np.eye(2), 0, 5).validate(uc)

    def test_evolution_target(self):
        from ctmpeps.lattice.unit_cell import UnitCell, TOP
        from ctmpeps.models.operators import EvolutionOperator

        uc = UnitCell(2, 2)
        ev = EvolutionOperator(np.eye(4).reshape(2, 2, 2, 2), 1, TOP)

        assert ev.target_site(uc) == 3
        assert not ev.is_horizontal
        ev.validate(uc)

    def test_evolution_shape_check(self):
        from ctmpeps.lattice.unit_cell import UnitCell, RIGHT
        from ctmpeps.models.operators import EvolutionOperator

        uc = UnitCell(2, 1, physical_dims=3)
        ev = EvolutionOperator(np.eye(4).reshape(2, 2, 2, 2), 0, RIGHT)

        with pytest.raises(ValueError):
            ev.validate(uc)

    def test_astype(self):
        from ctmpeps.models.operators import Operator

        op = Operator(np.array([[0, -1j], [1j, 0]]), 0, 0).astype(np.float64)

        assert op.op.dtype == np.float64
        assert_allclose(op.op.data, np.zeros((2, 2)))

    def test_onesite_index_table(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.operators import Operator, onesite_index_table

        uc = UnitCell(2, 1)
        ops = [Operator(np.eye(2), 0, 0), Operator(np.eye(2), 2, 1)]

        n_groups, table = onesite_index_table(ops, uc)

        assert n_groups == 3
        assert table[0, 0] == 0
        assert table[1, 2] == 1
        assert table[1, 0] == -1

    def test_resolve_factors(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.operators import (
            Operator, onesite_index_table, resolve_factors, SpinOperators,
        )

        uc = UnitCell(2, 1)
        spin = SpinOperators(0.5)
        ops = [Operator(spin.Sz, 0, i) for i in uc] + [Operator(spin.Sx, 1, 0)]
        _, table = onesite_index_table(ops, uc)

        product = Operator(None, 0, 0, dx=(1,), dy=(0,), ops_indices=(0, 0))
        a, b = resolve_factors(product, ops, table, uc)
        assert_allclose(a.data, spin.Sz.data)

        missing = Operator(None, 0, 0, dx=(1,), dy=(0,), ops_indices=(0, 1))
        assert resolve_factors(missing, ops, table, uc) is None


class TestHeisenbergModel:
    """Tests for the Heisenberg model."""

    def test_evolutions(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams

        uc = UnitCell(2, 2, physical_dims=2, virtual_dims=2)
        model = HeisenbergModel(uc, HeisenbergParams(tau=0.05))
        evolutions = model.evolutions()

        assert len(evolutions) == 8
        for ev in evolutions:
            ev.validate(uc)

    def test_zero_tau_gate_is_identity(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.heisenberg import HeisenbergModel

        model = HeisenbergModel(UnitCell(1, 1))
        gate = model.evolutions(tau=0.0)[0].op

        assert_allclose(gate.data.reshape(4, 4), np.eye(4), atol=1e-14)

    def test_field_term(self):
        """The field is shared by the four bonds of each site."""
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams

        model = HeisenbergModel(UnitCell(1, 1), HeisenbergParams(J=0.0, h=1.0))
        h = model.bond_hamiltonian().data.reshape(4, 4)

        # |up up>: -(h/4)(1/2 + 1/2)
        assert_allclose(h[0, 0], -0.25)
        assert_allclose(h[3, 3], 0.25)

    def test_observables(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.heisenberg import HeisenbergModel

        uc = UnitCell(2, 2)
        model = HeisenbergModel(uc)

        onesite = model.onesite_operators()
        twosite = model.twosite_operators()

        assert len(onesite) == 3 * 4
        assert {op.group for op in onesite} == {0, 1, 2}
        assert len(twosite) == 4 * 8
        assert all(op.has_tensor for op in twosite if op.group == 0)
        assert all(op.ops_indices == (op.group - 1,) * 2 for op in twosite if op.group > 0)

    def test_physical_dimension_mismatch(self):
        from ctmpeps.lattice.unit_cell import UnitCell
        from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams

        with pytest.raises(ValueError):
            HeisenbergModel(UnitCell(1, 1, physical_dims=2), HeisenbergParams(S=1.0))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
