"""
Spin-S Heisenberg model on the square lattice.

    H = J sum_<ij> S_i . S_j - h sum_i S^z_i

The model provides everything a run needs:
- Trotter gates for every nearest-neighbour bond of the unit cell
- The bond Hamiltonian as the two-site observable of group 0
- One-site observables Sz, Sx, Sy (groups 0, 1, 2) and the factorized
  two-site correlators SzSz, SxSx, SySy (groups 1, 2, 3)
"""

from __future__ import annotations

from typing import List, Tuple, Optional
from dataclasses import dataclass

from ctmpeps.core.tensor import Tensor
from ctmpeps.lattice.unit_cell import UnitCell, LEG_OFFSETS
from ctmpeps.models.operators import (
    SpinOperators,
    Operator,
    EvolutionOperator,
    heisenberg_bond,
    two_site_product,
    imaginary_time_gate,
)


@dataclass
class HeisenbergParams:
    """
    Container for Heisenberg model parameters.

    Parameters
    ----------
    J : float
        Exchange coupling (default: 1.0, antiferromagnetic)
    h : float
        Longitudinal magnetic field (default: 0.0)
    S : float
        Spin quantum number (default: 1/2)
    tau : float
        Imaginary time step of the Trotter gates (default: 0.01)
    """
    J: float = 1.0
    h: float = 0.0
    S: float = 0.5
    tau: float = 0.01


ONESITE_NAMES = ('Sz', 'Sx', 'Sy')
TWOSITE_NAMES = ('hamiltonian', 'SzSz', 'SxSx', 'SySy')


class HeisenbergModel:
    """
    Heisenberg model on a square unit cell.

    Parameters
    ----------
    unit_cell : UnitCell
        Unit cell; every site must have physical dimension 2S + 1
    params : HeisenbergParams, optional
        Model parameters

    Examples
    --------
    >>> uc = UnitCell(2, 2, physical_dims=2, virtual_dims=2)
    >>> model = HeisenbergModel(uc, HeisenbergParams(J=1.0, tau=0.05))
    >>> len(model.evolutions())
    8
    """

    def __init__(self, unit_cell: UnitCell, params: Optional[HeisenbergParams] = None):
        self.unit_cell = unit_cell
        self.params = params or HeisenbergParams()
        self.spin = SpinOperators(self.params.S)

        for i in unit_cell:
            if unit_cell.physical_dims[i] != self.spin.dim:
                raise ValueError(
                    f"Site {i} has physical dimension {unit_cell.physical_dims[i]}, "
                    f"spin {self.params.S} needs {self.spin.dim}"
                )

    def bond_hamiltonian(self) -> Tensor:
        """
        Bond Hamiltonian including the field share of each site.

        Every site belongs to four bonds, so each bond carries a quarter
        of the one-site field term of both of its sites.
        """
        spin = self.spin
        h = self.params.h
        field = (
            two_site_product(spin.Sz, spin.identity) + two_site_product(spin.identity, spin.Sz)
        ) * (-0.25 * h)
        return heisenberg_bond(spin, self.params.J) + field

    def _bonds(self) -> List[Tuple[int, int, int, int]]:
        """(source, source_leg, dx, dy) of every bond of the unit cell."""
        result = []
        for bond in self.unit_cell.bonds():
            dx, dy = LEG_OFFSETS[bond.source_leg]
            result.append((bond.source, bond.source_leg, dx, dy))
        return result

    def evolutions(self, tau: Optional[float] = None) -> List[EvolutionOperator]:
        """
        Trotter gates ``exp(-tau h)`` for every bond.

        Parameters
        ----------
        tau : float, optional
            Imaginary time step (default: ``params.tau``)
        """
        tau = self.params.tau if tau is None else tau
        gate = imaginary_time_gate(self.bond_hamiltonian(), tau)
        return [
            EvolutionOperator(gate, source, leg) for source, leg, _, _ in self._bonds()
        ]

    def onesite_operators(self) -> List[Operator]:
        """Sz, Sx and Sy on every site (groups 0, 1, 2)."""
        ops = []
        for group, name in enumerate(ONESITE_NAMES):
            op = self.spin.get(name)
            for i in self.unit_cell:
                ops.append(Operator(op, group, i, name=name))
        return ops

    def twosite_operators(self) -> List[Operator]:
        """
        Bond energy (group 0) and the nearest-neighbour spin correlators
        SzSz, SxSx, SySy (groups 1, 2, 3) on every bond.
        """
        ham = self.bond_hamiltonian()
        ops = []
        for source, _, dx, dy in self._bonds():
            ops.append(Operator(ham, 0, source, (dx,), (dy,), name=TWOSITE_NAMES[0]))
        for group, name in enumerate(TWOSITE_NAMES[1:], start=1):
            onesite_group = group - 1
            for source, _, dx, dy in self._bonds():
                ops.append(
                    Operator(
                        None,
                        group,
                        source,
                        (dx,),
                        (dy,),
                        ops_indices=(onesite_group, onesite_group),
                        name=name,
                    )
                )
        return ops
