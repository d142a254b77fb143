"""
Physical operators for spin systems on the square lattice.

This module provides:
- Spin operators (Sx, Sy, Sz, S+, S-) for arbitrary spin ``S``
- Operator descriptors placing one-site and two-site operators on the
  unit cell (:class:`Operator`) and nearest-neighbour Trotter gates
  (:class:`EvolutionOperator`)
- Bond Hamiltonians and imaginary-time gates

Tensor conventions: a one-site operator is ``op[out, in]``, a two-site
operator is ``op[out1, out2, in1, in2]`` where site 1 is the source site.
"""

from __future__ import annotations

import numpy as np
from typing import Tuple, Optional, Sequence, Any
from dataclasses import dataclass

from ctmpeps.core.tensor import Tensor
from ctmpeps.core.decompositions import expm
from ctmpeps.lattice.unit_cell import UnitCell, NLEG


@dataclass
class SpinOperators:
    """
    Collection of spin operators for a given spin value.

    Parameters
    ----------
    S : float
        Spin quantum number (1/2, 1, 3/2, ...)

    Attributes
    ----------
    dim : int
        Hilbert space dimension (2S + 1)
    Sx, Sy, Sz : Tensor
        Spin component operators
    Sp, Sm : Tensor
        Raising and lowering operators
    identity : Tensor
        Identity operator
    """
    S: float

    def __post_init__(self):
        if self.S <= 0 or abs(2 * self.S - round(2 * self.S)) > 1e-12:
            raise ValueError(f"Spin must be a positive half-integer, got {self.S}")
        self.dim = int(round(2 * self.S + 1))
        self._build_operators()

    def _build_operators(self) -> None:
        """Build spin operators in the basis m = S, S-1, ..., -S."""
        dim = self.dim
        S = self.S
        m_vals = S - np.arange(dim)

        Sp = np.zeros((dim, dim), dtype=np.complex128)
        for i in range(dim - 1):
            m = m_vals[i + 1]
            Sp[i, i + 1] = np.sqrt(S * (S + 1) - m * (m + 1))
        Sm = Sp.T.conj()

        self.Sp = Tensor(Sp)
        self.Sm = Tensor(Sm)
        self.Sx = Tensor((Sp + Sm) / 2)
        self.Sy = Tensor((Sp - Sm) / (2j))
        self.Sz = Tensor(np.diag(m_vals).astype(np.complex128))
        self.identity = Tensor(np.eye(dim, dtype=np.complex128))

    def get(self, name: str) -> Tensor:
        """Get operator by name."""
        operators = {
            'Sx': self.Sx,
            'Sy': self.Sy,
            'Sz': self.Sz,
            'S+': self.Sp,
            'Sp': self.Sp,
            'S-': self.Sm,
            'Sm': self.Sm,
            'I': self.identity,
            'id': self.identity,
        }
        if name not in operators:
            raise ValueError(f"Unknown spin operator: {name}")
        return operators[name]


# ==================== Bond operators ====================

def two_site_product(a: Tensor, b: Tensor) -> Tensor:
    """Tensor product ``a (x) b`` as ``op[out1, out2, in1, in2]``."""
    return Tensor(np.einsum('ij,kl->ikjl', a.numpy(), b.numpy()))


def as_matrix(op: Tensor) -> Tensor:
    """Rank-4 two-site operator as a ``(d1*d2) x (d1*d2)`` matrix."""
    d1, d2 = op.shape[0], op.shape[1]
    return op.reshape((d1 * d2, d1 * d2))


def heisenberg_bond(spin: SpinOperators, J: float = 1.0) -> Tensor:
    """J * (Sx Sx + Sy Sy + Sz Sz) as a rank-4 operator."""
    return (
        two_site_product(spin.Sx, spin.Sx)
        + two_site_product(spin.Sy, spin.Sy)
        + two_site_product(spin.Sz, spin.Sz)
    ) * J


def ising_bond(spin: SpinOperators, J: float = 1.0) -> Tensor:
    """J * Sz Sz as a rank-4 operator."""
    return two_site_product(spin.Sz, spin.Sz) * J


def xy_bond(spin: SpinOperators, J: float = 1.0) -> Tensor:
    """J * (Sx Sx + Sy Sy) as a rank-4 operator."""
    return (two_site_product(spin.Sx, spin.Sx) + two_site_product(spin.Sy, spin.Sy)) * J


def imaginary_time_gate(h: Tensor, tau: float) -> Tensor:
    """
    Trotter gate ``exp(-tau * h)`` of a rank-4 bond Hamiltonian.

    Parameters
    ----------
    h : Tensor
        Bond Hamiltonian ``h[out1, out2, in1, in2]``
    tau : float
        Imaginary time step

    Returns
    -------
    Tensor
        Gate with the same index layout as ``h``
    """
    if h.ndim != 4:
        raise ValueError(f"Bond Hamiltonian must have rank 4, got {h.ndim}")
    gate = expm(as_matrix(h) * (-tau))
    return gate.reshape(h.shape)


# ==================== Operator descriptors ====================

@dataclass
class Operator:
    """
    An operator placed on the unit cell.

    Parameters
    ----------
    op : Tensor or array_like
        ``op[out, in]`` for one-site, ``op[out1, out2, in1, in2]`` for
        two-site operators. May be empty when ``ops_indices`` is given.
    group : int
        Observable group; values of the same group are summed in outputs
    source_site : int
        Site the operator acts on (site 1 for two-site operators)
    dx, dy : tuple of int
        Displacement of the second site; empty for one-site operators
    ops_indices : tuple of int
        For a two-site operator that is a product of one-site operators,
        the one-site groups acting on the source and on the other site
    name : str
        Label used in output headers
    """
    op: Any
    group: int
    source_site: int
    dx: Tuple[int, ...] = ()
    dy: Tuple[int, ...] = ()
    ops_indices: Tuple[int, ...] = ()
    name: str = ''

    def __post_init__(self):
        if self.op is not None and not isinstance(self.op, Tensor):
            self.op = Tensor(np.asarray(self.op))
        self.dx = tuple(int(v) for v in self.dx)
        self.dy = tuple(int(v) for v in self.dy)
        self.ops_indices = tuple(int(v) for v in self.ops_indices)

        if len(self.dx) != len(self.dy):
            raise ValueError(f"dx and dy must have the same length, got {self.dx} and {self.dy}")
        if len(self.dx) > 1:
            raise ValueError("Only one- and two-site operators are supported")
        if self.group < 0:
            raise ValueError(f"Operator group must be non-negative, got {self.group}")
        if self.dx and self.dx[0] == 0 and self.dy[0] == 0:
            raise ValueError("Two-site operator needs a nonzero displacement")

        if self.ops_indices:
            if len(self.ops_indices) != self.nsites:
                raise ValueError(
                    f"ops_indices needs {self.nsites} entries, got {self.ops_indices}"
                )
        elif self.op is None or self.op.size == 0:
            raise ValueError("Operator needs either a tensor or ops_indices")
        else:
            rank = 2 * self.nsites
            if self.op.ndim != rank:
                raise ValueError(
                    f"{self.nsites}-site operator must have rank {rank}, got {self.op.ndim}"
                )
            if self.op.shape[:self.nsites] != self.op.shape[self.nsites:]:
                raise ValueError(f"Operator shape {self.op.shape} is not square")

    @property
    def nsites(self) -> int:
        return len(self.dx) + 1

    @property
    def is_onesite(self) -> bool:
        return self.nsites == 1

    @property
    def has_tensor(self) -> bool:
        return self.op is not None and self.op.size > 0

    def other_site(self, unit_cell: UnitCell) -> int:
        """Second site of a two-site operator."""
        return unit_cell.other(self.source_site, self.dx[0], self.dy[0])

    def validate(self, unit_cell: UnitCell) -> None:
        """
        Check the operator against the unit cell.

        Raises
        ------
        ValueError
            If the source site is out of range or the physical dimensions
            disagree with the sites the operator acts on
        """
        if not 0 <= self.source_site < unit_cell.N_UNIT:
            raise ValueError(
                f"Operator source site {self.source_site} outside unit cell "
                f"of {unit_cell.N_UNIT} sites"
            )
        if not self.has_tensor:
            return
        sites = [self.source_site]
        if not self.is_onesite:
            sites.append(self.other_site(unit_cell))
        for n, site in enumerate(sites):
            pdim = unit_cell.physical_dims[site]
            if self.op.shape[n] != pdim:
                raise ValueError(
                    f"Operator acts on dimension {self.op.shape[n]} at site {site}, "
                    f"which has physical dimension {pdim}"
                )

    def astype(self, dtype: Any) -> 'Operator':
        """Copy with the tensor cast to the run's scalar type."""
        op = self.op.astype(dtype) if self.has_tensor else self.op
        return Operator(
            op, self.group, self.source_site, self.dx, self.dy, self.ops_indices, self.name
        )


@dataclass
class EvolutionOperator:
    """
    Nearest-neighbour imaginary-time gate.

    Parameters
    ----------
    op : Tensor or array_like
        Gate ``op[out1, out2, in1, in2]``; site 1 is the source
    source_site : int
        Source site
    source_leg : int
        Leg of the source site carrying the bond; the target is the
        neighbour through this leg
    """
    op: Any
    source_site: int
    source_leg: int

    def __post_init__(self):
        if not isinstance(self.op, Tensor):
            self.op = Tensor(np.asarray(self.op))
        if self.op.ndim != 4:
            raise ValueError(f"Evolution operator must have rank 4, got {self.op.ndim}")
        if not 0 <= self.source_leg < NLEG:
            raise ValueError(f"source_leg must be in 0..3, got {self.source_leg}")

    def target_site(self, unit_cell: UnitCell) -> int:
        return unit_cell.neighbor(self.source_site, self.source_leg)

    @property
    def is_horizontal(self) -> bool:
        return self.source_leg in (0, 2)

    def validate(self, unit_cell: UnitCell) -> None:
        """Check site range and physical dimensions against the unit cell."""
        if not 0 <= self.source_site < unit_cell.N_UNIT:
            raise ValueError(
                f"Evolution source site {self.source_site} outside unit cell "
                f"of {unit_cell.N_UNIT} sites"
            )
        target = self.target_site(unit_cell)
        expected = (
            unit_cell.physical_dims[self.source_site],
            unit_cell.physical_dims[target],
        )
        if self.op.shape[:2] != expected or self.op.shape[2:] != expected:
            raise ValueError(
                f"Evolution operator shape {self.op.shape} does not match physical "
                f"dimensions {expected} of sites {self.source_site} and {target}"
            )

    def astype(self, dtype: Any) -> 'EvolutionOperator':
        return EvolutionOperator(self.op.astype(dtype), self.source_site, self.source_leg)


def onesite_index_table(
    onesite_ops: Sequence[Operator],
    unit_cell: UnitCell,
) -> Tuple[int, np.ndarray]:
    """
    Lookup table of one-site operators.

    Returns
    -------
    n_groups : int
        Number of one-site groups
    table : ndarray of int
        ``table[site, group]`` is the position of that operator in
        ``onesite_ops``, or -1 where none is assigned
    """
    n_groups = max((op.group for op in onesite_ops), default=-1) + 1
    table = -np.ones((unit_cell.N_UNIT, n_groups), dtype=int)
    for n, op in enumerate(onesite_ops):
        table[op.source_site, op.group] = n
    return n_groups, table


def resolve_factors(
    op: Operator,
    onesite_ops: Sequence[Operator],
    table: np.ndarray,
    unit_cell: UnitCell,
) -> Optional[Tuple[Tensor, Tensor]]:
    """
    One-site factors of a two-site operator given through ``ops_indices``.

    Returns ``None`` when ``op`` is not factorized or a factor is missing.
    """
    if not op.ops_indices:
        return None
    sites = (op.source_site, op.other_site(unit_cell))
    factors = []
    for site, group in zip(sites, op.ops_indices):
        if group >= table.shape[1] or table[site, group] < 0:
            return None
        factors.append(onesite_ops[table[site, group]].op)
    return factors[0], factors[1]
