"""
Periodic square-lattice unit cell for PEPS tensor networks.

Sites are numbered ``i = x + LX * y`` with ``x`` growing to the right and
``y`` growing upwards. Every site tensor has four virtual legs ordered

    0: left (-x), 1: top (+y), 2: right (+x), 3: bottom (-y)

followed by one physical leg.
"""

from __future__ import annotations

import numpy as np
from typing import Dict, List, Tuple, Optional, Sequence, Union, Iterator, Any
from dataclasses import dataclass


# Leg labels
LEFT, TOP, RIGHT, BOTTOM = 0, 1, 2, 3
NLEG = 4

# Lattice displacement of each leg
LEG_OFFSETS: Dict[int, Tuple[int, int]] = {
    LEFT: (-1, 0),
    TOP: (0, 1),
    RIGHT: (1, 0),
    BOTTOM: (0, -1),
}


def opposite_leg(leg: int) -> int:
    """Leg of the neighbouring site that shares the bond."""
    return (leg + 2) % NLEG


@dataclass(frozen=True)
class Bond:
    """
    A nearest-neighbour bond.

    Attributes
    ----------
    source : int
        Source site index
    source_leg : int
        Leg of the source site carrying the bond
    target : int
        Target site index
    """
    source: int
    source_leg: int
    target: int

    @property
    def target_leg(self) -> int:
        return opposite_leg(self.source_leg)

    @property
    def is_horizontal(self) -> bool:
        return self.source_leg in (LEFT, RIGHT)


def _per_site(value: Any, n: int, name: str) -> List[Any]:
    """Broadcast a single value to every site, or check a per-site list."""
    if isinstance(value, (list, tuple, np.ndarray)) and len(value) > 0 and isinstance(
        value[0], (list, tuple, np.ndarray)
    ):
        if len(value) != n:
            raise ValueError(f"{name} has {len(value)} entries for {n} sites")
        return [list(v) for v in value]
    if isinstance(value, (list, tuple, np.ndarray)):
        return [list(value) for _ in range(n)]
    return [value for _ in range(n)]


class UnitCell:
    """
    Square-lattice unit cell with periodic wraparound.

    Parameters
    ----------
    LX, LY : int
        Unit cell dimensions
    physical_dims : int or list of int
        Physical dimension, one value for all sites or one per site
    virtual_dims : int, list of 4 int, or list of per-site lists
        Virtual bond dimensions ordered (left, top, right, bottom)
    initial_dirs : list of array_like, optional
        Per-site initial state vector; an all-zero vector means random
    noises : float or list of float, optional
        Per-site amplitude of the random part of the initial tensor

    Examples
    --------
    >>> uc = UnitCell(2, 2, physical_dims=2, virtual_dims=3)
    >>> uc.N_UNIT
    4
    >>> uc.neighbor(0, 2), uc.other(0, -1, 1)
    (1, 3)
    """

    def __init__(
        self,
        LX: int = 1,
        LY: int = 1,
        physical_dims: Union[int, Sequence[int]] = 2,
        virtual_dims: Union[int, Sequence[int], Sequence[Sequence[int]]] = 1,
        initial_dirs: Optional[Sequence[Sequence[complex]]] = None,
        noises: Union[float, Sequence[float]] = 0.0,
    ):
        if LX < 1 or LY < 1:
            raise ValueError(f"Unit cell size must be positive, got {LX}x{LY}")

        self.LX = int(LX)
        self.LY = int(LY)
        self.N_UNIT = self.LX * self.LY

        if isinstance(physical_dims, (list, tuple, np.ndarray)):
            if len(physical_dims) != self.N_UNIT:
                raise ValueError(
                    f"physical_dims has {len(physical_dims)} entries for {self.N_UNIT} sites"
                )
            self.physical_dims = [int(d) for d in physical_dims]
        else:
            self.physical_dims = [int(physical_dims)] * self.N_UNIT

        if isinstance(virtual_dims, (int, np.integer)):
            virtual_dims = [virtual_dims] * NLEG
        self.virtual_dims = [
            [int(d) for d in v] for v in _per_site(virtual_dims, self.N_UNIT, "virtual_dims")
        ]

        if initial_dirs is None:
            self.initial_dirs = [np.zeros(d) for d in self.physical_dims]
        else:
            if len(initial_dirs) != self.N_UNIT:
                raise ValueError(
                    f"initial_dirs has {len(initial_dirs)} entries for {self.N_UNIT} sites"
                )
            self.initial_dirs = [np.asarray(v) for v in initial_dirs]

        if isinstance(noises, (list, tuple, np.ndarray)):
            if len(noises) != self.N_UNIT:
                raise ValueError(f"noises has {len(noises)} entries for {self.N_UNIT} sites")
            self.noises = [float(v) for v in noises]
        else:
            self.noises = [float(noises)] * self.N_UNIT

        self.validate()

    # ==================== Indexing ====================

    def x(self, index: int) -> int:
        """x coordinate of a site."""
        return index % self.LX

    def y(self, index: int) -> int:
        """y coordinate of a site."""
        return index // self.LX

    def index(self, x: int, y: int) -> int:
        """Site index at (x, y), wrapped into the unit cell."""
        return (x % self.LX) + self.LX * (y % self.LY)

    def other(self, index: int, dx: int, dy: int) -> int:
        """Site index displaced by (dx, dy) from ``index``."""
        return self.index(self.x(index) + dx, self.y(index) + dy)

    def neighbor(self, index: int, leg: int) -> int:
        """Site connected to ``index`` through ``leg``."""
        dx, dy = LEG_OFFSETS[leg]
        return self.other(index, dx, dy)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.N_UNIT))

    def __len__(self) -> int:
        return self.N_UNIT

    # ==================== Structure ====================

    def bonds(self) -> List[Bond]:
        """
        Every nearest-neighbour bond of the unit cell, listed once.

        Horizontal bonds come from the right leg, vertical bonds from the
        top leg of their source site. A 1-wide (or 1-high) cell still has
        its self-bond in that direction.
        """
        result = []
        for i in range(self.N_UNIT):
            for leg in (RIGHT, TOP):
                result.append(Bond(i, leg, self.neighbor(i, leg)))
        return result

    def validate(self) -> None:
        """
        Check leg-dimension consistency across all shared bonds.

        Raises
        ------
        ValueError
            If any dimension is non-positive, or two sites sharing a bond
            disagree on its dimension.
        """
        for i in range(self.N_UNIT):
            pdim = self.physical_dims[i]
            vdim = self.virtual_dims[i]
            if pdim < 1:
                raise ValueError(f"Site {i}: physical dimension must be positive, got {pdim}")
            if len(vdim) != NLEG:
                raise ValueError(f"Site {i}: expected {NLEG} virtual dimensions, got {len(vdim)}")
            if any(d < 1 for d in vdim):
                raise ValueError(f"Site {i}: virtual dimensions must be positive, got {vdim}")
            if len(self.initial_dirs[i]) != pdim:
                raise ValueError(
                    f"Site {i}: initial direction has length {len(self.initial_dirs[i])}, "
                    f"expected {pdim}"
                )

        for i in range(self.N_UNIT):
            for leg in (RIGHT, TOP):
                j = self.neighbor(i, leg)
                mine = self.virtual_dims[i][leg]
                theirs = self.virtual_dims[j][opposite_leg(leg)]
                if mine != theirs:
                    raise ValueError(
                        f"Leg dimension mismatch between site {i} (leg {leg}, dim {mine}) "
                        f"and site {j} (leg {opposite_leg(leg)}, dim {theirs})"
                    )

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data description, used for broadcasting."""
        return {
            'LX': self.LX,
            'LY': self.LY,
            'physical_dims': list(self.physical_dims),
            'virtual_dims': [list(v) for v in self.virtual_dims],
            'initial_dirs': [np.asarray(v).tolist() for v in self.initial_dirs],
            'noises': list(self.noises),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnitCell':
        """Inverse of :meth:`to_dict`."""
        return cls(
            data['LX'],
            data['LY'],
            physical_dims=data['physical_dims'],
            virtual_dims=data['virtual_dims'],
            initial_dirs=data['initial_dirs'],
            noises=data['noises'],
        )

    def __repr__(self) -> str:
        return f"UnitCell(LX={self.LX}, LY={self.LY}, N_UNIT={self.N_UNIT})"
