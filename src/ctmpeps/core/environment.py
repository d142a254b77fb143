"""
CTM environment snapshots and quarter-turn lattice rotations.

The environment of site ``i`` is eight boundary tensors arranged clockwise
around it::

    C1 --- Et --- C2
    |      |      |
    El --- T  --- Er
    |      |      |
    C4 --- Eb --- C3

Corners are ``C[a, b]`` and edges ``E[a, b, k, K]``; ``a`` and ``b`` follow
the clockwise order (``C1[a, b]``: ``a`` to El, ``b`` to Et; ``Et[a, b]``: ``a``
to C1, ``b`` to C2; and so on), ``k`` and ``K`` are the ket and bra legs that
open onto the site tensor.

Rotating the lattice counter-clockwise by a quarter turn maps the top edge
onto the left edge, so every directional CTM move can be written as a left
move in a rotated frame. Because the index conventions are cyclic, rotation
only relabels roles: no boundary tensor needs to be transposed.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple, Any

import numpy as np

from ctmpeps.core.tensor import Tensor, get_default_dtype


CORNERS = ('C1', 'C2', 'C3', 'C4')
EDGES = ('Et', 'Er', 'Eb', 'El')
KINDS = CORNERS + EDGES


class Environment:
    """
    Immutable snapshot of the CTM boundary tensors of a unit cell.

    Each attribute (``C1`` ... ``El``) is a list with one :class:`Tensor` per
    site. Moves never modify a snapshot: they build a new one with
    :meth:`replace`, which shares every list that was not touched and bumps
    ``version``.

    Parameters
    ----------
    tensors : dict
        Mapping from kind (``'C1'``, ..., ``'El'``) to per-site lists
    version : int
        Snapshot counter
    """

    __slots__ = KINDS + ('version',)

    def __init__(self, tensors: Dict[str, Sequence[Tensor]], version: int = 0):
        for kind in KINDS:
            object.__setattr__(self, kind, tuple(tensors[kind]))
        object.__setattr__(self, 'version', version)

    def __setattr__(self, name, value):
        raise AttributeError("Environment snapshots are immutable; use replace()")

    @classmethod
    def flat(
        cls,
        virtual_dims: Sequence[Sequence[int]],
        chi: int,
        dtype: Optional[Any] = None,
    ) -> 'Environment':
        """
        Flat initial environment.

        Corners are ``chi x chi`` with a single one at ``[0, 0]``; edges are
        ``chi x chi x D x D`` with the identity on ``[0, 0, :, :]``, which
        traces the ket and bra legs of the neighbouring site tensor.

        Parameters
        ----------
        virtual_dims : list of list of int
            Per-site virtual dimensions ordered (left, top, right, bottom)
        chi : int
            Boundary bond dimension
        dtype : dtype, optional
            Scalar type (default: the run's default)
        """
        dtype = dtype or get_default_dtype()
        tensors: Dict[str, List[Tensor]] = {kind: [] for kind in KINDS}

        for vdim in virtual_dims:
            for kind in CORNERS:
                c = np.zeros((chi, chi), dtype=dtype)
                c[0, 0] = 1.0
                tensors[kind].append(Tensor(c))
            # Et, Er, Eb, El face legs 1, 2, 3, 0
            for kind, leg in zip(EDGES, (1, 2, 3, 0)):
                D = vdim[leg]
                e = np.zeros((chi, chi, D, D), dtype=dtype)
                e[0, 0, :, :] = np.eye(D)
                tensors[kind].append(Tensor(e))

        return cls(tensors)

    @property
    def num_sites(self) -> int:
        return len(self.C1)

    def site(self, index: int) -> Tuple[Tensor, ...]:
        """The eight boundary tensors of a site, in ``KINDS`` order."""
        return tuple(getattr(self, kind)[index] for kind in KINDS)

    def replace(self, **updates: Dict[int, Tensor]) -> 'Environment':
        """
        New snapshot with some tensors replaced.

        Parameters
        ----------
        **updates
            ``kind={site: tensor, ...}`` for each kind to update

        Returns
        -------
        Environment
            Snapshot with ``version`` incremented
        """
        tensors = {}
        for kind in KINDS:
            current = getattr(self, kind)
            changes = updates.pop(kind, None)
            if changes:
                current = list(current)
                for i, t in changes.items():
                    current[i] = t
            tensors[kind] = current
        if updates:
            raise ValueError(f"Unknown environment tensors: {sorted(updates)}")
        return Environment(tensors, version=self.version + 1)

    def copy(self) -> 'Environment':
        """Deep copy (same version)."""
        return Environment(
            {kind: [t.clone() for t in getattr(self, kind)] for kind in KINDS},
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"Environment(num_sites={self.num_sites}, version={self.version})"


# ==================== Rotations ====================

def rotate_site_tensor(tensor: Tensor, turns: int) -> Tensor:
    """
    Relabel the virtual legs of a site tensor for a lattice rotated by
    ``turns`` counter-clockwise quarter turns.

    New leg ``n`` is old leg ``(n + turns) % 4``; the physical leg stays last.
    """
    turns %= 4
    if turns == 0:
        return tensor
    return tensor.transpose([(n + turns) % 4 for n in range(4)] + [4])


def rotate_site_environment(
    tensors: Sequence[Tensor],
    turns: int,
) -> Tuple[Tensor, ...]:
    """
    Relabel the eight boundary tensors of one site (``KINDS`` order) for a
    lattice rotated by ``turns`` counter-clockwise quarter turns.

    New corner ``C_n`` is old ``C_{n+turns}`` and likewise for edges.
    """
    turns %= 4
    corners = tensors[:4]
    edges = tensors[4:]
    return tuple(corners[(n + turns) % 4] for n in range(4)) + tuple(
        edges[(n + turns) % 4] for n in range(4)
    )


def rotate_kind(kind: str, turns: int) -> str:
    """Name, in the original frame, of the rotated frame's ``kind``."""
    names = CORNERS if kind in CORNERS else EDGES
    return names[(names.index(kind) + turns) % 4]


class LatticeRotation:
    """
    A unit cell seen after ``turns`` counter-clockwise quarter turns.

    A site at ``(x, y)`` moves to ``(-y mod LY, x)`` per turn and the cell
    dimensions swap. The rotated frame has its own site numbering
    ``j = x' + LX' * y'``; :attr:`site_map` maps it back to the original.

    Parameters
    ----------
    unit_cell : UnitCell
        The original unit cell
    turns : int
        Number of counter-clockwise quarter turns

    Examples
    --------
    >>> rot = LatticeRotation(UnitCell(2, 1), 1)
    >>> rot.LX, rot.LY
    (1, 2)
    >>> rot.site_map
    [0, 1]
    """

    def __init__(self, unit_cell: Any, turns: int):
        self.unit_cell = unit_cell
        self.turns = turns % 4

        LX, LY = unit_cell.LX, unit_cell.LY
        if self.turns % 2 == 0:
            self.LX, self.LY = LX, LY
        else:
            self.LX, self.LY = LY, LX

        self.site_map: List[int] = [0] * unit_cell.N_UNIT
        self._coords: List[Tuple[int, int]] = [(0, 0)] * unit_cell.N_UNIT
        for i in range(unit_cell.N_UNIT):
            x, y = unit_cell.x(i), unit_cell.y(i)
            lx, ly = LX, LY
            for _ in range(self.turns):
                x, y = (-y) % ly, x
                lx, ly = ly, lx
            self.site_map[x + self.LX * y] = i
            self._coords[i] = (x, y)

    @property
    def N_UNIT(self) -> int:
        return len(self.site_map)

    def coords(self, original: int) -> Tuple[int, int]:
        """Rotated-frame coordinates of an original site."""
        return self._coords[original]

    def index(self, x: int, y: int) -> int:
        """Rotated-frame site index at (x, y), wrapped."""
        return (x % self.LX) + self.LX * (y % self.LY)

    def original(self, x: int, y: int) -> int:
        """Original site index at rotated-frame (x, y)."""
        return self.site_map[self.index(x, y)]

    def site_tensors(self, tensors: Sequence[Tensor]) -> List[Tensor]:
        """Site tensors in rotated-frame order with relabelled legs."""
        return [rotate_site_tensor(tensors[i], self.turns) for i in self.site_map]

    def environment(self, env: Environment) -> Environment:
        """The environment re-expressed in the rotated frame."""
        tensors: Dict[str, List[Tensor]] = {kind: [] for kind in KINDS}
        for i in self.site_map:
            rotated = rotate_site_environment(env.site(i), self.turns)
            for kind, t in zip(KINDS, rotated):
                tensors[kind].append(t)
        return Environment(tensors, version=env.version)

    def unrotate(self, updates: Dict[str, Dict[int, Tensor]]) -> Dict[str, Dict[int, Tensor]]:
        """
        Translate rotated-frame updates ``{kind: {j: tensor}}`` back to the
        original frame, for :meth:`Environment.replace`.
        """
        result: Dict[str, Dict[int, Tensor]] = {}
        for kind, changes in updates.items():
            target = rotate_kind(kind, self.turns)
            result.setdefault(target, {})
            for j, t in changes.items():
                result[target][self.site_map[j]] = t
        return result
