"""
Expectation values of one-site, two-site and long-range operators.

All values are normalized by the matching contraction without operators,
so the overall scale of the site and boundary tensors drops out.
"""

from __future__ import annotations

import numpy as np
from typing import Dict, List, Tuple, Optional, Any, Sequence
from dataclasses import dataclass
import warnings

from ctmpeps.core.tensor import Tensor
from ctmpeps.core.decompositions import svd
from ctmpeps.core.environment import LatticeRotation
from ctmpeps.models.operators import (
    Operator,
    onesite_index_table,
    resolve_factors,
    two_site_product,
)
from ctmpeps.algorithms.local_contractions import (
    contract_onesite,
    contract_twosite_horizontal,
    contract_twosite_vertical,
    contract_block,
    start_correlation,
    transfer,
    finish_correlation,
)
from ctmpeps.hpc.mpi import MPIManager


@dataclass
class ObservableConfig:
    """Configuration of the measurements."""
    max_block_size: int = 4  # Largest patch side used for two-site operators
    verbosity: int = 1


@dataclass
class CorrelationConfig:
    """Long-range correlation request."""
    r_max: int = 5  # Separations 1 .. r_max
    pairs: Optional[List[Tuple[int, int]]] = None  # (left group, right group); None means all


@dataclass
class Correlation:
    """One correlation value ``<A_left B_right>``."""
    left_op: int
    left_index: int
    right_op: int
    right_index: int
    offset_x: int
    offset_y: int
    real: float
    imag: float

    @property
    def value(self) -> complex:
        return complex(self.real, self.imag)


# Transposition that swaps the two sites of a two-site operator
SWAP_SITES = (1, 0, 3, 2)


class ObservableEngine:
    """
    Measurements on a converged environment.

    Parameters
    ----------
    store : TensorStore
        Site tensors and converged environment
    onesite_ops : list of Operator
        One-site operators (cast to the store's scalar type)
    twosite_ops : list of Operator
        Two-site operators (cast to the store's scalar type)
    config : ObservableConfig, optional
        Measurement limits
    mpi : MPIManager, optional
        Communicator wrapper

    Examples
    --------
    >>> engine = ObservableEngine(store, model.onesite_operators(), model.twosite_operators())
    >>> onesite = engine.measure_onesite()
    >>> energy = engine.energy(engine.measure_twosite())
    """

    def __init__(
        self,
        store: Any,
        onesite_ops: Sequence[Operator],
        twosite_ops: Sequence[Operator],
        config: Optional[ObservableConfig] = None,
        mpi: Optional[MPIManager] = None,
    ):
        self.store = store
        self.unit_cell = store.unit_cell
        self.onesite_ops = list(onesite_ops)
        self.twosite_ops = list(twosite_ops)
        self.config = config or ObservableConfig()
        self.mpi = mpi or MPIManager()

        self.n_onesite_groups, self.onesite_table = onesite_index_table(
            self.onesite_ops, self.unit_cell
        )
        self.n_twosite_groups = max((op.group for op in self.twosite_ops), default=-1) + 1
        self._block_norms: Dict[Tuple[int, int, int], complex] = {}

    def _env(self, site: int):
        return self.store.env.site(site)

    # ==================== One-site ====================

    def measure_onesite(self) -> np.ndarray:
        """
        Normalized one-site expectation values.

        Returns
        -------
        ndarray
            Complex array of shape ``(n_groups, N)``, NaN where no operator
            is assigned
        """
        N = self.unit_cell.N_UNIT
        result = np.full((self.n_onesite_groups, N), np.nan, dtype=np.complex128)

        norms = [contract_onesite(self._env(i), self.store.Tn[i]) for i in range(N)]
        for op in self.onesite_ops:
            i = op.source_site
            value = contract_onesite(self._env(i), self.store.Tn[i], op.op)
            result[op.group, i] = value / norms[i]
        return result

    # ==================== Two-site ====================

    def measure_twosite(self) -> List[Dict[Tuple[int, int, int], complex]]:
        """
        Normalized two-site expectation values.

        Returns
        -------
        list of dict
            One dict per group, keyed by ``(source, dx, dy)``. Operators on
            supports larger than ``max_block_size`` are omitted with a warning.
        """
        result: List[Dict[Tuple[int, int, int], complex]] = [
            {} for _ in range(self.n_twosite_groups)
        ]
        for op in self.twosite_ops:
            value = self.measure_twosite_operator(op)
            if value is not None:
                result[op.group][(op.source_site, op.dx[0], op.dy[0])] = value
        return result

    def _twosite_tensor(self, op: Operator) -> Optional[Tensor]:
        if op.has_tensor:
            return op.op
        factors = resolve_factors(op, self.onesite_ops, self.onesite_table, self.unit_cell)
        if factors is None:
            return None
        return two_site_product(*factors)

    def measure_twosite_operator(self, op: Operator) -> Optional[complex]:
        """Value of one two-site operator, or ``None`` if it is skipped."""
        uc = self.unit_cell
        source = op.source_site
        dx, dy = op.dx[0], op.dy[0]
        other = op.other_site(uc)

        if abs(dx) + abs(dy) == 1:
            tensor = self._twosite_tensor(op)
            if tensor is None:
                warnings.warn(f"Two-site operator on site {source} has unresolved factors; skipped")
                return None
            # the kernels take the left (or upper) site first
            if dx == 1:
                pair = (source, other, tensor)
            elif dx == -1:
                pair = (other, source, tensor.transpose(SWAP_SITES))
            elif dy == -1:
                pair = (source, other, tensor)
            else:
                pair = (other, source, tensor.transpose(SWAP_SITES))
            first, second, tensor = pair
            kernel = contract_twosite_horizontal if dy == 0 else contract_twosite_vertical
            args = (self._env(first), self._env(second), self.store.Tn[first], self.store.Tn[second])
            return kernel(*args, tensor) / kernel(*args)

        return self._measure_block(op)

    def _block_layout(self, source: int, dx: int, dy: int) -> Tuple[List[List[int]], Tuple[int, int], Tuple[int, int]]:
        """
        Sites of the smallest patch holding the source and the other site.

        Returns the site grid (row 0 on top) and the (row, col) positions of
        the source and of the other site.
        """
        uc = self.unit_cell
        nrow, ncol = abs(dy) + 1, abs(dx) + 1
        source_col = 0 if dx >= 0 else ncol - 1
        source_row = nrow - 1 if dy >= 0 else 0
        grid = [
            [uc.other(source, col - source_col, source_row - row) for col in range(ncol)]
            for row in range(nrow)
        ]
        return grid, (source_row, source_col), (source_row - dy, source_col + dx)

    def _contract_grid(self, grid: List[List[int]], ops: Optional[List[List[Optional[Tensor]]]]) -> complex:
        envs = [[self._env(i) for i in row] for row in grid]
        tensors = [[self.store.Tn[i] for i in row] for row in grid]
        return contract_block(envs, tensors, ops)

    def _measure_block(self, op: Operator) -> Optional[complex]:
        dx, dy = op.dx[0], op.dy[0]
        nrow, ncol = abs(dy) + 1, abs(dx) + 1
        limit = self.config.max_block_size
        if nrow > limit or ncol > limit:
            warnings.warn(
                f"Two-site operator from site {op.source_site} with displacement "
                f"({dx}, {dy}) needs a {nrow}x{ncol} block, larger than "
                f"max_block_size={limit}; skipped"
            )
            return None

        grid, (sr, sc), (tr, tc) = self._block_layout(op.source_site, dx, dy)
        key = (grid[0][0], nrow, ncol)
        if key not in self._block_norms:
            self._block_norms[key] = self._contract_grid(grid, None)
        norm = self._block_norms[key]

        def value_of(a: Tensor, b: Tensor) -> complex:
            ops: List[List[Optional[Tensor]]] = [[None] * ncol for _ in range(nrow)]
            ops[sr][sc] = a
            ops[tr][tc] = b
            return self._contract_grid(grid, ops)

        factors = resolve_factors(op, self.onesite_ops, self.onesite_table, self.unit_cell)
        if factors is not None:
            return value_of(*factors) / norm
        if not op.has_tensor:
            warnings.warn(f"Two-site operator on site {op.source_site} has unresolved factors; skipped")
            return None

        # op[o1, o2, i1, i2] = sum_k s_k A_k[o1, i1] B_k[o2, i2]
        d1, d2 = op.op.shape[0], op.op.shape[1]
        matrix = op.op.transpose((0, 2, 1, 3)).reshape((d1 * d1, d2 * d2))
        result = svd(matrix)
        S = result.S
        total = 0.0
        for k in range(len(S)):
            if S[k] <= 1e-14 * S[0]:
                break
            A = result.U[:, k].reshape((d1, d1))
            B = result.Vh[k, :].reshape((d2, d2))
            total += S[k] * value_of(A, B)
        return total / norm

    # ==================== Correlations ====================

    def measure_correlation(self, config: Optional[CorrelationConfig] = None) -> List[Correlation]:
        """
        Long-range correlations along the x and y directions.

        For every site with a left operator, the right site runs over the
        ``r_max`` sites to its right (then above it); the offset records how
        many unit cells were crossed.

        Parameters
        ----------
        config : CorrelationConfig, optional
            Range and operator pairs

        Returns
        -------
        list of Correlation
        """
        config = config or CorrelationConfig()
        pairs = config.pairs
        if pairs is None:
            groups = range(self.n_onesite_groups)
            pairs = [(a, b) for a in groups for b in groups]

        records: List[Correlation] = []
        # x direction unrotated; y direction brought to +x by three quarter turns
        for turns in (0, 3):
            records.extend(self._correlation_line(config.r_max, pairs, turns))
        return records

    def _correlation_line(
        self,
        r_max: int,
        pairs: Sequence[Tuple[int, int]],
        turns: int,
    ) -> List[Correlation]:
        rot = LatticeRotation(self.unit_cell, turns)
        Tn = rot.site_tensors(self.store.Tn)
        env = rot.environment(self.store.env)
        table = self.onesite_table

        records = []
        for j0 in range(rot.N_UNIT):
            left = rot.site_map[j0]
            x0, y0 = j0 % rot.LX, j0 // rot.LX
            left_groups = sorted({a for a, _ in pairs if a < table.shape[1] and table[left, a] >= 0})

            for a in left_groups:
                L_op = start_correlation(env.site(j0), Tn[j0], self.onesite_ops[table[left, a]].op)
                L_norm = start_correlation(env.site(j0), Tn[j0])

                for r in range(r_max):
                    j = rot.index(x0 + r + 1, y0)
                    right = rot.site_map[j]
                    offset = (x0 + r + 1) // rot.LX
                    norm = finish_correlation(L_norm, env.site(j), Tn[j])

                    for pa, b in pairs:
                        if pa != a or b >= table.shape[1] or table[right, b] < 0:
                            continue
                        value = finish_correlation(
                            L_op, env.site(j), Tn[j], self.onesite_ops[table[right, b]].op
                        ) / norm
                        records.append(
                            Correlation(
                                left_op=a,
                                left_index=left,
                                right_op=b,
                                right_index=right,
                                offset_x=offset if turns == 0 else 0,
                                offset_y=offset if turns != 0 else 0,
                                real=float(np.real(value)),
                                imag=float(np.imag(value)),
                            )
                        )

                    L_op = transfer(L_op, env.site(j), Tn[j])
                    L_norm = transfer(L_norm, env.site(j), Tn[j])
                    scale = L_norm.max_abs()
                    if scale > 0.0:
                        L_op = L_op / scale
                        L_norm = L_norm / scale
        return records

    # ==================== Aggregates ====================

    def energy(self, twosite: List[Dict[Tuple[int, int, int], complex]]) -> float:
        """Sum of the real parts of two-site group 0, per site."""
        if not twosite:
            return 0.0
        return float(sum(np.real(v) for v in twosite[0].values())) / self.unit_cell.N_UNIT

    def onesite_densities(self, onesite: np.ndarray) -> np.ndarray:
        """Per-site average of each one-site group, ignoring unassigned sites."""
        return np.nansum(onesite, axis=1) / self.unit_cell.N_UNIT

    def twosite_densities(self, twosite: List[Dict[Tuple[int, int, int], complex]]) -> np.ndarray:
        """Per-site sum of each two-site group."""
        return np.array(
            [sum(group.values(), 0.0) for group in twosite], dtype=np.complex128
        ) / self.unit_cell.N_UNIT
