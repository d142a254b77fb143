"""
Tensor contractions for the PEPS/CTM engines.

This module provides the contraction front-end used by every engine:
- ``contract``: einsum-style contraction with opt_einsum path finding
- ``contract_ncon``: ncon-style contraction for networks that are built
  programmatically (block contractions, boundary rows)
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

import opt_einsum as oe

from ctmpeps.core.tensor import Tensor


def contract(
    subscripts: str,
    *operands: Tensor,
    optimize: Union[bool, str] = True,
) -> Tensor:
    """
    Einstein-summation contraction with opt_einsum path finding.

    Parameters
    ----------
    subscripts : str
        Einstein summation subscripts (e.g., 'ijk,jkl->il')
    operands : Tensor
        Tensors to contract
    optimize : bool or str
        Optimization strategy passed to opt_einsum:
        - True: 'auto' path
        - 'greedy': greedy algorithm (fast, used for large networks)
        - 'optimal' / 'dp': exhaustive search

    Returns
    -------
    Tensor
        Result of the contraction

    Examples
    --------
    >>> C1 = Tensor.zeros((8, 8))
    >>> Et = Tensor.zeros((8, 8, 2, 2))
    >>> contract('ae,ebkK->abkK', C1, Et).shape
    (8, 8, 2, 2)
    """
    if isinstance(optimize, bool):
        optimize = 'auto' if optimize else False
    arrays = [op.data for op in operands]
    result = oe.contract(subscripts, *arrays, optimize=optimize)
    return Tensor(result)


def contract_ncon(
    tensors: Sequence[Tensor],
    indices: Sequence[Sequence[int]],
    optimize: Union[bool, str] = 'greedy',
) -> Tensor:
    """
    Contraction in the ncon labelling convention.

    Positive indices are contracted, negative indices are free and appear
    in the output ordered by absolute value.

    Parameters
    ----------
    tensors : sequence of Tensor
        Tensors to contract
    indices : sequence of sequence of int
        Index structure for each tensor
    optimize : bool or str
        Path optimizer, see :func:`contract`

    Returns
    -------
    Tensor
        Result of the contraction

    Examples
    --------
    >>> C4 = Tensor.zeros((8, 8))
    >>> Eb = Tensor.zeros((8, 8, 2, 2))
    >>> contract_ncon([Eb, C4], [[-1, 1, -2, -3], [1, -4]]).shape
    (8, 2, 2, 8)
    """
    if len(tensors) != len(indices):
        raise ValueError("Number of tensors must match number of index lists")

    for i, (t, idx) in enumerate(zip(tensors, indices)):
        if t.ndim != len(idx):
            raise ValueError(
                f"Tensor {i} has {t.ndim} dimensions but {len(idx)} indices specified"
            )

    all_indices = set()
    for idx_list in indices:
        all_indices.update(idx_list)

    free = sorted([i for i in all_indices if i < 0], key=abs)
    contracted = sorted([i for i in all_indices if i > 0])

    # opt_einsum symbols go beyond the 52 ASCII letters
    char_map = {}
    for n, idx in enumerate(free + contracted):
        char_map[idx] = oe.get_symbol(n)

    input_parts = [''.join(char_map[i] for i in idx_list) for idx_list in indices]
    output = ''.join(char_map[i] for i in free)
    subscripts = ','.join(input_parts) + '->' + output

    return contract(subscripts, *tensors, optimize=optimize)


class LabelCounter:
    """
    Source of fresh positive ncon labels.

    Used when a network is assembled in a loop (block contractions,
    boundary rows) so that every internal bond gets a unique label.
    """

    def __init__(self, start: int = 1):
        self._next = start

    def __call__(self, count: Optional[int] = None) -> Union[int, List[int]]:
        if count is None:
            label = self._next
            self._next += 1
            return label
        labels = list(range(self._next, self._next + count))
        self._next += count
        return labels
