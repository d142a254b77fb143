"""
Local contractions of site tensors with their CTM environment.

These are the building blocks of every measurement:
- ``contract_onesite``: one site surrounded by its eight boundary tensors
- ``contract_twosite_horizontal`` / ``contract_twosite_vertical``: two
  neighbouring sites
- ``contract_block``: a general ``nrow x ncol`` patch with one-site
  operators inserted, contracted row by row
- ``start_correlation`` / ``transfer`` / ``finish_correlation``: the
  column transfer matrices used for long-range correlations

Environments are passed per site as the eight-tuple
``(C1, C2, C3, C4, Et, Er, Eb, El)``. One-site operators are ``op[out, in]``
and two-site operators ``op[out1, out2, in1, in2]``; ``None`` means identity.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ctmpeps.core.tensor import Tensor
from ctmpeps.core.contractions import contract, contract_ncon, LabelCounter
from ctmpeps.core.environment import rotate_site_tensor, rotate_site_environment


def contract_onesite(env: Sequence[Tensor], T: Tensor, op: Optional[Tensor] = None) -> complex:
    """
    ``<T| op |T>`` of one site in its environment (unnormalized).

    With ``op=None`` this is the norm of the site.
    """
    C1, C2, C3, C4, Et, Er, Eb, El = env
    if op is None:
        value = contract(
            'ae,ectT,cf,fgrR,gh,hibB,ij,jalL,ltrbs,LTRBs->',
            C1, Et, C2, Er, C3, Eb, C4, El, T, T.conj(),
        )
    else:
        value = contract(
            'ae,ectT,cf,fgrR,gh,hibB,ij,jalL,ltrbs,LTRBS,Ss->',
            C1, Et, C2, Er, C3, Eb, C4, El, T, T.conj(), op,
        )
    return value.item()


def contract_twosite_horizontal(
    env_left: Sequence[Tensor],
    env_right: Sequence[Tensor],
    T_left: Tensor,
    T_right: Tensor,
    op: Optional[Tensor] = None,
) -> complex:
    """
    Two horizontally adjacent sites, the left one being site 1 of ``op``.

    With ``op=None`` this is the norm of the pair.
    """
    C1, _, _, C4, Et_l, _, Eb_l, El_l = env_left
    _, C2, C3, _, Et_r, Er_r, Eb_r, _ = env_right

    tensors = [
        C1, Et_l, Et_r, C2, Er_r, C3, Eb_r, Eb_l, C4, El_l,
        T_left, T_left.conj(), T_right, T_right.conj(),
    ]
    indices = [
        [1, 2], [2, 3, 20, 21], [3, 4, 22, 23], [4, 5], [5, 6, 24, 25], [6, 7],
        [7, 8, 26, 27], [8, 9, 28, 29], [9, 10], [10, 1, 30, 31],
        [30, 20, 40, 28, 50], [31, 21, 41, 29, 51],
        [40, 22, 24, 26, 52], [41, 23, 25, 27, 53],
    ]
    if op is None:
        indices[11][4] = 50
        indices[13][4] = 52
    else:
        tensors.append(op)
        indices.append([51, 53, 50, 52])

    return contract_ncon(tensors, indices).item()


def contract_twosite_vertical(
    env_upper: Sequence[Tensor],
    env_lower: Sequence[Tensor],
    T_upper: Tensor,
    T_lower: Tensor,
    op: Optional[Tensor] = None,
) -> complex:
    """
    Two vertically adjacent sites, the upper one being site 1 of ``op``.

    Evaluated as a horizontal pair after one counter-clockwise quarter
    turn, which brings the upper site to the left.
    """
    return contract_twosite_horizontal(
        rotate_site_environment(env_upper, 1),
        rotate_site_environment(env_lower, 1),
        rotate_site_tensor(T_upper, 1),
        rotate_site_tensor(T_lower, 1),
        op,
    )


def contract_block(
    envs: Sequence[Sequence[Sequence[Tensor]]],
    tensors: Sequence[Sequence[Tensor]],
    ops: Optional[Sequence[Sequence[Optional[Tensor]]]] = None,
) -> complex:
    """
    Contract an ``nrow x ncol`` patch of sites in its environment.

    The top boundary (C1, Et..., C2) absorbs one row at a time (El, the
    double-layer sites, Er) and is closed by the bottom boundary
    (C4, Eb..., C3).

    Parameters
    ----------
    envs : nested sequence
        ``envs[row][col]`` is the eight-tuple environment of that site;
        row 0 is the top row
    tensors : nested sequence of Tensor
        ``tensors[row][col]`` site tensors
    ops : nested sequence of Tensor or None, optional
        One-site operator per position (``None`` for identity)

    Returns
    -------
    complex
        Unnormalized value
    """
    nrow = len(tensors)
    ncol = len(tensors[0])
    if ops is None:
        ops = [[None] * ncol for _ in range(nrow)]

    top = _top_boundary(envs[0])

    for row in range(nrow):
        top = _absorb_row(top, envs[row], tensors[row], ops[row])

    # bottom boundary
    labels = LabelCounter()
    left = labels()
    cols = [labels(2) for _ in range(ncol)]
    right = labels()
    net = [top]
    idx = [[left] + [i for pair in cols for i in pair] + [right]]

    edge = labels()
    net.append(envs[nrow - 1][0][3])  # C4[a -> Eb, b -> El]
    idx.append([edge, left])
    for col in range(ncol):
        nxt = labels()
        net.append(envs[nrow - 1][col][6])  # Eb[a -> C3, b -> C4, k, K]
        idx.append([nxt, edge, cols[col][0], cols[col][1]])
        edge = nxt
    net.append(envs[nrow - 1][ncol - 1][2])  # C3[a -> Er, b -> Eb]
    idx.append([right, edge])

    return contract_ncon(net, idx).item()


def _top_boundary(envs: Sequence[Sequence[Tensor]]) -> Tensor:
    """
    C1, the top edges and C2 of one row, with legs
    (left, k1, K1, ..., kn, Kn, right).
    """
    ncol = len(envs)
    labels = LabelCounter()
    edge = labels()
    net: List[Tensor] = [envs[0][0]]  # C1[a -> El, b -> Et]
    idx: List[List[int]] = [[-1, edge]]
    for col in range(ncol):
        nxt = labels()
        net.append(envs[col][4])  # Et[a -> C1, b -> C2, k, K]
        idx.append([edge, nxt, -(2 * col + 2), -(2 * col + 3)])
        edge = nxt
    net.append(envs[ncol - 1][1])  # C2[a -> Et, b -> Er]
    idx.append([edge, -(2 * ncol + 2)])
    return contract_ncon(net, idx)


def _absorb_row(
    top: Tensor,
    envs: Sequence[Sequence[Tensor]],
    tensors: Sequence[Tensor],
    ops: Sequence[Optional[Tensor]],
) -> Tensor:
    """Absorb one row (El, double-layer sites, Er) into the boundary ``top``."""
    ncol = len(tensors)
    labels = LabelCounter()
    up_left = labels()
    up_cols = [labels(2) for _ in range(ncol)]
    up_right = labels()

    net: List[Tensor] = [top]
    idx: List[List[int]] = [[up_left] + [i for pair in up_cols for i in pair] + [up_right]]

    out = 0

    def free() -> int:
        nonlocal out
        out -= 1
        return out

    new_left = free()
    ket, bra = labels(2)
    net.append(envs[0][7])  # El[a -> C4, b -> C1, k, K]
    idx.append([new_left, up_left, ket, bra])

    for col in range(ncol):
        T = tensors[col]
        right_ket, right_bra = labels(2)
        down_ket, down_bra = free(), free()
        phys_ket = labels()
        phys_bra = labels() if ops[col] is not None else phys_ket

        net.append(T)
        idx.append([ket, up_cols[col][0], right_ket, down_ket, phys_ket])
        net.append(T.conj())
        idx.append([bra, up_cols[col][1], right_bra, down_bra, phys_bra])
        if ops[col] is not None:
            net.append(ops[col])
            idx.append([phys_bra, phys_ket])
        ket, bra = right_ket, right_bra

    new_right = free()
    net.append(envs[ncol - 1][5])  # Er[a -> C2, b -> C3, k, K]
    idx.append([up_right, new_right, ket, bra])

    return contract_ncon(net, idx)


# ==================== Correlation transfer ====================

def start_correlation(env: Sequence[Tensor], T: Tensor, op: Optional[Tensor] = None) -> Tensor:
    """
    Left end of a horizontal correlation: C1, Et, El, C4, Eb and the site.

    Returns
    -------
    Tensor
        ``L[a, r, R, g]``: top boundary, ket and bra right legs, bottom boundary
    """
    C1, _, _, C4, Et, _, Eb, El = env
    if op is None:
        return contract('xe,eatT,dxlL,fd,gfbB,ltrbs,LTRBs->arRg', C1, Et, El, C4, Eb, T, T.conj())
    return contract(
        'xe,eatT,dxlL,fd,gfbB,ltrbs,LTRBS,Ss->arRg', C1, Et, El, C4, Eb, T, T.conj(), op
    )


def transfer(L: Tensor, env: Sequence[Tensor], T: Tensor, op: Optional[Tensor] = None) -> Tensor:
    """Move ``L[a, r, R, g]`` one column to the right through Et, Eb and the site."""
    Et, Eb = env[4], env[6]
    if op is None:
        return contract('alLg,actT,hgbB,ltrbs,LTRBs->crRh', L, Et, Eb, T, T.conj())
    return contract('alLg,actT,hgbB,ltrbs,LTRBS,Ss->crRh', L, Et, Eb, T, T.conj(), op)


def finish_correlation(
    L: Tensor,
    env: Sequence[Tensor],
    T: Tensor,
    op: Optional[Tensor] = None,
) -> complex:
    """Close ``L[a, r, R, g]`` with the right end: Et, C2, Er, C3, Eb and the site."""
    _, C2, C3, _, Et, Er, Eb, _ = env
    if op is None:
        value = contract(
            'alLg,actT,cf,fhrR,hi,igbB,ltrbs,LTRBs->', L, Et, C2, Er, C3, Eb, T, T.conj()
        )
    else:
        value = contract(
            'alLg,actT,cf,fhrR,hi,igbB,ltrbs,LTRBS,Ss->',
            L, Et, C2, Er, C3, Eb, T, T.conj(), op,
        )
    return value.item()
