"""
Tensor decomposition routines for the PEPS/CTM engines.

Provides:
- SVD with truncation (and zero padding to a fixed rank)
- Randomized SVD with a per-process seeded random source
- QR decomposition of grouped tensor axes
- Thresholded pseudo-inverses for bond spectra and Hermitian matrices
- Matrix exponential for imaginary-time gates
"""

from __future__ import annotations

import numpy as np
from typing import Tuple, Optional, Sequence, Any
from dataclasses import dataclass

from ctmpeps.core.tensor import Tensor


@dataclass
class SVDResult:
    """Result of SVD decomposition."""
    U: Tensor
    S: np.ndarray
    Vh: Tensor
    truncation_error: float = 0.0
    rank: int = 0


def _as_matrix(tensor: Tensor) -> np.ndarray:
    """Matrix view of a tensor, splitting its axes in the middle."""
    data = tensor.data
    if tensor.ndim != 2:
        mid = tensor.ndim // 2
        left_dim = int(np.prod(tensor.shape[:mid]))
        right_dim = int(np.prod(tensor.shape[mid:]))
        data = data.reshape(left_dim, right_dim)
    return data


def svd(tensor: Tensor) -> SVDResult:
    """
    Compute the thin Singular Value Decomposition.

    Parameters
    ----------
    tensor : Tensor
        Input tensor (reshaped to a matrix if not 2D)

    Returns
    -------
    SVDResult
        U, S, Vh factors
    """
    U, S, Vh = np.linalg.svd(_as_matrix(tensor), full_matrices=False)
    return SVDResult(U=Tensor(U), S=S, Vh=Tensor(Vh), rank=len(S))


def _pad_factors(
    U: np.ndarray,
    S: np.ndarray,
    Vh: np.ndarray,
    rank: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Pad SVD factors with zero vectors up to ``rank``."""
    missing = rank - len(S)
    if missing <= 0:
        return U, S, Vh
    U = np.concatenate([U, np.zeros((U.shape[0], missing), dtype=U.dtype)], axis=1)
    S = np.concatenate([S, np.zeros(missing, dtype=S.dtype)])
    Vh = np.concatenate([Vh, np.zeros((missing, Vh.shape[1]), dtype=Vh.dtype)], axis=0)
    return U, S, Vh


def truncated_svd(
    tensor: Tensor,
    max_rank: Optional[int] = None,
    pad: bool = False,
) -> SVDResult:
    """
    Truncated Singular Value Decomposition.

    Parameters
    ----------
    tensor : Tensor
        Input tensor
    max_rank : int, optional
        Maximum number of singular values to keep
    pad : bool
        Pad the factors with zero vectors so that exactly ``max_rank``
        singular values are returned. Bond and boundary dimensions are
        fixed by the lattice, so rank-deficient factorizations are padded
        rather than shrunk.

    Returns
    -------
    SVDResult
        Truncated SVD factors with truncation error

    Examples
    --------
    >>> t = Tensor(np.random.default_rng(0).standard_normal((10, 10)))
    >>> result = truncated_svd(t, max_rank=5)
    >>> result.U.shape
    (10, 5)
    """
    U, S, Vh = np.linalg.svd(_as_matrix(tensor), full_matrices=False)

    # exact zeros are dropped and, with pad, replaced by zero vectors
    rank = int(np.sum(S > 0.0))
    if max_rank is not None:
        rank = min(rank, max_rank)

    total_norm = float(np.sqrt(np.sum(S ** 2)))
    truncation_error = 0.0
    if total_norm > 0.0 and len(S) > rank:
        truncation_error = float(np.sqrt(np.sum(S[rank:] ** 2))) / total_norm

    U, S, Vh = U[:, :rank], S[:rank], Vh[:rank, :]
    if pad and max_rank is not None:
        U, S, Vh = _pad_factors(U, S, Vh, max_rank)

    return SVDResult(
        U=Tensor(U),
        S=S,
        Vh=Tensor(Vh),
        truncation_error=truncation_error,
        rank=rank,
    )


def randomized_svd(
    tensor: Tensor,
    max_rank: int,
    oversampling_factor: int = 2,
    rng: Optional[np.random.Generator] = None,
    mpi: Optional[Any] = None,
    n_power_iter: int = 2,
    pad: bool = False,
) -> SVDResult:
    """
    Randomized SVD (Halko, Martinsson, Tropp).

    The Gaussian test matrix is assembled from row slices. Each process
    draws its own slice from its own random source, and the slices are
    gathered so that every process works on the same test matrix.

    Parameters
    ----------
    tensor : Tensor
        Input matrix (m x n)
    max_rank : int
        Number of singular values to keep
    oversampling_factor : int
        The sketch uses ``max_rank * oversampling_factor`` columns
    rng : numpy.random.Generator, optional
        Random source of this process
    mpi : MPIManager, optional
        Communicator wrapper used to assemble the test matrix
    n_power_iter : int
        Number of power iterations
    pad : bool
        Pad to exactly ``max_rank`` singular values

    Returns
    -------
    SVDResult
        Approximate leading singular triplets
    """
    A = _as_matrix(tensor)
    m, n = A.shape
    rng = rng if rng is not None else np.random.default_rng()
    k = min(max(max_rank * oversampling_factor, max_rank), m, n)

    if mpi is not None and mpi.size > 1:
        rows = np.array_split(np.arange(n), mpi.size)[mpi.rank]
        local = rng.standard_normal((len(rows), k))
        omega = np.concatenate(mpi.allgather(local), axis=0)
    else:
        omega = rng.standard_normal((n, k))

    Q, _ = np.linalg.qr(A @ omega)
    for _ in range(n_power_iter):
        Q, _ = np.linalg.qr(A.conj().T @ Q)
        Q, _ = np.linalg.qr(A @ Q)

    Ub, S, Vh = np.linalg.svd(Q.conj().T @ A, full_matrices=False)
    U = Q @ Ub

    rank = min(max_rank, len(S))
    U, S, Vh = U[:, :rank], S[:rank], Vh[:rank, :]
    if pad:
        U, S, Vh = _pad_factors(U, S, Vh, max_rank)

    return SVDResult(U=Tensor(U), S=S, Vh=Tensor(Vh), rank=rank)


def tensor_qr(
    tensor: Tensor,
    left_axes: Sequence[int],
    right_axes: Sequence[int],
) -> Tuple[Tensor, Tensor]:
    """
    QR decomposition of a tensor along grouped axes.

    Parameters
    ----------
    tensor : Tensor
        Input tensor
    left_axes : sequence of int
        Axes grouped into the row index (carried by Q)
    right_axes : sequence of int
        Axes grouped into the column index (carried by R)

    Returns
    -------
    Q : Tensor
        Isometry of shape (*left_dims, k)
    R : Tensor
        Remainder of shape (k, *right_dims)

    Examples
    --------
    >>> t = Tensor(np.arange(120.0).reshape((2, 3, 4, 5)))
    >>> Q, R = tensor_qr(t, (0, 1, 3), (2,))
    >>> Q.shape, R.shape
    ((2, 3, 5, 4), (4, 4))
    """
    left_dims = tuple(tensor.shape[i] for i in left_axes)
    right_dims = tuple(tensor.shape[i] for i in right_axes)
    matrix = np.transpose(tensor.data, tuple(left_axes) + tuple(right_axes))
    matrix = matrix.reshape(int(np.prod(left_dims)), int(np.prod(right_dims)))

    Q, R = np.linalg.qr(matrix, mode='reduced')
    k = Q.shape[1]

    return Tensor(Q.reshape(left_dims + (k,))), Tensor(R.reshape((k,) + right_dims))


def inverse_spectrum(values: np.ndarray, cutoff: float) -> np.ndarray:
    """
    Thresholded inverse of a non-negative spectrum.

    Entries at or below ``cutoff`` are treated as structural zeros and map
    to zero instead of being divided.
    """
    values = np.asarray(values, dtype=np.float64)
    result = np.zeros_like(values)
    mask = values > cutoff
    result[mask] = 1.0 / values[mask]
    return result


def hermitian_pseudo_inverse(matrix: np.ndarray, cutoff: float) -> np.ndarray:
    """
    Pseudo-inverse of a Hermitian positive semi-definite matrix.

    Eigenvalues at or below ``cutoff * max|eigenvalue|`` are discarded.
    """
    matrix = 0.5 * (matrix + matrix.conj().T)
    w, v = np.linalg.eigh(matrix)
    scale = np.max(np.abs(w)) if w.size else 0.0
    inv_w = np.zeros_like(w)
    if scale > 0.0:
        mask = w > cutoff * scale
        inv_w[mask] = 1.0 / w[mask]
    return (v * inv_w) @ v.conj().T


def positive_part(matrix: np.ndarray) -> np.ndarray:
    """Hermitian part of a matrix with negative eigenvalues removed."""
    matrix = 0.5 * (matrix + matrix.conj().T)
    w, v = np.linalg.eigh(matrix)
    w = np.where(w > 0.0, w, 0.0)
    return (v * w) @ v.conj().T


def expm(tensor: Tensor) -> Tensor:
    """
    Compute matrix exponential.

    Parameters
    ----------
    tensor : Tensor
        Input square matrix

    Returns
    -------
    Tensor
        Matrix exponential exp(tensor)
    """
    from scipy import linalg as spla

    return Tensor(spla.expm(tensor.numpy()))
