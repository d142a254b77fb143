"""
Core Tensor class for the PEPS/CTM engines.

The Tensor class wraps a dense NumPy array and carries the scalar type of
the run. The scalar type (real or complex) is fixed once per run with
:func:`set_default_dtype`; every engine creates its tensors through this
module so that a single run never mixes real and complex storage.
"""

from __future__ import annotations

import numpy as np
from typing import Union, Optional, Tuple, Sequence, Any


# Global scalar type of the run
_DEFAULT_DTYPE: np.dtype = np.dtype(np.complex128)


def get_default_dtype() -> np.dtype:
    """Get the scalar type used for newly created tensors."""
    return _DEFAULT_DTYPE


def set_default_dtype(dtype: Any) -> None:
    """
    Set the scalar type used for newly created tensors.

    Parameters
    ----------
    dtype : dtype or str
        ``float64`` for real runs, ``complex128`` for complex runs
    """
    global _DEFAULT_DTYPE

    dtype = np.dtype(dtype)
    if dtype not in (np.dtype(np.float64), np.dtype(np.complex128)):
        raise ValueError(f"Unsupported scalar type: {dtype}")
    _DEFAULT_DTYPE = dtype


class Tensor:
    """
    Dense tensor wrapper.

    Parameters
    ----------
    data : array_like
        The tensor data
    dtype : dtype, optional
        Data type. Arrays keep their own dtype when omitted; anything else
        (lists, Python scalars) is converted to the run's default dtype.

    Examples
    --------
    >>> t = Tensor(np.random.randn(2, 3, 4))
    >>> t.shape
    (2, 3, 4)
    >>> t.conj().transpose((2, 0, 1)).shape
    (4, 2, 3)
    """

    __slots__ = ('_data',)

    def __init__(self, data: Any, dtype: Optional[Any] = None):
        if isinstance(data, Tensor):
            data = data._data
        if dtype is None:
            if isinstance(data, (np.ndarray, np.generic)):
                dtype = data.dtype
            else:
                dtype = _DEFAULT_DTYPE
        self._data = np.asarray(data, dtype=dtype)

    @property
    def data(self) -> np.ndarray:
        """Get the underlying array."""
        return self._data

    @property
    def shape(self) -> Tuple[int, ...]:
        """Get the tensor dimensions."""
        return self._data.shape

    @property
    def ndim(self) -> int:
        """Number of dimensions."""
        return self._data.ndim

    @property
    def size(self) -> int:
        """Total number of elements."""
        return self._data.size

    @property
    def dtype(self):
        """Data type of the tensor."""
        return self._data.dtype

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape}, dtype={self.dtype})"

    # ==================== Factory Methods ====================

    @classmethod
    def zeros(cls, shape: Tuple[int, ...], dtype: Optional[Any] = None) -> 'Tensor':
        """Create a tensor of zeros."""
        return cls(np.zeros(shape, dtype=dtype or _DEFAULT_DTYPE))

    # ==================== Conversion Methods ====================

    def numpy(self) -> np.ndarray:
        """Return the underlying NumPy array."""
        return self._data

    def astype(self, dtype: Any) -> 'Tensor':
        """Cast to another scalar type (imaginary parts are dropped for real types)."""
        dtype = np.dtype(dtype)
        if np.issubdtype(dtype, np.complexfloating):
            return Tensor(self._data.astype(dtype))
        return Tensor(np.real(self._data).astype(dtype))

    def clone(self) -> 'Tensor':
        """Create a deep copy of the tensor."""
        return Tensor(self._data.copy())

    def copy(self) -> 'Tensor':
        """Alias for clone()."""
        return self.clone()

    # ==================== Basic Operations ====================

    def __add__(self, other: Union['Tensor', float, complex]) -> 'Tensor':
        if isinstance(other, Tensor):
            return Tensor(self._data + other._data)
        return Tensor(self._data + other)

    def __radd__(self, other: Union[float, complex]) -> 'Tensor':
        return self.__add__(other)

    def __sub__(self, other: Union['Tensor', float, complex]) -> 'Tensor':
        if isinstance(other, Tensor):
            return Tensor(self._data - other._data)
        return Tensor(self._data - other)

    def __mul__(self, other: Union['Tensor', float, complex]) -> 'Tensor':
        if isinstance(other, Tensor):
            return Tensor(self._data * other._data)
        return Tensor(self._data * other)

    def __rmul__(self, other: Union[float, complex]) -> 'Tensor':
        return self.__mul__(other)

    def __truediv__(self, other: Union['Tensor', float, complex]) -> 'Tensor':
        if isinstance(other, Tensor):
            return Tensor(self._data / other._data)
        return Tensor(self._data / other)

    def __neg__(self) -> 'Tensor':
        return Tensor(-self._data)

    def __getitem__(self, idx) -> 'Tensor':
        return Tensor(self._data[idx])

    def __setitem__(self, idx, value):
        if isinstance(value, Tensor):
            self._data[idx] = value._data
        else:
            self._data[idx] = value

    # ==================== Linear Algebra Operations ====================

    def norm(self) -> float:
        """Frobenius norm of the tensor."""
        return float(np.linalg.norm(self._data.ravel()))

    def max_abs(self) -> float:
        """Largest modulus among the tensor elements."""
        if self._data.size == 0:
            return 0.0
        return float(np.max(np.abs(self._data)))

    def rescale(self) -> 'Tensor':
        """
        Divide by the element of largest modulus.

        The phase of that element is divided out as well, so repeated
        rescaling of a converged tensor is a fixed point. All-zero tensors
        are returned unchanged.
        """
        flat = self._data.ravel()
        if flat.size == 0:
            return self.clone()
        pivot = flat[np.argmax(np.abs(flat))]
        if pivot == 0:
            return self.clone()
        return Tensor(self._data / pivot)

    def conj(self) -> 'Tensor':
        """Complex conjugate."""
        return Tensor(np.conj(self._data))

    def transpose(self, axes: Optional[Sequence[int]] = None) -> 'Tensor':
        """Transpose tensor axes."""
        return Tensor(np.transpose(self._data, axes))

    def reshape(self, shape: Tuple[int, ...]) -> 'Tensor':
        """Reshape the tensor."""
        return Tensor(np.reshape(self._data, shape))

    def scale_axis(self, axis: int, weights: np.ndarray) -> 'Tensor':
        """
        Multiply the tensor by a weight vector along one axis.

        Parameters
        ----------
        axis : int
            Axis to scale
        weights : ndarray
            One weight per index of ``axis``
        """
        shape = [1] * self.ndim
        shape[axis] = -1
        return Tensor(self._data * np.reshape(weights, shape))

    def item(self) -> complex:
        """Value of a single-element tensor."""
        return self._data.item()
