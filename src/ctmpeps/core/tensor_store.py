"""
Per-site tensor storage for an iPEPS on a square unit cell.

The store owns, for every site ``i`` of the unit cell:
- the site tensor ``Tn[i]`` with shape ``(D0, D1, D2, D3, d)``
- the bond spectra ``lambdas[i][leg]`` used by the simple update
- its share of the current :class:`Environment` snapshot
"""

from __future__ import annotations

import numpy as np
from typing import List, Optional, Any

from ctmpeps.core.tensor import Tensor, get_default_dtype
from ctmpeps.core.environment import Environment, KINDS
from ctmpeps.lattice.unit_cell import UnitCell, NLEG


class TensorStore:
    """
    Site tensors, bond spectra and CTM environment of an iPEPS.

    Parameters
    ----------
    unit_cell : UnitCell
        Lattice description (dimensions, initial directions, noises)
    chi : int
        Boundary bond dimension of the environment
    dtype : dtype, optional
        Scalar type of the run (default: the run's default)

    Examples
    --------
    >>> store = TensorStore(UnitCell(2, 2, physical_dims=2, virtual_dims=2), chi=4)
    >>> store.initialize(seed=11)
    >>> store.Tn[0].shape
    (2, 2, 2, 2, 2)
    """

    def __init__(self, unit_cell: UnitCell, chi: int, dtype: Optional[Any] = None):
        if chi < 1:
            raise ValueError(f"chi must be positive, got {chi}")

        self.unit_cell = unit_cell
        self.chi = int(chi)
        self.dtype = np.dtype(dtype or get_default_dtype())

        self.Tn: List[Tensor] = []
        self.lambdas: List[List[np.ndarray]] = []
        for i in unit_cell:
            pdim = unit_cell.physical_dims[i]
            vdim = unit_cell.virtual_dims[i]
            self.Tn.append(Tensor.zeros(tuple(vdim) + (pdim,), dtype=self.dtype))
            self.lambdas.append([np.ones(vdim[leg]) for leg in range(NLEG)])

        self.env = Environment.flat(unit_cell.virtual_dims, self.chi, dtype=self.dtype)

    @property
    def N_UNIT(self) -> int:
        return self.unit_cell.N_UNIT

    def initialize(self, seed: int) -> None:
        """
        Fill the site tensors with the initial state.

        ``Tn[i][0, 0, 0, 0, :]`` is the site's initial direction (random if
        that direction is all zeros) and every other element is the site's
        noise times a uniform random number in [-1, 1). Real and imaginary
        parts come from two separate Mersenne Twister streams.

        Parameters
        ----------
        seed : int
            Seed of the real-part stream; the imaginary stream uses
            ``seed * 11 + 137``
        """
        gen = np.random.RandomState(seed)
        gen_im = np.random.RandomState(seed * 11 + 137)
        is_complex = np.issubdtype(self.dtype, np.complexfloating)

        for i in self.unit_cell:
            shape = self.Tn[i].shape
            ndim = int(np.prod(shape))

            # site-major order with the first virtual leg running fastest
            ran_re = gen.uniform(-1.0, 1.0, ndim).reshape(shape, order='F')
            ran_im = gen_im.uniform(-1.0, 1.0, ndim).reshape(shape, order='F')

            direction = np.asarray(self.unit_cell.initial_dirs[i])
            if np.all(direction == 0.0):
                pdim = shape[-1]
                direction = gen.uniform(-1.0, 1.0, pdim) + 1j * gen_im.uniform(-1.0, 1.0, pdim)

            data = self.unit_cell.noises[i] * (ran_re + 1j * ran_im)
            data[0, 0, 0, 0, :] = direction
            if not is_complex:
                data = np.real(data)
            self.Tn[i] = Tensor(data.astype(self.dtype))

        self.reset_environment()

    def reset_environment(self) -> None:
        """Replace the environment with a flat one."""
        self.env = Environment.flat(self.unit_cell.virtual_dims, self.chi, dtype=self.dtype)

    def set_environment(self, env: Environment) -> None:
        self.env = env

    def check_consistency(self) -> None:
        """
        Check every tensor's shape against the unit cell and ``chi``.

        Raises
        ------
        ValueError
            On the first mismatching tensor
        """
        chi = self.chi
        for i in self.unit_cell:
            vdim = self.unit_cell.virtual_dims[i]
            pdim = self.unit_cell.physical_dims[i]
            expected = {
                'Tn': tuple(vdim) + (pdim,),
                'C1': (chi, chi),
                'C2': (chi, chi),
                'C3': (chi, chi),
                'C4': (chi, chi),
                'Et': (chi, chi, vdim[1], vdim[1]),
                'Er': (chi, chi, vdim[2], vdim[2]),
                'Eb': (chi, chi, vdim[3], vdim[3]),
                'El': (chi, chi, vdim[0], vdim[0]),
            }
            for kind, shape in expected.items():
                if kind == 'Tn':
                    actual = self.Tn[i].shape
                else:
                    actual = getattr(self.env, kind)[i].shape
                if tuple(actual) != shape:
                    raise ValueError(
                        f"Site {i}: {kind} has shape {tuple(actual)}, expected {shape}"
                    )
            for leg in range(NLEG):
                if len(self.lambdas[i][leg]) != vdim[leg]:
                    raise ValueError(
                        f"Site {i}: lambda on leg {leg} has length "
                        f"{len(self.lambdas[i][leg])}, expected {vdim[leg]}"
                    )

    def copy(self) -> 'TensorStore':
        """Deep copy of the store."""
        new = TensorStore.__new__(TensorStore)
        new.unit_cell = self.unit_cell
        new.chi = self.chi
        new.dtype = self.dtype
        new.Tn = [t.clone() for t in self.Tn]
        new.lambdas = [[lam.copy() for lam in site] for site in self.lambdas]
        new.env = self.env.copy()
        return new

    # ==================== Checkpoints ====================

    def save(self, directory: str, mpi: Optional[Any] = None) -> None:
        """Write a checkpoint directory (see :func:`ctmpeps.hpc.checkpointing.save_tensors`)."""
        from ctmpeps.hpc.checkpointing import save_tensors

        save_tensors(self, directory, mpi=mpi)

    def load(self, directory: str, mpi: Optional[Any] = None) -> None:
        """Read a checkpoint directory (see :func:`ctmpeps.hpc.checkpointing.load_tensors`)."""
        from ctmpeps.hpc.checkpointing import load_tensors

        load_tensors(self, directory, mpi=mpi)

    def __repr__(self) -> str:
        return (
            f"TensorStore(LX={self.unit_cell.LX}, LY={self.unit_cell.LY}, "
            f"chi={self.chi}, dtype={self.dtype})"
        )


__all__ = ['TensorStore', 'KINDS']
