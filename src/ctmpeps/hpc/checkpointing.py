"""
Checkpointing of iPEPS tensors and environments.

Provides:
- A checkpoint directory with one dense file per site and tensor kind
  (``T_i.dat``, ``C1_i.dat`` ... ``El_i.dat``) and one text file of bond
  spectra per site (``lambda_i.dat``)
- A single-file HDF5 archive of the whole store

Only the root process writes; every process reads the dense payloads, and
the bond spectra are read on the root and broadcast.
"""

from __future__ import annotations

import numpy as np
import h5py
from pathlib import Path
from datetime import datetime
from typing import Any, Optional, Union

from ctmpeps.core.tensor import Tensor
from ctmpeps.core.environment import Environment, KINDS
from ctmpeps.lattice.unit_cell import NLEG


CHECKPOINT_VERSION = "1.0.0"


def _write_array(path: Path, array: np.ndarray) -> None:
    # numpy's .npy layout under the checkpoint's .dat name
    with open(path, 'wb') as f:
        np.save(f, array)


def _read_array(path: Path) -> np.ndarray:
    with open(path, 'rb') as f:
        return np.load(f)


def save_tensors(store: Any, directory: Union[str, Path], mpi: Optional[Any] = None) -> Path:
    """
    Write a checkpoint directory.

    Parameters
    ----------
    store : TensorStore
        Store to save
    directory : str or Path
        Target directory (created if needed)
    mpi : MPIManager, optional
        Only the root process writes; all processes meet at a barrier

    Returns
    -------
    Path
        The checkpoint directory
    """
    directory = Path(directory)
    is_root = mpi is None or mpi.is_root

    if is_root:
        directory.mkdir(parents=True, exist_ok=True)
        for i in range(store.N_UNIT):
            suffix = f"_{i}.dat"
            _write_array(directory / f"T{suffix}", store.Tn[i].numpy())
            for kind in KINDS:
                _write_array(directory / f"{kind}{suffix}", getattr(store.env, kind)[i].numpy())

            with open(directory / f"lambda{suffix}", 'w') as f:
                for leg in range(NLEG):
                    for value in store.lambdas[i][leg]:
                        f.write(f"{float(value)!r}\n")

    if mpi is not None:
        mpi.barrier()

    return directory


def load_tensors(store: Any, directory: Union[str, Path], mpi: Optional[Any] = None) -> None:
    """
    Read a checkpoint directory into ``store``.

    Parameters
    ----------
    store : TensorStore
        Store to fill; its unit cell and ``chi`` must match the checkpoint
    directory : str or Path
        Checkpoint directory written by :func:`save_tensors`
    mpi : MPIManager, optional
        Bond spectra are read on the root and broadcast

    Raises
    ------
    FileNotFoundError
        If the directory does not exist
    ValueError
        If a stored shape disagrees with the unit cell or ``chi``
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"{directory} does not exist.")

    Tn = []
    tensors = {kind: [] for kind in KINDS}
    for i in range(store.N_UNIT):
        suffix = f"_{i}.dat"
        Tn.append(Tensor(_read_array(directory / f"T{suffix}")).astype(store.dtype))
        for kind in KINDS:
            data = _read_array(directory / f"{kind}{suffix}")
            tensors[kind].append(Tensor(data).astype(store.dtype))

    raw = None
    if mpi is None or mpi.is_root:
        raw = [
            np.loadtxt(directory / f"lambda_{i}.dat", dtype=np.float64, ndmin=1)
            for i in range(store.N_UNIT)
        ]
    if mpi is not None:
        raw = mpi.broadcast(raw)

    # every process validates the broadcast spectra
    lambdas = []
    for i, values in enumerate(raw):
        vdim = store.unit_cell.virtual_dims[i]
        if len(values) != sum(vdim):
            raise ValueError(
                f"lambda_{i}.dat holds {len(values)} values, expected {sum(vdim)}"
            )
        offsets = np.cumsum([0] + list(vdim))
        lambdas.append([values[offsets[leg]:offsets[leg + 1]].copy() for leg in range(NLEG)])

    store.Tn = Tn
    store.lambdas = lambdas
    store.env = Environment(tensors)
    store.check_consistency()


def save_hdf5(store: Any, path: Union[str, Path], mpi: Optional[Any] = None) -> Path:
    """
    Save the whole store to one HDF5 file.

    Parameters
    ----------
    store : TensorStore
        Store to save
    path : str or Path
        Output file path
    mpi : MPIManager, optional
        Only the root process writes

    Returns
    -------
    Path
        Path to the saved file
    """
    path = Path(path)
    is_root = mpi is None or mpi.is_root

    if is_root:
        path.parent.mkdir(parents=True, exist_ok=True)
        uc = store.unit_cell
        with h5py.File(path, 'w') as f:
            # Metadata
            f.attrs['version'] = CHECKPOINT_VERSION
            f.attrs['timestamp'] = datetime.now().isoformat()
            f.attrs['LX'] = uc.LX
            f.attrs['LY'] = uc.LY
            f.attrs['chi'] = store.chi
            f.attrs['dtype'] = str(store.dtype)
            f.attrs['environment_version'] = store.env.version

            for i in range(store.N_UNIT):
                grp = f.create_group(f'site_{i}')
                grp.attrs['physical_dim'] = uc.physical_dims[i]
                grp.attrs['virtual_dims'] = np.asarray(uc.virtual_dims[i])
                grp.create_dataset('T', data=store.Tn[i].numpy())
                for kind in KINDS:
                    grp.create_dataset(kind, data=getattr(store.env, kind)[i].numpy())
                for leg in range(NLEG):
                    grp.create_dataset(f'lambda_{leg}', data=store.lambdas[i][leg])

    if mpi is not None:
        mpi.barrier()

    return path


def load_hdf5(store: Any, path: Union[str, Path]) -> None:
    """
    Load a store saved with :func:`save_hdf5`.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the archive does not match the store's unit cell or ``chi``
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"{path} does not exist.")

    with h5py.File(path, 'r') as f:
        uc = store.unit_cell
        if (int(f.attrs['LX']), int(f.attrs['LY'])) != (uc.LX, uc.LY):
            raise ValueError(
                f"Archive unit cell {int(f.attrs['LX'])}x{int(f.attrs['LY'])} "
                f"does not match {uc.LX}x{uc.LY}"
            )
        if int(f.attrs['chi']) != store.chi:
            raise ValueError(f"Archive chi {int(f.attrs['chi'])} does not match {store.chi}")

        Tn = []
        lambdas = []
        tensors = {kind: [] for kind in KINDS}
        for i in range(store.N_UNIT):
            grp = f[f'site_{i}']
            Tn.append(Tensor(grp['T'][()]).astype(store.dtype))
            for kind in KINDS:
                tensors[kind].append(Tensor(grp[kind][()]).astype(store.dtype))
            lambdas.append([np.asarray(grp[f'lambda_{leg}'][()], dtype=np.float64) for leg in range(NLEG)])
        version = int(f.attrs['environment_version'])

    store.Tn = Tn
    store.lambdas = lambdas
    store.env = Environment(tensors, version=version)
    store.check_consistency()
