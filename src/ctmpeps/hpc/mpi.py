"""
MPI coordination for PEPS/CTM runs.

Every process holds the full set of tensors and issues the same sequence
of operations in lock-step. Communication is limited to:
- broadcasting the run configuration and unit cell from the root
- broadcasting checkpoint data read on the root (bond spectra)
- assembling randomized-SVD test matrices from per-process slices
- barriers around root-only file output

Uses mpi4py for communication. Without a communicator the manager runs
serially and every collective is the identity.

Example usage:
    mpirun -np 4 python examples/heisenberg_square.py --chi 16
"""

from __future__ import annotations

from typing import List, Any, Optional
from dataclasses import dataclass


@dataclass
class MPIConfig:
    """MPI configuration."""
    comm: Any = None  # MPI communicator, None for a serial run
    root: int = 0  # Root process rank
    enable_logging: bool = True


class MPIManager:
    """
    Manager for MPI communication.

    Parameters
    ----------
    config : MPIConfig, optional
        MPI configuration

    Examples
    --------
    >>> mpi = MPIManager.world()
    >>> if mpi.is_root:
    ...     print(f"Running on {mpi.size} processes")
    >>> params = mpi.broadcast(params)
    """

    def __init__(self, config: Optional[MPIConfig] = None):
        self.config = config or MPIConfig()
        self.comm = self.config.comm

        if self.comm is not None:
            self.rank = self.comm.Get_rank()
            self.size = self.comm.Get_size()
        else:
            self.rank = 0
            self.size = 1

    @classmethod
    def world(cls, enable_logging: bool = True) -> 'MPIManager':
        """Manager over ``MPI.COMM_WORLD`` (requires mpi4py)."""
        from mpi4py import MPI

        return cls(MPIConfig(comm=MPI.COMM_WORLD, enable_logging=enable_logging))

    @property
    def is_root(self) -> bool:
        """Whether this is the root process."""
        return self.rank == self.config.root

    def barrier(self) -> None:
        """Wait until every process reaches this point."""
        if self.comm is not None:
            self.comm.Barrier()

    def broadcast(self, data: Any, root: Optional[int] = None) -> Any:
        """
        The root's ``data`` on every process.

        Used for the run parameters, the unit cell and the bond spectra of a
        checkpoint; ``data`` is ignored on the other processes.
        """
        if self.comm is None:
            return data

        root = root if root is not None else self.config.root
        return self.comm.bcast(data, root=root)

    def allgather(self, data: Any) -> List[Any]:
        """Per-process ``data`` collected on every process, in rank order."""
        if self.comm is None:
            return [data]

        return self.comm.allgather(data)

    def log(self, message: str) -> None:
        """Print a message from the root process if logging is enabled."""
        if self.config.enable_logging and self.is_root:
            print(message, flush=True)
