"""
HPC infrastructure module.

Provides:
- MPI coordination
- Checkpointing/restart
- Timing and progress reporting
"""

from ctmpeps.hpc.mpi import MPIManager, MPIConfig
from ctmpeps.hpc.checkpointing import save_tensors, load_tensors, save_hdf5, load_hdf5
from ctmpeps.hpc.profiling import Timer, TimingStats, progress

__all__ = [
    # MPI
    "MPIManager",
    "MPIConfig",
    # Checkpointing
    "save_tensors",
    "load_tensors",
    "save_hdf5",
    "load_hdf5",
    # Profiling
    "Timer",
    "TimingStats",
    "progress",
]
