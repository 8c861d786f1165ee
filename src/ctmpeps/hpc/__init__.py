"""
HPC infrastructure module.

Provides:
- MPI worker group
- Checkpointing/restart
- Elapsed-time accounting
"""

from ctmpeps.hpc.mpi import MPIManager
from ctmpeps.hpc.checkpointing import CheckpointManager
from ctmpeps.hpc.profiling import RunStatistics, TimingStats

__all__ = [
    "MPIManager",
    "CheckpointManager",
    "RunStatistics",
    "TimingStats",
]
