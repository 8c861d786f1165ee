"""
Worker group for distributed PEPS runs.

Every worker holds a full replica of the parameters, the lattice and the
State Store. Engines that change the store run on all workers; after a
change the root's replica is copied to the others with
`MPIManager.broadcast_state`, so replicas cannot drift apart through
randomized truncations. Report and checkpoint files come from the root
only.

Communication goes through mpi4py. When it is not installed the group
is a single worker and every collective returns its input.

Run in parallel with:
    mpirun -np 4 python examples/heisenberg_square.py
"""

from __future__ import annotations

import numpy as np
from typing import Any

try:
    from mpi4py import MPI
    HAS_MPI = True
except ImportError:
    HAS_MPI = False
    MPI = None


REDUCTIONS = ('sum', 'max', 'min', 'prod')


class MPIManager:
    """
    Collectives and root-only output for a group of PEPS workers.

    Parameters
    ----------
    comm : MPI communicator, optional
        Defaults to ``COMM_WORLD`` when mpi4py is available
    root : int
        Rank that owns file output and the reference replica
    logging : bool
        Print `log` messages on the root

    Examples
    --------
    >>> mpi = MPIManager()
    >>> parameters, lattice = mpi.broadcast((parameters, lattice))
    >>> mpi.broadcast_state(state)
    """

    def __init__(self, comm: Any = None, root: int = 0, logging: bool = True):
        self.root = root
        self.logging = logging

        if HAS_MPI:
            self.comm = comm or MPI.COMM_WORLD
            self.rank = self.comm.Get_rank()
            self.size = self.comm.Get_size()
        else:
            self.comm = None
            self.rank = 0
            self.size = 1

    @property
    def is_root(self) -> bool:
        return self.rank == self.root

    @property
    def is_parallel(self) -> bool:
        return self.size > 1

    def barrier(self) -> None:
        if self.comm is not None:
            self.comm.Barrier()

    def broadcast(self, data: Any) -> Any:
        """The root's ``data`` on every worker."""
        if self.comm is None:
            return data
        return self.comm.bcast(data, root=self.root)

    def broadcast_state(self, state, tensors: bool = True, environment: bool = True) -> None:
        """
        Overwrite every replica of ``state`` with the root's.

        ``tensors`` covers site tensors and bond weights, ``environment``
        the corners, edges and the environment flag.
        """
        if not self.is_parallel:
            return
        payload = None
        if self.is_root:
            payload = {}
            if tensors:
                payload['tensors'] = state.tensors
                payload['lambdas'] = state.lambdas
            if environment:
                payload['corners'] = state.corners
                payload['edges'] = state.edges
                payload['has_environment'] = state.has_environment
        payload = self.broadcast(payload)
        for name, value in payload.items():
            setattr(state, name, value)

    def allreduce(self, data: np.ndarray, op: str = 'sum') -> np.ndarray:
        """
        Elementwise reduction of ``data`` over all workers.

        Raises
        ------
        ValueError
            If ``op`` is not one of ``sum``, ``max``, ``min``, ``prod``
        """
        if op not in REDUCTIONS:
            raise ValueError(f"Unknown reduction {op!r}, expected one of {REDUCTIONS}")
        if self.comm is None:
            return data

        mpi_op = {'sum': MPI.SUM, 'max': MPI.MAX, 'min': MPI.MIN, 'prod': MPI.PROD}[op]
        data = np.ascontiguousarray(data)
        result = np.empty_like(data)
        self.comm.Allreduce(data, result, op=mpi_op)
        return result

    def seed(self, seed: int) -> int:
        """Seed offset by rank for randomized decompositions."""
        return seed + self.rank

    def log(self, message: str) -> None:
        if self.logging and self.is_root:
            print(message, flush=True)
