"""
Checkpointing and restart of the PEPS State Store.

A checkpoint is a directory holding, for every site index ``i``:

- ``T_<i>.dat``: site tensor
- ``C1_<i>.dat`` ... ``C4_<i>.dat``: corner tensors
- ``Et_<i>.dat``, ``Er_<i>.dat``, ``Eb_<i>.dat``, ``El_<i>.dat``: edge tensors
- ``lambda_<i>.dat``: bond weights as plain text, one value per line,
  leg by leg (left, top, right, bottom)

Tensor files are HDF5 files with a single dataset ``tensor``; shape and
element type are stored with the data.
"""

from __future__ import annotations

import numpy as np
import h5py
from pathlib import Path
from typing import Any, List, Optional, Union

from ctmpeps.core.frames import CORNER_NAMES, EDGE_NAMES
from ctmpeps.core.peps_state import EDGE_LEGS
from ctmpeps.core.tensor import as_dtype


TENSOR_DATASET = "tensor"


def _write_tensor(path: Path, tensor: np.ndarray) -> None:
    with h5py.File(path, 'w') as f:
        f.create_dataset(TENSOR_DATASET, data=tensor)


def _read_tensor(path: Path) -> np.ndarray:
    with h5py.File(path, 'r') as f:
        return f[TENSOR_DATASET][()]


def _write_lambdas(path: Path, lambdas: List[np.ndarray]) -> None:
    with open(path, 'w') as f:
        for weights in lambdas:
            for value in weights:
                f.write(f"{float(value):.17e}\n")


def _read_lambdas(path: Path, dims) -> List[np.ndarray]:
    values = np.loadtxt(path, ndmin=1)
    if len(values) != sum(dims):
        raise ValueError(
            f"{path}: expected {sum(dims)} bond weights, found {len(values)}"
        )
    out = []
    offset = 0
    for d in dims:
        out.append(np.array(values[offset:offset + d], dtype=float))
        offset += d
    return out


class CheckpointManager:
    """
    Save and load the State Store to and from a checkpoint directory.

    Only the root worker touches the file system; loaded data is broadcast
    to every worker.

    Parameters
    ----------
    directory : str or Path
        Checkpoint directory
    mpi : MPIManager, optional
        Worker group

    Examples
    --------
    >>> ckpt = CheckpointManager("./save_tensor")
    >>> ckpt.save(state)
    >>> # Later...
    >>> ckpt.load(state)
    """

    def __init__(self, directory: Union[str, Path], mpi: Optional[Any] = None):
        self.directory = Path(directory)
        self.mpi = mpi

    @property
    def _is_root(self) -> bool:
        return self.mpi is None or self.mpi.is_root

    def save(self, state) -> None:
        """Write tensors, environment and bond weights of ``state``."""
        if self._is_root:
            self.directory.mkdir(parents=True, exist_ok=True)
            for i in range(state.n_sites):
                _write_tensor(self.directory / f"T_{i}.dat", state.tensors[i])
                for name, corners in zip(CORNER_NAMES, state.corners):
                    _write_tensor(self.directory / f"{name}_{i}.dat", corners[i])
                for name, edges in zip(EDGE_NAMES, state.edges):
                    _write_tensor(self.directory / f"{name}_{i}.dat", edges[i])
                _write_lambdas(self.directory / f"lambda_{i}.dat", state.lambdas[i])
        if self.mpi is not None:
            self.mpi.barrier()

    def load(self, state) -> None:
        """
        Replace the contents of ``state`` by the checkpoint.

        The environment is loaded only when every environment file is
        present and matches CHI; otherwise the trivial environment is kept
        and will be built from scratch.

        Raises
        ------
        FileNotFoundError
            If the checkpoint directory or a bond weight file does not exist
        ValueError
            If a stored tensor does not match the lattice dimensions or,
            for the environment, CHI
        """
        payload = None
        error = None
        if self._is_root:
            try:
                payload = self._read(state)
            except (FileNotFoundError, ValueError) as exc:
                error = exc
        if self.mpi is not None:
            error, payload = self.mpi.broadcast((error, payload))
        if error is not None:
            raise error

        tensors, lambdas, environment = payload
        state.tensors = tensors
        state.lambdas = lambdas
        if environment is not None:
            state.corners, state.edges = environment
            state.has_environment = True
        else:
            state.reset_environment()

    def _read(self, state):
        if not self.directory.is_dir():
            raise FileNotFoundError(
                f"Checkpoint directory {self.directory} does not exist"
            )

        lattice = state.lattice
        tensors = []
        lambdas = []
        for site in lattice:
            i = site.index
            tensor = as_dtype(
                _read_tensor(self.directory / f"T_{i}.dat"), state.dtype, f"T_{i}"
            )
            if tensor.shape != site.tensor_shape:
                raise ValueError(
                    f"T_{i}.dat has shape {tensor.shape}, expected {site.tensor_shape}"
                )
            tensors.append(tensor)

            path = self.directory / f"lambda_{i}.dat"
            if not path.exists():
                raise FileNotFoundError(f"Bond weight file {path} does not exist")
            lambdas.append(_read_lambdas(path, site.virtual_dims))

        return tensors, lambdas, self._read_environment(state)

    def _read_environment(self, state):
        n = state.n_sites
        names = list(CORNER_NAMES) + list(EDGE_NAMES)
        if not all((self.directory / f"{name}_{i}.dat").exists()
                   for name in names for i in range(n)):
            return None

        corners = [[None] * n for _ in range(4)]
        edges = [[None] * n for _ in range(4)]
        for i in range(n):
            for c, name in enumerate(CORNER_NAMES):
                corners[c][i] = as_dtype(
                    _read_tensor(self.directory / f"{name}_{i}.dat"), state.dtype, name
                )
            for e, name in enumerate(EDGE_NAMES):
                edges[e][i] = as_dtype(
                    _read_tensor(self.directory / f"{name}_{i}.dat"), state.dtype, name
                )

        chi = state.chi
        if corners[0][0].shape[0] != chi:
            return None
        for i in range(n):
            for c, name in enumerate(CORNER_NAMES):
                if corners[c][i].shape != (chi, chi):
                    raise ValueError(
                        f"{name}_{i}.dat has shape {corners[c][i].shape}, expected {(chi, chi)}"
                    )
            for e, (name, leg) in enumerate(zip(EDGE_NAMES, EDGE_LEGS)):
                d = state.lattice.virtual_dim(i, leg)
                if edges[e][i].shape != (chi, chi, d, d):
                    raise ValueError(
                        f"{name}_{i}.dat has shape {edges[e][i].shape}, expected {(chi, chi, d, d)}"
                    )
        return corners, edges
