"""
Element-type handling for PEPS tensors.

Every array entering the State Store (random initialization, checkpoint
loading, operator ingestion) passes through this module, so the choice
between a real and a complex run is made in a single place.
"""

from __future__ import annotations

import warnings
from typing import Optional, Sequence, Tuple

import numpy as np


REAL_DTYPE = np.float64
COMPLEX_DTYPE = np.complex128


def resolve_dtype(is_real: bool) -> np.dtype:
    """Return the element type used for a run."""
    return np.dtype(REAL_DTYPE if is_real else COMPLEX_DTYPE)


def as_dtype(array, dtype: np.dtype, name: str = "tensor") -> np.ndarray:
    """
    Convert an array to the run's element type.

    A complex array converted to a real run loses its imaginary part; a
    warning is issued when that part is not negligible.

    Parameters
    ----------
    array : array_like
        Input data
    dtype : dtype
        Target element type (from :func:`resolve_dtype`)
    name : str
        Label used in the warning message

    Returns
    -------
    ndarray
        Contiguous copy with the requested dtype
    """
    array = np.asarray(array)
    dtype = np.dtype(dtype)

    if np.iscomplexobj(array) and not np.issubdtype(dtype, np.complexfloating):
        imag = np.max(np.abs(array.imag)) if array.size else 0.0
        if imag > 1e-12:
            warnings.warn(
                f"Discarding imaginary part of {name} (max |Im| = {imag:.3e}) "
                "in a real-valued run"
            )
        array = array.real

    return np.ascontiguousarray(array, dtype=dtype)


def random_tensor(
    shape: Sequence[int],
    rng: np.random.Generator,
    dtype: np.dtype,
    rng_imag: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Uniform random tensor in [-1, 1).

    The imaginary part, if any, is drawn from ``rng_imag`` so that the real
    part of a complex run coincides with the corresponding real run.
    """
    shape = tuple(int(s) for s in shape)
    data = rng.uniform(-1.0, 1.0, size=shape)
    if np.issubdtype(np.dtype(dtype), np.complexfloating):
        rng_imag = rng_imag if rng_imag is not None else rng
        data = data + 1j * rng_imag.uniform(-1.0, 1.0, size=shape)
    return as_dtype(data, dtype)


def max_abs(array: np.ndarray) -> float:
    """Largest absolute entry (0.0 for empty arrays)."""
    if array.size == 0:
        return 0.0
    return float(np.max(np.abs(array)))


def normalize_max_abs(array: np.ndarray) -> np.ndarray:
    """Scale an array so that its largest entry has modulus one."""
    scale = max_abs(array)
    if scale < 1e-300:
        warnings.warn("Normalizing a tensor with near-zero entries")
        return array
    return array / scale


def pad_to(array: np.ndarray, shape: Tuple[int, ...]) -> np.ndarray:
    """Zero-pad (or crop) ``array`` to ``shape``."""
    out = np.zeros(shape, dtype=array.dtype)
    slices = tuple(slice(0, min(a, b)) for a, b in zip(array.shape, shape))
    out[slices] = array[slices]
    return out
