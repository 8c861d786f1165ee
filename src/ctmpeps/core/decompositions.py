"""
Tensor decomposition routines for PEPS algorithms.

Provides:
- SVD with truncation (exact or randomized)
- QR decomposition of tensors split into row and column legs
- Pseudo-inverse of positive semi-definite matrices
- Positive approximant of a Hermitian matrix
"""

from __future__ import annotations

import numpy as np
import scipy.linalg
from typing import Optional, Sequence, Tuple
from dataclasses import dataclass


@dataclass
class SVDResult:
    """Result of SVD decomposition."""
    U: np.ndarray
    S: np.ndarray
    Vh: np.ndarray
    truncation_error: float = 0.0
    rank: int = 0

    def reconstruct(self) -> np.ndarray:
        """Reconstruct the matrix from SVD factors."""
        return (self.U * self.S) @ self.Vh


@dataclass
class QRResult:
    """Result of QR decomposition."""
    Q: np.ndarray
    R: np.ndarray


def _as_matrix(tensor: np.ndarray, n_row_legs: Optional[int]) -> np.ndarray:
    if tensor.ndim == 2 and n_row_legs is None:
        return tensor
    if n_row_legs is None:
        n_row_legs = tensor.ndim // 2
    rows = int(np.prod(tensor.shape[:n_row_legs]))
    return tensor.reshape(rows, -1)


def truncated_svd(
    tensor: np.ndarray,
    max_rank: Optional[int] = None,
    cutoff: float = 0.0,
    n_row_legs: Optional[int] = None,
) -> SVDResult:
    """
    Truncated Singular Value Decomposition.

    Parameters
    ----------
    tensor : ndarray
        Matrix, or tensor reshaped to a matrix with its first
        ``n_row_legs`` legs as rows
    max_rank : int, optional
        Maximum number of singular values to keep
    cutoff : float
        Relative cutoff (values below ``cutoff * S[0]`` are discarded)
    n_row_legs : int, optional
        Number of leading legs forming the row index

    Returns
    -------
    SVDResult
        Truncated factors; at least one singular value is always kept.
    """
    matrix = _as_matrix(tensor, n_row_legs)
    U, S, Vh = np.linalg.svd(matrix, full_matrices=False)

    if len(S) == 0:
        return SVDResult(U=U, S=S, Vh=Vh, rank=0)

    rank = int(np.sum(S > cutoff * S[0])) if cutoff > 0 else len(S)
    if max_rank is not None:
        rank = min(rank, max_rank)
    rank = max(1, rank)

    discarded = S[rank:]
    total = float(np.sqrt(np.sum(S ** 2)))
    error = float(np.sqrt(np.sum(discarded ** 2))) / total if total > 1e-300 else 0.0

    return SVDResult(
        U=U[:, :rank],
        S=S[:rank],
        Vh=Vh[:rank, :],
        truncation_error=error,
        rank=rank,
    )


def randomized_svd(
    matrix: np.ndarray,
    rank: int,
    rng: np.random.Generator,
    oversampling: float = 2.0,
    n_power_iter: int = 2,
) -> SVDResult:
    """
    Randomized truncated SVD (Halko, Martinsson & Tropp).

    A Gaussian sketch of ``ceil(oversampling * rank)`` columns is refined by
    ``n_power_iter`` QR-stabilized power iterations before the small SVD.
    Falls back to the exact SVD when the sketch would not be smaller than
    the matrix.
    """
    m, n = matrix.shape
    n_sample = int(np.ceil(oversampling * rank))
    if n_sample >= min(m, n):
        return truncated_svd(matrix, max_rank=rank)

    omega = rng.standard_normal((n, n_sample))
    if np.iscomplexobj(matrix):
        omega = omega + 1j * rng.standard_normal((n, n_sample))

    Q, _ = np.linalg.qr(matrix @ omega)
    for _ in range(n_power_iter):
        Q, _ = np.linalg.qr(matrix.conj().T @ Q)
        Q, _ = np.linalg.qr(matrix @ Q)

    Ub, S, Vh = np.linalg.svd(Q.conj().T @ matrix, full_matrices=False)
    U = Q @ Ub
    rank = min(rank, len(S))
    return SVDResult(U=U[:, :rank], S=S[:rank], Vh=Vh[:rank, :], rank=rank)


def tensor_qr(
    tensor: np.ndarray,
    row_axes: Sequence[int],
    col_axes: Sequence[int],
) -> QRResult:
    """
    QR decomposition of a tensor split into row and column legs.

    Returns ``Q`` with shape ``(*row_shape, k)`` and ``R`` with shape
    ``(k, *col_shape)``.
    """
    row_axes = list(row_axes)
    col_axes = list(col_axes)
    row_shape = [tensor.shape[a] for a in row_axes]
    col_shape = [tensor.shape[a] for a in col_axes]

    matrix = tensor.transpose(row_axes + col_axes).reshape(
        int(np.prod(row_shape)), int(np.prod(col_shape))
    )
    Q, R = scipy.linalg.qr(matrix, mode='economic')
    k = Q.shape[1]

    return QRResult(
        Q=Q.reshape(row_shape + [k]),
        R=R.reshape([k] + col_shape),
    )


def hermitian_part(matrix: np.ndarray) -> np.ndarray:
    """(A + A^dagger) / 2"""
    return 0.5 * (matrix + matrix.conj().T)


def positive_approximant(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Closest positive semi-definite matrix to the Hermitian part of ``matrix``.

    Returns
    -------
    (ndarray, ndarray)
        The projected matrix and its square-root factor ``Z`` with
        ``matrix ~ Z Z^dagger``
    """
    w, v = scipy.linalg.eigh(hermitian_part(matrix))
    w = np.clip(w, 0.0, None)
    Z = v * np.sqrt(w)
    return Z @ Z.conj().T, Z


def positive_solve(A: np.ndarray, B: np.ndarray, cutoff: float) -> np.ndarray:
    """
    Solve ``A X = B`` for a Hermitian positive semi-definite ``A``.

    Eigenvalues below ``cutoff * max(eigenvalue)`` are treated as zero
    (pseudo-inverse).
    """
    w, v = scipy.linalg.eigh(hermitian_part(A))
    w_max = np.max(np.abs(w)) if w.size else 0.0
    inv = np.zeros_like(w)
    mask = w > cutoff * w_max
    inv[mask] = 1.0 / w[mask]
    return v @ (inv[:, None] * (v.conj().T @ B))


def pseudo_inverse(matrix: np.ndarray, cutoff: float) -> np.ndarray:
    """Moore-Penrose inverse with relative singular value cutoff."""
    U, S, Vh = np.linalg.svd(matrix, full_matrices=False)
    inv = np.zeros_like(S)
    if S.size:
        mask = S > cutoff * S[0]
        inv[mask] = 1.0 / S[mask]
    return (Vh.conj().T * inv) @ U.conj().T


def inverse_weights(weights: np.ndarray, cutoff: float) -> np.ndarray:
    """Element-wise inverse of bond weights, zero below ``cutoff``."""
    weights = np.asarray(weights, dtype=float)
    out = np.zeros_like(weights)
    mask = weights > cutoff
    out[mask] = 1.0 / weights[mask]
    return out


def expm(matrix: np.ndarray) -> np.ndarray:
    """Matrix exponential (scipy)."""
    return scipy.linalg.expm(matrix)
