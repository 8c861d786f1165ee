"""
Tensor contractions for PEPS networks.

This module provides:
- `contract`: opt_einsum Einstein summation with path optimization
- `contract_ncon`: ncon-style contraction driven by integer labels
- `contract_rectangle`: expectation-value network of an nrow x ncol
  block of sites surrounded by its CTM environment
- correlation boundary tensors swept along a row

Environment index convention (clockwise ring around the block)::

    C1 -> Et ... Et -> C2
    ^                  |
    El                 Er
    :                  :
    El                 Er
    ^                  v
    C4 <- Eb ... Eb <- C3

Corners are ``(in, out)``, edges ``(in, out, ket, bra)``. Site tensors are
``(left, top, right, bottom, phys)``.
"""

from __future__ import annotations

import itertools
from typing import List, Optional, Sequence, Tuple

import numpy as np
import opt_einsum as oe


def contract(subscripts: str, *operands: np.ndarray, optimize='auto') -> np.ndarray:
    """
    Contract tensors using Einstein summation with path optimization.

    Examples
    --------
    >>> a = np.ones((2, 3, 4))
    >>> b = np.ones((4, 5))
    >>> contract('ijk,kl->ijl', a, b).shape
    (2, 3, 5)
    """
    return oe.contract(subscripts, *operands, optimize=optimize)


def contract_ncon(
    tensors: Sequence[np.ndarray],
    indices: Sequence[Sequence[int]],
    optimize='auto',
) -> np.ndarray:
    """
    Network contractor (ncon) style contraction.

    Positive labels are contracted, negative labels are free and appear in
    the output ordered by absolute value.
    """
    if len(tensors) != len(indices):
        raise ValueError("Number of tensors must match number of index lists")

    for i, (t, idx) in enumerate(zip(tensors, indices)):
        if t.ndim != len(idx):
            raise ValueError(
                f"Tensor {i} has {t.ndim} dimensions but {len(idx)} indices specified"
            )

    free = sorted({i for idx in indices for i in idx if i < 0}, key=abs)

    args = []
    for t, idx in zip(tensors, indices):
        args.extend([t, list(idx)])
    args.append(free)

    return oe.contract(*args, optimize=optimize)


def contract_rectangle(
    corners: Sequence[np.ndarray],
    edges_top: Sequence[np.ndarray],
    edges_right: Sequence[np.ndarray],
    edges_bottom: Sequence[np.ndarray],
    edges_left: Sequence[np.ndarray],
    tensors: Sequence[Sequence[np.ndarray]],
    ops: Optional[Sequence[Sequence[Optional[np.ndarray]]]] = None,
    twosite: Optional[Tuple[np.ndarray, Tuple[int, int], Tuple[int, int]]] = None,
):
    """
    Contract ``<psi| O |psi>`` on an nrow x ncol block.

    Parameters
    ----------
    corners : sequence of ndarray
        (C1, C2, C3, C4)
    edges_top, edges_bottom : sequence of ndarray
        Edge tensors of each column, left to right
    edges_right, edges_left : sequence of ndarray
        Edge tensors of each row, top to bottom
    tensors : nested sequence of ndarray
        Site tensors, ``tensors[row][col]`` with row 0 on top
    ops : nested sequence, optional
        One-site operators ``O[bra, ket]`` per cell; None means identity
    twosite : (op, (row, col), (row, col)), optional
        Dense two-site operator ``op[a, b, a', b']`` acting on the two cells

    Returns
    -------
    scalar
        Unnormalized expectation value
    """
    nrow = len(tensors)
    ncol = len(tensors[0])
    label = itertools.count(1)

    hk = [[next(label) for _ in range(ncol + 1)] for _ in range(nrow)]
    hb = [[next(label) for _ in range(ncol + 1)] for _ in range(nrow)]
    vk = [[next(label) for _ in range(ncol)] for _ in range(nrow + 1)]
    vb = [[next(label) for _ in range(ncol)] for _ in range(nrow + 1)]
    pk = [[next(label) for _ in range(ncol)] for _ in range(nrow)]
    pb = [[next(label) for _ in range(ncol)] for _ in range(nrow)]

    C1, C2, C3, C4 = corners
    ring = [(C1, [])]
    ring += [(edges_top[c], [vk[0][c], vb[0][c]]) for c in range(ncol)]
    ring += [(C2, [])]
    ring += [(edges_right[r], [hk[r][ncol], hb[r][ncol]]) for r in range(nrow)]
    ring += [(C3, [])]
    ring += [(edges_bottom[c], [vk[nrow][c], vb[nrow][c]]) for c in reversed(range(ncol))]
    ring += [(C4, [])]
    ring += [(edges_left[r], [hk[r][0], hb[r][0]]) for r in reversed(range(nrow))]
    chi = [next(label) for _ in ring]

    network: List[np.ndarray] = []
    indices: List[List[int]] = []
    for m, (t, extra) in enumerate(ring):
        network.append(t)
        indices.append([chi[m - 1], chi[m]] + extra)

    twosite_cells = set()
    if twosite is not None:
        twosite_cells = {tuple(twosite[1]), tuple(twosite[2])}

    for r in range(nrow):
        for c in range(ncol):
            T = tensors[r][c]
            network.append(T)
            indices.append([hk[r][c], vk[r][c], hk[r][c + 1], vk[r + 1][c], pk[r][c]])

            op = ops[r][c] if ops is not None else None
            if (r, c) in twosite_cells:
                bra_phys = pb[r][c]
            elif op is None:
                bra_phys = pk[r][c]
            else:
                bra_phys = pb[r][c]
                network.append(op)
                indices.append([pb[r][c], pk[r][c]])

            network.append(T.conj())
            indices.append([hb[r][c], vb[r][c], hb[r][c + 1], vb[r + 1][c], bra_phys])

    if twosite is not None:
        op, (ra, ca), (rb, cb) = twosite
        network.append(op)
        indices.append([pb[ra][ca], pb[rb][cb], pk[ra][ca], pk[rb][cb]])

    return contract_ncon(network, indices).item()


def _site_with_op(T: np.ndarray, op: Optional[np.ndarray]):
    # bra tensor with the operator already applied on the physical leg
    if op is None:
        return T.conj()
    return contract('qp,ltrbq->ltrbp', op, T.conj())


def start_correlation(
    C1: np.ndarray,
    C4: np.ndarray,
    Et: np.ndarray,
    El: np.ndarray,
    Eb: np.ndarray,
    T: np.ndarray,
    op: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Left boundary of a correlation row with ``op`` inserted at the anchor.

    Returns a tensor ``(chi_top, chi_bottom, ket, bra)`` whose open legs
    attach to the next column on the right.
    """
    Tb = _site_with_op(T, op)
    return contract(
        'xy,yztu,wxlm,sw,vsbc,ltrbp,muRcp->zvrR',
        C1, Et, El, C4, Eb, T, Tb,
    )


def transfer_correlation(
    L: np.ndarray,
    Et: np.ndarray,
    Eb: np.ndarray,
    T: np.ndarray,
    op: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Absorb one column (top edge, site, bottom edge) into the boundary."""
    Tb = _site_with_op(T, op)
    return contract(
        'zvlm,zZtu,Vvbc,ltrbp,muRcp->ZVrR',
        L, Et, Eb, T, Tb,
    )


def finish_correlation(
    L: np.ndarray,
    C2: np.ndarray,
    C3: np.ndarray,
    Et: np.ndarray,
    Er: np.ndarray,
    Eb: np.ndarray,
    T: np.ndarray,
    op: Optional[np.ndarray] = None,
):
    """Close the boundary with the right anchor column."""
    Tb = _site_with_op(T, op)
    return contract(
        'zvlm,zytu,yw,wxrR,xs,svbc,ltrbp,muRcp->',
        L, Et, C2, Er, C3, Eb, T, Tb,
    ).item()
