"""
PEPS State Store.

This module defines the container holding the tensor network of a PEPS
with a finite unit cell tiling the infinite square lattice:

- one rank-5 site tensor per site, legs (left, top, right, bottom, phys)
- one bond-weight vector per site and virtual leg
- four corner tensors and four edge tensors per site (CTM environment)

Engines replace entries wholesale; nothing outside an engine mutates an
array in place.
"""

from __future__ import annotations

import numpy as np
from typing import List

from ctmpeps.core.tensor import as_dtype, random_tensor, resolve_dtype
from ctmpeps.lattice.unit_cell import SquareLattice, mirror_leg


# virtual leg adjoining each edge slot (top, right, bottom, left)
EDGE_LEGS = (1, 2, 3, 0)


class PEPSState:
    """
    Tensors, bond weights and CTM environment of a PEPS unit cell.

    Parameters
    ----------
    lattice : SquareLattice
        Unit cell geometry and dimensions
    chi : int
        Environment bond dimension, fixed for the whole run
    is_real : bool
        Use real (float64) instead of complex (complex128) tensors

    Attributes
    ----------
    tensors : list of ndarray
        Site tensors ``Tn[i]``
    lambdas : list of list of ndarray
        Bond weights ``lambdas[i][leg]``
    corners : list of list of ndarray
        ``corners[c][i]`` for c = C1, C2, C3, C4
    edges : list of list of ndarray
        ``edges[e][i]`` for e = top, right, bottom, left
    has_environment : bool
        Whether the corners and edges hold a usable environment

    Examples
    --------
    >>> lattice = SquareLattice(2, 2, bond_dim=2)
    >>> state = PEPSState(lattice, chi=4)
    >>> state.initialize_random(seed=11)
    >>> state.tensors[0].shape
    (2, 2, 2, 2, 2)
    """

    def __init__(self, lattice: SquareLattice, chi: int, is_real: bool = False):
        self.lattice = lattice
        self.chi = int(chi)
        self.dtype = resolve_dtype(is_real)

        n = lattice.N_UNIT
        self.tensors: List[np.ndarray] = [
            np.zeros(site.tensor_shape, dtype=self.dtype) for site in lattice
        ]
        self.lambdas: List[List[np.ndarray]] = [
            [np.ones(d) for d in site.virtual_dims] for site in lattice
        ]
        self.corners: List[List[np.ndarray]] = [[None] * n for _ in range(4)]
        self.edges: List[List[np.ndarray]] = [[None] * n for _ in range(4)]
        self.has_environment = False

        self.reset_environment()

    @property
    def n_sites(self) -> int:
        return self.lattice.N_UNIT

    def initialize_random(self, seed: int) -> None:
        """
        Fill site tensors from the lattice's initial directions and noise.

        The element at virtual index (0, 0, 0, 0) holds the site's
        ``initial_dir`` (a random vector when none is given or it is zero);
        every other element is ``noise`` times a uniform random number.
        Bond weights are reset to one.
        """
        rng = np.random.default_rng(seed)
        rng_imag = np.random.default_rng(seed * 11 + 137)

        for site in self.lattice:
            tensor = site.noise * random_tensor(
                site.tensor_shape, rng, self.dtype, rng_imag
            )
            direction = site.initial_dir
            if direction is None or not np.any(direction):
                direction = random_tensor(
                    (site.physical_dim,), rng, self.dtype, rng_imag
                )
            tensor[0, 0, 0, 0, :] = as_dtype(direction, self.dtype, "initial_dir")

            self.tensors[site.index] = tensor
            self.lambdas[site.index] = [np.ones(d) for d in site.virtual_dims]

        self.reset_environment()

    def reset_environment(self) -> None:
        """
        Trivial boundary environment.

        Corners hold a single unit entry; edges connect the ket and bra
        virtual legs by the identity. Everything is zero-padded to CHI.
        """
        chi = self.chi
        for i in range(self.n_sites):
            for c in range(4):
                corner = np.zeros((chi, chi), dtype=self.dtype)
                corner[0, 0] = 1.0
                self.corners[c][i] = corner
            for e, leg in enumerate(EDGE_LEGS):
                d = self.lattice.virtual_dim(i, leg)
                edge = np.zeros((chi, chi, d, d), dtype=self.dtype)
                edge[0, 0] = np.eye(d)
                self.edges[e][i] = edge
        self.has_environment = False

    def set_bond_weight(self, site: int, leg: int, weight: np.ndarray) -> None:
        """Store ``weight`` on both endpoints of the bond."""
        weight = np.asarray(weight, dtype=float)
        other = self.lattice.neighbor(site, leg)
        self.lambdas[site][leg] = weight
        self.lambdas[other][mirror_leg(leg)] = weight

    def copy(self) -> "PEPSState":
        """Deep copy of the store."""
        new = PEPSState.__new__(PEPSState)
        new.lattice = self.lattice
        new.chi = self.chi
        new.dtype = self.dtype
        new.tensors = [t.copy() for t in self.tensors]
        new.lambdas = [[l.copy() for l in ls] for ls in self.lambdas]
        new.corners = [[t.copy() for t in ts] for ts in self.corners]
        new.edges = [[t.copy() for t in ts] for ts in self.edges]
        new.has_environment = self.has_environment
        return new

    def __repr__(self) -> str:
        return (
            f"PEPSState({self.lattice!r}, chi={self.chi}, "
            f"dtype={self.dtype.name})"
        )
