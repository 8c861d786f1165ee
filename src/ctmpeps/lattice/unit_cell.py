"""
Unit cell definition for square-lattice PEPS.

Sites are numbered ``index = x + y * Lx``. Virtual legs are ordered
left, top, right, bottom (0, 1, 2, 3); ``y`` grows upward, so the top
neighbor of ``(x, y)`` is ``(x, y + 1)``. The unit cell tiles the plane
periodically; a skew shifts ``x`` by ``skew`` every time the top boundary
is crossed.
"""

from __future__ import annotations

import numpy as np
from typing import Iterator, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field


LEFT, TOP, RIGHT, BOTTOM = 0, 1, 2, 3

# (dx, dy) per virtual leg
LEG_DISPLACEMENT = ((-1, 0), (0, 1), (1, 0), (0, -1))


def mirror_leg(leg: int) -> int:
    """Leg on the neighbor that shares the bond."""
    return (leg + 2) % 4


@dataclass
class Site:
    """
    Represents a site in the unit cell.

    Attributes
    ----------
    index : int
        Site index in the unit cell
    physical_dim : int
        Dimension of local Hilbert space
    virtual_dims : tuple
        Bond dimensions of the left, top, right and bottom legs
    initial_dir : array, optional
        Initial physical state (length ``physical_dim``); random if None
    noise : float
        Amplitude of the random part of the initial tensor
    """
    index: int
    physical_dim: int = 2
    virtual_dims: Tuple[int, int, int, int] = (1, 1, 1, 1)
    initial_dir: Optional[Sequence[complex]] = None
    noise: float = 0.0

    def __post_init__(self):
        self.virtual_dims = tuple(int(d) for d in self.virtual_dims)
        if len(self.virtual_dims) != 4:
            raise ValueError(f"Site {self.index}: four virtual dimensions are required")
        if self.physical_dim < 1 or min(self.virtual_dims) < 1:
            raise ValueError(f"Site {self.index}: dimensions must be positive")
        if self.initial_dir is not None:
            self.initial_dir = np.asarray(self.initial_dir)
            if self.initial_dir.shape != (self.physical_dim,):
                raise ValueError(
                    f"Site {self.index}: initial_dir must have length {self.physical_dim}"
                )

    @property
    def tensor_shape(self) -> Tuple[int, ...]:
        """Shape of the site tensor (left, top, right, bottom, phys)."""
        return self.virtual_dims + (self.physical_dim,)


@dataclass(frozen=True, order=True)
class Bond:
    """
    Source site and relative offset of a two-site quantity.

    Used as the key of two-site measurement results.
    """
    source_site: int
    dx: int
    dy: int


class SquareLattice:
    """
    Square lattice unit cell with periodic (optionally skewed) boundaries.

    Parameters
    ----------
    Lx, Ly : int
        Unit cell dimensions
    sites : list of Site, optional
        One entry per site, ordered by index. Defaults to uniform sites
        built from ``physical_dim`` and ``bond_dim``.
    skew : int
        Shift in x applied when crossing the top boundary
    physical_dim, bond_dim : int
        Used only when ``sites`` is None
    noise : float
        Used only when ``sites`` is None

    Examples
    --------
    >>> lattice = SquareLattice(2, 2, bond_dim=3)
    >>> lattice.neighbor(0, RIGHT)
    1
    >>> lattice.other(0, 0, 1)
    2
    """

    def __init__(
        self,
        Lx: int = 1,
        Ly: int = 1,
        sites: Optional[List[Site]] = None,
        skew: int = 0,
        physical_dim: int = 2,
        bond_dim: int = 2,
        noise: float = 0.0,
    ):
        if Lx < 1 or Ly < 1:
            raise ValueError(f"Invalid unit cell size {Lx} x {Ly}")

        self.Lx = int(Lx)
        self.Ly = int(Ly)
        self.skew = int(skew)

        if sites is None:
            sites = [
                Site(
                    index=i,
                    physical_dim=physical_dim,
                    virtual_dims=(bond_dim,) * 4,
                    noise=noise,
                )
                for i in range(self.Lx * self.Ly)
            ]
        self.sites: List[Site] = list(sites)

        self._validate()

    @property
    def N_UNIT(self) -> int:
        """Number of sites in the unit cell."""
        return self.Lx * self.Ly

    def _validate(self) -> None:
        if len(self.sites) != self.N_UNIT:
            raise ValueError(
                f"Expected {self.N_UNIT} sites, got {len(self.sites)}"
            )
        for i, site in enumerate(self.sites):
            if site.index != i:
                raise ValueError(f"Site at position {i} has index {site.index}")
            for leg in range(4):
                j = self.neighbor(i, leg)
                if site.virtual_dims[leg] != self.sites[j].virtual_dims[mirror_leg(leg)]:
                    raise ValueError(
                        f"Bond dimension mismatch between site {i} (leg {leg}) "
                        f"and site {j} (leg {mirror_leg(leg)})"
                    )

    def index(self, x: int, y: int) -> int:
        """Site index of unit cell coordinates (wrapped)."""
        return self._wrap(x, y)[0]

    def x(self, index: int) -> int:
        return index % self.Lx

    def y(self, index: int) -> int:
        return index // self.Lx

    def _wrap(self, x: int, y: int) -> Tuple[int, int, int]:
        """
        Wrap coordinates into the unit cell.

        Returns the site index together with the number of times the
        x boundary was crossed (after the skew shift) and the y boundary.
        """
        wy, y = divmod(y, self.Ly)
        x += wy * self.skew
        wx, x = divmod(x, self.Lx)
        return x + y * self.Lx, wx, wy

    def other(self, index: int, dx: int, dy: int) -> int:
        """Index of the site displaced by (dx, dy) from ``index``."""
        return self._wrap(self.x(index) + dx, self.y(index) + dy)[0]

    def winding(self, index: int, dx: int, dy: int) -> Tuple[int, int, int]:
        """
        Site displaced by (dx, dy) and the number of unit cells crossed.

        Returns
        -------
        (int, int, int)
            ``(site, offset_x, offset_y)``
        """
        return self._wrap(self.x(index) + dx, self.y(index) + dy)

    def neighbor(self, index: int, leg: int) -> int:
        """Neighbor of ``index`` across virtual leg ``leg``."""
        dx, dy = LEG_DISPLACEMENT[leg]
        return self.other(index, dx, dy)

    def column(self, x: int) -> List[int]:
        """Site indices with the given x, bottom to top."""
        return [self.index(x, y) for y in range(self.Ly)]

    def row(self, y: int) -> List[int]:
        """Site indices with the given y, left to right."""
        return [self.index(x, y) for x in range(self.Lx)]

    def virtual_dim(self, index: int, leg: int) -> int:
        return self.sites[index].virtual_dims[leg]

    def physical_dim(self, index: int) -> int:
        return self.sites[index].physical_dim

    def __iter__(self) -> Iterator[Site]:
        return iter(self.sites)

    def __len__(self) -> int:
        return len(self.sites)

    def __repr__(self) -> str:
        return f"SquareLattice(Lx={self.Lx}, Ly={self.Ly}, skew={self.skew})"
