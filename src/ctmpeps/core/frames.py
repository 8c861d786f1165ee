"""
Rotated views of the State Store.

A CTM move, a full-update bond and a correlation sweep are each written
once, for a single orientation. The other orientations are obtained by
rotating the picture by quarter turns counter-clockwise. Because corners
and edges are indexed clockwise (``in`` leg first, ``out`` leg second),
a rotation only changes which stored tensor plays which role; the
environment tensors themselves are never transposed. Site tensors are
transposed so that their legs read (left, top, right, bottom, phys) in
the rotated frame.

Roles inside a frame:

- corners: C1 (top-left), C2 (top-right), C3 (bottom-right), C4 (bottom-left)
- edges: top, right, bottom, left
- legs: left, top, right, bottom
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np


C1, C2, C3, C4 = 0, 1, 2, 3
ET, ER, EB, EL = 0, 1, 2, 3
LEFT, TOP, RIGHT, BOTTOM = 0, 1, 2, 3

CORNER_NAMES = ('C1', 'C2', 'C3', 'C4')
EDGE_NAMES = ('Et', 'Er', 'Eb', 'El')


class Direction(Enum):
    """
    Side of the unit cell brought to the left of the frame.

    ``Direction.UP`` is the frame in which the top environment plays the
    role of the left environment, i.e. a top CTM move.
    """
    LEFT = 0
    UP = 1
    RIGHT = 2
    DOWN = 3


@dataclass(frozen=True)
class FrameRoles:
    """Stored slot (corner, edge, leg) playing each role in a frame."""
    corners: Tuple[int, int, int, int]
    edges: Tuple[int, int, int, int]
    legs: Tuple[int, int, int, int]


FRAMES = {
    Direction.LEFT: FrameRoles(
        corners=(C1, C2, C3, C4),
        edges=(ET, ER, EB, EL),
        legs=(LEFT, TOP, RIGHT, BOTTOM),
    ),
    Direction.UP: FrameRoles(
        corners=(C2, C3, C4, C1),
        edges=(ER, EB, EL, ET),
        legs=(TOP, RIGHT, BOTTOM, LEFT),
    ),
    Direction.RIGHT: FrameRoles(
        corners=(C3, C4, C1, C2),
        edges=(EB, EL, ET, ER),
        legs=(RIGHT, BOTTOM, LEFT, TOP),
    ),
    Direction.DOWN: FrameRoles(
        corners=(C4, C1, C2, C3),
        edges=(EL, ET, ER, EB),
        legs=(BOTTOM, LEFT, TOP, RIGHT),
    ),
}


def bond_direction(source_leg: int) -> Direction:
    """
    Frame in which a bond leaving ``source_leg`` points to the right.

    The source site sits on the left of the pair in that frame.
    """
    for direction, roles in FRAMES.items():
        if roles.legs[RIGHT] == source_leg:
            return direction
    raise ValueError(f"Invalid leg {source_leg}")


class RotatedView:
    """
    State Store seen from a rotated frame.

    Parameters
    ----------
    state : PEPSState
        Underlying store (read and written in place)
    direction : Direction
        Frame orientation
    """

    def __init__(self, state, direction: Direction):
        self.state = state
        self.lattice = state.lattice
        self.direction = direction
        self.roles = FRAMES[direction]
        self._perm = tuple(self.roles.legs) + (4,)
        self._inverse_perm = tuple(int(a) for a in np.argsort(self._perm))

    def tensor(self, site: int) -> np.ndarray:
        return self.state.tensors[site].transpose(self._perm)

    def set_tensor(self, site: int, tensor: np.ndarray) -> None:
        self.state.tensors[site] = np.ascontiguousarray(
            tensor.transpose(self._inverse_perm)
        )

    def corner(self, role: int, site: int) -> np.ndarray:
        return self.state.corners[self.roles.corners[role]][site]

    def set_corner(self, role: int, site: int, tensor: np.ndarray) -> None:
        self.state.corners[self.roles.corners[role]][site] = tensor

    def edge(self, role: int, site: int) -> np.ndarray:
        return self.state.edges[self.roles.edges[role]][site]

    def set_edge(self, role: int, site: int, tensor: np.ndarray) -> None:
        self.state.edges[self.roles.edges[role]][site] = tensor

    def neighbor(self, site: int, leg: int) -> int:
        return self.lattice.neighbor(site, self.leg(leg))

    def leg(self, leg: int) -> int:
        """Stored leg playing ``leg`` in this frame."""
        return self.roles.legs[leg]
