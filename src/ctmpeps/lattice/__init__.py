"""
Lattice geometry module.
"""

from ctmpeps.lattice.unit_cell import Site, Bond, SquareLattice, mirror_leg

__all__ = ["Site", "Bond", "SquareLattice", "mirror_leg"]
