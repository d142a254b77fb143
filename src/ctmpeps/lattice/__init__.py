"""
Lattice geometry module.
"""

from ctmpeps.lattice.unit_cell import UnitCell, Bond

__all__ = [
    "UnitCell",
    "Bond",
]
