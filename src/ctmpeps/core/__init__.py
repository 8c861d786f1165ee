"""
Core tensor network operations module.
"""

from ctmpeps.core.contractions import contract, contract_ncon, contract_rectangle
from ctmpeps.core.decompositions import truncated_svd, randomized_svd, tensor_qr
from ctmpeps.core.frames import Direction, RotatedView, FRAMES
from ctmpeps.core.peps_state import PEPSState

__all__ = [
    "contract",
    "contract_ncon",
    "contract_rectangle",
    "truncated_svd",
    "randomized_svd",
    "tensor_qr",
    "Direction",
    "RotatedView",
    "FRAMES",
    "PEPSState",
]
