"""
Core tensor network operations module.
"""

from ctmpeps.core.tensor import Tensor, get_default_dtype, set_default_dtype
from ctmpeps.core.contractions import contract, contract_ncon
from ctmpeps.core.decompositions import svd, truncated_svd, tensor_qr, randomized_svd
from ctmpeps.core.environment import Environment, LatticeRotation
from ctmpeps.core.tensor_store import TensorStore

__all__ = [
    "Tensor",
    "get_default_dtype",
    "set_default_dtype",
    "contract",
    "contract_ncon",
    "svd",
    "tensor_qr",
    "truncated_svd",
    "randomized_svd",
    "Environment",
    "LatticeRotation",
    "TensorStore",
]
