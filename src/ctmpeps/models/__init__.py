"""
Physical models module.
"""

from ctmpeps.models.operators import (
    SpinOperators,
    Operator,
    EvolutionOperator,
    heisenberg_bond,
    ising_bond,
    xy_bond,
    imaginary_time_gate,
)
from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams

__all__ = [
    "SpinOperators",
    "Operator",
    "EvolutionOperator",
    "heisenberg_bond",
    "ising_bond",
    "xy_bond",
    "imaginary_time_gate",
    "HeisenbergModel",
    "HeisenbergParams",
]
