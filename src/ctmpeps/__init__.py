"""
ctmpeps: infinite PEPS ground states of 2D lattice models

Simple and full imaginary-time updates on a square unit cell, a corner
transfer matrix environment, and one-site, two-site and long-range
observables.
"""

__version__ = "1.0.0"

from ctmpeps.core.tensor import Tensor
from ctmpeps.core.tensor_store import TensorStore
from ctmpeps.lattice.unit_cell import UnitCell
from ctmpeps.models.operators import Operator, EvolutionOperator, SpinOperators
from ctmpeps.models.heisenberg import HeisenbergModel, HeisenbergParams
from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig
from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig
from ctmpeps.algorithms.full_update import FullUpdate, FullUpdateConfig
from ctmpeps.algorithms.observables import ObservableEngine, CorrelationConfig
from ctmpeps.parameters import PEPSParameters
from ctmpeps.solver import Solver, MeasurementResult, run

__all__ = [
    "Tensor",
    "TensorStore",
    "UnitCell",
    "Operator",
    "EvolutionOperator",
    "SpinOperators",
    "HeisenbergModel",
    "HeisenbergParams",
    "CTMRG",
    "CTMRGConfig",
    "SimpleUpdate",
    "SimpleUpdateConfig",
    "FullUpdate",
    "FullUpdateConfig",
    "ObservableEngine",
    "CorrelationConfig",
    "PEPSParameters",
    "Solver",
    "MeasurementResult",
    "run",
]
