"""
Algorithms module: environment, optimizers and measurements.
"""

from ctmpeps.algorithms.ctmrg import CTMRG, CTMRGConfig, CTMRGDirection, CTMRGResult
from ctmpeps.algorithms.simple_update import SimpleUpdate, SimpleUpdateConfig
from ctmpeps.algorithms.full_update import FullUpdate, FullUpdateConfig
from ctmpeps.algorithms.observables import (
    ObservableEngine,
    ObservableConfig,
    CorrelationConfig,
    Correlation,
)

__all__ = [
    "CTMRG",
    "CTMRGConfig",
    "CTMRGDirection",
    "CTMRGResult",
    "SimpleUpdate",
    "SimpleUpdateConfig",
    "FullUpdate",
    "FullUpdateConfig",
    "ObservableEngine",
    "ObservableConfig",
    "CorrelationConfig",
    "Correlation",
]
