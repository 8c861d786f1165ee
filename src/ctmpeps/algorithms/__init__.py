"""
PEPS algorithms: CTM environment, simple update, full update, measurement.
"""

from ctmpeps.algorithms.ctm import CTMConfig, CTMEnvironment
from ctmpeps.algorithms.simple_update import SimpleUpdateConfig, SimpleUpdate
from ctmpeps.algorithms.full_update import FullUpdateConfig, FullUpdate
from ctmpeps.algorithms.measurement import Measurement, MeasurementResult, Correlation

__all__ = [
    "CTMConfig",
    "CTMEnvironment",
    "SimpleUpdateConfig",
    "SimpleUpdate",
    "FullUpdateConfig",
    "FullUpdate",
    "Measurement",
    "MeasurementResult",
    "Correlation",
]
