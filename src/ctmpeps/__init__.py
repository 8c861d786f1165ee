"""
ctmpeps: ground states of 2D quantum lattice models with PEPS and CTM.

A PEPS with a finite unit cell tiling the infinite square lattice is
optimized by imaginary-time evolution (simple update, full update) and
measured through a corner transfer matrix environment.
"""

__version__ = "1.0.0"

from ctmpeps.lattice.unit_cell import Site, Bond, SquareLattice
from ctmpeps.core.peps_state import PEPSState
from ctmpeps.models.operators import (
    OnesiteOperator,
    TwositeOperator,
    EvolutionOperator,
    CorrelationParameter,
    SpinOperators,
)
from ctmpeps.algorithms.ctm import CTMConfig, CTMEnvironment
from ctmpeps.algorithms.simple_update import SimpleUpdateConfig, SimpleUpdate
from ctmpeps.algorithms.full_update import FullUpdateConfig, FullUpdate
from ctmpeps.algorithms.measurement import Measurement, MeasurementResult, Correlation
from ctmpeps.config import PEPSParameters
from ctmpeps.simulation import PEPSSimulation, run

__all__ = [
    "Site",
    "Bond",
    "SquareLattice",
    "PEPSState",
    "OnesiteOperator",
    "TwositeOperator",
    "EvolutionOperator",
    "CorrelationParameter",
    "SpinOperators",
    "CTMConfig",
    "CTMEnvironment",
    "SimpleUpdateConfig",
    "SimpleUpdate",
    "FullUpdateConfig",
    "FullUpdate",
    "Measurement",
    "MeasurementResult",
    "Correlation",
    "PEPSParameters",
    "PEPSSimulation",
    "run",
]
