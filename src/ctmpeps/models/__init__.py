"""
Physical models: operator records and spin operators.
"""

from ctmpeps.models.operators import (
    OnesiteOperator,
    TwositeOperator,
    EvolutionOperator,
    CorrelationParameter,
    SpinOperators,
    evolution_gate,
    nearest_neighbor_gates,
    nearest_neighbor_observables,
)

__all__ = [
    "OnesiteOperator",
    "TwositeOperator",
    "EvolutionOperator",
    "CorrelationParameter",
    "SpinOperators",
    "evolution_gate",
    "nearest_neighbor_gates",
    "nearest_neighbor_observables",
]
