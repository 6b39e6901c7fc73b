"""
Fault injection: disruption variants, patterns and the engine that applies them.
"""

from loadtest_engine.disruption.actuator import DisruptionActuator, ShellNodeInfrastructure
from loadtest_engine.disruption.engine import DisruptionEngine
from loadtest_engine.disruption.models import (
    Disruption,
    DisruptionPattern,
    DisruptionSpec,
    Hang,
    Kill,
    MsRange,
    StrainCpu,
    hang,
    kill,
    strain_cpu,
)

__all__ = [
    "Disruption",
    "DisruptionActuator",
    "DisruptionEngine",
    "DisruptionPattern",
    "DisruptionSpec",
    "Hang",
    "Kill",
    "MsRange",
    "ShellNodeInfrastructure",
    "StrainCpu",
    "hang",
    "kill",
    "strain_cpu",
]
