"""
Workload module.

Provides work generation and the predicted-state model:
- RunParameters / WorkItem / FailurePolicy
- WorkloadGenerator: bounded, lazily extended item sequence
- PredictedStateModel: per-node predicted aggregates

Test kinds (e.g. self_issue) are looked up through workload.registry.
"""

from loadtest_engine.workload.generator import WorkloadGenerator
from loadtest_engine.workload.models import FailurePolicy, RunParameters, WorkItem
from loadtest_engine.workload.state import PredictedEntry, PredictedStateModel

__all__ = [
    "FailurePolicy",
    "PredictedEntry",
    "PredictedStateModel",
    "RunParameters",
    "WorkItem",
    "WorkloadGenerator",
]
