"""
Invariant verification: predicted-vs-observed state comparison.
"""

from loadtest_engine.verification.checker import InvariantChecker, diff_state
from loadtest_engine.verification.models import CheckReport, UnreachableNode, Violation

__all__ = [
    "CheckReport",
    "InvariantChecker",
    "UnreachableNode",
    "Violation",
    "diff_state",
]
