"""
Ledger fleet load-test engine.

Drives concurrent load against a fleet of live ledger nodes while injecting
controlled failures, and verifies that each node's observable state matches
an independently maintained prediction:
- Workload generation with a predicted-state model
- Randomised disruption loops (hang, kill, CPU strain)
- Periodic invariant checks against remote state
- Run coordination with a bounded worker pool
"""

__version__ = "0.4.0"
__author__ = "Ledger Load Test Team"

from loadtest_engine.config import Settings, get_settings

__all__ = ["__version__", "Settings", "get_settings"]
