"""
Exception taxonomy for the load-test engine.

Only SetupError (and its subclasses) escapes RunCoordinator.run. Every other
failure category is recorded in the RunResult where it is detected.
"""


class LoadTestError(Exception):
    """Base class for engine errors."""


class SetupError(LoadTestError):
    """Fatal error before any work starts; aborts the run."""


class ConfigurationError(SetupError):
    """Missing or invalid run configuration."""


class StateResetError(SetupError):
    """Pre-run state reset failed on one or more nodes."""

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        nodes = ", ".join(sorted(failures))
        super().__init__(f"State reset failed on {len(failures)} node(s): {nodes}")


class StateSyncError(SetupError):
    """Baseline snapshot of the fleet could not be taken before the run."""

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        nodes = ", ".join(sorted(failures))
        super().__init__(f"Initial state sync failed on {len(failures)} node(s): {nodes}")


class NodeUnreachableError(LoadTestError):
    """A connection to a node could not be established."""

    def __init__(self, node_id: str, reason: str):
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Node {node_id} unreachable: {reason}")
