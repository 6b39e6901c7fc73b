"""
Interfaces (abstract base classes) for the load-test engine.

These define the contracts implemented outside the engine core:
- NodeConnector / NodeConnection: RPC connectivity to nodes
- NodeInfrastructure / RemoteShell: state reset and fault injection
- FleetBindings: the concrete collaborators for one fleet
- LoadTest: a test kind's work generation, execution and predicted effect
"""

from loadtest_engine.interfaces.bindings import FleetBindings, resolve_bindings
from loadtest_engine.interfaces.infrastructure import NodeInfrastructure, RemoteShell
from loadtest_engine.interfaces.load_test import Effects, LoadTest
from loadtest_engine.interfaces.node_connection import NodeConnection, NodeConnector

__all__ = [
    "Effects",
    "FleetBindings",
    "LoadTest",
    "NodeConnection",
    "NodeConnector",
    "NodeInfrastructure",
    "RemoteShell",
    "resolve_bindings",
]
