"""
Fleet bindings: the concrete collaborators a deployment plugs in.

The run configuration names a factory as "package.module:factory"; the
factory receives the LoadTestConfiguration and returns FleetBindings.
"""

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loadtest_engine.errors import ConfigurationError
from loadtest_engine.interfaces.infrastructure import NodeInfrastructure
from loadtest_engine.interfaces.node_connection import NodeConnector

if TYPE_CHECKING:
    from loadtest_engine.config import LoadTestConfiguration


@dataclass(frozen=True)
class FleetBindings:
    """Connectivity and infrastructure collaborators for one fleet."""

    connector: NodeConnector
    infrastructure: NodeInfrastructure


BindingsFactory = Callable[["LoadTestConfiguration"], FleetBindings]


def load_bindings_factory(path: str) -> BindingsFactory:
    """
    Import a bindings factory from "package.module:attribute".

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Bindings must be 'package.module:factory', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import bindings module {module_name!r}: {e}") from e

    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigurationError(f"Bindings factory {path!r} not found or not callable")
    return factory


def resolve_bindings(config: "LoadTestConfiguration") -> FleetBindings:
    """
    Build the fleet bindings named by the configuration.

    Raises:
        ConfigurationError: If no factory is configured or it returns the wrong type
    """
    if not config.bindings:
        raise ConfigurationError(
            "No bindings configured; set 'bindings' to a 'package.module:factory' "
            "returning FleetBindings"
        )
    bindings = load_bindings_factory(config.bindings)(config)
    if not isinstance(bindings, FleetBindings):
        raise ConfigurationError(
            f"Bindings factory {config.bindings!r} returned {type(bindings).__name__}, "
            "expected FleetBindings"
        )
    return bindings
