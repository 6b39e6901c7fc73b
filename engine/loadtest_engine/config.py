"""
Configuration management for the load-test engine.

Two layers:
- Settings: process-level knobs from environment variables (pydantic-settings)
- LoadTestConfiguration: the run configuration file given on the command line,
  layered over the packaged reference defaults
"""

import getpass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from loadtest_engine.disruption.models import DisruptionSpec
from loadtest_engine.domain.node import NodeRole
from loadtest_engine.errors import ConfigurationError
from loadtest_engine.logging import redact_sensitive
from loadtest_engine.workload.models import RunParameters

REFERENCE_CONFIG_PATH = Path(__file__).parent / "loadtest-reference.yaml"


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.

    Run-specific values live in the run configuration file, not here.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOADTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit one JSON object per log line")
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for run ledgers and reports",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir_exists(cls, v: Path) -> Path:
        """Ensure data directory exists."""
        v.mkdir(parents=True, exist_ok=True)
        return v.resolve()


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure single instance throughout the process.
    """
    return Settings()


class RpcUser(BaseModel):
    """Credentials used by the connectivity collaborator."""

    model_config = {"frozen": True, "extra": "forbid"}

    username: str
    password: SecretStr


class NodeHostConfig(BaseModel):
    """One fleet member as written in the configuration file."""

    model_config = {"frozen": True, "extra": "forbid"}

    host: str
    identity: str | None = None
    rpc_port: int | None = Field(default=None, gt=0, le=65535)
    roles: list[NodeRole] = Field(default_factory=lambda: [NodeRole.REGULAR])


class PlanConfig(BaseModel):
    """A load test plan: one test kind, its parameters and its disruption patterns."""

    model_config = {"extra": "forbid"}

    test: str
    parameters: RunParameters
    patterns: list[list[DisruptionSpec]] = Field(default_factory=lambda: [[]])


class LoadTestConfiguration(BaseModel):
    """Resolved run configuration."""

    model_config = {"extra": "forbid"}

    node_hosts: list[NodeHostConfig]
    ssh_user: str
    rpc_user: RpcUser
    rpc_port: int = Field(default=10003, gt=0, le=65535)
    local_tunnel_starting_port: int = Field(default=10000, gt=0, le=65535)
    local_certificates_base_directory: Path = Path("./build/load-test-certificates")
    remote_node_directory: str = "/opt/ledger"
    remote_systemd_service_name: str = "ledger"
    remote_process_pattern: str = "ledger.jar"
    seed: int | None = None
    execution_timeout_s: float = Field(default=30.0, gt=0)
    check_timeout_s: float = Field(default=30.0, gt=0)
    bindings: str | None = Field(
        default=None,
        description="Import path 'package.module:factory' returning FleetBindings",
    )
    tests: list[PlanConfig] | None = None

    @field_validator("node_hosts", mode="before")
    @classmethod
    def normalise_hosts(cls, v: Any) -> Any:
        """Accept bare host strings as shorthand for {host: ...}."""
        if isinstance(v, list):
            return [{"host": item} if isinstance(item, str) else item for item in v]
        return v

    @field_validator("node_hosts")
    @classmethod
    def require_hosts(cls, v: list[NodeHostConfig]) -> list[NodeHostConfig]:
        if not v:
            raise ValueError("Please specify at least one node host")
        seen: set[str] = set()
        for entry in v:
            identity = entry.identity or entry.host
            if identity in seen:
                raise ValueError(f"Duplicate node identity: {identity}")
            seen.add(identity)
        return v

    def get_redacted_config(self) -> dict[str, Any]:
        """
        Get configuration dict with sensitive values redacted.
        Safe for logging and run manifests.
        """
        return redact_sensitive(self.model_dump(mode="json"))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dicts, with override taking precedence.

    Returns a new dict; inputs are not mutated.
    """
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    with path.open() as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(
            f"Configuration {path} must be a YAML mapping, got {type(loaded).__name__}"
        )
    return loaded


def load_configuration(
    config_file: Path,
    reference_file: Path = REFERENCE_CONFIG_PATH,
) -> LoadTestConfiguration:
    """
    Load the run configuration.

    Precedence (highest to lowest):
    1. config_file - the user's run configuration
    2. reference_file - packaged defaults
    3. ssh_user falls back to the local login name

    Args:
        config_file: Path to the user's YAML configuration
        reference_file: Path to the reference defaults

    Returns:
        Validated LoadTestConfiguration

    Raises:
        ConfigurationError: If a file is missing, malformed or fails validation
    """
    if not config_file.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")

    try:
        reference = _read_yaml_mapping(reference_file)
        custom = _read_yaml_mapping(config_file)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML configuration: {e}") from e

    merged = deep_merge(reference, custom)
    if not merged.get("ssh_user"):
        merged["ssh_user"] = getpass.getuser()

    try:
        return LoadTestConfiguration.model_validate(merged)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {config_file}: {e}") from e
