"""YAML configuration loading for the rotator control loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from omegaconf import DictConfig, OmegaConf


@dataclass
class RotatorConfig:
    """Typed configuration for the fleet control loop and API surface.

    Durations are in seconds.
    """

    minimum_instances: int = 1
    tick_interval: float = 10.0

    # How long a session lives without a refresh, and how long a flushed
    # worker stays stopped before it is restarted.
    reset_window: float = 3 * 60 * 60
    restart_padding: float = 5.0

    health_mem_threshold: float = 25.0
    # Reserved for future classification criteria; not consulted.
    health_cpu_threshold: float = 80.0

    agent_port: int = 8080
    agent_timeout: float = 30.0
    probe_timeout: float = 5.0

    provision_poll_interval: float = 5.0
    provision_timeout: float = 5 * 60
    provision_grace: float = 5 * 60

    # Addresses that idle reclamation never deletes.
    pinned_addresses: list[str] = field(default_factory=list)

    notifications_url: Optional[str] = None
    auth_error_status: int = 500

    service_key: str = "${oc.env:ROTATOR_SERVICE_KEY}"


def read_config_file(config_path: str) -> dict[str, Any]:
    """Parse a YAML config file into its top-level mapping."""
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open() as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")
    return raw


def load_rotator_config(config_path: str | None = None) -> DictConfig:
    """Return the validated ``rotator`` section merged onto schema defaults.

    Without a path, or when the file has no ``rotator`` key, the defaults of
    :class:`RotatorConfig` are returned.
    """
    schema = OmegaConf.structured(RotatorConfig)
    if config_path is None:
        return schema

    rotator_raw = read_config_file(config_path).get("rotator") or {}
    if not isinstance(rotator_raw, dict):
        raise ValueError("'rotator' must be a dictionary")

    return OmegaConf.merge(schema, OmegaConf.create(rotator_raw))
