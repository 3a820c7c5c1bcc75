"""Provider configuration loading and backend factory."""

from __future__ import annotations

from omegaconf import DictConfig, OmegaConf

from transcoder_rotator.config import read_config_file
from transcoder_rotator.provider.backend import ProviderBackend
from transcoder_rotator.provider.digitalocean import (
    DigitalOceanConfig,
    DigitalOceanProvider,
)
from transcoder_rotator.provider.static import StaticProvider, StaticProviderConfig

SCHEMA_REGISTRY: dict[str, type] = {
    "digitalocean": DigitalOceanConfig,
    "static": StaticProviderConfig,
}

BACKEND_REGISTRY: dict[str, type[ProviderBackend]] = {
    "digitalocean": DigitalOceanProvider,
    "static": StaticProvider,
}


def load_provider_config(config_path: str) -> DictConfig:
    """Read the ``provider`` section of a YAML config and validate it.

    1. Parse the YAML and extract the provider mapping.
    2. Read the backend key to select the structured schema.
    3. Merge the YAML values onto the schema defaults.
    """
    raw = read_config_file(config_path)
    if "provider" not in raw:
        raise ValueError(
            f"Config file must contain a top-level 'provider' key: {config_path}"
        )

    provider_raw = raw["provider"]
    if not isinstance(provider_raw, dict):
        raise ValueError("'provider' must be a dictionary")

    backend_name = provider_raw.get("backend", "digitalocean")
    schema_cls = SCHEMA_REGISTRY.get(backend_name)
    if schema_cls is None:
        available = ", ".join(sorted(SCHEMA_REGISTRY))
        raise ValueError(
            f"Unknown provider backend: {backend_name!r}. "
            f"Available backends: {available}"
        )

    schema = OmegaConf.structured(schema_cls)
    return OmegaConf.merge(schema, OmegaConf.create(provider_raw))


def static_provider_config(addresses: list[str]) -> DictConfig:
    """Build a validated static backend config from a list of addresses."""
    return OmegaConf.structured(StaticProviderConfig(addresses=list(addresses)))


def create_provider(config: DictConfig) -> ProviderBackend:
    """Instantiate a ProviderBackend from a validated config."""
    backend_name = config.backend
    cls = BACKEND_REGISTRY.get(backend_name)
    if cls is None:
        available = ", ".join(sorted(BACKEND_REGISTRY))
        raise ValueError(
            f"Unknown provider backend: {backend_name!r}. "
            f"Available backends: {available}"
        )
    return cls(config)
