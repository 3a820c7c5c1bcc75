"""Cloud provider backends for listing, creating and destroying workers.

DigitalOcean is the production backend. The static backend serves a fixed
roster for development.
"""

from transcoder_rotator.provider.backend import (
    Instance,
    ProviderBackend,
    ProviderError,
    ProviderUnavailable,
)
from transcoder_rotator.provider.config import (
    create_provider,
    load_provider_config,
    static_provider_config,
)
from transcoder_rotator.provider.digitalocean import (
    DigitalOceanConfig,
    DigitalOceanProvider,
)
from transcoder_rotator.provider.static import StaticProvider, StaticProviderConfig

__all__ = [
    "DigitalOceanConfig",
    "DigitalOceanProvider",
    "Instance",
    "ProviderBackend",
    "ProviderError",
    "ProviderUnavailable",
    "StaticProvider",
    "StaticProviderConfig",
    "create_provider",
    "load_provider_config",
    "static_provider_config",
]
