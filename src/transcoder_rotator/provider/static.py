"""Fixed roster backend for development and tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from transcoder_rotator.provider.backend import (
    Instance,
    InstanceId,
    ProviderBackend,
    ProviderError,
)


@dataclass
class StaticProviderConfig:
    """A fixed list of worker agent addresses (``host`` or ``host:port``)."""

    backend: str = "static"
    addresses: list[str] = field(default_factory=list)


class StaticProvider(ProviderBackend):
    """Report a fixed roster; creating and deleting instances is unsupported."""

    def __init__(self, config) -> None:
        self._addresses = [a.strip() for a in config.addresses if a.strip()]

    async def list_instances(self) -> list[Instance]:
        return [
            Instance(id=address, address=address, tags=["static"])
            for address in self._addresses
        ]

    async def create_instance(self) -> Instance:
        raise ProviderError("static roster cannot create instances")

    async def delete_instance(self, instance_id: InstanceId) -> None:
        raise ProviderError(f"static roster cannot delete instance {instance_id}")
