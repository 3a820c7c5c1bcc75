"""Abstract base class and shared data types for cloud provider backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Union

InstanceId = Union[int, str]


class ProviderError(RuntimeError):
    """A cloud provider call failed."""


class ProviderUnavailable(ProviderError):
    """The provider answered but reported itself temporarily unavailable."""


@dataclass
class Instance:
    """A transcoding worker instance as reported by the provider.

    ``address`` is ``None`` until the provider has assigned a network address.
    """

    id: InstanceId
    address: str | None = None
    tags: list[str] = field(default_factory=list)
    networks: dict[str, Any] = field(default_factory=dict)


class ProviderBackend(ABC):
    """Interface for listing, creating and deleting worker instances.

    Every backend lists only the instances belonging to the transcoder fleet
    (for DigitalOcean, the droplets carrying the fleet tag).
    """

    @abstractmethod
    async def list_instances(self) -> list[Instance]:
        """Return the fleet roster.

        Raises ProviderUnavailable when the provider reports a transient
        outage, ProviderError on any other failure.
        """

    @abstractmethod
    async def create_instance(self) -> Instance:
        """Create one new worker instance and return its provider record."""

    @abstractmethod
    async def delete_instance(self, instance_id: InstanceId) -> None:
        """Destroy the instance with the given id."""

    async def aclose(self) -> None:
        """Release any client resources held by the backend."""
