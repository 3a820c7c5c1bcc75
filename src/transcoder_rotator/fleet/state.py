"""Fleet state owned by the control loop.

All collections here are mutated only from the event loop that runs the
control loop and the API handlers, and never across an ``await``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from transcoder_rotator.provider.backend import Instance, InstanceId


@dataclass
class HealthSample:
    """One answered health probe."""

    instance_id: InstanceId
    address: str
    usage: float
    timestamp: float
    cpu: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "droplet": self.instance_id,
            "ip": self.address,
            "usage": self.usage,
            "cpu": self.cpu,
            "timestamp": self.timestamp,
        }


class ProvisioningPhase(str, enum.Enum):
    NONE = "none"
    CREATING = "creating"
    AWAITING_HEALTH = "awaiting-health"
    SETTLED = "settled"


@dataclass
class ProvisioningState:
    phase: ProvisioningPhase = ProvisioningPhase.NONE
    instance_id: InstanceId | None = None
    deadline: float | None = None
    grace_until: float | None = None

    @property
    def in_flight(self) -> bool:
        return self.phase in (
            ProvisioningPhase.CREATING,
            ProvisioningPhase.AWAITING_HEALTH,
        )

    def suppressed(self, now: float) -> bool:
        """Whether a new provisioning attempt must not start at ``now``."""
        if self.in_flight:
            return True
        return self.grace_until is not None and now < self.grace_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "instance_id": self.instance_id,
            "deadline": self.deadline,
            "grace_until": self.grace_until,
        }


@dataclass
class Session:
    public: str
    private: str | None
    address: str
    cleanup_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "public": self.public,
            "private": self.private,
            "ip": self.address,
            "cleanup": self.cleanup_at,
        }


@dataclass
class FleetState:
    instances: list[Instance] = field(default_factory=list)
    healthy: list[HealthSample] = field(default_factory=list)
    unhealthy: list[HealthSample] = field(default_factory=list)
    # instance id -> sample that triggered the flush, in entry order
    flushing: dict[InstanceId, HealthSample] = field(default_factory=dict)
    utilized: set[InstanceId] = field(default_factory=set)
    current: HealthSample | None = None
    provisioning: ProvisioningState = field(default_factory=ProvisioningState)
    # public stream id -> session
    sessions: dict[str, Session] = field(default_factory=dict)

    # Set once the first tick has picked a current transcoder.
    bootstrapped: bool = False
    # False while a freshly created instance is awaiting its first health reply.
    initialized: bool = True

    def find_instance(self, instance_id: InstanceId) -> Instance | None:
        for instance in self.instances:
            if instance.id == instance_id:
                return instance
        return None

    def is_flushing(self, instance_id: InstanceId) -> bool:
        return instance_id in self.flushing

    def status(self) -> dict[str, Any]:
        return {
            "healthy": [s.to_dict() for s in self.healthy],
            "unhealthy": [s.to_dict() for s in self.unhealthy],
            "flushing": [s.to_dict() for s in self.flushing.values()],
            "currentTranscoder": self.current.to_dict() if self.current else None,
            "utilized": sorted(self.utilized, key=str),
            "sessions": [s.to_dict() for s in self.sessions.values()],
            "provisioning": self.provisioning.to_dict(),
        }
