"""Deletion of idle healthy instances above the minimum fleet size."""

from __future__ import annotations

import logging

from transcoder_rotator.fleet.state import FleetState, HealthSample
from transcoder_rotator.fleet.timers import TimerService
from transcoder_rotator.provider.backend import InstanceId, ProviderBackend

logger = logging.getLogger(__name__)


class IdleReclaimer:
    def __init__(
        self,
        state: FleetState,
        provider: ProviderBackend,
        timers: TimerService,
        minimum_instances: int = 1,
        pinned_addresses: list[str] | None = None,
    ):
        self.state = state
        self.provider = provider
        self.timers = timers
        self.minimum_instances = minimum_instances
        self.pinned_addresses = set(pinned_addresses or [])
        # ids with a delete already issued, until the roster drops them
        self._deleting: set[InstanceId] = set()

    def idle_candidates(self) -> list[HealthSample]:
        """Healthy instances that may be deleted this cycle.

        Never returns so many that the classified fleet would drop below the
        minimum instance count.
        """
        healthy, unhealthy = self.state.healthy, self.state.unhealthy
        fleet_size = len(healthy) + len(unhealthy)
        if fleet_size <= self.minimum_instances or len(healthy) <= 1:
            return []

        current_id = self.state.current.instance_id if self.state.current else None
        idle = [
            sample
            for sample in healthy
            if sample.instance_id not in self.state.utilized
            and sample.instance_id != current_id
            and sample.address not in self.pinned_addresses
        ]
        return idle[: fleet_size - self.minimum_instances]

    def reclaim(self) -> list[InstanceId]:
        known = {instance.id for instance in self.state.instances}
        self._deleting &= known

        deleting = [
            sample.instance_id
            for sample in self.idle_candidates()
            if sample.instance_id not in self._deleting
        ]
        for instance_id in deleting:
            logger.info("[transcoder-rotator] Deleting idle instance %s", instance_id)
            self._deleting.add(instance_id)
            self.timers.spawn(self._delete(instance_id))
        return deleting

    async def _delete(self, instance_id: InstanceId) -> None:
        try:
            await self.provider.delete_instance(instance_id)
        except Exception as exc:
            self._deleting.discard(instance_id)
            logger.warning(
                "[transcoder-rotator] Failed to delete instance %s: %s", instance_id, exc
            )
