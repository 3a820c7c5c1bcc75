"""Concurrent health probing of every addressed instance."""

from __future__ import annotations

import asyncio
import logging
import numbers

from transcoder_rotator.agent import WorkerAgentClient
from transcoder_rotator.fleet.state import HealthSample
from transcoder_rotator.fleet.timers import TimerService
from transcoder_rotator.provider.backend import Instance

logger = logging.getLogger(__name__)


def _metric(payload: dict, key: str) -> float | None:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    return float(value)


class HealthProber:
    def __init__(self, agent: WorkerAgentClient, timers: TimerService):
        self.agent = agent
        self.timers = timers
        self.in_flight = False

    async def probe_instance(self, instance: Instance) -> HealthSample | None:
        """Probe one instance; failures and malformed replies yield None."""
        if not instance.address:
            return None
        try:
            payload = await self.agent.health(instance.address)
        except Exception as exc:
            logger.debug(
                "[transcoder-rotator] Instance %s health check failed: %s",
                instance.address,
                exc,
            )
            return None

        usage = _metric(payload, "usage")
        if usage is None:
            logger.debug(
                "[transcoder-rotator] Instance %s reported no usage metric: %r",
                instance.address,
                payload,
            )
            return None
        return HealthSample(
            instance_id=instance.id,
            address=instance.address,
            usage=usage,
            cpu=_metric(payload, "cpu"),
            timestamp=self.timers.now(),
        )

    async def probe(self, instances: list[Instance]) -> list[HealthSample]:
        """Probe all instances concurrently and return the answered samples in roster order."""
        self.in_flight = True
        try:
            results = await asyncio.gather(
                *(self.probe_instance(instance) for instance in instances)
            )
        finally:
            self.in_flight = False
        return [sample for sample in results if sample is not None]
