"""Fleet roster refresh and health classification."""

from __future__ import annotations

import logging

from transcoder_rotator.fleet.state import FleetState, HealthSample
from transcoder_rotator.provider.backend import ProviderBackend, ProviderUnavailable

logger = logging.getLogger(__name__)


def classify(
    samples: list[HealthSample], mem_threshold: float
) -> tuple[list[HealthSample], list[HealthSample]]:
    """Split samples into (healthy, unhealthy) by the memory threshold.

    A sample strictly below the threshold is healthy; at or above it is
    unhealthy. Order within each list follows ``samples``.
    """
    healthy: list[HealthSample] = []
    unhealthy: list[HealthSample] = []
    for sample in samples:
        if sample.usage < mem_threshold:
            healthy.append(sample)
        else:
            unhealthy.append(sample)
    return healthy, unhealthy


class FleetRoster:
    def __init__(self, provider: ProviderBackend, state: FleetState):
        self.provider = provider
        self.state = state

    async def refresh(self) -> bool:
        """Replace the roster with the provider's listing.

        Returns False when the cycle should not continue. A provider
        outage keeps the previous roster and still returns True.
        """
        try:
            instances = await self.provider.list_instances()
        except ProviderUnavailable as exc:
            logger.warning(
                "[transcoder-rotator] Provider unavailable, keeping previous roster: %s",
                exc,
            )
            return True
        except Exception as exc:
            logger.error("[transcoder-rotator] Roster refresh failed: %s", exc)
            return False

        self.state.instances = instances
        known = {instance.id for instance in instances}
        for instance_id in [i for i in self.state.flushing if i not in known]:
            logger.info(
                "[transcoder-rotator] Instance %s left the roster while flushing",
                instance_id,
            )
            del self.state.flushing[instance_id]
        return True

    def update_classification(
        self, samples: list[HealthSample], mem_threshold: float
    ) -> None:
        self.state.healthy, self.state.unhealthy = classify(samples, mem_threshold)
