"""Selection of the current transcoder."""

from __future__ import annotations

import logging

from transcoder_rotator.fleet.provisioning import ProvisioningManager
from transcoder_rotator.fleet.state import FleetState, HealthSample
from transcoder_rotator.fleet.timers import TimerService

logger = logging.getLogger(__name__)


class TranscoderSelector:
    def __init__(
        self,
        state: FleetState,
        provisioner: ProvisioningManager,
        timers: TimerService,
        minimum_instances: int = 1,
    ):
        self.state = state
        self.provisioner = provisioner
        self.timers = timers
        self.minimum_instances = minimum_instances

    def bootstrap(self, samples: list[HealthSample]) -> None:
        """Adopt the first probed sample when there is no current transcoder.

        Classification is not consulted here.
        """
        if self.state.bootstrapped and self.state.current is not None:
            return
        self.state.bootstrapped = True
        if not samples:
            return
        self._make_current(samples[0])

    def pick_candidate(self, healthy: list[HealthSample]) -> HealthSample | None:
        """Return the last healthy sample, in roster order, that is not flushing."""
        candidate = None
        for sample in healthy:
            if not self.state.is_flushing(sample.instance_id):
                candidate = sample
        return candidate

    def needs_selection(self) -> bool:
        current = self.state.current
        if current is None:
            return True
        if len(self.state.instances) < self.minimum_instances:
            return True
        return any(s.instance_id == current.instance_id for s in self.state.unhealthy)

    async def select(self) -> HealthSample | None:
        """Replace the current transcoder when it is unhealthy or the fleet is short.

        Falls back to provisioning when no candidate exists.
        """
        if not self.needs_selection():
            return self.state.current

        candidate = self.pick_candidate(self.state.healthy)
        if candidate is not None:
            self._make_current(candidate)
            return candidate

        if self.state.provisioning.suppressed(self.timers.now()):
            logger.debug(
                "[transcoder-rotator] No eligible transcoder; provisioning already pending"
            )
        else:
            logger.warning(
                "[transcoder-rotator] No eligible transcoder; provisioning a new instance"
            )
            await self.provisioner.request_provision()
        return self.state.current

    def _make_current(self, sample: HealthSample) -> None:
        previous = self.state.current
        self.state.current = sample
        self.state.utilized.add(sample.instance_id)
        if previous is None or previous.instance_id != sample.instance_id:
            logger.info(
                "[transcoder-rotator] Current transcoder is now %s (%s)",
                sample.instance_id,
                sample.address,
            )
