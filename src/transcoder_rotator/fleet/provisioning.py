"""Creation of replacement instances and the wait for their first health reply."""

from __future__ import annotations

import logging

from transcoder_rotator.agent import WorkerAgentClient
from transcoder_rotator.fleet.state import FleetState, ProvisioningPhase
from transcoder_rotator.fleet.timers import TimerService
from transcoder_rotator.provider.backend import InstanceId, ProviderBackend

logger = logging.getLogger(__name__)


class ProvisioningManager:
    """Run at most one provisioning attempt at a time.

    ``none -> creating -> awaiting-health -> settled``. A creation failure
    goes back to ``none``. A successful health reply opens a grace period
    during which new requests are ignored.
    """

    def __init__(
        self,
        state: FleetState,
        provider: ProviderBackend,
        agent: WorkerAgentClient,
        timers: TimerService,
        minimum_instances: int = 1,
        poll_interval: float = 5.0,
        timeout: float = 300.0,
        grace: float = 300.0,
    ):
        self.state = state
        self.provider = provider
        self.agent = agent
        self.timers = timers
        self.minimum_instances = minimum_instances
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.grace = grace
        self._watch = None

    async def request_provision(self) -> bool:
        """Create a new instance unless an attempt is in flight or in grace.

        Returns True when a new instance was created.
        """
        provisioning = self.state.provisioning
        if provisioning.suppressed(self.timers.now()):
            logger.debug(
                "[transcoder-rotator] Provisioning suppressed (phase=%s)",
                provisioning.phase.value,
            )
            return False

        logger.info("[transcoder-rotator] Creating instance")
        provisioning.phase = ProvisioningPhase.CREATING
        provisioning.instance_id = None
        provisioning.deadline = None
        provisioning.grace_until = None
        try:
            instance = await self.provider.create_instance()
        except Exception as exc:
            logger.error("[transcoder-rotator] Error creating instance: %s", exc)
            provisioning.phase = ProvisioningPhase.NONE
            return False

        logger.info("[transcoder-rotator] Created instance %s", instance.id)
        self._await_health(instance.id)
        return True

    def _await_health(self, instance_id: InstanceId) -> None:
        provisioning = self.state.provisioning
        provisioning.phase = ProvisioningPhase.AWAITING_HEALTH
        provisioning.instance_id = instance_id
        provisioning.deadline = self.timers.now() + self.timeout
        self.state.initialized = False

        self._schedule_check(instance_id)
        self.timers.call_later(self.timeout, lambda: self._on_timeout(instance_id))

    def _schedule_check(self, instance_id: InstanceId) -> None:
        self._watch = self.timers.call_later(
            self.poll_interval, lambda: self._check_new_instance(instance_id)
        )

    def _awaiting(self, instance_id: InstanceId) -> bool:
        provisioning = self.state.provisioning
        return (
            provisioning.phase is ProvisioningPhase.AWAITING_HEALTH
            and provisioning.instance_id == instance_id
        )

    async def _check_new_instance(self, instance_id: InstanceId) -> None:
        if not self._awaiting(instance_id):
            return

        instance = self.state.find_instance(instance_id)
        healthy = False
        if instance is not None and instance.address:
            try:
                await self.agent.health(instance.address)
                healthy = True
            except Exception as exc:
                logger.debug(
                    "[transcoder-rotator] New instance %s not ready: %s",
                    instance.address,
                    exc,
                )

        if not self._awaiting(instance_id):
            return
        if not healthy:
            self._schedule_check(instance_id)
            return

        provisioning = self.state.provisioning
        provisioning.phase = ProvisioningPhase.SETTLED
        provisioning.deadline = None
        provisioning.grace_until = self.timers.now() + self.grace
        self.state.initialized = True
        self._watch = None
        logger.info(
            "[transcoder-rotator] New instance %s at %s is healthy",
            instance_id,
            instance.address,
        )

    async def _on_timeout(self, instance_id: InstanceId) -> None:
        if not self._awaiting(instance_id):
            return

        if self._watch is not None:
            self._watch.cancel()
            self._watch = None

        if len(self.state.instances) > self.minimum_instances:
            try:
                await self.provider.delete_instance(instance_id)
                logger.warning(
                    "[transcoder-rotator] Destroyed dead instance %s", instance_id
                )
            except Exception as exc:
                logger.error(
                    "[transcoder-rotator] Failed to destroy dead instance %s: %s",
                    instance_id,
                    exc,
                )
        else:
            # Left running: deleting it would take the fleet below minimum.
            logger.warning(
                "[transcoder-rotator] Instance %s never became healthy; "
                "keeping it to preserve the minimum fleet size",
                instance_id,
            )

        provisioning = self.state.provisioning
        provisioning.phase = ProvisioningPhase.SETTLED
        provisioning.deadline = None
        self.state.initialized = True
