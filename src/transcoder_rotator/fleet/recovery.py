"""Flush and restart of workers that crossed the health threshold."""

from __future__ import annotations

import logging

from transcoder_rotator.agent import WorkerAgentClient
from transcoder_rotator.fleet.state import FleetState, HealthSample
from transcoder_rotator.fleet.timers import TimerService

logger = logging.getLogger(__name__)


class FlushController:
    """Drive each unhealthy worker through stop, cooldown and restart.

    A worker enters the flushing set once; its stop command runs in the
    background and, when acknowledged, a restart is scheduled after the
    reset window plus padding. The restart always releases the worker from
    the flushing and utilized sets, whatever the agent answers.
    """

    def __init__(
        self,
        state: FleetState,
        agent: WorkerAgentClient,
        timers: TimerService,
        reset_window: float,
        restart_padding: float = 5.0,
    ):
        self.state = state
        self.agent = agent
        self.timers = timers
        self.reset_window = reset_window
        self.restart_padding = restart_padding

    def flush(self, unhealthy: list[HealthSample]) -> list[HealthSample]:
        """Start flushing every sample not already flushing; returns the new entries."""
        started = []
        for sample in unhealthy:
            if self.state.is_flushing(sample.instance_id):
                continue
            self.state.flushing[sample.instance_id] = sample
            self.timers.spawn(self._stop(sample))
            started.append(sample)
        return started

    async def _stop(self, sample: HealthSample) -> None:
        try:
            await self.agent.stop_liquidsoap(sample.address, self.reset_window)
        except Exception as exc:
            logger.error(
                "[transcoder-rotator] Failed to flush instance %s: %s",
                sample.instance_id,
                exc,
            )
            return

        logger.info("[transcoder-rotator] Flushing instance %s", sample.instance_id)
        self.timers.call_later(
            self.reset_window + self.restart_padding, lambda: self._restart(sample)
        )

    async def _restart(self, sample: HealthSample) -> None:
        try:
            await self.agent.start_liquidsoap(sample.address)
        except Exception as exc:
            logger.error(
                "[transcoder-rotator] Restart of instance %s failed: %s",
                sample.instance_id,
                exc,
            )
        finally:
            self.state.flushing.pop(sample.instance_id, None)
            self.state.utilized.discard(sample.instance_id)
        logger.info("[transcoder-rotator] Instance %s restored", sample.instance_id)
