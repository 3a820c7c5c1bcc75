"""The timer-driven fleet control loop."""

from __future__ import annotations

import asyncio
import logging

from transcoder_rotator.agent import WorkerAgentClient
from transcoder_rotator.fleet.prober import HealthProber
from transcoder_rotator.fleet.provisioning import ProvisioningManager
from transcoder_rotator.fleet.reclamation import IdleReclaimer
from transcoder_rotator.fleet.recovery import FlushController
from transcoder_rotator.fleet.roster import FleetRoster
from transcoder_rotator.fleet.selector import TranscoderSelector
from transcoder_rotator.fleet.sessions import SessionRegistry
from transcoder_rotator.fleet.state import FleetState
from transcoder_rotator.fleet.timers import TimerService
from transcoder_rotator.provider.backend import ProviderBackend

logger = logging.getLogger(__name__)


class FleetController:
    """Own the fleet state and sequence every component once per tick."""

    def __init__(
        self,
        config,
        provider: ProviderBackend,
        agent: WorkerAgentClient,
        timers: TimerService | None = None,
        state: FleetState | None = None,
    ):
        self.config = config
        self.provider = provider
        self.agent = agent
        self.timers = timers or TimerService()
        self.state = state or FleetState()

        minimum = config.minimum_instances
        self.roster = FleetRoster(provider, self.state)
        self.prober = HealthProber(agent, self.timers)
        self.provisioner = ProvisioningManager(
            self.state,
            provider,
            agent,
            self.timers,
            minimum_instances=minimum,
            poll_interval=config.provision_poll_interval,
            timeout=config.provision_timeout,
            grace=config.provision_grace,
        )
        self.flusher = FlushController(
            self.state,
            agent,
            self.timers,
            reset_window=config.reset_window,
            restart_padding=config.restart_padding,
        )
        self.selector = TranscoderSelector(
            self.state, self.provisioner, self.timers, minimum_instances=minimum
        )
        self.reclaimer = IdleReclaimer(
            self.state,
            provider,
            self.timers,
            minimum_instances=minimum,
            pinned_addresses=list(config.pinned_addresses),
        )
        self.sessions = SessionRegistry(
            self.state, agent, self.timers, reset_window=config.reset_window
        )

        self._tick_running = False
        self._loop_task: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()

    async def tick(self) -> bool:
        """Run one control cycle; returns False when the cycle body was skipped.

        A cycle that starts while the previous one is still running is dropped
        whole, roster refresh included.
        """
        if self._tick_running:
            logger.debug("[transcoder-rotator] Previous tick still running; skipping")
            return False

        self._tick_running = True
        try:
            return await self._run_cycle()
        finally:
            self._tick_running = False

    async def _run_cycle(self) -> bool:
        if not await self.roster.refresh():
            return False

        if self.prober.in_flight:
            logger.debug("[transcoder-rotator] Previous probe batch outstanding; skipping")
            return False
        if not self.state.initialized:
            logger.debug("[transcoder-rotator] Awaiting new instance; skipping")
            return False

        samples = await self.prober.probe(self.state.instances)
        self.roster.update_classification(samples, self.config.health_mem_threshold)

        self.selector.bootstrap(samples)
        self.flusher.flush(self.state.unhealthy)
        await self.selector.select()
        self.reclaimer.reclaim()
        await self.sessions.expire()

        logger.debug(
            "[transcoder-rotator] healthy=%s unhealthy=%s flushing=%s utilized=%s current=%s",
            [s.instance_id for s in self.state.healthy],
            [s.instance_id for s in self.state.unhealthy],
            list(self.state.flushing),
            sorted(self.state.utilized, key=str),
            self.state.current.instance_id if self.state.current else None,
        )
        return True

    async def _run_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "[transcoder-rotator] Unexpected error in control loop: %s",
                exc,
                exc_info=True,
            )

    async def _control_loop(self) -> None:
        interval = self.config.tick_interval
        while True:
            await asyncio.sleep(interval)
            # Detached; tick() drops the cycle while a previous one is still running.
            task = asyncio.create_task(self._run_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def start(self) -> None:
        logger.info(
            "[transcoder-rotator] Initializing transcoder rotator with %s minimum instances",
            self.config.minimum_instances,
        )
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._control_loop())

    async def stop(self) -> None:
        tasks = list(self._tick_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.timers.cancel_all()
