import asyncio

from transcoder_rotator.fleet.state import ProvisioningPhase
from transcoder_rotator.provider.backend import Instance

RESET_WINDOW = 60.0


def test_rotation_scenario(agents, provider, controller_factory, timers):
    """An overloaded worker is flushed, replaced, restored and finally reclaimed."""
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 10
    controller = controller_factory(minimum_instances=1, reset_window=RESET_WINDOW)
    state = controller.state

    async def scenario():
        assert await controller.tick() is True
        assert state.current.instance_id == 1
        assert state.utilized == {1}

        agents.usage["10.0.0.1"] = 30
        assert await controller.tick() is True
        await timers.drain()
        assert list(state.flushing) == [1]
        [(host, claims)] = agents.commands("stop_liquidsoap")
        assert (host, claims["ttr"]) == ("10.0.0.1", 60000)
        assert len(provider.created) == 1
        assert state.provisioning.phase is ProvisioningPhase.AWAITING_HEALTH
        assert state.initialized is False

        # Awaiting the new instance: the cycle body is skipped.
        assert await controller.tick() is False

        new = provider.created[0]
        new.address = "10.0.0.2"
        agents.usage["10.0.0.2"] = 5
        await timers.advance(5)
        assert state.initialized is True
        assert state.provisioning.phase is ProvisioningPhase.SETTLED

        assert await controller.tick() is True
        assert state.current.instance_id == new.id
        assert state.utilized == {1, new.id}
        assert provider.deleted == []

        await timers.advance(RESET_WINDOW)
        [(host, _)] = agents.commands("start_liquidsoap")
        assert host == "10.0.0.1"
        assert state.flushing == {}
        assert state.utilized == {new.id}

        agents.usage["10.0.0.1"] = 10
        assert await controller.tick() is True
        await timers.drain()
        assert provider.deleted == [1]
        assert state.current.instance_id == new.id

    asyncio.run(scenario())


def test_probe_failure_excludes_instance_from_both_sets(agents, provider, controller_factory):
    provider.instances = [
        Instance(id=1, address="10.0.0.1"),
        Instance(id=2, address="10.0.0.2"),
    ]
    agents.usage["10.0.0.1"] = 10
    agents.down.add("10.0.0.2")
    controller = controller_factory()

    asyncio.run(controller.tick())
    assert [s.instance_id for s in controller.state.healthy] == [1]
    assert controller.state.unhealthy == []


def test_provider_failure_skips_cycle(agents, provider, controller_factory):
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 10
    provider.broken = True
    controller = controller_factory()

    assert asyncio.run(controller.tick()) is False
    assert controller.state.current is None


def test_provider_unavailable_uses_previous_roster(agents, provider, controller_factory):
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 10
    controller = controller_factory()
    asyncio.run(controller.tick())

    provider.unavailable = True
    agents.usage["10.0.0.1"] = 12
    assert asyncio.run(controller.tick()) is True
    assert controller.state.healthy[0].usage == 12


def test_tick_skipped_while_probe_outstanding(agents, provider, controller_factory):
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 10
    controller = controller_factory()
    controller.prober.in_flight = True

    assert asyncio.run(controller.tick()) is False
    assert controller.state.healthy == []


def test_expired_sessions_are_cleaned_each_tick(agents, provider, controller_factory, timers):
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 10
    controller = controller_factory(reset_window=RESET_WINDOW)

    async def scenario():
        await controller.tick()
        await controller.sessions.start("pub", None)
        timers.clock += RESET_WINDOW + 1
        await controller.tick()

    asyncio.run(scenario())
    assert controller.state.sessions == {}
    [(host, claims)] = agents.commands("stop")
    assert claims["stream"] == {"public": "pub"}


def test_start_and_stop(controller_factory):
    controller = controller_factory(tick_interval=3600)

    async def scenario():
        await controller.start()
        assert controller._loop_task is not None
        await controller.stop()
        assert controller._loop_task is None

    asyncio.run(scenario())


def test_tick_started_while_previous_tick_runs_is_dropped(
    agents, provider, controller_factory
):
    """A tick parked in provisioning keeps later ticks from running."""
    provider.instances = [Instance(id=1, address="10.0.0.1")]
    agents.usage["10.0.0.1"] = 30
    controller = controller_factory()
    release = entered = None
    create_instance = provider.create_instance

    async def slow_create_instance():
        entered.set()
        await release.wait()
        return await create_instance()

    provider.create_instance = slow_create_instance

    async def scenario():
        nonlocal release, entered
        release, entered = asyncio.Event(), asyncio.Event()
        first = asyncio.create_task(controller.tick())
        await asyncio.wait_for(entered.wait(), timeout=5)
        assert not first.done()

        listed = list(provider.instances)
        provider.instances = []
        assert await controller.tick() is False
        assert [i.id for i in controller.state.instances] == [1]
        provider.instances = listed

        release.set()
        assert await first is True
        assert await controller.tick() is False  # awaiting the new instance

    asyncio.run(scenario())
    assert len(provider.created) == 1
