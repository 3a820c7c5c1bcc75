"""
Integration tests: runtime behavior (flush and restore, failover, outages).
"""

from __future__ import annotations

import httpx
import pytest

from .common import (
    _kill_proc,
    _start_agent,
    _start_rotator,
    _wait_for,
    _wait_healthy,
    FakeAgent,
)

pytestmark = pytest.mark.integration


def _status(url: str) -> dict:
    return httpx.get(f"{url}/status", timeout=3.0).json()


@pytest.fixture
def fresh_agents():
    agents, procs = [], []
    for i in range(2):
        proc, address = _start_agent(f"rt-agent-{i}")
        procs.append(proc)
        agents.append(FakeAgent(proc, address, f"rt-agent-{i}"))
    for a in agents:
        _wait_healthy(a.url)
    yield agents
    for p in procs:
        _kill_proc(p)


class TestFlushAndRestore:
    def test_overloaded_current_is_flushed_replaced_and_restored(
        self, fresh_agents, tmp_path
    ):
        config = tmp_path / "rotator.yaml"
        config.write_text("rotator:\n  reset_window: 1\n  restart_padding: 0.5\n")
        proc, url = _start_rotator(
            [a.address for a in fresh_agents], config_path=str(config)
        )
        try:
            _wait_healthy(url)
            current = _wait_for(lambda: httpx.get(f"{url}/current", timeout=2.0).json())
            loaded = next(a for a in fresh_agents if a.address == current["ip"])
            other = next(a for a in fresh_agents if a is not loaded)

            loaded.set_usage(60)

            _wait_for(
                lambda: _status(url)["currentTranscoder"]["ip"] == other.address
            )
            _wait_for(lambda: loaded.stats()["counts"]["start_liquidsoap"] >= 1)
            stats = loaded.stats()
            assert stats["counts"]["stop_liquidsoap"] == 1
            assert stats["last_ttr"] == 1000
            _wait_for(lambda: _status(url)["flushing"] == [])
        finally:
            _kill_proc(proc)


class TestAgentOutage:
    def test_dead_agent_is_left_out_of_classification(self, fresh_agents):
        proc, url = _start_rotator([a.address for a in fresh_agents])
        try:
            _wait_healthy(url)
            _wait_for(lambda: len(_status(url)["healthy"]) == 2)

            _kill_proc(fresh_agents[1].proc)
            _wait_for(lambda: len(_status(url)["healthy"]) == 1)
            status = _status(url)
            assert status["healthy"][0]["ip"] == fresh_agents[0].address
            assert status["unhealthy"] == []
        finally:
            _kill_proc(proc)
