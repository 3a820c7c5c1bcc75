"""
Shared helpers/fixtures for CPU-only integration tests.

These tests spawn a real rotator and fake worker agent processes and validate
behavior through real HTTP requests over TCP sockets.
"""

from __future__ import annotations

import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

import httpx
import pytest

from transcoder_rotator.tokens import TokenCodec

REPO_ROOT = Path(__file__).resolve().parents[2]
FAKE_AGENT_SCRIPT = Path(__file__).resolve().parent / "fake_agent.py"
PYTHON = sys.executable
SERVICE_KEY = "integration-service-key"

codec = TokenCodec(SERVICE_KEY)


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _wait_healthy(url: str, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            r = httpx.get(f"{url}/health", timeout=2.0)
            if r.status_code == 200:
                return
        except httpx.HTTPError:
            pass
        time.sleep(0.2)
    raise TimeoutError(f"Service at {url} not healthy within {timeout}s")


def _wait_for(predicate, timeout: float = 10.0, interval: float = 0.2):
    """Poll ``predicate`` until it returns a truthy value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            value = predicate()
        except httpx.HTTPError:
            value = None
        if value:
            return value
        time.sleep(interval)
    raise TimeoutError(f"Condition not met within {timeout}s")


def _kill_proc(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        pass
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        proc.wait(timeout=3)


def _env() -> dict[str, str]:
    env = os.environ.copy()
    src = str(REPO_ROOT / "src")
    old = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{src}:{old}" if old else src
    env["ROTATOR_SERVICE_KEY"] = SERVICE_KEY
    return env


def _start_agent(agent_id: str, **kw) -> tuple[subprocess.Popen, str]:
    port = _find_free_port()
    cmd = [
        PYTHON,
        str(FAKE_AGENT_SCRIPT),
        "--port",
        str(port),
        "--service-key",
        SERVICE_KEY,
        "--agent-id",
        agent_id,
    ]
    for k, v in kw.items():
        cmd += [f"--{k.replace('_', '-')}", str(v)]
    proc = subprocess.Popen(
        cmd,
        env=_env(),
        start_new_session=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    return proc, f"127.0.0.1:{port}"


def _start_rotator(
    agent_addresses: list[str], config_path: str | None = None, **kw
) -> tuple[subprocess.Popen, str]:
    port = _find_free_port()
    cmd = [
        PYTHON,
        "-m",
        "transcoder_rotator",
        "--host",
        "127.0.0.1",
        "--port",
        str(port),
        "--tick-interval",
        "0.3",
        "--log-level",
        "warning",
        "--static-instances",
        *agent_addresses,
    ]
    if config_path is not None:
        cmd += ["--config", config_path]
    for k, v in kw.items():
        cmd += [f"--{k.replace('_', '-')}", str(v)]
    proc = subprocess.Popen(
        cmd,
        env=_env(),
        start_new_session=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    return proc, f"http://127.0.0.1:{port}"


class FakeAgent:
    def __init__(self, proc, address, agent_id):
        self.proc, self.address, self.agent_id = proc, address, agent_id

    @property
    def url(self) -> str:
        return f"http://{self.address}"

    def stats(self) -> dict:
        return httpx.get(f"{self.url}/stats", timeout=3.0).json()

    def set_usage(self, usage: float) -> None:
        httpx.put(f"{self.url}/usage", json={"usage": usage}, timeout=3.0)


def signed(claims: dict) -> dict:
    return codec.wrap(claims)


@pytest.fixture(scope="module")
def fake_agents():
    agents, procs = [], []
    for i in range(2):
        proc, address = _start_agent(f"agent-{i}")
        procs.append(proc)
        agents.append(FakeAgent(proc, address, f"agent-{i}"))
    for a in agents:
        _wait_healthy(a.url)
    yield agents
    for p in procs:
        _kill_proc(p)


@pytest.fixture(scope="module")
def rotator_url(fake_agents):
    proc, url = _start_rotator([a.address for a in fake_agents])
    try:
        _wait_healthy(url)
        _wait_for(lambda: httpx.get(f"{url}/current", timeout=2.0).json())
    except TimeoutError:
        _kill_proc(proc)
        raise
    yield url
    _kill_proc(proc)
