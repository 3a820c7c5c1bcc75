import os
import sys

import pytest
from omegaconf import OmegaConf

# Ensure <repo_root>/src is importable for tests (no editable install needed).
_REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_SRC = os.path.join(_REPO_ROOT, "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from transcoder_rotator.agent import WorkerAgentClient  # noqa: E402
from transcoder_rotator.config import RotatorConfig  # noqa: E402
from transcoder_rotator.fleet.control_loop import FleetController  # noqa: E402
from transcoder_rotator.tokens import TokenCodec  # noqa: E402
from tests.fakes import (  # noqa: E402
    SERVICE_KEY,
    FakeAgents,
    FakeProvider,
    ManualTimers,
)


@pytest.fixture
def codec():
    return TokenCodec(SERVICE_KEY)


@pytest.fixture
def agents(codec):
    return FakeAgents(codec)


@pytest.fixture
def agent_client(agents, codec):
    return WorkerAgentClient(agents.client(), codec)


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_config():
    def _make(**overrides):
        overrides.setdefault("service_key", SERVICE_KEY)
        return OmegaConf.structured(RotatorConfig(**overrides))

    return _make


@pytest.fixture
def controller_factory(make_config, provider, agent_client, timers):
    def _create(**overrides):
        return FleetController(
            make_config(**overrides), provider, agent_client, timers=timers
        )

    return _create
