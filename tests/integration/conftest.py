from .common import fake_agents, rotator_url  # noqa: F401
