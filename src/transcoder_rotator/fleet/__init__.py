"""Fleet rotation: roster, health, flushing, selection, provisioning and sessions."""

from transcoder_rotator.fleet.control_loop import FleetController
from transcoder_rotator.fleet.sessions import NoTranscoderError, SessionRegistry
from transcoder_rotator.fleet.state import (
    FleetState,
    HealthSample,
    ProvisioningPhase,
    ProvisioningState,
    Session,
)
from transcoder_rotator.fleet.timers import TimerService

__all__ = [
    "FleetController",
    "FleetState",
    "HealthSample",
    "NoTranscoderError",
    "ProvisioningPhase",
    "ProvisioningState",
    "Session",
    "SessionRegistry",
    "TimerService",
]
