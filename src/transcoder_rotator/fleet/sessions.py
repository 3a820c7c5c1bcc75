"""Live transcoding sessions and their rolling expiry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from transcoder_rotator.agent import InstanceCommandError, WorkerAgentClient
from transcoder_rotator.fleet.state import FleetState, Session
from transcoder_rotator.fleet.timers import TimerService

logger = logging.getLogger(__name__)


class NoTranscoderError(RuntimeError):
    """No current transcoder is available to take a new session."""


class SessionRegistry:
    """Start, refresh, stop and expire sessions keyed by public stream id.

    ``start`` and ``stop`` are serialized so two callers cannot start the same
    stream twice.
    """

    def __init__(
        self,
        state: FleetState,
        agent: WorkerAgentClient,
        timers: TimerService,
        reset_window: float,
    ):
        self.state = state
        self.agent = agent
        self.timers = timers
        self.reset_window = reset_window
        self._lock = asyncio.Lock()

    def get(self, public: str) -> Session | None:
        return self.state.sessions.get(public)

    async def start(self, public: str, private: str | None) -> tuple[bool, str]:
        """Start a session on the current transcoder, or refresh an existing one.

        Returns ``(created, message)``. Raises NoTranscoderError or
        InstanceCommandError.
        """
        async with self._lock:
            existing = self.state.sessions.get(public)
            if existing is not None:
                existing.cleanup_at = self.timers.now() + self.reset_window
                return False, f"TRANSCODER {public} EXISTS, CLEANUP REFRESHED"

            current = self.state.current
            if current is None:
                raise NoTranscoderError("NO TRANSCODER AVAILABLE")
            address = current.address

            try:
                await self.agent.start_stream(address, public, private)
            except InstanceCommandError as exc:
                logger.error("[transcoder-rotator] %s", exc)
                raise InstanceCommandError(
                    address, f"ISSUE STARTING TRANSCODER ON {address}"
                ) from exc

            self.state.sessions[public] = Session(
                public=public,
                private=private,
                address=address,
                cleanup_at=self.timers.now() + self.reset_window,
            )
            logger.info("[transcoder-rotator] Transcoder started for %s", public)
            return True, f"TRANSCODER STARTED FOR {public}"

    async def stop(self, stream: dict[str, Any]) -> str:
        """Stop the session for ``stream["public"]``; a missing session is not an error."""
        public = stream.get("public")
        async with self._lock:
            session = self.state.sessions.get(public)
            if session is None:
                return f"TRANSCODER {public} NOT FOUND"

            try:
                await self.agent.stop_stream(session.address, stream)
            except InstanceCommandError as exc:
                logger.error("[transcoder-rotator] %s", exc)
                raise InstanceCommandError(
                    session.address, f"ISSUE STOPPING TRANSCODER ON {session.address}"
                ) from exc

            self.state.sessions.pop(public, None)
            logger.info("[transcoder-rotator] Transcoder stopped for %s", public)
            return f"TRANSCODER STOPPED FOR {public}"

    def expired(self, now: float) -> list[Session]:
        return [s for s in self.state.sessions.values() if now > s.cleanup_at]

    async def expire(self) -> list[Session]:
        """Remove every session past its deadline and stop it on its instance.

        Sessions are claimed under the registry lock, so a session being
        stopped by a caller is never stopped a second time here.
        """
        async with self._lock:
            expired = self.expired(self.timers.now())
            for session in expired:
                logger.info(
                    "[transcoder-rotator] Removing dead transcoder %s %s",
                    session.address,
                    session.public,
                )
                self.state.sessions.pop(session.public, None)

        results = await asyncio.gather(
            *(
                self.agent.stop_stream(session.address, {"public": session.public})
                for session in expired
            ),
            return_exceptions=True,
        )
        for session, result in zip(expired, results):
            if isinstance(result, Exception):
                logger.warning(
                    "[transcoder-rotator] Stop of expired session %s failed: %s",
                    session.public,
                    result,
                )
        return expired
