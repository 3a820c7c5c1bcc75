import json
import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transcoder_rotator.agent import InstanceCommandError, WorkerAgentClient
from transcoder_rotator.fleet.control_loop import FleetController
from transcoder_rotator.fleet.sessions import NoTranscoderError
from transcoder_rotator.fleet.timers import TimerService
from transcoder_rotator.notifications import NotificationClient
from transcoder_rotator.provider.backend import ProviderBackend
from transcoder_rotator.tokens import AuthorizationError, TokenCodec

logger = logging.getLogger(__name__)


class ClaimsError(ValueError):
    """A verified token does not carry the fields an endpoint needs."""


class TranscoderRotator:

    def __init__(
        self,
        config,
        provider: ProviderBackend,
        timers: TimerService | None = None,
        client: httpx.AsyncClient | None = None,
        verbose: bool = False,
    ):
        """Build the HTTP surface and the fleet controller it exposes."""
        self.config = config
        self.provider = provider
        self.verbose = verbose

        self.app = FastAPI(lifespan=self._lifespan)
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

        if client is None:
            client = httpx.AsyncClient(timeout=httpx.Timeout(config.agent_timeout))
        self.client = client

        self.codec = TokenCodec(config.service_key)
        self.agent = WorkerAgentClient(
            self.client,
            self.codec,
            port=config.agent_port,
            probe_timeout=config.probe_timeout,
        )
        self.notifications = NotificationClient(
            self.client, self.codec, config.notifications_url
        )
        self.controller = FleetController(
            config, provider, self.agent, timers=timers
        )

        self._setup_routes()

    @property
    def state(self):
        return self.controller.state

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.controller.start()
        try:
            yield
        finally:
            await self._shutdown()

    def _setup_routes(self) -> None:
        self.app.get("/current")(self.current)
        self.app.get("/status")(self.status)
        self.app.get("/health")(self.health)
        self.app.post("/start")(self.start)
        self.app.post("/startTest")(self.start_test)
        self.app.post("/stop")(self.stop)

    async def _shutdown(self) -> None:
        await self.controller.stop()
        await self.client.aclose()
        await self.provider.aclose()

    def _auth_error(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.config.auth_error_status, content="Authorization error"
        )

    async def _verified_claims(self, request: Request) -> dict[str, Any]:
        body = await request.body()
        try:
            payload = json.loads(body) if body else {}
        except json.JSONDecodeError as exc:
            raise AuthorizationError("Invalid JSON body") from exc
        return self.codec.unwrap(payload)

    @staticmethod
    def _require_mapping(claims: dict[str, Any], key: str) -> dict[str, Any]:
        value = claims.get(key)
        if not isinstance(value, dict):
            raise ClaimsError(f"'{key}' must be an object")
        return value

    @staticmethod
    def _require_str(mapping: dict[str, Any], key: str, label: str) -> str:
        value = mapping.get(key)
        if not isinstance(value, str) or not value:
            raise ClaimsError(f"'{label}' is required")
        return value

    async def _start_session(self, public: str, private: str | None):
        try:
            created, message = await self.controller.sessions.start(public, private)
        except NoTranscoderError as exc:
            return None, JSONResponse(status_code=503, content={"error": str(exc)})
        except InstanceCommandError as exc:
            return None, JSONResponse(status_code=409, content={"error": str(exc)})
        if self.verbose:
            print(f"[transcoder-rotator] {message}")
        return created, JSONResponse(content={"success": message})

    async def current(self, request: Request):
        """Return the current transcoder, or null."""
        current = self.state.current
        return JSONResponse(content=current.to_dict() if current else None)

    async def status(self, request: Request):
        """Return the classified fleet, flushing set and current transcoder."""
        return JSONResponse(content=self.state.status())

    async def health(self, request: Request):
        return JSONResponse(
            content={
                "status": "ok",
                "initialized": self.state.initialized,
                "instances": len(self.state.instances),
            }
        )

    async def start(self, request: Request):
        """Start transcoding a live room on the current transcoder."""
        try:
            claims = await self._verified_claims(request)
        except AuthorizationError:
            return self._auth_error()
        try:
            room = self._require_mapping(claims, "room")
            public = self._require_str(room, "url", "room.url")
        except ClaimsError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        created, response = await self._start_session(public, room.get("private"))
        if created and claims.get("env") != "development":
            timers = self.controller.timers
            timers.spawn(self.notifications.first_set(room.get("_id"), room.get("dj")))
            timers.spawn(self.notifications.live_set(room))
        return response

    async def start_test(self, request: Request):
        """Start transcoding a test stream; no notifications are sent."""
        try:
            claims = await self._verified_claims(request)
        except AuthorizationError:
            return self._auth_error()
        try:
            stream = self._require_mapping(claims, "stream")
            public = self._require_str(stream, "public", "stream.public")
        except ClaimsError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        _, response = await self._start_session(public, stream.get("private"))
        return response

    async def stop(self, request: Request):
        """Stop the session for a stream; unknown streams succeed."""
        try:
            claims = await self._verified_claims(request)
        except AuthorizationError:
            return self._auth_error()
        try:
            stream = self._require_mapping(claims, "stream")
            self._require_str(stream, "public", "stream.public")
        except ClaimsError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        try:
            message = await self.controller.sessions.stop(stream)
        except InstanceCommandError as exc:
            return JSONResponse(status_code=409, content={"error": str(exc)})
        if self.verbose:
            print(f"[transcoder-rotator] {message}")
        return JSONResponse(content={"success": message})
