"""HTTP client for the control agent running on every transcoder worker."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcoder_rotator.tokens import TokenCodec

logger = logging.getLogger(__name__)


class InstanceCommandError(RuntimeError):
    """A worker agent did not acknowledge a command."""

    def __init__(self, address: str, message: str):
        super().__init__(message)
        self.address = address


class WorkerAgentClient:
    """Send health probes and signed commands to worker agents.

    Addresses are bare hosts (the default agent port is appended) or
    ``host:port`` pairs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        codec: TokenCodec,
        port: int = 8080,
        probe_timeout: float = 5.0,
    ):
        self.client = client
        self.codec = codec
        self.port = port
        self.probe_timeout = probe_timeout

    def base_url(self, address: str) -> str:
        if ":" in address:
            return f"http://{address}"
        return f"http://{address}:{self.port}"

    async def health(self, address: str) -> dict[str, Any]:
        """Fetch ``/health``; raises httpx errors or ValueError on a bad reply."""
        response = await self.client.get(
            f"{self.base_url(address)}/health", timeout=self.probe_timeout
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("health payload must be a JSON object")
        return payload

    async def send_command(
        self, address: str, path: str, claims: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """POST a signed command and return the agent's JSON reply.

        Any transport failure, non-2xx status or empty reply raises
        InstanceCommandError.
        """
        url = f"{self.base_url(address)}/{path}"
        try:
            response = await self.client.post(url, json=self.codec.wrap(claims))
        except httpx.HTTPError as exc:
            raise InstanceCommandError(
                address, f"{path} on {address} failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise InstanceCommandError(
                address, f"{path} on {address} returned {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise InstanceCommandError(
                address, f"{path} on {address} returned invalid JSON"
            ) from exc
        if not payload:
            raise InstanceCommandError(address, f"{path} on {address} returned no body")
        return payload if isinstance(payload, dict) else {"result": payload}

    async def stop_liquidsoap(self, address: str, reset_window: float) -> None:
        payload = await self.send_command(
            address, "stop_liquidsoap", {"ttr": int(reset_window * 1000)}
        )
        if not payload.get("success"):
            raise InstanceCommandError(
                address, f"stop_liquidsoap on {address} was not acknowledged"
            )

    async def start_liquidsoap(self, address: str) -> dict[str, Any]:
        return await self.send_command(address, "start_liquidsoap", {})

    async def start_stream(
        self, address: str, public: str, private: str | None
    ) -> dict[str, Any]:
        return await self.send_command(
            address, "start", {"stream": {"public": public, "private": private}}
        )

    async def stop_stream(self, address: str, stream: dict[str, Any]) -> dict[str, Any]:
        return await self.send_command(address, "stop", {"stream": stream})
