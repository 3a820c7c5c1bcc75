"""Outbound notifications fired when a live set starts."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcoder_rotator.tokens import TokenCodec

logger = logging.getLogger(__name__)


class NotificationClient:
    def __init__(
        self, client: httpx.AsyncClient, codec: TokenCodec, base_url: str | None
    ):
        self.client = client
        self.codec = codec
        self.base_url = base_url.rstrip("/") if base_url else None

    async def first_set(self, room_id: Any, dj: Any) -> bool:
        return await self._post("firstSet", {"room": room_id, "dj": dj})

    async def live_set(self, room: dict[str, Any]) -> bool:
        return await self._post("liveSet", {"room": room})

    async def _post(self, path: str, claims: dict[str, Any]) -> bool:
        if self.base_url is None:
            logger.debug("[transcoder-rotator] notifications disabled; skipping %s", path)
            return False
        try:
            response = await self.client.post(
                f"{self.base_url}/{path}", json=self.codec.wrap(claims)
            )
        except httpx.HTTPError as exc:
            logger.warning("[transcoder-rotator] %s notification failed: %s", path, exc)
            return False
        if response.status_code >= 400:
            logger.warning(
                "[transcoder-rotator] %s notification returned %s",
                path,
                response.status_code,
            )
            return False
        logger.info("[transcoder-rotator] %s notification sent", path)
        return True
