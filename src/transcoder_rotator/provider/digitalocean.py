"""DigitalOcean droplet backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from omegaconf import MISSING

from transcoder_rotator.provider.backend import (
    Instance,
    InstanceId,
    ProviderBackend,
    ProviderError,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)


@dataclass
class DigitalOceanConfig:
    """Typed configuration for the DigitalOcean backend."""

    backend: str = "digitalocean"

    token: str = "${oc.env:DIGITALOCEAN_TOKEN}"
    api_base: str = "https://api.digitalocean.com/"
    timeout: float = 30.0
    page_size: int = 200

    tag: str = "liquidsoap"
    name: str = "transcoder"
    region: str = "nyc1"
    size: str = "s-1vcpu-1gb"
    image: str = MISSING
    ssh_keys: list[str] = field(default_factory=list)
    user_data: str = ""
    backups: bool = False
    ipv6: bool = False
    monitoring: bool = False


class DigitalOceanProvider(ProviderBackend):
    """Manage transcoder droplets through the DigitalOcean v2 API."""

    def __init__(self, config, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        if client is None:
            client = httpx.AsyncClient(
                base_url=config.api_base,
                headers={"Authorization": f"Bearer {config.token}"},
                timeout=httpx.Timeout(config.timeout),
            )
        self.client = client

    async def list_instances(self) -> list[Instance]:
        """List every tagged droplet, following ``links.pages.next`` across pages."""
        instances: list[Instance] = []
        url: str | None = "v2/droplets"
        params: dict[str, Any] | None = {
            "tag_name": self._config.tag,
            "per_page": self._config.page_size,
        }
        seen: set[str] = set()
        while url is not None:
            seen.add(url)
            response = await self._request("GET", url, params=params)
            payload = self._json(response)
            if payload.get("id") == "service_unavailable":
                raise ProviderUnavailable(
                    payload.get("message") or "service unavailable"
                )

            droplets = payload.get("droplets")
            if not isinstance(droplets, list):
                raise ProviderError("droplet listing is missing 'droplets'")
            instances.extend(
                self.parse_droplet(d) for d in droplets if isinstance(d, dict)
            )

            # The next link already carries the query string.
            url, params = self._next_page(payload), None
            if url in seen:
                raise ProviderError(f"droplet listing repeats page {url}")
        return instances

    @staticmethod
    def _next_page(payload: dict[str, Any]) -> str | None:
        links = payload.get("links")
        pages = links.get("pages") if isinstance(links, dict) else None
        next_url = pages.get("next") if isinstance(pages, dict) else None
        return next_url if isinstance(next_url, str) and next_url else None

    async def create_instance(self) -> Instance:
        cfg = self._config
        body = {
            "name": cfg.name,
            "region": cfg.region,
            "size": cfg.size,
            "image": cfg.image,
            "ssh_keys": list(cfg.ssh_keys),
            "backups": cfg.backups,
            "ipv6": cfg.ipv6,
            "monitoring": cfg.monitoring,
            "user_data": cfg.user_data or None,
            "tags": [cfg.tag],
        }
        response = await self._request("POST", "v2/droplets", json=body)
        droplet = self._json(response).get("droplet")
        if not isinstance(droplet, dict):
            raise ProviderError("create response is missing 'droplet'")
        return self.parse_droplet(droplet)

    async def delete_instance(self, instance_id: InstanceId) -> None:
        await self._request("DELETE", f"v2/droplets/{instance_id}")

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 503:
            raise ProviderUnavailable(f"{method} {url} returned 503")
        if response.status_code >= 400:
            raise ProviderError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("provider returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError("provider returned a non-object payload")
        return payload

    @staticmethod
    def parse_droplet(droplet: dict[str, Any]) -> Instance:
        """Convert a droplet record into an Instance.

        The public IPv4 address is preferred; otherwise the first v4 entry.
        """
        networks = droplet.get("networks") or {}
        v4 = [n for n in networks.get("v4") or [] if isinstance(n, dict)]
        public = [n for n in v4 if n.get("type") == "public"]
        chosen = (public or v4)[:1]
        address = chosen[0].get("ip_address") if chosen else None
        return Instance(
            id=droplet["id"],
            address=address or None,
            tags=list(droplet.get("tags") or []),
            networks=networks,
        )
