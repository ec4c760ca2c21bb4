"""District Resolver: mailing address to district identifiers."""

import logging
from typing import Protocol

import httpx

from ballot_guide_api.config import Settings
from ballot_guide_api.schemas.guide import Districts

logger = logging.getLogger(__name__)


class DistrictResolver(Protocol):
    async def resolve(self, address: str) -> Districts | None: ...


class HttpDistrictResolver:
    """Looks districts up at a configured HTTP endpoint.

    Any failure resolves to None so the caller shows every race.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self._url = settings.district_lookup_url
        self._client = client or httpx.AsyncClient(timeout=settings.district_lookup_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def resolve(self, address: str) -> Districts | None:
        if not self._url or not address.strip():
            return None
        try:
            response = await self._client.post(self._url, json={"address": address})
            response.raise_for_status()
            return Districts.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("District lookup failed, showing all races: %s", exc)
            return None


async def resolve_districts(
    resolver: DistrictResolver, districts: Districts | None, address: str | None
) -> Districts | None:
    """Explicit districts win; otherwise try the address lookup."""
    if districts is not None:
        return districts
    if not address:
        return None
    return await resolver.resolve(address)
