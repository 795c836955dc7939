"""Geocoding provider that goes through this service's own proxy API.

Used by consumers that should not talk to the upstream geocoder directly.
"""
import logging

import httpx
from pydantic import ValidationError

from app.schemas import AddressSearchResponse, Candidate
from app.services.geocoding import GeocodingError, GeocodingTimeout

logger = logging.getLogger(__name__)


class ProxyGeocodingProvider:
    search_is_complete = True

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def _get(self, path: str, params: dict | None = None) -> httpx.Response:
        try:
            response = await self.client.get(f"{self.base_url}{path}", params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"Proxy request {path} timed out: {e}")
            raise GeocodingTimeout(f"Proxy {path} timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"Proxy request {path} failed: {e}")
            raise GeocodingError(f"Proxy {path} request failed") from e
        return response

    async def search(self, query: str, locale_filter: str, limit: int) -> list[Candidate]:
        params = {"q": query, "limit": limit}
        if locale_filter:
            params["countrycodes"] = locale_filter

        response = await self._get("/api/address/search", params)
        if response.status_code == 504:
            raise GeocodingTimeout("Proxy reported an upstream timeout")
        try:
            response.raise_for_status()
            return AddressSearchResponse.model_validate(response.json()).results
        except httpx.HTTPStatusError as e:
            raise GeocodingError(f"Proxy search returned {response.status_code}") from e
        except (ValueError, ValidationError) as e:
            logger.error(f"Proxy search returned an invalid payload: {e}")
            raise GeocodingError("Proxy search returned an invalid payload") from e

    async def details(self, provider_id: str) -> Candidate | None:
        response = await self._get(f"/api/address/details/{provider_id}")
        if response.status_code == 404:
            return None
        if response.status_code == 504:
            raise GeocodingTimeout("Proxy reported an upstream timeout")
        try:
            response.raise_for_status()
            return Candidate.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            raise GeocodingError(f"Proxy details returned {response.status_code}") from e
        except (ValueError, ValidationError) as e:
            logger.error(f"Proxy details returned an invalid payload: {e}")
            raise GeocodingError("Proxy details returned an invalid payload") from e
