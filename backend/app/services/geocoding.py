import logging
from typing import Protocol

import httpx

from app import config
from app.schemas import Candidate

logger = logging.getLogger(__name__)

STREET_KEYS = ("road", "pedestrian", "residential", "path", "street")
CITY_KEYS = ("city", "town", "village", "municipality", "hamlet")

# Canned suggestions for offline development when MOCK_GEOCODING is enabled
MOCK_CANDIDATES = [
    Candidate(
        house_number="123",
        street1="Main Street",
        city="Springfield",
        state="Illinois",
        country="US",
        postal_code="62701",
        display_label="123 Main Street, Springfield, Illinois 62701, United States",
        provider_id="N1001",
    ),
    Candidate(
        house_number="123",
        street1="Main Street",
        city="Columbus",
        state="Ohio",
        country="US",
        postal_code="43215",
        display_label="123 Main Street, Columbus, Ohio 43215, United States",
        provider_id="N1002",
    ),
    Candidate(
        house_number="10",
        street1="Downing Street",
        city="London",
        state="England",
        country="GB",
        postal_code="SW1A 2AA",
        display_label="10 Downing Street, London, England SW1A 2AA, United Kingdom",
        provider_id="W1003",
    ),
]


class GeocodingError(Exception):
    """The provider could not be reached or returned an unusable response."""


class GeocodingTimeout(GeocodingError):
    pass


class GeocodingProvider(Protocol):
    search_is_complete: bool

    async def search(self, query: str, locale_filter: str, limit: int) -> list[Candidate]:
        ...

    async def details(self, provider_id: str) -> Candidate | None:
        ...


def _first(address: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = address.get(key)
        if value:
            return str(value)
    return ""


def _provider_id(result: dict) -> str | None:
    """Nominatim lookup ids are the OSM type initial plus the OSM id, e.g. W123."""
    osm_type = result.get("osm_type")
    osm_id = result.get("osm_id")
    if not osm_type or osm_id is None:
        return None
    return f"{str(osm_type)[0].upper()}{osm_id}"


def candidate_from_nominatim(result: dict) -> Candidate | None:
    """Decompose one Nominatim jsonv2 result (with addressdetails) into a Candidate.
    Returns None when the result has no usable id."""
    provider_id = _provider_id(result)
    if provider_id is None:
        return None

    address = result.get("address") or {}
    country_code = str(address.get("country_code", "")).upper()

    return Candidate(
        house_number=address.get("house_number", ""),
        street1=_first(address, STREET_KEYS),
        # Nominatim does not return secondary unit designators
        street2="",
        city=_first(address, CITY_KEYS),
        state=address.get("state", ""),
        country=country_code or address.get("country", ""),
        postal_code=address.get("postcode", ""),
        display_label=result.get("display_name") or provider_id,
        provider_id=provider_id,
    )


class NominatimProvider:
    """Forward geocoding against the public Nominatim API (or a self-hosted one)."""

    search_is_complete = True

    def __init__(self, client: httpx.AsyncClient, base_url: str | None = None, user_agent: str | None = None):
        self.client = client
        self.base_url = (base_url or config.NOMINATIM_URL).rstrip("/")
        self.user_agent = user_agent or config.USER_AGENT

    async def _get(self, path: str, params: dict) -> list[dict]:
        url = f"{self.base_url}/{path}"
        try:
            response = await self.client.get(url, params=params, headers={"User-Agent": self.user_agent})
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Nominatim request to {path} timed out: {e}")
            raise GeocodingTimeout(f"Nominatim {path} timed out") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 403:
                logger.error(
                    f"Nominatim returned 403 Forbidden. "
                    f"This is likely because CONTACT_EMAIL is invalid or blocked. "
                    f"Current User-Agent: {self.user_agent}."
                )
            else:
                logger.warning(f"Nominatim {path} failed with status {e.response.status_code}")
            raise GeocodingError(f"Nominatim {path} returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Nominatim request to {path} failed: {e}")
            raise GeocodingError(f"Nominatim {path} request failed") from e
        except ValueError as e:
            logger.error(f"Nominatim {path} returned invalid JSON: {e}")
            raise GeocodingError(f"Nominatim {path} returned invalid JSON") from e

        if not isinstance(data, list):
            raise GeocodingError(f"Nominatim {path} returned an unexpected payload")
        return data

    async def search(self, query: str, locale_filter: str, limit: int) -> list[Candidate]:
        params = {"q": query, "format": "jsonv2", "addressdetails": 1, "limit": limit}
        if locale_filter:
            params["countrycodes"] = locale_filter

        results = await self._get("search", params)
        candidates = [c for c in (candidate_from_nominatim(r) for r in results) if c is not None]
        logger.info(f"Nominatim search '{query}' → {len(candidates)} candidates")
        return candidates

    async def details(self, provider_id: str) -> Candidate | None:
        results = await self._get("lookup", {"osm_ids": provider_id, "format": "jsonv2", "addressdetails": 1})
        for result in results:
            candidate = candidate_from_nominatim(result)
            if candidate is not None:
                return candidate
        logger.warning(f"No Nominatim details for '{provider_id}'")
        return None


class MockGeocodingProvider:
    """Returns canned candidates without touching the network."""

    search_is_complete = True

    def __init__(self, candidates: list[Candidate] | None = None):
        self.candidates = list(MOCK_CANDIDATES if candidates is None else candidates)

    async def search(self, query: str, locale_filter: str, limit: int) -> list[Candidate]:
        allowed = {code.upper() for code in locale_filter.split(",") if code}
        needle = query.lower()
        matches = [
            c for c in self.candidates
            if needle in c.display_label.lower() and (not allowed or c.country in allowed)
        ]
        logger.info(f"MOCK_GEOCODING enabled: {len(matches[:limit])} mock candidates for '{query}'")
        return matches[:limit]

    async def details(self, provider_id: str) -> Candidate | None:
        for candidate in self.candidates:
            if candidate.provider_id == provider_id:
                return candidate
        return None


def build_provider(client: httpx.AsyncClient) -> GeocodingProvider:
    """Return the provider selected by configuration."""
    if config.MOCK_GEOCODING:
        logger.info("MOCK_GEOCODING enabled: using mock geocoding provider")
        return MockGeocodingProvider()
    return NominatimProvider(client)
