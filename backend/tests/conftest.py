import asyncio

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routers.address import get_pipeline_config, get_provider
from app.schemas import Candidate, PipelineConfig
from app.services.geocoding import GeocodingError


class FakeProvider:
    """In-memory geocoding provider whose responses can be held back per query."""

    def __init__(self, search_is_complete: bool = True):
        self.search_is_complete = search_is_complete
        self.results: dict[str, list[Candidate]] = {}
        self.details_results: dict[str, Candidate] = {}
        self.failures: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str, int]] = []
        self.detail_calls: list[str] = []

    def hold(self, key: str) -> asyncio.Event:
        """Block responses for a query or provider id until the returned event is set."""
        gate = asyncio.Event()
        self.gates[key] = gate
        return gate

    async def search(self, query: str, locale_filter: str, limit: int) -> list[Candidate]:
        self.calls.append((query, locale_filter, limit))
        if query in self.gates:
            await self.gates[query].wait()
        if query in self.failures:
            raise GeocodingError(f"search failed for {query}")
        return self.results.get(query, [])

    async def details(self, provider_id: str) -> Candidate | None:
        self.detail_calls.append(provider_id)
        if provider_id in self.gates:
            await self.gates[provider_id].wait()
        if provider_id in self.failures:
            raise GeocodingError(f"details failed for {provider_id}")
        return self.details_results.get(provider_id)

    @property
    def queries(self) -> list[str]:
        return [call[0] for call in self.calls]


def make_candidate(provider_id: str, label: str, **fields) -> Candidate:
    return Candidate(provider_id=provider_id, display_label=label, **fields)


@pytest.fixture
def candidate_factory():
    return make_candidate


@pytest.fixture
def main_street_candidates():
    return [
        make_candidate(
            "W101", "123 Main Street, Springfield, IL 62701",
            house_number="123", street1="Main Street", city="Springfield",
            state="Illinois", country="US", postal_code="62701",
        ),
        make_candidate(
            "W102", "123 Main Street, Columbus, OH 43215",
            house_number="123", street1="Main Street", city="Columbus",
            state="Ohio", country="US", postal_code="43215",
        ),
    ]


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(debounce_ms=20, request_timeout_ms=1000, locale_filter="us")


@pytest.fixture
def client(fake_provider, pipeline_config):
    app.dependency_overrides[get_provider] = lambda: fake_provider
    app.dependency_overrides[get_pipeline_config] = lambda: pipeline_config
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
