from app.services.geocoding import GeocodingError, GeocodingTimeout
from app.services.suggestions import GENERIC_ERROR_MESSAGE


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# --- Proxy search ---


def test_search_returns_candidates(client, fake_provider, main_street_candidates):
    fake_provider.results["123 Main"] = main_street_candidates

    resp = client.get("/api/address/search", params={"q": "  123 Main "})

    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    assert data["results"][0]["provider_id"] == "W101"
    assert data["results"][1]["city"] == "Columbus"
    assert fake_provider.calls == [("123 Main", "us", 10)]


def test_search_short_query_skips_provider(client, fake_provider):
    resp = client.get("/api/address/search", params={"q": "12"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["results"] == []
    assert data["total"] == 0
    assert "at least 3" in data["message"]
    assert fake_provider.calls == []


def test_search_locale_and_limit_overrides(client, fake_provider):
    client.get("/api/address/search", params={"q": "10 Downing", "countrycodes": "GB, IE", "limit": 3})
    client.get("/api/address/search", params={"q": "10 Downing", "countrycodes": ""})

    assert fake_provider.calls == [("10 Downing", "gb,ie", 3), ("10 Downing", "", 10)]


def test_search_invalid_limit_returns_422(client):
    resp = client.get("/api/address/search", params={"q": "123 Main", "limit": 50})
    assert resp.status_code == 422


def test_search_provider_failure_returns_502(client, fake_provider):
    fake_provider.failures.add("123 Main")

    resp = client.get("/api/address/search", params={"q": "123 Main"})

    assert resp.status_code == 502
    assert resp.json()["detail"] == "Geocoding service unavailable"


def test_search_provider_timeout_returns_504(client, fake_provider):
    async def timeout(*args, **kwargs):
        raise GeocodingTimeout("slow")

    fake_provider.search = timeout

    resp = client.get("/api/address/search", params={"q": "123 Main"})
    assert resp.status_code == 504


# --- Proxy details ---


def test_details_returns_candidate(client, fake_provider, main_street_candidates):
    fake_provider.details_results["W101"] = main_street_candidates[0]

    resp = client.get("/api/address/details/W101")

    assert resp.status_code == 200
    assert resp.json()["postal_code"] == "62701"


def test_details_unknown_returns_404(client):
    resp = client.get("/api/address/details/W404")
    assert resp.status_code == 404


def test_details_failure_returns_502(client, fake_provider):
    async def broken(provider_id):
        raise GeocodingError("down")

    fake_provider.details = broken

    resp = client.get("/api/address/details/W101")
    assert resp.status_code == 502


# --- Form field socket ---


def test_socket_streams_candidates_and_selection(client, fake_provider, main_street_candidates):
    fake_provider.results["123 Main"] = main_street_candidates

    with client.websocket_connect("/api/address/ws") as ws:
        ws.send_json({"type": "input", "value": "12"})
        ws.send_json({"type": "input", "value": "123 Main"})

        loading = ws.receive_json()
        assert loading == {"type": "candidates", "candidates": [], "loading": True}

        loaded = ws.receive_json()
        assert loaded["loading"] is False
        assert [c["provider_id"] for c in loaded["candidates"]] == ["W101", "W102"]

        ws.send_json({"type": "select", "provider_id": "W101"})
        closed = ws.receive_json()
        assert closed == {"type": "candidates", "candidates": [], "loading": False}

        selected = ws.receive_json()
        assert selected["type"] == "selected"
        assert selected["form"] == {
            "house_number": "123",
            "street1": "Main Street",
            "street2": "",
            "city": "Springfield",
            "state": "Illinois",
            "country": "US",
            "postal_code": "62701",
        }

    assert fake_provider.queries == ["123 Main"]


def test_socket_reports_provider_error(client, fake_provider):
    fake_provider.failures.add("123 Main")

    with client.websocket_connect("/api/address/ws") as ws:
        ws.send_json({"type": "input", "value": "123 Main"})

        assert ws.receive_json()["loading"] is True
        assert ws.receive_json() == {"type": "candidates", "candidates": [], "loading": False}
        assert ws.receive_json() == {"type": "error", "message": GENERIC_ERROR_MESSAGE}


def test_socket_blur_clears_candidates(client, fake_provider, main_street_candidates):
    fake_provider.results["123 Main"] = main_street_candidates

    with client.websocket_connect("/api/address/ws") as ws:
        ws.send_json({"type": "input", "value": "123 Main"})
        ws.receive_json()
        assert len(ws.receive_json()["candidates"]) == 2

        ws.send_json({"type": "blur"})
        assert ws.receive_json() == {"type": "candidates", "candidates": [], "loading": False}


def test_socket_rejects_unknown_messages(client):
    with client.websocket_connect("/api/address/ws") as ws:
        ws.send_json({"type": "select", "provider_id": "W999"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown address selection"}

        ws.send_json({"type": "paste"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type"}


def test_socket_survives_malformed_json(client, fake_provider, main_street_candidates):
    fake_provider.results["123 Main"] = main_street_candidates

    with client.websocket_connect("/api/address/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type"}

        ws.send_json({"type": "input", "value": "123 Main"})
        assert ws.receive_json()["loading"] is True
        assert len(ws.receive_json()["candidates"]) == 2


def test_search_limit_bound_matches_pipeline_config(client):
    resp = client.get("/api/address/search", params={"q": "123 Main", "limit": 20})
    assert resp.status_code == 200
    resp = client.get("/api/address/search", params={"q": "123 Main", "limit": 21})
    assert resp.status_code == 422
