"""Tests for the dashboard page and /api/census/by-zip.

The upstream fetcher is monkeypatched so no real network calls are made.
"""
from __future__ import annotations

import importlib

import pytest
from fastapi.testclient import TestClient

import backend.app.census_service as cs

PROFILE_TABLE = [
    ["NAME", "DP02_0001E", "DP02_0028E", "DP02_0068PE"] + [f"DP02_{i:04d}E" for i in range(100, 125)],
    ["ZCTA5 10001", "1000", "3500", "48.2"] + [str(i) for i in range(100, 125)],
]


def _geocode_payload() -> dict:
    return {"places": [{"place name": "New York City", "latitude": "40.1", "longitude": "-73.9"}]}


def _install_fake(monkeypatch, *, profile, geocode) -> list[str]:
    calls: list[str] = []

    def fake_request_json(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        calls.append(stage)
        result = {"census_profile": profile, "zip_geocode": geocode}.get(stage)
        if result is None:
            raise AssertionError(f"Unexpected stage: {stage}")
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(cs, "request_json", fake_request_json)
    return calls


@pytest.fixture()
def main_module():
    import backend.app.main as main_module

    # Fresh app state (session store) for every test.
    importlib.reload(main_module)
    return main_module


@pytest.fixture()
def client(main_module):
    return TestClient(main_module.app)


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_dashboard_renders_empty_form(client, main_module):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "US Census Explorer" in resp.text
    assert 'name="zip_code"' in resp.text
    assert 'name="api_key"' in resp.text
    assert "Census Data Details" not in resp.text
    assert client.cookies.get(main_module.SESSION_COOKIE)


def test_submit_without_zip_shows_validation_error(monkeypatch, client):
    calls = _install_fake(monkeypatch, profile=PROFILE_TABLE, geocode=_geocode_payload())

    resp = client.post("/", data={"zip_code": "", "api_key": "X"})

    assert resp.status_code == 200
    assert "Please enter a zip code" in resp.text
    assert calls == []


def test_submit_renders_stats_map_and_fields(monkeypatch, client):
    _install_fake(monkeypatch, profile=PROFILE_TABLE, geocode=_geocode_payload())

    resp = client.post("/", data={"zip_code": "10001", "api_key": "X"})

    assert resp.status_code == 200
    html = resp.text
    assert "Population" in html
    assert "3500" in html
    assert "Location Map - Zip Code 10001" in html
    assert "[40.1, -73.9]" in html
    assert "40.1000, -73.9000" in html
    assert "DP02 0001E" in html
    assert "... and 9 more fields" in html


def test_failed_search_keeps_previous_results(monkeypatch, client):
    _install_fake(monkeypatch, profile=PROFILE_TABLE, geocode=_geocode_payload())
    client.post("/", data={"zip_code": "10001", "api_key": "X"})

    _install_fake(
        monkeypatch,
        profile=cs.UpstreamAPIError("census_profile", "HTTP 400: bad key", status_code=400),
        geocode=_geocode_payload(),
    )
    resp = client.post("/", data={"zip_code": "94103", "api_key": "wrong"})

    assert resp.status_code == 200
    assert "Failed to fetch Census data" in resp.text
    assert "Location Map - Zip Code 10001" in resp.text
    assert "3500" in resp.text


def test_pending_search_is_rejected_with_409(monkeypatch, client, main_module):
    calls = _install_fake(monkeypatch, profile=PROFILE_TABLE, geocode=_geocode_payload())
    client.get("/")
    session_id = client.cookies.get(main_module.SESSION_COOKIE)
    _, controller = main_module.app.state.sessions.get(session_id)
    controller.loading = True

    resp = client.post("/", data={"zip_code": "10001", "api_key": "X"})

    assert resp.status_code == 409
    assert 'type="submit" disabled' in resp.text
    assert calls == []


def test_by_zip_end_to_end(monkeypatch, client):
    _install_fake(monkeypatch, profile=[["DP02_0001E"], ["1000"]], geocode=_geocode_payload())

    resp = client.post("/api/census/by-zip", json={"zip_code": "10001", "api_key": "X"})

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["stats"]["total_population"] == "1000"
    assert payload["stats"]["median_age"] == "N/A"
    assert payload["coordinates"] == {"lat": 40.1, "lon": -73.9}
    assert payload["record"]["total"] == 1
    assert "api_key" not in payload


def test_by_zip_geocode_failure_uses_fallback(monkeypatch, client):
    _install_fake(
        monkeypatch,
        profile=PROFILE_TABLE,
        geocode=cs.UpstreamAPIError("zip_geocode", "Network error: timed out"),
    )

    resp = client.post("/api/census/by-zip", json={"zip_code": "10001", "api_key": "X"})

    assert resp.status_code == 200
    assert resp.json()["coordinates"] == {"lat": 39.8283, "lon": -98.5795}


def test_by_zip_missing_key_is_422(monkeypatch, client):
    calls = _install_fake(monkeypatch, profile=PROFILE_TABLE, geocode=_geocode_payload())

    resp = client.post("/api/census/by-zip", json={"zip_code": "10001", "api_key": " "})

    assert resp.status_code == 422
    assert resp.json()["detail"] == "Please enter your Census API key"
    assert calls == []


def test_by_zip_fetch_error_is_502(monkeypatch, client):
    _install_fake(
        monkeypatch,
        profile=cs.UpstreamAPIError("census_profile", "HTTP 500: boom", status_code=500),
        geocode=_geocode_payload(),
    )

    resp = client.post("/api/census/by-zip", json={"zip_code": "10001", "api_key": "X"})

    assert resp.status_code == 502
    assert resp.json()["detail"] == "Failed to fetch Census data"


def test_by_zip_documents_error_responses(client):
    schema = client.get("/openapi.json").json()
    responses = schema["paths"]["/api/census/by-zip"]["post"]["responses"]

    ref = responses["502"]["content"]["application/json"]["schema"]["$ref"]
    assert ref == "#/components/schemas/ErrorResponse"
    assert schema["components"]["schemas"]["ErrorResponse"]["required"] == ["detail"]
