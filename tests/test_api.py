from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.app.dependencies import get_metadata_service
from backend.app.services.metadata_service import MetadataService
from backend.app.services.page_fetcher import FetchedPage, FetchFailure, FetchOutcome
from backend.app.telemetry import InMemoryTelemetrySink, TelemetryClient


class _StaticFetcher:
    def __init__(self, outcome: FetchOutcome) -> None:
        self._outcome = outcome

    def fetch_page(self, url: str, timeout_ms: int = 5_000) -> FetchOutcome:
        return self._outcome


@pytest.fixture
def override_fetch(client: TestClient) -> Iterator[Any]:
    app = client.app
    assert isinstance(app, FastAPI)

    def _install(outcome: FetchOutcome) -> None:
        service = MetadataService(fetcher=_StaticFetcher(outcome))
        app.dependency_overrides[get_metadata_service] = lambda: service

    yield _install
    app.dependency_overrides.clear()


def _create(client: TestClient, url: str, list_id: int = 1) -> dict[str, Any]:
    response = client.post("/links", json={"url": url, "list_id": list_id})
    assert response.status_code == 201
    return response.json()


def _listed_ids(client: TestClient, list_id: int = 1) -> list[int]:
    response = client.get("/links", params={"list_id": list_id})
    assert response.status_code == 200
    return [link["id"] for link in response.json()]


def test_health_echoes_request_id(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-abc"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-abc"
    assert client.get("/health").headers["X-Request-ID"]


def test_create_and_list_links(client: TestClient) -> None:
    first = _create(client, "example.com/one")
    second = _create(client, "https://docs.example.org/two")
    _create(client, "other.example", list_id=2)

    assert first["url"] == "https://example.com/one"
    assert first["title"] == "example.com"
    assert first["description"] == "Content from example.com"
    assert first["position"] == 1
    assert second["position"] == 2
    assert _listed_ids(client) == [first["id"], second["id"]]


def test_create_link_rejects_bad_payloads(client: TestClient) -> None:
    assert client.post("/links", json={"url": "   ", "list_id": 1}).status_code == 400
    assert client.post("/links", json={"url": "example.com"}).status_code == 400
    assert client.post("/links", json=["example.com"]).status_code == 400
    assert _listed_ids(client) == []


@pytest.mark.parametrize("params", [{}, {"list_id": "abc"}, {"list_id": ""}])
def test_list_links_requires_numeric_list_id(
    client: TestClient,
    params: dict[str, str],
) -> None:
    response = client.get("/links", params=params)

    assert response.status_code == 400


def test_reorder_links(client: TestClient) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(3)]

    response = client.patch(
        "/links",
        json={"orderedIds": [ids[2], ids[0], ids[1]], "list_id": 1},
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "orderedIds": [ids[2], ids[0], ids[1]]}
    listed = client.get("/links", params={"list_id": 1}).json()
    assert [link["id"] for link in listed] == [ids[2], ids[0], ids[1]]
    assert [link["position"] for link in listed] == [1, 2, 3]


def test_reorder_accepts_camel_case_list_id(client: TestClient) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(2)]

    response = client.patch("/links", json={"orderedIds": [ids[1], ids[0]], "listId": "1"})
    rejected = client.patch("/links", json={"orderedIds": [ids[0], ids[1]], "listId": "one"})

    assert response.status_code == 200
    assert response.json()["orderedIds"] == [ids[1], ids[0]]
    assert rejected.status_code == 400
    assert _listed_ids(client) == [ids[1], ids[0]]


@pytest.mark.parametrize(
    "payload",
    [
        {"orderedIds": "not-a-list", "list_id": 1},
        {"orderedIds": [1, 2]},
        {"orderedIds": [1, "x"], "list_id": 1},
        "plain text",
    ],
)
def test_reorder_rejects_malformed_payload_without_writing(
    client: TestClient,
    payload: Any,
) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(2)]

    response = client.patch("/links", json=payload)

    assert response.status_code == 400
    assert _listed_ids(client) == ids


def test_reorder_rejects_ids_from_other_lists(client: TestClient) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(2)]
    foreign = _create(client, "elsewhere.example", list_id=2)["id"]

    response = client.patch("/links", json={"orderedIds": [ids[1], foreign], "list_id": 1})

    assert response.status_code == 400
    assert _listed_ids(client) == ids
    assert _listed_ids(client, list_id=2) == [foreign]


def test_move_link(client: TestClient) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(3)]

    moved = client.post(
        "/links/move",
        json={"list_id": 1, "link_id": ids[2], "from_index": 2, "to_index": 0},
    )
    stale = client.post(
        "/links/move",
        json={"list_id": 1, "link_id": ids[2], "from_index": 2, "to_index": 1},
    )

    assert moved.status_code == 200
    assert moved.json() == {"moved": True, "ordered_ids": [ids[2], ids[0], ids[1]]}
    assert stale.status_code == 200
    assert stale.json()["moved"] is False
    assert _listed_ids(client) == [ids[2], ids[0], ids[1]]


def test_get_update_and_delete_link(client: TestClient) -> None:
    ids = [_create(client, f"site{index}.example")["id"] for index in range(3)]

    fetched = client.get(f"/links/{ids[0]}")
    assert fetched.status_code == 200
    assert fetched.json()["url"] == "https://site0.example"

    updated = client.patch(f"/links/{ids[0]}", json={"title": "Renamed", "description": "Mine"})
    assert updated.status_code == 200
    assert updated.json()["title"] == "Renamed"
    assert updated.json()["description"] == "Mine"
    assert client.patch(f"/links/{ids[0]}", json={"unknown": 1}).status_code == 400

    deleted = client.delete(f"/links/{ids[0]}")
    assert deleted.status_code == 204
    assert client.get(f"/links/{ids[0]}").status_code == 404
    assert client.delete(f"/links/{ids[0]}").status_code == 404
    assert client.patch(f"/links/{ids[0]}", json={"title": "x"}).status_code == 404

    remaining = client.get("/links", params={"list_id": 1}).json()
    assert [link["position"] for link in remaining] == [1, 2]


def test_metadata_requires_url(client: TestClient) -> None:
    assert client.get("/metadata").status_code == 400
    assert client.get("/metadata", params={"url": "  "}).status_code == 400


def test_metadata_preview_success(client: TestClient, override_fetch: Any) -> None:
    override_fetch(
        FetchedPage(
            url="https://example.com",
            final_url="https://example.com",
            http_status=200,
            markup='<meta property="og:title" content="Example">'
            '<meta property="og:image" content="/cover.png">',
            truncated=False,
        )
    )

    response = client.get("/metadata", params={"url": "example.com"})

    assert response.status_code == 200
    assert response.json() == {
        "title": "Example",
        "description": "Content from example.com",
        "image": "https://example.com/cover.png",
    }


def test_metadata_timeout_returns_504_with_fallback(
    client: TestClient,
    override_fetch: Any,
) -> None:
    override_fetch(FetchFailure(kind="timeout", detail="Request timed out"))

    response = client.get("/metadata", params={"url": "https://slow.example.com/x"})

    assert response.status_code == 504
    assert response.json() == {
        "title": "slow.example.com",
        "description": "Content from slow.example.com",
        "image": None,
        "error": "Request timed out",
    }


def test_metadata_network_error_returns_500_with_fallback(
    client: TestClient,
    override_fetch: Any,
) -> None:
    override_fetch(FetchFailure(kind="network_error", detail="URLError: refused"))

    response = client.get("/metadata", params={"url": "https://down.example.com"})

    assert response.status_code == 500
    body = response.json()
    assert body["title"] == "down.example.com"
    assert body["description"] == "Content from down.example.com"
    assert body["error"] == "URLError: refused"


def test_metadata_disabled_fetch_returns_fallback(client: TestClient) -> None:
    response = client.get("/metadata", params={"url": "https://example.net/page"})

    assert response.status_code == 200
    assert response.json() == {
        "title": "example.net",
        "description": "Content from example.net",
        "image": None,
    }


def test_request_middleware_emits_telemetry(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sink = InMemoryTelemetrySink()
    telemetry = TelemetryClient(enabled=True, sink=sink)
    monkeypatch.setattr("backend.app.main.get_telemetry", lambda: telemetry)

    response = client.get("/links", params={"list_id": "x"}, headers={"X-Request-ID": "req-9"})

    assert response.status_code == 400
    assert [event.name for event in sink.events] == ["http.request.start", "http.request.finish"]
    finish = sink.events[1].attributes
    assert finish["request_id"] == "req-9"
    assert finish["status_code"] == 400
    assert finish["path"] == "/links"
