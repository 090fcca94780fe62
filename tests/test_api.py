from datetime import datetime

from fastapi.testclient import TestClient
import pytest
import pytz

from server.api.api_app import app
from shared.models.errors import DimensionMismatchError
from shared.models.search import SearchMode, SearchRequest, SearchResponse, SearchResult

HEADERS = {"X-API-Key": "secret-key"}


class StubSearchService:
    def __init__(self) -> None:
        self.requests: list[SearchRequest] = []
        self.error: Exception | None = None

    async def do_search(self, request: SearchRequest) -> SearchResponse:
        self.requests.append(request)
        if self.error:
            raise self.error
        result = SearchResult(
            session_id=1,
            source="claude-code",
            title="Pool debugging",
            timestamp=datetime(2026, 1, 1, tzinfo=pytz.utc),
            score=0.9,
            strategy="session",
        )
        return SearchResponse(query=request.query, results=[result], total=1)


@pytest.fixture
def search_service(helper_config) -> StubSearchService:
    service = StubSearchService()
    app.state.config = helper_config
    app.state.logging = helper_config.get_logger()
    app.state.search_service = service
    return service


@pytest.fixture
def client(search_service) -> TestClient:
    # no context manager: the lifespan would connect to real backends
    return TestClient(app)


def test_search_requires_api_key(client):
    assert client.post("/search", json={"query": "pool"}).status_code == 401
    assert client.post("/search", json={"query": "pool"}, headers={"X-API-Key": "wrong"}).status_code == 401


def test_search_returns_results(client, search_service):
    response = client.post(
        "/search",
        json={"query": "pool", "likeSession": ["12:2"], "projectOnly": True, "mode": "semantic"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["results"][0]["session_id"] == 1
    request = search_service.requests[0]
    assert request.like_session == ["12:2"]
    assert request.project_only is True
    assert request.mode is SearchMode.SEMANTIC


def test_invalid_parameters_are_bad_request(client, search_service):
    search_service.error = ValueError("Must provide either query or centroid parameters")
    response = client.post("/search", json={}, headers=HEADERS)
    assert response.status_code == 400
    assert "query" in response.json()["detail"]


def test_unknown_mode_is_rejected_by_validation(client):
    response = client.post("/search", json={"query": "pool", "mode": "fuzzy"}, headers=HEADERS)
    assert response.status_code == 422


def test_dimension_mismatch_is_server_error(client, search_service):
    search_service.error = DimensionMismatchError(expected=4, actual=2, context="centroid")
    response = client.post("/search", json={"query": "pool"}, headers=HEADERS)
    assert response.status_code == 500


def test_health_needs_no_key(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
