import json

import httpx
import pytest

from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.models.VectorPayload import MessageVectorPayload, VectorPoint
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant


def _client(helper_config, handler) -> RAGClientQdrant:
    client = RAGClientManager(helper_config=helper_config).get_client()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def _point(key: str, message_id: int) -> VectorPoint:
    return VectorPoint(
        key=key,
        vector=[0.1, 0.2, 0.3, 0.4],
        payload=MessageVectorPayload(
            key=key, source="claude-code", session_id=1, message_id=message_id, role="user", timestamp=0
        ),
    )


def test_point_ids_are_deterministic(helper_config):
    client = RAGClientQdrant(helper_config=helper_config)
    assert client.get_point_id("msg-1") == client.get_point_id("msg-1")
    assert client.get_point_id("msg-1") != client.get_point_id("msg-2")


@pytest.mark.asyncio
async def test_upsert_uses_uuid_ids_and_keeps_key_in_payload(helper_config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "ok"})

    client = _client(helper_config, handler)
    await client.do_upsert_points("convo-messages", [_point("msg-7", 7)])

    assert seen["method"] == "PUT"
    assert seen["path"] == "/collections/convo-messages/points"
    point = seen["body"]["points"][0]
    assert point["id"] == client.get_point_id("msg-7")
    assert point["payload"]["key"] == "msg-7"


@pytest.mark.asyncio
async def test_upsert_of_nothing_sends_no_request(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _client(helper_config, handler).do_upsert_points("convo-messages", []) is None


@pytest.mark.asyncio
async def test_search_converts_cosine_score_to_distance(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/collections/convo-sessions/points/search"
        return httpx.Response(200, json={"result": [
            {"id": "x", "score": 0.9, "payload": {"key": "session-3", "document": "doc"}},
            {"id": "y", "score": 0.25, "payload": {"key": "session-4"}},
        ]})

    hits = await _client(helper_config, handler).do_search("convo-sessions", [0.0, 1.0, 0.0, 0.0], 5)

    assert [h.key for h in hits] == ["session-3", "session-4"]
    assert hits[0].distance == pytest.approx(0.1)
    assert hits[1].distance == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_get_points_returns_found_points_only(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["with_vector"] is True
        return httpx.Response(200, json={"result": [
            {"id": body["ids"][0], "payload": {"key": "msg-1"}, "vector": [1.0, 0.0, 0.0, 0.0]},
        ]})

    points = await _client(helper_config, handler).do_get_points("convo-messages", ["msg-1", "msg-2"])
    assert len(points) == 1
    assert points[0].key == "msg-1"
    assert points[0].vector == [1.0, 0.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_ensure_collection_creates_missing_collection(helper_config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.url.path.endswith("/exists"):
            return httpx.Response(200, json={"result": {"exists": False}})
        assert json.loads(request.content) == {"vectors": {"size": 4, "distance": "Cosine"}}
        return httpx.Response(200, json={"result": True})

    await _client(helper_config, handler).do_ensure_collection("convo-messages", 4)

    assert calls == [
        ("GET", "/collections/convo-messages/exists"),
        ("PUT", "/collections/convo-messages"),
    ]


@pytest.mark.asyncio
async def test_delete_maps_keys_to_point_ids(helper_config):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"result": {"status": "acknowledged"}})

    client = _client(helper_config, handler)
    await client.do_delete_points("convo-sessions", ["session-3"])
    await client.do_delete_points("convo-sessions", [])

    assert seen == [("/collections/convo-sessions/points/delete", {"points": [client.get_point_id("session-3")]})]
