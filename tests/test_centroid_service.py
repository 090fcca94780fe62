import math

import pytest

from conftest import norm, unit
from services.centroids.CentroidService import CentroidService
from shared.models.conversation import CentroidScope, MessageVectorRef, ScopeKind

SESSION = CentroidScope(kind=ScopeKind.SESSION, id=1)


@pytest.fixture
def service(helper_config, db_client, rag_client) -> CentroidService:
    return CentroidService(helper_config=helper_config, db_client=db_client, rag_client=rag_client)


def _store(db_client, rag_client, scope: CentroidScope, vectors: list[list[float]], first_id: int = 1) -> None:
    refs = db_client.scope_refs.setdefault((scope.kind, scope.id), [])
    for offset, vector in enumerate(vectors):
        message_id = first_id + offset
        key = f"msg-{message_id}"
        refs.append(MessageVectorRef(message_id=message_id, vector_key=key))
        rag_client.points["convo-messages"][key] = {"vector": vector, "payload": {"key": key}}


@pytest.mark.asyncio
async def test_identical_vectors_give_that_direction(service, db_client, rag_client):
    _store(db_client, rag_client, SESSION, [unit(2.0, 0.0, 0.0)] * 3)

    centroid = await service.do_compute_centroid(SESSION)

    assert centroid.vector == pytest.approx(unit(1.0))
    assert centroid.vector_count == 3


@pytest.mark.asyncio
async def test_centroid_is_normalized_mean(service, db_client, rag_client):
    diagonal = 1 / math.sqrt(2)
    _store(db_client, rag_client, SESSION, [unit(1.0, 0.0), unit(0.0, 1.0), unit(diagonal, diagonal)])

    centroid = await service.do_compute_centroid(SESSION)

    assert centroid.vector == pytest.approx(unit(diagonal, diagonal))
    assert norm(centroid.vector) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_vectors_are_streamed_in_pages(helper_config, monkeypatch, db_client, rag_client):
    monkeypatch.setenv("CENTROID_PAGE_SIZE", "2")
    service = CentroidService(helper_config=helper_config, db_client=db_client, rag_client=rag_client)
    _store(db_client, rag_client, SESSION, [unit(1.0)] * 5)

    calls = []
    original = rag_client.do_get_points

    async def recording(collection, keys, with_vector=True, with_payload=True):
        calls.append(list(keys))
        return await original(collection, keys, with_vector, with_payload)

    monkeypatch.setattr(rag_client, "do_get_points", recording)
    centroid = await service.do_compute_centroid(SESSION)

    assert [len(c) for c in calls] == [2, 2, 1]
    assert centroid.vector_count == 5


@pytest.mark.asyncio
async def test_unusable_vectors_are_skipped(service, db_client, rag_client):
    _store(db_client, rag_client, SESSION, [unit(0.0, 3.0), [1.0, 1.0], unit(math.nan, 1.0)])

    centroid = await service.do_compute_centroid(SESSION)

    assert centroid.vector_count == 1
    assert centroid.vector == pytest.approx(unit(0.0, 1.0))


@pytest.mark.asyncio
async def test_no_vectors_gives_none(service):
    assert await service.do_compute_centroid(SESSION) is None


@pytest.mark.asyncio
async def test_only_unusable_vectors_gives_none(service, db_client, rag_client):
    _store(db_client, rag_client, SESSION, [[1.0, 2.0], unit(math.inf)])
    assert await service.do_compute_centroid(SESSION) is None


@pytest.mark.asyncio
async def test_opposite_vectors_give_none(service, db_client, rag_client):
    _store(db_client, rag_client, SESSION, [unit(1.0), unit(-1.0)])
    assert await service.do_update_centroid(SESSION) is None
    assert db_client.stored_centroids == []


@pytest.mark.asyncio
async def test_compute_all_counts_outcomes(service, db_client, rag_client, monkeypatch):
    _store(db_client, rag_client, CentroidScope(kind=ScopeKind.PROJECT, id=1), [unit(1.0)], first_id=1)
    _store(db_client, rag_client, CentroidScope(kind=ScopeKind.PROJECT, id=2), [[1.0]], first_id=10)
    _store(db_client, rag_client, CentroidScope(kind=ScopeKind.PROJECT, id=3), [unit(1.0)], first_id=20)

    original = rag_client.do_get_points

    async def flaky(collection, keys, with_vector=True, with_payload=True):
        if "msg-20" in keys:
            raise RuntimeError("backend hiccup")
        return await original(collection, keys, with_vector, with_payload)

    monkeypatch.setattr(rag_client, "do_get_points", flaky)
    stats = await service.do_compute_all(ScopeKind.PROJECT)

    assert (stats.computed, stats.skipped, stats.failed) == (1, 1, 1)
    assert db_client.centroids[(ScopeKind.PROJECT, 1)] == pytest.approx(unit(1.0))
