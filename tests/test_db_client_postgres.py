import json

import pytest

from shared.clients.db.DBClientManager import DBClientManager
from shared.clients.db.postgres.DBClientPostgres import DBClientPostgres
from shared.models.conversation import FailureReason, ScopeKind


class QueryRecorder:
    """Replaces the pooled query runner, answering from a fixed queue of results."""

    def __init__(self, results: list | None = None) -> None:
        self.calls: list[tuple[str, dict | None, str]] = []
        self.results = list(results or [])

    def __call__(self, pool, sql, params, fetch):
        self.calls.append((sql, params, fetch))
        return self.results.pop(0) if self.results else []


@pytest.fixture
def db(helper_config, monkeypatch) -> DBClientPostgres:
    monkeypatch.setenv("DB_POSTGRES_HOST", "localhost")
    monkeypatch.setenv("DB_POSTGRES_USER", "indexer")
    monkeypatch.setenv("DB_POSTGRES_DATABASE", "conversations")
    client = DBClientManager(helper_config=helper_config).get_client()
    client._pool = object()
    return client


def test_manager_builds_postgres_client(db):
    assert isinstance(db, DBClientPostgres)
    assert db.get_engine_name() == "postgres"
    assert db._port == 5433


@pytest.mark.asyncio
async def test_query_before_boot_fails(helper_config, monkeypatch):
    monkeypatch.setenv("DB_POSTGRES_HOST", "localhost")
    monkeypatch.setenv("DB_POSTGRES_USER", "indexer")
    monkeypatch.setenv("DB_POSTGRES_DATABASE", "conversations")
    client = DBClientPostgres(helper_config=helper_config)
    with pytest.raises(Exception, match="boot"):
        await client.do_healthcheck()


@pytest.mark.asyncio
async def test_fulltext_adds_optional_filters_only_when_given(db, monkeypatch):
    recorder = QueryRecorder()
    monkeypatch.setattr(db, "_run_query", recorder)

    await db.do_search_fulltext("pool", limit=10)
    await db.do_search_fulltext("pool", limit=10, project_ids=[3, 4], exclude_terms="docker")

    plain_sql, plain_params, _ = recorder.calls[0]
    assert "project_ids" not in plain_sql
    assert "exclude_terms" not in plain_sql
    assert plain_params == {"query": "pool", "source": None, "since": None, "limit": 10}

    filtered_sql, filtered_params, _ = recorder.calls[1]
    assert "ANY(%(project_ids)s::int[])" in filtered_sql
    assert "NOT to_tsvector" in filtered_sql
    assert filtered_params["project_ids"] == [3, 4]
    assert filtered_params["exclude_terms"] == "docker"


@pytest.mark.asyncio
async def test_failure_upsert_targets_unembeddable_collection(db, monkeypatch):
    recorder = QueryRecorder([1])
    monkeypatch.setattr(db, "_run_query", recorder)

    await db.do_upsert_failure(42, FailureReason.NAN, "NaN")

    sql, params, fetch = recorder.calls[0]
    assert "ON CONFLICT" in sql
    assert params["collection"] == "UNEMBEDDABLE"
    assert params["vector_key"] == "unembeddable-42"
    assert params["reason"] == "nan"
    assert fetch == "count"


@pytest.mark.asyncio
async def test_centroid_round_trips_as_json(db, monkeypatch):
    recorder = QueryRecorder([{"centroid_vector": json.dumps([0.6, 0.8])}, None])
    monkeypatch.setattr(db, "_run_query", recorder)

    assert await db.do_get_centroid(ScopeKind.PROJECT, 3) == [0.6, 0.8]
    assert await db.do_get_centroid(ScopeKind.SESSION, 4) is None
    assert "projects" in recorder.calls[0][0]
    assert "sessions" in recorder.calls[1][0]


@pytest.mark.asyncio
async def test_get_sessions_without_ids_skips_query(db, monkeypatch):
    recorder = QueryRecorder()
    monkeypatch.setattr(db, "_run_query", recorder)

    assert await db.do_get_sessions([]) == {}
    assert recorder.calls == []
