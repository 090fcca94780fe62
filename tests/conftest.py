"""Shared fixtures: environment-backed config and in-memory backends."""

from datetime import datetime
import logging
import math

import pytest
import pytz

from services.embedding.HealingTracker import is_healable
from shared.clients.rag.models.Point import SearchHit, StoredPoint
from shared.clients.rag.models.VectorPayload import VectorPoint
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.conversation import (
    UNEMBEDDABLE_COLLECTION,
    Centroid,
    EmbeddableItem,
    EmbeddingRecord,
    FailureReason,
    MessageVectorRef,
    ScopeKind,
    SessionCandidate,
)
from shared.models.errors import EmbedError, EmbedErrorKind
from shared.models.search import LexicalHit, ProjectMatch, SessionInfo

DIMENSIONS = 4
NAN_MARKER = "@@nan@@"

TEST_ENV = {
    "EMBED_OLLAMA_BASE_URL": "http://ollama.test",
    "LLM_OLLAMA_BASE_URL": "http://ollama.test",
    "RAG_QDRANT_BASE_URL": "http://qdrant.test",
    "EMBED_MODEL": "fake-embed",
    "EMBED_DIMENSIONS": str(DIMENSIONS),
    "EMBED_RETRY_DELAY": "0",
    "LLM_RETRY_DELAY": "0",
    "RAG_RETRY_DELAY": "0",
    "EMBED_BATCH_DELAY": "0",
    "APP_API_KEY": "secret-key",
}


@pytest.fixture
def helper_config(monkeypatch) -> HelperConfig:
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")))


def unit(*components: float) -> list[float]:
    """Pad to DIMENSIONS with zeros."""
    return list(components) + [0.0] * (DIMENSIONS - len(components))


##########################################
################ EMBED ###################
##########################################

class FakeEmbedClient:
    """Embeds text deterministically. Any text containing NAN_MARKER makes its request non-finite."""

    def __init__(self) -> None:
        self.embed_model = "fake-embed"
        self.embed_dimensions = DIMENSIONS
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[list[str]] = []
        self.fatal = False

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        seed = sum(ord(c) for c in text) % 97 + 1
        return [float(seed), 1.0, float(len(text) % 7), 0.5]

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        texts = [texts] if isinstance(texts, str) else texts
        self.calls.append(list(texts))
        if self.fatal:
            raise EmbedError(EmbedErrorKind.FATAL, "backend down")
        if any(NAN_MARKER in text for text in texts):
            raise EmbedError(EmbedErrorKind.NON_FINITE, "NaN")
        return [self.vector_for(text) for text in texts]


@pytest.fixture
def embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


##########################################
################# LLM ####################
##########################################

class FakeLLMClient:
    """Replies from a queue, or with a fixed reply once the queue is empty."""

    def __init__(self) -> None:
        self.replies: list = []
        self.default_reply = "a short summary"
        self.prompts: list[str] = []

    async def do_prompt(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return self.default_reply


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


##########################################
################# RAG ####################
##########################################

class FakeRAGClient:
    def __init__(self) -> None:
        self.collection_messages = "convo-messages"
        self.collection_sessions = "convo-sessions"
        self.points: dict[str, dict[str, dict]] = {
            self.collection_messages: {},
            self.collection_sessions: {},
        }
        self.search_hits: dict[str, list[SearchHit]] = {}
        self.searches: list[tuple[str, list[float], int]] = []
        self.upserts = 0

    async def do_ensure_collection(self, collection: str, vector_size: int) -> None:
        self.points.setdefault(collection, {})

    async def do_upsert_points(self, collection: str, points: list[VectorPoint]):
        if not points:
            return None
        self.upserts += 1
        for point in points:
            self.points[collection][point.key] = {"vector": point.vector, "payload": point.payload.model_dump()}
        return None

    async def do_get_points(self, collection: str, keys: list[str], with_vector: bool = True, with_payload: bool = True) -> list[StoredPoint]:
        found = []
        for key in keys:
            stored = self.points.get(collection, {}).get(key)
            if stored is None:
                continue
            found.append(StoredPoint(
                key=key,
                payload=stored["payload"] if with_payload else {},
                vector=stored["vector"] if with_vector else None,
            ))
        return found

    async def do_search(self, collection: str, vector: list[float], limit: int) -> list[SearchHit]:
        self.searches.append((collection, vector, limit))
        return self.search_hits.get(collection, [])[:limit]


@pytest.fixture
def rag_client() -> FakeRAGClient:
    return FakeRAGClient()


##########################################
################## DB ####################
##########################################

class FakeDBClient:
    """In-memory stand-in for the relational store with the same selection rules."""

    def __init__(self) -> None:
        # messages
        self.messages: dict[int, EmbeddableItem] = {}
        self.records: dict[tuple[int, str], EmbeddingRecord] = {}
        # sessions
        self.session_candidates: list[SessionCandidate] = []
        self.session_messages: dict[int, list[dict]] = {}
        self.summaries: dict[int, str] = {}
        self.session_records: dict[int, dict] = {}
        # centroids
        self.scope_refs: dict[tuple[ScopeKind, int], list[MessageVectorRef]] = {}
        self.centroids: dict[tuple[ScopeKind, int], list[float]] = {}
        self.stored_centroids: list[Centroid] = []
        # search
        self.projects: list[ProjectMatch] = []
        self.sessions: dict[int, SessionInfo] = {}
        self.fulltext_hits: list[LexicalHit] = []
        self.fulltext_calls: list[dict] = []
        self.fail_fulltext = False

    def add_message(self, message_id: int, text: str, session_id: int = 1, role: str = "user") -> EmbeddableItem:
        item = EmbeddableItem(
            id=message_id,
            session_id=session_id,
            content_text=text,
            role=role,
            timestamp=datetime(2026, 1, 1, tzinfo=pytz.utc),
            project_path="/work/app",
            source_name="claude-code",
        )
        self.messages[message_id] = item
        return item

    def failure(self, message_id: int) -> EmbeddingRecord | None:
        return self.records.get((message_id, UNEMBEDDABLE_COLLECTION))

    ################ MESSAGES ##################
    async def do_fetch_message_candidates(self, collection: str, limit: int, retry_limit: int, cooldown_days: int) -> list[EmbeddableItem]:
        candidates = []
        for message_id in sorted(self.messages):
            if (message_id, collection) in self.records:
                continue
            failure = self.failure(message_id)
            if failure is not None and not is_healable(failure, retry_limit, cooldown_days):
                continue
            candidates.append(self.messages[message_id])
        return candidates[:limit]

    async def do_upsert_embedding_records(self, records: list[EmbeddingRecord]) -> None:
        for record in records:
            self.records[(record.message_id, record.collection)] = record

    async def do_upsert_failure(self, message_id: int, reason: FailureReason, detail: str) -> None:
        existing = self.failure(message_id)
        retry_count = existing.retry_count if existing else 0
        if reason == FailureReason.NAN:
            retry_count += 1
        self.records[(message_id, UNEMBEDDABLE_COLLECTION)] = EmbeddingRecord(
            message_id=message_id,
            collection=UNEMBEDDABLE_COLLECTION,
            vector_key=f"unembeddable-{message_id}",
            embedding_model="none",
            dimensions=0,
            failure_reason=reason,
            failure_detail=detail,
            retry_count=retry_count,
            updated_at=datetime.now(pytz.utc),
        )

    async def do_count_healable(self, retry_limit: int, cooldown_days: int) -> int:
        return sum(
            1 for r in self.records.values()
            if r.is_failure and is_healable(r, retry_limit, cooldown_days)
        )

    async def do_cleanup_healed(self, collection: str) -> int:
        healed = [
            key for key, record in self.records.items()
            if record.is_failure and (record.message_id, collection) in self.records
        ]
        for key in healed:
            del self.records[key]
        return len(healed)

    ################ SESSIONS ##################
    async def do_fetch_session_candidates(self, collection: str, limit: int = 100) -> list[SessionCandidate]:
        return self.session_candidates[:limit]

    async def do_fetch_session_messages(self, session_id: int) -> list[dict]:
        return self.session_messages.get(session_id, [])

    async def do_update_session_summary(self, session_id: int, summary: str, content_chars: int, keep_existing: bool = False) -> None:
        if keep_existing and self.summaries.get(session_id):
            return
        self.summaries[session_id] = summary

    async def do_upsert_session_record(self, session_id: int, collection: str, vector_key: str, embedding_model: str, dimensions: int, content_chars: int) -> None:
        self.session_records[session_id] = {
            "collection": collection,
            "vector_key": vector_key,
            "content_chars_at_embed": content_chars,
        }

    ################ CENTROIDS ##################
    async def do_count_scope_vectors(self, scope, collection: str) -> int:
        return len(self.scope_refs.get((scope.kind, scope.id), []))

    async def do_fetch_scope_vector_page(self, scope, collection: str, after_id: int, limit: int) -> list[MessageVectorRef]:
        refs = sorted(self.scope_refs.get((scope.kind, scope.id), []), key=lambda r: r.message_id)
        return [r for r in refs if r.message_id > after_id][:limit]

    async def do_store_centroid(self, centroid: Centroid) -> None:
        self.stored_centroids.append(centroid)
        self.centroids[(centroid.scope.kind, centroid.scope.id)] = centroid.vector

    async def do_get_centroid(self, kind: ScopeKind, scope_id: int) -> list[float] | None:
        return self.centroids.get((kind, scope_id))

    async def do_list_scopes(self, kind: ScopeKind, collection: str) -> list[int]:
        return sorted(scope_id for (k, scope_id) in self.scope_refs if k == kind)

    ################ SEARCH ##################
    async def do_find_projects_by_path(self, path: str) -> list[ProjectMatch]:
        return [p for p in self.projects if path.startswith(p.path) or p.path.startswith(path)]

    async def do_get_sessions(self, session_ids: list[int]) -> dict[int, SessionInfo]:
        return {sid: self.sessions[sid] for sid in session_ids if sid in self.sessions}

    async def do_search_fulltext(self, query, limit, source=None, since=None, project_ids=None, exclude_terms=None) -> list[LexicalHit]:
        self.fulltext_calls.append({
            "query": query, "limit": limit, "source": source,
            "since": since, "project_ids": project_ids, "exclude_terms": exclude_terms,
        })
        if self.fail_fulltext:
            raise RuntimeError("full-text index unavailable")
        return self.fulltext_hits[:limit]


@pytest.fixture
def db_client() -> FakeDBClient:
    return FakeDBClient()


def norm(vector: list[float]) -> float:
    return math.sqrt(sum(v * v for v in vector))
