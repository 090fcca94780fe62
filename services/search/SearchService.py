"""Hybrid conversation search.

Runs up to three strategies and merges them by session, first seen wins:
  (a) nearest sessions in the session collection,
  (b) nearest messages in the message collection, grouped to their session,
  (c) ranked full-text search over message text.
Results from projects matching the caller's working directory get a boost.
"""

from datetime import datetime, timedelta
import re

import pytz

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper import HelperVector
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import ScopeKind
from shared.models.errors import DimensionMismatchError
from shared.models.search import (
    SearchMode,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SessionInfo,
)
from services.search.QueryComposer import QueryComposer, parse_weighted_ids

SNIPPET_CHARS = 300
MESSAGE_SNIPPET_PREFIX = "[message match] "

_SINCE_PATTERN = re.compile(r"^(\d+)([dhwm])$")
_SINCE_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "m": timedelta(days=30),
}


def parse_since(since: str | None, now: datetime | None = None) -> datetime | None:
    """Parse a relative ("7d", "12h", "2w", "3m") or ISO date/time lower bound.

    Raises:
        ValueError: If the value is neither.
    """
    if not since:
        return None
    now = now or datetime.now(pytz.utc)
    match = _SINCE_PATTERN.match(since.strip())
    if match:
        amount, unit = match.groups()
        return now - int(amount) * _SINCE_UNITS[unit]
    try:
        parsed = datetime.fromisoformat(since.strip())
    except ValueError:
        raise ValueError(f"Invalid since value '{since}'. Use <n>[hdwm] or an ISO date.")
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


def _session_id_from_key(key: str) -> int | None:
    prefix, _, raw_id = key.partition("-")
    if prefix != "session" or not raw_id.isdigit():
        return None
    return int(raw_id)


class SearchService:
    def __init__(
        self,
        helper_config: HelperConfig,
        db_client: DBClientInterface,
        rag_client: RAGClientInterface,
        query_composer: QueryComposer,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._db_client = db_client
        self._rag_client = rag_client
        self._query_composer = query_composer
        self.default_limit = helper_config.get_int_val("SEARCH_DEFAULT_LIMIT", default=20)
        self.project_boost = helper_config.get_float_val("SEARCH_PROJECT_BOOST", default=0.5)

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def do_search(self, request: SearchRequest) -> SearchResponse:
        """Search conversations.

        Args:
            request (SearchRequest): Query text and/or exemplars plus filters.

        Returns:
            SearchResponse: Results sorted by score, at most limit entries.

        Raises:
            ValueError: If neither a query nor any exemplar is given, or since is invalid.
            DimensionMismatchError: If stored vectors do not match the configured dimension.
        """
        if not request.query and not request.has_exemplars():
            raise ValueError("Must provide either query or centroid parameters (likeSession, likeProject, etc.)")

        limit = request.limit or self.default_limit
        since = parse_since(request.since)
        projects = await self._db_client.do_find_projects_by_path(request.cwd) if request.cwd else []
        project_ids = {project.id for project in projects}

        merged = _MergedResults()

        if request.mode in (SearchMode.SEMANTIC, SearchMode.HYBRID):
            try:
                await self._search_semantic(request, limit, since, project_ids, merged)
            except DimensionMismatchError:
                raise
            except Exception as e:
                self.logging.error("Semantic search failed: %s", e)

        if request.mode in (SearchMode.TEXT, SearchMode.HYBRID) and request.query:
            try:
                await self._search_lexical(request, limit, since, project_ids, merged)
            except Exception as e:
                self.logging.error("Full-text search failed: %s", e)

        results = sorted(merged.results, key=lambda r: r.score, reverse=True)[:limit]
        return SearchResponse(query=request.query, results=results, total=len(results))

    ##########################################
    ############### STRATEGIES ###############
    ##########################################

    async def _search_semantic(
        self,
        request: SearchRequest,
        limit: int,
        since: datetime | None,
        project_ids: set[int],
        merged: "_MergedResults",
    ) -> None:
        composer = self._query_composer
        like = (
            await composer.do_resolve(ScopeKind.SESSION, parse_weighted_ids(request.like_session))
            + await composer.do_resolve(ScopeKind.PROJECT, parse_weighted_ids(request.like_project))
        )
        unlike = (
            await composer.do_resolve(ScopeKind.SESSION, parse_weighted_ids(request.unlike_session))
            + await composer.do_resolve(ScopeKind.PROJECT, parse_weighted_ids(request.unlike_project))
        )
        vector = await composer.do_compose(request.query, request.negative_query, like, unlike)
        if HelperVector.is_zero(vector):
            self.logging.info("Composed query vector is zero, skipping semantic search")
            return
        query_vector = vector.tolist()

        # (a) session-level vectors
        session_hits = await self._rag_client.do_search(
            self._rag_client.collection_sessions, query_vector, limit * 2
        )
        hit_ids = [_session_id_from_key(hit.key) for hit in session_hits]
        sessions = await self._db_client.do_get_sessions([sid for sid in hit_ids if sid is not None])
        for hit, session_id in zip(session_hits, hit_ids):
            session = sessions.get(session_id) if session_id is not None else None
            if session is None:
                continue
            document = str(hit.payload.get("document") or "")
            if not self._passes_filters(session, request, since, project_ids, document):
                continue
            merged.add(self._to_result(session, 1 - hit.distance, project_ids, "session", document[:SNIPPET_CHARS]))

        # (b) message-level vectors, best message per session
        message_hits = await self._rag_client.do_search(
            self._rag_client.collection_messages, query_vector, limit * 3
        )
        owner_ids = {int(hit.payload["session_id"]) for hit in message_hits if hit.payload.get("session_id") is not None}
        sessions = await self._db_client.do_get_sessions(sorted(owner_ids - merged.seen))
        best: dict[int, tuple[float, str]] = {}
        for hit in message_hits:
            if hit.payload.get("session_id") is None:
                continue
            session_id = int(hit.payload["session_id"])
            session = sessions.get(session_id)
            if session is None or merged.has(session_id):
                continue
            document = str(hit.payload.get("document") or "")
            if not self._passes_filters(session, request, since, project_ids, document):
                continue
            score = 1 - hit.distance
            if session_id not in best or score > best[session_id][0]:
                best[session_id] = (score, document[:SNIPPET_CHARS])
        for session_id, (score, snippet) in best.items():
            merged.add(self._to_result(
                sessions[session_id], score, project_ids, "message", MESSAGE_SNIPPET_PREFIX + snippet
            ))

    async def _search_lexical(
        self,
        request: SearchRequest,
        limit: int,
        since: datetime | None,
        project_ids: set[int],
        merged: "_MergedResults",
    ) -> None:
        # (c) full-text over message text, exclusion applied in SQL
        hits = await self._db_client.do_search_fulltext(
            query=request.query,
            limit=limit * 2,
            source=request.source,
            since=since,
            project_ids=sorted(project_ids) if request.project_only else None,
            exclude_terms=request.exclude_terms,
        )
        for hit in hits:
            if merged.has(hit.id):
                continue
            if not self._passes_filters(hit, request, since, project_ids, hit.snippet):
                continue
            merged.add(self._to_result(hit, hit.rank, project_ids, "text", hit.snippet))

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _passes_filters(
        self,
        session: SessionInfo,
        request: SearchRequest,
        since: datetime | None,
        project_ids: set[int],
        text: str,
    ) -> bool:
        if request.source and session.source_name != request.source:
            return False
        if since and (session.started_at is None or session.started_at < since):
            return False
        if request.project_only and session.project_id not in project_ids:
            return False
        if request.exclude_terms:
            haystack = " ".join(filter(None, [session.title, session.summary, text])).lower()
            if any(term in haystack for term in request.exclude_terms.lower().split()):
                return False
        return True

    def _to_result(
        self,
        session: SessionInfo,
        score: float,
        project_ids: set[int],
        strategy: str,
        snippet: str,
    ) -> SearchResult:
        boost = self.project_boost if session.project_id in project_ids else 0.0
        return SearchResult(
            session_id=session.id,
            source=session.source_name,
            project_name=session.project_name,
            project_path=session.project_path,
            title=session.title or "Untitled",
            summary=session.summary,
            snippet=snippet,
            timestamp=session.started_at,
            message_count=session.message_count,
            score=score + boost,
            strategy=strategy,
        )


class _MergedResults:
    """Results keyed by session id, first added wins."""

    def __init__(self) -> None:
        self.results: list[SearchResult] = []
        self.seen: set[int] = set()

    def has(self, session_id: int) -> bool:
        return session_id in self.seen

    def add(self, result: SearchResult) -> None:
        if result.session_id in self.seen:
            return
        self.seen.add(result.session_id)
        self.results.append(result)
