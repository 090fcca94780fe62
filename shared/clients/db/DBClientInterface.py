from abc import abstractmethod
import asyncio
from datetime import datetime
import json
from typing import Any

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import (
    UNEMBEDDABLE_COLLECTION,
    Centroid,
    CentroidScope,
    EmbeddableItem,
    EmbeddingRecord,
    FailureReason,
    MessageVectorRef,
    ScopeKind,
    SessionCandidate,
)
from shared.models.search import LexicalHit, ProjectMatch, SessionInfo


class DBClientInterface(ClientInterface):
    """Relational store client.

    Engine subclasses provide the connection pool and the SQL for every query.
    This class runs the queries in a worker thread and maps rows to models, so
    async callers never block the event loop on the database driver.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.pool_size = int(self.get_config_val("POOL_SIZE", default=10, val_type="number"))
        self._pool: Any = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "db"

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # credentials are part of the connection parameters
        return {}

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return ""

    ################ CONNECTION ##################
    @abstractmethod
    def _create_pool(self) -> Any:
        """
        Creates the engine-specific connection pool. Called in a worker thread.

        Returns:
            Any: A pool object understood by _run_query / _close_pool.
        """
        pass

    @abstractmethod
    def _close_pool(self, pool: Any) -> None:
        """
        Closes every connection of the pool.
        """
        pass

    @abstractmethod
    def _run_query(self, pool: Any, sql: str, params: dict | None, fetch: str) -> Any:
        """
        Executes one statement on a pooled connection and commits. Called in a worker thread.

        Args:
            pool (Any): The connection pool.
            sql (str): The statement with named placeholders.
            params (dict | None): Named parameters.
            fetch (str): "all" (list of row dicts), "one" (row dict or None) or "count" (affected rows).

        Returns:
            Any: The fetched rows, row or affected row count.
        """
        pass

    @abstractmethod
    def _run_many(self, pool: Any, sql: str, params_list: list[dict]) -> None:
        """
        Executes one statement for each parameter set in a single transaction. Called in a worker thread.
        """
        pass

    ################ QUERIES ##################
    @abstractmethod
    def _get_query_healthcheck(self) -> str:
        pass

    @abstractmethod
    def _get_query_message_candidates(self) -> str:
        """
        Messages without a record in the message collection, excluding tool output,
        trivially short texts and failure records that are not eligible for healing.

        Params: collection, unembeddable, retry_limit, cooldown_days, limit.
        """
        pass

    @abstractmethod
    def _get_query_upsert_record(self) -> str:
        """
        Upsert of a successful EmbeddingRecord keyed by (message_id, collection).
        """
        pass

    @abstractmethod
    def _get_query_upsert_failure(self) -> str:
        """
        Upsert of a failure record in the unembeddable collection.
        A nan failure increments retry_count, a noise failure leaves it untouched.
        """
        pass

    @abstractmethod
    def _get_query_count_healable(self) -> str:
        pass

    @abstractmethod
    def _get_query_cleanup_healed(self) -> str:
        pass

    @abstractmethod
    def _get_query_session_candidates(self) -> str:
        pass

    @abstractmethod
    def _get_query_session_messages(self) -> str:
        pass

    @abstractmethod
    def _get_query_update_session_summary(self, keep_existing: bool) -> str:
        pass

    @abstractmethod
    def _get_query_upsert_session_record(self) -> str:
        """
        Upsert of a session-level EmbeddingRecord anchored on the first message id of the session.
        """
        pass

    @abstractmethod
    def _get_query_count_scope_vectors(self, kind: ScopeKind) -> str:
        pass

    @abstractmethod
    def _get_query_scope_vector_page(self, kind: ScopeKind) -> str:
        pass

    @abstractmethod
    def _get_query_store_centroid(self, kind: ScopeKind) -> str:
        pass

    @abstractmethod
    def _get_query_get_centroid(self, kind: ScopeKind) -> str:
        pass

    @abstractmethod
    def _get_query_list_scopes(self, kind: ScopeKind) -> str:
        pass

    @abstractmethod
    def _get_query_projects_by_path(self) -> str:
        pass

    @abstractmethod
    def _get_query_sessions_by_ids(self) -> str:
        pass

    @abstractmethod
    def _get_query_fulltext(self, with_projects: bool, with_exclude: bool) -> str:
        """
        Full-text search over message text, one best-ranked message per session.

        Params: query, source, since, limit, plus project_ids / exclude_terms when enabled.
        """
        pass

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        """Create the connection pool."""
        self._pool = await asyncio.to_thread(self._create_pool)
        self.logging.debug("Created %s connection pool with up to %d connections", self.get_engine_name(), self.pool_size)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await asyncio.to_thread(self._close_pool, self._pool)
            self._pool = None

    async def _execute(self, sql: str, params: dict | None = None, fetch: str = "all") -> Any:
        if self._pool is None:
            raise Exception("Connection pool not initialised. Call boot() before making queries.")
        return await asyncio.to_thread(self._run_query, self._pool, sql, params, fetch)

    async def _execute_many(self, sql: str, params_list: list[dict]) -> None:
        if self._pool is None:
            raise Exception("Connection pool not initialised. Call boot() before making queries.")
        if not params_list:
            return
        await asyncio.to_thread(self._run_many, self._pool, sql, params_list)

    async def do_healthcheck(self) -> bool:
        """Check that the database answers a trivial query.

        Returns:
            bool: True if the query succeeded.
        """
        row = await self._execute(self._get_query_healthcheck(), fetch="one")
        return row is not None

    ##########################################
    ############### MESSAGES #################
    ##########################################

    async def do_fetch_message_candidates(self, collection: str, limit: int, retry_limit: int, cooldown_days: int) -> list[EmbeddableItem]:
        """Fetch messages that still need a vector in the given collection, ordered by id.

        Args:
            collection (str): The message collection name.
            limit (int): Maximum number of rows.
            retry_limit (int): nan failures with this many retries are never refetched.
            cooldown_days (int): nan failures younger than this are not refetched.

        Returns:
            list[EmbeddableItem]: The candidates.
        """
        rows = await self._execute(
            self._get_query_message_candidates(),
            {
                "collection": collection,
                "unembeddable": UNEMBEDDABLE_COLLECTION,
                "retry_limit": retry_limit,
                "cooldown_days": cooldown_days,
                "limit": limit,
            },
        )
        return [EmbeddableItem(**row) for row in rows]

    async def do_upsert_embedding_records(self, records: list[EmbeddingRecord]) -> None:
        """Upsert successful EmbeddingRecords keyed by (message_id, collection)."""
        await self._execute_many(
            self._get_query_upsert_record(),
            [
                {
                    "message_id": r.message_id,
                    "collection": r.collection,
                    "vector_key": r.vector_key,
                    "embedding_model": r.embedding_model,
                    "dimensions": r.dimensions,
                    "content_chars_at_embed": r.content_chars_at_embed,
                }
                for r in records
            ],
        )

    async def do_upsert_failure(self, message_id: int, reason: FailureReason, detail: str) -> None:
        """Upsert the failure record of a message in the unembeddable collection."""
        await self._execute(
            self._get_query_upsert_failure(),
            {
                "message_id": message_id,
                "collection": UNEMBEDDABLE_COLLECTION,
                "vector_key": f"unembeddable-{message_id}",
                "reason": reason.value,
                "detail": detail,
            },
            fetch="count",
        )

    async def do_count_healable(self, retry_limit: int, cooldown_days: int) -> int:
        """Count nan failure records that are eligible for another attempt."""
        row = await self._execute(
            self._get_query_count_healable(),
            {"collection": UNEMBEDDABLE_COLLECTION, "retry_limit": retry_limit, "cooldown_days": cooldown_days},
            fetch="one",
        )
        return int(row["count"]) if row else 0

    async def do_cleanup_healed(self, collection: str) -> int:
        """Delete failure records of messages that now have a successful record in the collection.

        Returns:
            int: The number of deleted failure records.
        """
        return await self._execute(
            self._get_query_cleanup_healed(),
            {"collection": collection, "unembeddable": UNEMBEDDABLE_COLLECTION},
            fetch="count",
        )

    ##########################################
    ############### SESSIONS #################
    ##########################################

    async def do_fetch_session_candidates(self, collection: str, limit: int = 100) -> list[SessionCandidate]:
        """Fetch sessions that have no session-level record or whose content grew since embedding."""
        rows = await self._execute(
            self._get_query_session_candidates(),
            {"collection": collection, "limit": limit},
        )
        return [SessionCandidate(**row) for row in rows]

    async def do_fetch_session_messages(self, session_id: int) -> list[dict]:
        """Fetch the non-empty message texts of a session in conversation order.

        Returns:
            list[dict]: Rows with "role" and "content_text".
        """
        return await self._execute(self._get_query_session_messages(), {"session_id": session_id})

    async def do_update_session_summary(self, session_id: int, summary: str, content_chars: int, keep_existing: bool = False) -> None:
        """Store the summary and content length on the session row.

        Args:
            keep_existing (bool): Only set the summary if the session has none yet.
        """
        await self._execute(
            self._get_query_update_session_summary(keep_existing),
            {"session_id": session_id, "summary": summary, "content_chars": content_chars},
            fetch="count",
        )

    async def do_upsert_session_record(self, session_id: int, collection: str, vector_key: str, embedding_model: str, dimensions: int, content_chars: int) -> None:
        """Upsert the session-level EmbeddingRecord, anchored on the session's first message."""
        await self._execute(
            self._get_query_upsert_session_record(),
            {
                "session_id": session_id,
                "collection": collection,
                "vector_key": vector_key,
                "embedding_model": embedding_model,
                "dimensions": dimensions,
                "content_chars_at_embed": content_chars,
            },
            fetch="count",
        )

    ##########################################
    ############### CENTROIDS ################
    ##########################################

    async def do_count_scope_vectors(self, scope: CentroidScope, collection: str) -> int:
        """Count the message-level records of a scope in the message collection."""
        row = await self._execute(
            self._get_query_count_scope_vectors(scope.kind),
            {"scope_id": scope.id, "collection": collection},
            fetch="one",
        )
        return int(row["count"]) if row else 0

    async def do_fetch_scope_vector_page(self, scope: CentroidScope, collection: str, after_id: int, limit: int) -> list[MessageVectorRef]:
        """Fetch one page of (message id, vector key) rows with message id greater than after_id."""
        rows = await self._execute(
            self._get_query_scope_vector_page(scope.kind),
            {"scope_id": scope.id, "collection": collection, "after_id": after_id, "limit": limit},
        )
        return [MessageVectorRef(**row) for row in rows]

    async def do_store_centroid(self, centroid: Centroid) -> None:
        """Store a centroid on its session or project row."""
        await self._execute(
            self._get_query_store_centroid(centroid.scope.kind),
            {
                "scope_id": centroid.scope.id,
                "vector": json.dumps(centroid.vector),
                "count": centroid.vector_count,
                "computed_at": centroid.computed_at,
            },
            fetch="count",
        )

    async def do_get_centroid(self, kind: ScopeKind, scope_id: int) -> list[float] | None:
        """Fetch the stored centroid vector of a session or project, None when absent."""
        row = await self._execute(self._get_query_get_centroid(kind), {"scope_id": scope_id}, fetch="one")
        if not row or not row.get("centroid_vector"):
            return None
        return json.loads(row["centroid_vector"])

    async def do_list_scopes(self, kind: ScopeKind, collection: str) -> list[int]:
        """List the ids of sessions or projects that have message embeddings in the collection."""
        rows = await self._execute(self._get_query_list_scopes(kind), {"collection": collection})
        return [int(row["id"]) for row in rows]

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def do_find_projects_by_path(self, path: str) -> list[ProjectMatch]:
        """Projects whose path is a prefix of the given path or vice versa, longest path first."""
        rows = await self._execute(self._get_query_projects_by_path(), {"path": path})
        return [ProjectMatch(**row) for row in rows]

    async def do_get_sessions(self, session_ids: list[int]) -> dict[int, SessionInfo]:
        """Fetch display data of active sessions by id. Soft-deleted or unknown ids are absent."""
        if not session_ids:
            return {}
        rows = await self._execute(self._get_query_sessions_by_ids(), {"ids": list(session_ids)})
        return {int(row["id"]): SessionInfo(**row) for row in rows}

    async def do_search_fulltext(
        self,
        query: str,
        limit: int,
        source: str | None = None,
        since: datetime | None = None,
        project_ids: list[int] | None = None,
        exclude_terms: str | None = None,
    ) -> list[LexicalHit]:
        """Ranked full-text search over message text, best message per session.

        Args:
            query (str): Raw query text.
            limit (int): Maximum number of sessions.
            source (str | None): Restrict to this source name.
            since (datetime | None): Restrict to sessions started at or after this time.
            project_ids (list[int] | None): Restrict to these projects when given.
            exclude_terms (str | None): Drop messages matching these terms.

        Returns:
            list[LexicalHit]: Hits ordered by rank descending.
        """
        params: dict = {"query": query, "source": source, "since": since, "limit": limit}
        if project_ids is not None:
            params["project_ids"] = list(project_ids)
        if exclude_terms:
            params["exclude_terms"] = exclude_terms
        rows = await self._execute(
            self._get_query_fulltext(with_projects=project_ids is not None, with_exclude=bool(exclude_terms)),
            params,
        )
        return [LexicalHit(**row) for row in rows]
