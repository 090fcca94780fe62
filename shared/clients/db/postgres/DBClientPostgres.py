from typing import Any

import psycopg2
import psycopg2.extras
import psycopg2.pool

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.conversation import ScopeKind

# columns shared by every query that returns SessionInfo rows
_SESSION_COLUMNS = """
    s.id, s.title, s.summary, p.id AS project_id, p.name AS project_name, p.path AS project_path,
    src.name AS source_name, s.started_at, s.message_count
"""

_SCOPE_TABLES = {
    ScopeKind.SESSION: "sessions",
    ScopeKind.PROJECT: "projects",
}


class DBClientPostgres(DBClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._host = self.get_config_val("HOST", default=None, val_type="string")
        self._port = int(self.get_config_val("PORT", default=5433, val_type="number"))
        self._user = self.get_config_val("USER", default=None, val_type="string")
        self._password = self.get_config_val("PASSWORD", default="", val_type="string")
        self._database = self.get_config_val("DATABASE", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Postgres"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="HOST", val_type="string", default=None),
            EnvConfig(env_key="PORT", val_type="number", default=5433),
            EnvConfig(env_key="USER", val_type="string", default=None),
            EnvConfig(env_key="PASSWORD", val_type="string", default=""),
            EnvConfig(env_key="DATABASE", val_type="string", default=None),
        ]

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return f"postgresql://{self._user}@{self._host}:{self._port}/{self._database}"

    ##########################################
    ############### CONNECTION ###############
    ##########################################

    def _create_pool(self) -> Any:
        return psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=self.pool_size,
            host=self._host,
            port=self._port,
            user=self._user,
            password=self._password,
            dbname=self._database,
            connect_timeout=int(self.timeout),
        )

    def _close_pool(self, pool: Any) -> None:
        pool.closeall()

    def _run_query(self, pool: Any, sql: str, params: dict | None, fetch: str) -> Any:
        conn = pool.getconn()
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(sql, params)
                if fetch == "all":
                    result = [dict(row) for row in cursor.fetchall()]
                elif fetch == "one":
                    row = cursor.fetchone()
                    result = dict(row) if row else None
                else:
                    result = cursor.rowcount
            conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def _run_many(self, pool: Any, sql: str, params_list: list[dict]) -> None:
        conn = pool.getconn()
        try:
            with conn.cursor() as cursor:
                psycopg2.extras.execute_batch(cursor, sql, params_list)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    ##########################################
    ################ QUERIES #################
    ##########################################

    def _get_query_healthcheck(self) -> str:
        return "SELECT 1 AS ok"

    ################ MESSAGES ##################
    def _get_query_message_candidates(self) -> str:
        return """
            SELECT m.id, m.session_id, m.content_text, m.role, m.timestamp, m.model,
                   p.path AS project_path, src.name AS source_name
            FROM messages m
            JOIN sessions s ON m.session_id = s.id
            JOIN projects p ON s.project_id = p.id
            JOIN sources src ON p.source_id = src.id
            LEFT JOIN embeddings e ON e.message_id = m.id AND e.collection = %(collection)s
            LEFT JOIN embeddings f ON f.message_id = m.id AND f.collection = %(unembeddable)s
            WHERE e.id IS NULL
              AND m.content_text IS NOT NULL
              AND LENGTH(m.content_text) > 10
              AND m.role != 'tool'
              AND (
                f.id IS NULL
                OR (
                  f.failure_reason = 'nan'
                  AND f.retry_count < %(retry_limit)s
                  AND f.updated_at < NOW() - %(cooldown_days)s * INTERVAL '1 day'
                )
              )
            ORDER BY m.id
            LIMIT %(limit)s
        """

    def _get_query_upsert_record(self) -> str:
        return """
            INSERT INTO embeddings (message_id, collection, vector_key, embedding_model, dimensions, content_chars_at_embed, updated_at)
            VALUES (%(message_id)s, %(collection)s, %(vector_key)s, %(embedding_model)s, %(dimensions)s, %(content_chars_at_embed)s, NOW())
            ON CONFLICT (message_id, collection) DO UPDATE SET
                vector_key = EXCLUDED.vector_key,
                embedding_model = EXCLUDED.embedding_model,
                dimensions = EXCLUDED.dimensions,
                content_chars_at_embed = EXCLUDED.content_chars_at_embed,
                updated_at = NOW()
        """

    def _get_query_upsert_failure(self) -> str:
        return """
            INSERT INTO embeddings (message_id, collection, vector_key, embedding_model, dimensions, content_chars_at_embed,
                                    failure_reason, failure_detail, retry_count, updated_at)
            VALUES (%(message_id)s, %(collection)s, %(vector_key)s, 'none', 0, 0,
                    %(reason)s, %(detail)s, CASE WHEN %(reason)s = 'nan' THEN 1 ELSE 0 END, NOW())
            ON CONFLICT (message_id, collection) DO UPDATE SET
                failure_reason = EXCLUDED.failure_reason,
                failure_detail = EXCLUDED.failure_detail,
                retry_count = CASE
                    WHEN EXCLUDED.failure_reason = 'nan' THEN embeddings.retry_count + 1
                    ELSE embeddings.retry_count
                END,
                updated_at = NOW()
        """

    def _get_query_count_healable(self) -> str:
        return """
            SELECT COUNT(*) AS count
            FROM embeddings
            WHERE collection = %(collection)s
              AND failure_reason = 'nan'
              AND retry_count < %(retry_limit)s
              AND updated_at < NOW() - %(cooldown_days)s * INTERVAL '1 day'
        """

    def _get_query_cleanup_healed(self) -> str:
        return """
            DELETE FROM embeddings f
            WHERE f.collection = %(unembeddable)s
              AND EXISTS (
                SELECT 1 FROM embeddings e
                WHERE e.message_id = f.message_id AND e.collection = %(collection)s
              )
        """

    ################ SESSIONS ##################
    def _get_query_session_candidates(self) -> str:
        # an empty session recorded with content_chars_at_embed = 0 is done, not pending
        return """
            SELECT s.id, s.external_id, s.title, p.path AS project_path, src.name AS source_name,
                   s.message_count,
                   COALESCE(s.total_input_tokens, 0) + COALESCE(s.total_output_tokens, 0) AS total_tokens,
                   COALESCE(s.content_chars, 0) AS content_chars, s.started_at,
                   e.content_chars_at_embed AS existing_content_chars
            FROM sessions s
            JOIN projects p ON s.project_id = p.id
            JOIN sources src ON p.source_id = src.id
            LEFT JOIN embeddings e ON e.collection = %(collection)s AND e.vector_key = 'session-' || s.id::text
            WHERE s.message_count > 0
              AND COALESCE(s.title, '') != 'Warmup'
              AND s.deleted_at IS NULL
              AND (
                e.id IS NULL
                OR COALESCE(s.content_chars, 0) > COALESCE(e.content_chars_at_embed, 0)
                OR (COALESCE(s.content_chars, 0) = 0 AND e.content_chars_at_embed IS NULL)
              )
            ORDER BY s.id
            LIMIT %(limit)s
        """

    def _get_query_session_messages(self) -> str:
        return """
            SELECT role, content_text
            FROM messages
            WHERE session_id = %(session_id)s
              AND content_text IS NOT NULL
              AND LENGTH(content_text) > 0
            ORDER BY sequence_num, id
        """

    def _get_query_update_session_summary(self, keep_existing: bool) -> str:
        summary = "COALESCE(summary, %(summary)s)" if keep_existing else "%(summary)s"
        return f"""
            UPDATE sessions SET summary = {summary}, content_chars = %(content_chars)s
            WHERE id = %(session_id)s
        """

    def _get_query_upsert_session_record(self) -> str:
        return """
            INSERT INTO embeddings (message_id, collection, vector_key, embedding_model, dimensions, content_chars_at_embed, updated_at)
            SELECT MIN(m.id), %(collection)s, %(vector_key)s, %(embedding_model)s, %(dimensions)s, %(content_chars_at_embed)s, NOW()
            FROM messages m
            WHERE m.session_id = %(session_id)s
            HAVING MIN(m.id) IS NOT NULL
            ON CONFLICT (message_id, collection) DO UPDATE SET
                embedding_model = EXCLUDED.embedding_model,
                dimensions = EXCLUDED.dimensions,
                content_chars_at_embed = EXCLUDED.content_chars_at_embed,
                updated_at = NOW()
        """

    ################ CENTROIDS ##################
    def _get_scope_filter(self, kind: ScopeKind) -> tuple[str, str]:
        if kind == ScopeKind.SESSION:
            return "", "m.session_id = %(scope_id)s"
        return "JOIN sessions s ON m.session_id = s.id", "s.project_id = %(scope_id)s"

    def _get_query_count_scope_vectors(self, kind: ScopeKind) -> str:
        join, condition = self._get_scope_filter(kind)
        return f"""
            SELECT COUNT(*) AS count
            FROM messages m
            {join}
            JOIN embeddings e ON e.message_id = m.id AND e.collection = %(collection)s
            WHERE {condition}
        """

    def _get_query_scope_vector_page(self, kind: ScopeKind) -> str:
        join, condition = self._get_scope_filter(kind)
        return f"""
            SELECT m.id AS message_id, e.vector_key
            FROM messages m
            {join}
            JOIN embeddings e ON e.message_id = m.id AND e.collection = %(collection)s
            WHERE {condition}
              AND m.id > %(after_id)s
            ORDER BY m.id
            LIMIT %(limit)s
        """

    def _get_query_store_centroid(self, kind: ScopeKind) -> str:
        return f"""
            UPDATE {_SCOPE_TABLES[kind]}
            SET centroid_vector = %(vector)s,
                centroid_message_count = %(count)s,
                centroid_computed_at = %(computed_at)s
            WHERE id = %(scope_id)s
        """

    def _get_query_get_centroid(self, kind: ScopeKind) -> str:
        return f"""
            SELECT centroid_vector
            FROM {_SCOPE_TABLES[kind]}
            WHERE id = %(scope_id)s AND centroid_vector IS NOT NULL
        """

    def _get_query_list_scopes(self, kind: ScopeKind) -> str:
        column = "s.id" if kind == ScopeKind.SESSION else "s.project_id"
        return f"""
            SELECT DISTINCT {column} AS id
            FROM sessions s
            JOIN messages m ON m.session_id = s.id
            JOIN embeddings e ON e.message_id = m.id AND e.collection = %(collection)s
            WHERE COALESCE(s.title, '') != 'Warmup'
              AND s.deleted_at IS NULL
            ORDER BY id
        """

    ################ SEARCH ##################
    def _get_query_projects_by_path(self) -> str:
        return """
            SELECT p.id, p.path, p.name, src.name AS source_name
            FROM projects p
            JOIN sources src ON p.source_id = src.id
            WHERE p.path IS NOT NULL
              AND (%(path)s LIKE p.path || '%%' OR p.path LIKE %(path)s || '%%')
            ORDER BY LENGTH(p.path) DESC
        """

    def _get_query_sessions_by_ids(self) -> str:
        return f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions s
            JOIN projects p ON s.project_id = p.id
            JOIN sources src ON p.source_id = src.id
            WHERE s.deleted_at IS NULL
              AND s.id = ANY(%(ids)s::int[])
        """

    def _get_query_fulltext(self, with_projects: bool, with_exclude: bool) -> str:
        conditions = [
            "to_tsvector('english', m.content_text) @@ plainto_tsquery('english', %(query)s)",
            "s.deleted_at IS NULL",
            "(%(source)s::text IS NULL OR src.name = %(source)s)",
            "(%(since)s::timestamptz IS NULL OR s.started_at >= %(since)s)",
        ]
        if with_projects:
            conditions.append("s.project_id = ANY(%(project_ids)s::int[])")
        if with_exclude:
            conditions.append("NOT to_tsvector('english', m.content_text) @@ plainto_tsquery('english', %(exclude_terms)s)")
        where = "\n              AND ".join(conditions)
        return f"""
            WITH ranked_messages AS (
              SELECT DISTINCT ON (m.session_id)
                m.session_id,
                ts_rank(to_tsvector('english', m.content_text), plainto_tsquery('english', %(query)s)) AS rank,
                substring(m.content_text, 1, 300) AS snippet
              FROM messages m
              JOIN sessions s ON m.session_id = s.id
              JOIN projects p ON s.project_id = p.id
              JOIN sources src ON p.source_id = src.id
              WHERE {where}
              ORDER BY m.session_id, rank DESC
            )
            SELECT {_SESSION_COLUMNS}, rm.rank, rm.snippet
            FROM ranked_messages rm
            JOIN sessions s ON rm.session_id = s.id
            JOIN projects p ON s.project_id = p.id
            JOIN sources src ON p.source_id = src.id
            ORDER BY rm.rank DESC
            LIMIT %(limit)s
        """
