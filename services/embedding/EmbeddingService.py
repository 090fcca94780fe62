"""Embedding production service.

Message path: fetches messages that have no vector yet (or whose nan failure
is due for another attempt), drops noise, embeds the survivors and writes
vectors to the RAG backend and records to the relational store.

Session path: embeds one aggregate vector per session from its (summarized)
transcript and re-embeds a session whenever its content has grown.
"""

import asyncio
from datetime import datetime
import math

import pytz

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPayload import MessageVectorPayload, SessionVectorPayload, VectorPoint
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperText import DEFAULT_NOISE_MIN_CHARS, classify_noise, sanitize_text
from shared.models.conversation import EmbeddableItem, EmbeddingRecord, SessionCandidate
from shared.models.errors import EmptyAfterSanitizationError
from shared.models.stats import MessageEmbeddingStats, SessionEmbeddingStats
from services.embedding.BatchEmbedder import BatchEmbedder
from services.embedding.HealingTracker import HealingTracker
from services.embedding.Summarizer import Summarizer

OVERFETCH_FACTOR = 1.3        # extra candidates fetched to make up for noise
SESSION_LIMIT = 100           # sessions processed per run
SESSION_EMBED_CHARS = 8000    # leading chars of the session text sent to the model
SESSION_DOCUMENT_CHARS = 2000 # chars of the session text stored in the vector payload
NO_CONTENT_SUMMARY = "No embeddable content"
EMBED_FAILED_SUMMARY = "Embedding generation failed"


def _to_millis(value: datetime | None) -> int:
    if value is None:
        return int(datetime.now(pytz.utc).timestamp() * 1000)
    return int(value.timestamp() * 1000)


class EmbeddingService:
    """Produces message-level and session-level vectors."""

    def __init__(
        self,
        helper_config: HelperConfig,
        db_client: DBClientInterface,
        rag_client: RAGClientInterface,
        batch_embedder: BatchEmbedder,
        summarizer: Summarizer,
        healing_tracker: HealingTracker,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._db_client = db_client
        self._rag_client = rag_client
        self._batch_embedder = batch_embedder
        self._summarizer = summarizer
        self._healing_tracker = healing_tracker

        self.batch_size = helper_config.get_int_val("EMBED_BATCH_SIZE", default=100)
        self.max_chars = helper_config.get_int_val("EMBED_MAX_CHARS", default=8000)
        self.batch_delay = helper_config.get_float_val("EMBED_BATCH_DELAY", default=0.1)
        self.noise_min_chars = helper_config.get_int_val("NOISE_MIN_CHARS", default=DEFAULT_NOISE_MIN_CHARS)

    ##########################################
    ############### MESSAGES #################
    ##########################################

    async def do_embed_pending_messages(self) -> MessageEmbeddingStats:
        """Embed all pending messages into the message collection.

        Loops until a fetch returns fewer rows than requested and none of its
        survivors were left pending. A batch error is
        logged and counted, and the loop moves on as long as the batch
        persisted anything. Ends with the healing cleanup pass.

        Returns:
            MessageEmbeddingStats: Counters of the run.
        """
        stats = MessageEmbeddingStats()
        collection = self._rag_client.collection_messages

        healable = await self._healing_tracker.do_count_healable()
        if healable:
            self.logging.info("%d previously failed messages are eligible for healing", healable)

        fetch_size = math.ceil(self.batch_size * OVERFETCH_FACTOR)
        while True:
            candidates = await self._db_client.do_fetch_message_candidates(
                collection,
                limit=fetch_size,
                retry_limit=self._healing_tracker.retry_limit,
                cooldown_days=self._healing_tracker.cooldown_days,
            )
            if not candidates:
                break

            persisted_before = self._count_persisted(stats)
            leftover = 0
            try:
                leftover = await self._process_message_batch(candidates, stats)
            except Exception as e:
                stats.errors += 1
                self.logging.error("Error embedding message batch starting at id %d: %s", candidates[0].id, e)

            # survivors beyond batch_size are still pending and come back with the next fetch
            if len(candidates) < fetch_size and leftover == 0:
                break
            if self._count_persisted(stats) == persisted_before:
                self.logging.warning("Message batch made no progress, stopping to avoid refetching the same rows.")
                break
            await asyncio.sleep(self.batch_delay)

        stats.healed_cleaned = await self._healing_tracker.do_cleanup_healed(collection)
        self.logging.info(
            "Message embedding complete: %d processed, %d noise, %d skipped, %d errors",
            stats.processed, stats.noise, stats.skipped, stats.errors,
            color="green",
        )
        return stats

    def _count_persisted(self, stats: MessageEmbeddingStats) -> int:
        return stats.processed + stats.noise + stats.skipped

    async def _process_message_batch(self, candidates: list[EmbeddableItem], stats: MessageEmbeddingStats) -> int:
        """Embed one fetch of candidates.

        Returns:
            int: Number of survivors beyond batch_size that were left pending.
        """
        survivors: list[tuple[EmbeddableItem, str]] = []
        for item in candidates:
            try:
                text = sanitize_text(item.content_text)
            except EmptyAfterSanitizationError as e:
                await self._healing_tracker.do_mark_noise(item.id, str(e))
                stats.skipped += 1
                continue
            reason = classify_noise(text, self.noise_min_chars)
            if reason is not None:
                await self._healing_tracker.do_mark_noise(item.id, reason)
                stats.noise += 1
                continue
            survivors.append((item, text))

        batch = survivors[:self.batch_size]
        leftover = len(survivors) - len(batch)
        if not batch:
            return leftover

        texts = [await self._prepare_text(text) for _, text in batch]
        result = await self._batch_embedder.do_embed_batch(texts)

        points: list[VectorPoint] = []
        records: list[EmbeddingRecord] = []
        for index, (item, text) in enumerate(batch):
            vector = result.vectors[index]
            if vector is None:
                await self._healing_tracker.do_mark_nan(item.id, result.failures.get(index, "NaN"))
                stats.skipped += 1
                continue
            points.append(VectorPoint(
                key=item.vector_key,
                vector=vector,
                payload=MessageVectorPayload(
                    key=item.vector_key,
                    source=item.source_name,
                    project_path=item.project_path or "",
                    session_id=item.session_id,
                    message_id=item.id,
                    role=item.role,
                    timestamp=_to_millis(item.timestamp),
                    model=item.model or "",
                    has_tool_use=item.role == "tool",
                    token_count=item.content_chars,
                    document=texts[index],
                ),
            ))
            records.append(EmbeddingRecord(
                message_id=item.id,
                collection=self._rag_client.collection_messages,
                vector_key=item.vector_key,
                embedding_model=self._batch_embedder.embed_model,
                dimensions=len(vector),
                content_chars_at_embed=item.content_chars,
            ))

        # vectors first, records second: a crash in between is repaired by the next run
        await self._rag_client.do_upsert_points(self._rag_client.collection_messages, points)
        await self._db_client.do_upsert_embedding_records(records)
        stats.processed += len(records)
        self.logging.info(
            "Embedded %d messages (%d failed, %d fallbacks)",
            len(records), result.failed_count, len(result.fallbacks),
        )
        return leftover

    async def _prepare_text(self, text: str) -> str:
        if len(text) <= self.max_chars:
            return text
        summary = (await self._summarizer.do_summarize([text])).strip()
        return (summary or text)[:self.max_chars]

    ##########################################
    ############### SESSIONS #################
    ##########################################

    async def do_embed_sessions(self) -> SessionEmbeddingStats:
        """Embed sessions that have no aggregate vector yet or whose content grew.

        One failing session is logged and does not stop the others.

        Returns:
            SessionEmbeddingStats: Counters of the run.
        """
        stats = SessionEmbeddingStats()
        sessions = await self._db_client.do_fetch_session_candidates(
            self._rag_client.collection_sessions, limit=SESSION_LIMIT
        )
        if not sessions:
            return stats

        self.logging.info("Processing %d session embeddings...", len(sessions))
        for session in sessions:
            try:
                await self._embed_session(session, stats)
            except Exception as e:
                stats.failures += 1
                self.logging.error("Failed to update session %d embedding: %s", session.id, e)

        self.logging.info(
            "Session embedding complete: %d new, %d re-embedded, %d synced, %d failures",
            stats.sessions_updated, stats.sessions_reembedded, stats.sessions_synced, stats.failures,
            color="green",
        )
        return stats

    async def _embed_session(self, session: SessionCandidate, stats: SessionEmbeddingStats) -> None:
        collection = self._rag_client.collection_sessions

        # the RAG backend may already hold an up-to-date vector, then only the record is missing
        stored = await self._rag_client.do_get_points(collection, [session.vector_key], with_vector=False)
        if stored:
            stored_chars = int(stored[0].payload.get("content_chars") or 0)
            if stored_chars and stored_chars >= session.content_chars:
                await self._upsert_session_record(session, stored_chars)
                stats.sessions_synced += 1
                return

        rows = await self._db_client.do_fetch_session_messages(session.id)
        if not rows:
            await self._mark_session_processed(session, NO_CONTENT_SUMMARY, 0)
            stats.failures += 1
            return

        formatted = [f"[{row['role'].upper()}]: {row['content_text']}" for row in rows]
        content_chars = sum(len(m) for m in formatted)

        text = await self._summarizer.do_summarize(formatted)
        was_summarized = len(text) < len("".join(formatted))

        try:
            result = await self._batch_embedder.do_embed_batch([text[:SESSION_EMBED_CHARS]])
            vector = result.vectors[0]
        except EmptyAfterSanitizationError:
            vector = None
        if vector is None:
            await self._mark_session_processed(session, EMBED_FAILED_SUMMARY, content_chars)
            stats.failures += 1
            return

        payload = SessionVectorPayload(
            key=session.vector_key,
            source=session.source_name,
            project_path=session.project_path or "",
            session_id=session.external_id,
            title=session.title or "",
            started_at=_to_millis(session.started_at),
            message_count=session.message_count,
            total_tokens=session.total_tokens,
            content_chars=content_chars,
            was_summarized=was_summarized,
            embedded_at=_to_millis(None),
            document=text[:SESSION_DOCUMENT_CHARS],
        )
        await self._rag_client.do_upsert_points(collection, [VectorPoint(key=session.vector_key, vector=vector, payload=payload)])
        await self._db_client.do_update_session_summary(session.id, text, content_chars)
        await self._upsert_session_record(session, content_chars)

        if session.is_reembed:
            stats.sessions_reembedded += 1
            self.logging.info(
                "Re-embedded session %d (%d -> %d chars)", session.id, session.existing_content_chars, content_chars
            )
        else:
            stats.sessions_updated += 1
            self.logging.info(
                "Embedded session %d (%d messages, %d chars)", session.id, session.message_count, content_chars
            )

    async def _upsert_session_record(self, session: SessionCandidate, content_chars: int) -> None:
        await self._db_client.do_upsert_session_record(
            session_id=session.id,
            collection=self._rag_client.collection_sessions,
            vector_key=session.vector_key,
            embedding_model=self._batch_embedder.embed_model,
            dimensions=self._batch_embedder.embed_dimensions,
            content_chars=content_chars,
        )

    async def _mark_session_processed(self, session: SessionCandidate, summary: str, content_chars: int) -> None:
        """Record a session that cannot be embedded so it leaves the pending queue."""
        self.logging.warning("Session %d marked processed without vector: %s", session.id, summary)
        await self._db_client.do_update_session_summary(session.id, summary, content_chars, keep_existing=True)
        await self._upsert_session_record(session, content_chars)
