"""Indexer entry point.

Embeds pending messages (including nan failures due for another attempt),
embeds new or grown sessions, then refreshes session and project centroids.
Run it on a schedule; every stage is idempotent.

Usage:
    python -m indexer.index_runner
"""

import asyncio

from services.centroids.CentroidService import CentroidService
from services.embedding.BatchEmbedder import BatchEmbedder
from services.embedding.EmbeddingService import EmbeddingService
from services.embedding.HealingTracker import HealingTracker
from services.embedding.Summarizer import Summarizer
from shared.clients.db.DBClientManager import DBClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.conversation import ScopeKind


async def main() -> None:
    """Run the full indexing pipeline."""
    logger = setup_logging(name="indexer")
    config = HelperConfig(logger=logger)

    db_client = DBClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()
    embed_client = EmbedClientManager(helper_config=config).get_client()
    llm_client = LLMClientManager(helper_config=config).get_client()
    clients = [db_client, rag_client, embed_client, llm_client]

    try:
        # boot all clients. Every client is required, a failing one aborts the run.
        for client in clients:
            try:
                await client.boot()
            except Exception as e:
                logger.error("Error booting %s client %s: %s. Aborting.", client.get_client_type(), client.get_engine_name(), e)
                return

        if not await db_client.do_healthcheck():
            logger.error("Database is not reachable. Aborting.")
            return
        try:
            await rag_client.do_healthcheck()
            await embed_client.do_healthcheck()
        except Exception as e:
            logger.error("Healthcheck failed: %s. Aborting.", e)
            return

        if not await embed_client.do_check_model():
            logger.warning(
                "Embedding model %s is not listed by %s, requests may fail",
                embed_client.embed_model, embed_client.get_engine_name(),
                color="yellow",
            )

        # create both collections, if not already existing
        for collection in (rag_client.collection_messages, rag_client.collection_sessions):
            await rag_client.do_ensure_collection(collection, embed_client.embed_dimensions)

        summarizer = Summarizer(helper_config=config, llm_client=llm_client)
        embedding_service = EmbeddingService(
            helper_config=config,
            db_client=db_client,
            rag_client=rag_client,
            batch_embedder=BatchEmbedder(helper_config=config, embed_client=embed_client, summarizer=summarizer),
            summarizer=summarizer,
            healing_tracker=HealingTracker(helper_config=config, db_client=db_client),
        )
        centroid_service = CentroidService(helper_config=config, db_client=db_client, rag_client=rag_client)

        message_stats = await embedding_service.do_embed_pending_messages()
        logger.info("Messages: %s", message_stats.model_dump(), color="green")

        session_stats = await embedding_service.do_embed_sessions()
        logger.info("Sessions: %s", session_stats.model_dump(), color="green")

        for kind in (ScopeKind.SESSION, ScopeKind.PROJECT):
            await centroid_service.do_compute_all(kind)
    finally:
        for client in clients:
            await client.close()


if __name__ == "__main__":
    asyncio.run(main())
