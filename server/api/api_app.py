"""FastAPI application entry point for the conversation search API."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os

from server.api.routers.SearchRouter import search_router
from services.embedding.BatchEmbedder import BatchEmbedder
from services.embedding.Summarizer import Summarizer
from services.search.QueryComposer import QueryComposer
from services.search.SearchService import SearchService
from shared.clients.db.DBClientManager import DBClientManager
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown."""
    app.state.logging = logging
    app.state.config = HelperConfig(logger=app.state.logging)

    # Initialise clients
    db_client = DBClientManager(helper_config=app.state.config).get_client()
    rag_client = RAGClientManager(helper_config=app.state.config).get_client()
    embed_client = EmbedClientManager(helper_config=app.state.config).get_client()
    llm_client = LLMClientManager(helper_config=app.state.config).get_client()
    app.state.clients = [db_client, rag_client, embed_client, llm_client]
    for client in app.state.clients:
        await client.boot()

    # Health checks
    if not await db_client.do_healthcheck():
        raise RuntimeError("Database healthcheck returned no row.")
    await rag_client.do_healthcheck()
    await embed_client.do_healthcheck()

    # Ensure collections exist, so searching a fresh index returns nothing instead of failing
    for collection in (rag_client.collection_messages, rag_client.collection_sessions):
        await rag_client.do_ensure_collection(collection, embed_client.embed_dimensions)

    # Wire up services
    batch_embedder = BatchEmbedder(
        helper_config=app.state.config,
        embed_client=embed_client,
        summarizer=Summarizer(helper_config=app.state.config, llm_client=llm_client),
    )
    app.state.search_service = SearchService(
        helper_config=app.state.config,
        db_client=db_client,
        rag_client=rag_client,
        query_composer=QueryComposer(
            helper_config=app.state.config,
            db_client=db_client,
            batch_embedder=batch_embedder,
        ),
    )

    app.state.logging.info("Conversation search API ready.", color="green")
    yield

    # Shutdown
    for client in app.state.clients:
        await client.close()
    app.state.logging.info("Conversation search API shut down.")


app = FastAPI(
    title="Conversation Index",
    description="Semantic and full-text search over indexed AI coding sessions.",
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(search_router)


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    port = int(os.getenv("APP_PORT", "8000"))
    logging.info("Starting conversation search API v%s on port %d...", app_version, port)
    uvicorn.run(app, host="0.0.0.0", port=port)
