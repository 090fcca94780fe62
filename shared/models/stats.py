"""Run statistics returned by the indexing services."""

from pydantic import BaseModel


class MessageEmbeddingStats(BaseModel):
    processed: int = 0
    skipped: int = 0
    noise: int = 0
    errors: int = 0
    healed_cleaned: int = 0


class SessionEmbeddingStats(BaseModel):
    sessions_updated: int = 0
    sessions_reembedded: int = 0
    sessions_synced: int = 0
    failures: int = 0


class CentroidRunStats(BaseModel):
    computed: int = 0
    skipped: int = 0
    failed: int = 0
