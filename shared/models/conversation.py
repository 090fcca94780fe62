"""Pydantic models for the indexed conversation data.

Hierarchy:
  EmbeddableItem   : a message selected as embedding candidate (immutable).
  SessionCandidate : a session whose aggregate vector is missing or stale.
  EmbeddingRecord  : relational bookkeeping linking an item to a vector-store collection.
  CentroidScope    : a session or project a centroid belongs to.
  Centroid         : unit-normalized mean vector of a scope.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

UNEMBEDDABLE_COLLECTION = "UNEMBEDDABLE"


class FailureReason(str, Enum):
    NOISE = "noise"
    NAN = "nan"


class EmbeddableItem(BaseModel):
    """A message selected for embedding. Superseded, never mutated, when its source grows."""

    model_config = ConfigDict(frozen=True)

    id: int
    session_id: int
    content_text: str
    role: str
    timestamp: datetime
    project_path: str | None = None
    source_name: str
    model: str | None = None

    @property
    def content_chars(self) -> int:
        return len(self.content_text)

    @property
    def vector_key(self) -> str:
        return f"msg-{self.id}"


class SessionCandidate(BaseModel):
    """A session that has no aggregate embedding yet, or whose content grew since it was embedded."""

    id: int
    external_id: str
    title: str | None = None
    project_path: str | None = None
    source_name: str
    message_count: int = 0
    total_tokens: int = 0
    content_chars: int = 0
    started_at: datetime | None = None
    existing_content_chars: int | None = None

    @property
    def vector_key(self) -> str:
        return f"session-{self.id}"

    @property
    def is_reembed(self) -> bool:
        return self.existing_content_chars is not None


class EmbeddingRecord(BaseModel):
    """One row of embedding bookkeeping, unique per (message_id, collection).

    Successful records live in a content collection; failure records live in
    the UNEMBEDDABLE sentinel collection and carry the failure fields.
    """

    message_id: int
    collection: str
    vector_key: str
    embedding_model: str
    dimensions: int
    content_chars_at_embed: int = 0
    failure_reason: FailureReason | None = None
    failure_detail: str | None = None
    retry_count: int = 0
    updated_at: datetime | None = None

    @property
    def is_failure(self) -> bool:
        return self.collection == UNEMBEDDABLE_COLLECTION


class ScopeKind(str, Enum):
    SESSION = "session"
    PROJECT = "project"


class CentroidScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class Centroid(BaseModel):
    """Unit-normalized mean of the message vectors in a scope."""

    scope: CentroidScope
    vector: list[float]
    vector_count: int
    computed_at: datetime


class MessageVectorRef(BaseModel):
    """Page row used when streaming a scope's message vectors."""

    message_id: int
    vector_key: str
