"""Pydantic models for search requests and responses."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    TEXT = "text"
    HYBRID = "hybrid"


class SearchRequest(BaseModel):
    """Incoming search request.

    Accepts both snake_case and camelCase field names (e.g. like_session / likeSession).
    Weighted id entries are formatted as "identifier" or "identifier:weight".
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str | None = None
    negative_query: str | None = None
    exclude_terms: str | None = None
    mode: SearchMode = SearchMode.HYBRID
    limit: int | None = Field(default=None, gt=0)
    source: str | None = None
    since: str | None = None
    cwd: str | None = None
    project_only: bool = False
    like_session: list[str] = []
    unlike_session: list[str] = []
    like_project: list[str] = []
    unlike_project: list[str] = []

    def has_exemplars(self) -> bool:
        return bool(self.like_session or self.unlike_session or self.like_project or self.unlike_project)


class WeightedExemplar(BaseModel):
    """A parsed "identifier[:weight]" search input."""

    id: str
    weight: float = 1.0


class ResolvedExemplar(WeightedExemplar):
    """A weighted exemplar whose stored centroid was found."""

    centroid: list[float]


class ProjectMatch(BaseModel):
    """A project whose path overlaps the caller's working directory."""

    id: int
    path: str
    name: str | None = None
    source_name: str


class SessionInfo(BaseModel):
    """Display data of an active (not soft-deleted) session."""

    id: int
    title: str | None = None
    summary: str | None = None
    project_id: int
    project_name: str | None = None
    project_path: str | None = None
    source_name: str
    started_at: datetime | None = None
    message_count: int = 0


class LexicalHit(SessionInfo):
    """Best full-text ranked message of a session."""

    rank: float
    snippet: str = ""


class SearchResult(BaseModel):
    """A single conversation returned by the hybrid ranker."""

    session_id: int
    source: str
    project_name: str | None = None
    project_path: str | None = None
    title: str
    summary: str | None = None
    snippet: str = ""
    timestamp: datetime | None = None
    message_count: int = 0
    score: float
    strategy: str


class SearchResponse(BaseModel):
    """Response payload returned after a search."""

    query: str | None
    results: list[SearchResult]
    total: int
