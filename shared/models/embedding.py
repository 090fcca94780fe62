"""Result models of the embedding fallback cascade."""

from enum import Enum

from pydantic import BaseModel


class FallbackStage(str, Enum):
    """How a vector was obtained after its batch produced non-finite values."""

    SINGLE = "single"           # the text alone, unchanged
    SUMMARIZED = "summarized"   # a model-written summary of the text
    REPHRASED = "rephrased"     # a model-written restatement in different words


class EmbedBatchResult(BaseModel):
    """Outcome of embedding a list of texts.

    Attributes:
        vectors:   One entry per input text, None where every fallback failed.
        failures:  Failure detail per input index without a vector.
        fallbacks: Fallback stage per input index that needed one.
    """

    vectors: list[list[float] | None]
    failures: dict[int, str] = {}
    fallbacks: dict[int, FallbackStage] = {}

    @property
    def failed_count(self) -> int:
        return sum(1 for v in self.vectors if v is None)
