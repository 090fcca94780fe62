"""Error taxonomy shared by clients and services.

Callers branch on the error type (and, for embedding failures, on
EmbedError.kind) instead of matching message strings.
"""

from enum import Enum


class ClientResponseError(Exception):
    """Raised by ClientInterface.do_request when a backend answers with a non-2xx status."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        super().__init__(f"Request to {url} failed with status {status_code}")
        self.url = url
        self.status_code = status_code
        self.body = body


class EmbedErrorKind(str, Enum):
    """Failure classes at the embedding-client boundary."""

    TRANSIENT = "transient"     # timeout / connection refused, retried at the call site
    NON_FINITE = "non_finite"   # NaN or Infinity in the result, content dependent
    FATAL = "fatal"             # malformed response, bad config, other HTTP errors


class EmbedError(Exception):
    """An embedding request failed.

    Attributes:
        kind (EmbedErrorKind): The failure class.
        detail (str): Human-readable description, persisted as failure_detail where relevant.
    """

    def __init__(self, kind: EmbedErrorKind, detail: str):
        super().__init__(f"[{kind.value}] {detail}")
        self.kind = kind
        self.detail = detail

    @property
    def is_non_finite(self) -> bool:
        return self.kind is EmbedErrorKind.NON_FINITE


class EmptyAfterSanitizationError(ValueError):
    """Text is empty once control characters and whitespace are stripped. Not retryable."""

    def __init__(self, original_length: int, index: int | None = None):
        where = f" at index {index}" if index is not None else ""
        super().__init__(
            f"Text{where} is empty after sanitization (original length: {original_length})"
        )
        self.original_length = original_length
        self.index = index


class DimensionMismatchError(ValueError):
    """Two vectors that must share a dimension do not. Fatal configuration error."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        suffix = f" ({context})" if context else ""
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}{suffix}")
        self.expected = expected
        self.actual = actual
