"""Text sanitizing and noise classification applied before anything is embedded.

Both functions are pure: same input, same output, no side effects.
"""

import re

from shared.models.errors import EmptyAfterSanitizationError

DEFAULT_NOISE_MIN_CHARS = 50

_NULL_BYTES = re.compile(r"\x00")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")

# Tool output, boilerplate and interrupted requests. Anchored at the start of the text.
NOISE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"^\[Request interrupted"),
    re.compile(r"^\[THINKING\]"),
    re.compile(r"^No results found"),
    re.compile(r"^No files found"),
    re.compile(r"^No matches found"),
    re.compile(r"^File created successfully"),
    re.compile(r"^Updated task #"),
    re.compile(r"^MCP (error|tool call)"),
    re.compile(r"^To github\.com"),
    re.compile(r"^Exit code \d"),
    re.compile(r"^\s*(CREATE TABLE|COPY \d|DROP TABLE|ALTER TABLE|INSERT \d)"),
    re.compile(r"^\s*\d+ rows? affected"),
    re.compile(r'^\{"ok":false'),
)


def sanitize_text(text: str) -> str:
    """Strip null bytes, replace control characters with spaces and trim.

    Args:
        text (str): Raw text.

    Returns:
        str: The sanitized text, never empty.

    Raises:
        EmptyAfterSanitizationError: If nothing is left. Content-fatal, not retryable.
    """
    cleaned = _NULL_BYTES.sub("", text)
    cleaned = _CONTROL_CHARS.sub(" ", cleaned).strip()
    if not cleaned:
        raise EmptyAfterSanitizationError(original_length=len(text))
    return cleaned


def classify_noise(text: str, min_chars: int = DEFAULT_NOISE_MIN_CHARS) -> str | None:
    """Decide whether a text is worth embedding.

    Args:
        text (str): The candidate text.
        min_chars (int): Texts shorter than this are noise.

    Returns:
        str | None: "too-short:<len>" or "pattern:<regex>" for noise, None otherwise.
    """
    if len(text) < min_chars:
        return f"too-short:{len(text)}"
    for pattern in NOISE_PATTERNS:
        if pattern.search(text):
            return f"pattern:{pattern.pattern}"
    return None
