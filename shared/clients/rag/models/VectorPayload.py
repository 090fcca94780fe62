"""Payload models stored alongside each vector in a RAG backend collection.

Every point carries its vector-store key (e.g. "msg-42", "session-7") so the
key survives the backend's own point-id scheme.
"""

from pydantic import BaseModel


class MessageVectorPayload(BaseModel):
    """Payload of a single message vector in the message collection.

    Attributes:
        key:          Vector-store key, "msg-<message id>".
        source:       Name of the tool/source the conversation came from.
        project_path: Working directory of the owning project, if known.
        session_id:   Relational id of the owning session.
        message_id:   Relational id of the message.
        role:         Author role (user, assistant, ...).
        timestamp:    Message timestamp in epoch milliseconds.
        model:        Model that produced the message, if any.
        has_tool_use: Whether the message issued tool calls.
        token_count:  Token count reported by the source, 0 if unknown.
        document:     The embedded text, as sent to the embedding endpoint.
    """

    key: str
    source: str
    project_path: str = ""
    session_id: int
    message_id: int
    role: str
    timestamp: int
    model: str = ""
    has_tool_use: bool = False
    token_count: int = 0
    document: str = ""


class SessionVectorPayload(BaseModel):
    """Payload of a session aggregate vector in the session collection.

    Attributes:
        key:            Vector-store key, "session-<session id>".
        source:         Name of the tool/source the conversation came from.
        project_path:   Working directory of the owning project, if known.
        session_id:     External session id as reported by the source.
        title:          Session title.
        started_at:     Session start in epoch milliseconds.
        message_count:  Number of messages in the session.
        total_tokens:   Token total of the session.
        content_chars:  Length of the formatted transcript at embed time.
                        Compared against the live value to detect growth.
        was_summarized: Whether the transcript was compressed before embedding.
        embedded_at:    Embed time in epoch milliseconds.
        document:       Truncated summary or transcript.
    """

    key: str
    source: str
    project_path: str = ""
    session_id: str
    title: str = ""
    started_at: int = 0
    message_count: int = 0
    total_tokens: int = 0
    content_chars: int = 0
    was_summarized: bool = False
    embedded_at: int = 0
    document: str = ""


class VectorPoint(BaseModel):
    """A vector ready to be upserted, identified by its vector-store key."""

    key: str
    vector: list[float]
    payload: MessageVectorPayload | SessionVectorPayload
