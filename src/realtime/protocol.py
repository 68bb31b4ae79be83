"""Realtime control-channel message protocol.

Defines Pydantic models for the outbound messages the client sends over the
data channel, and helpers for interpreting inbound server events. All
messages are JSON objects discriminated by their ``type`` field.
"""

import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Inbound server event types
SPEECH_STARTED = "input_audio_buffer.speech_started"
SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
BUFFER_COMMITTED = "input_audio_buffer.committed"
RESPONSE_CREATED = "response.created"
RESPONSE_DONE = "response.done"
ERROR = "error"

# Error codes that are expected and carry no information for the user
BENIGN_ERROR_CODES = frozenset({"response_cancel_not_active"})

# Substrings of event types worth tracing in debug mode
TRACED_EVENT_MARKERS = ("turn", "speech", "response", "input_audio", "error")


class SessionUpdateMessage(BaseModel):
    """Client → Server: partial session configuration update."""

    type: Literal["session.update"] = "session.update"
    session: dict[str, Any] = Field(..., description="Session patch including session.type")

    @classmethod
    def wrap(cls, patch: dict[str, Any]) -> "SessionUpdateMessage":
        """Wrap a raw patch in the realtime session envelope."""
        return cls(session={"type": "realtime", **patch})


class ResponseCreateMessage(BaseModel):
    """Client → Server: ask the model to produce a response now."""

    type: Literal["response.create"] = "response.create"


class ResponseCancelMessage(BaseModel):
    """Client → Server: cancel the in-progress response."""

    type: Literal["response.cancel"] = "response.cancel"


class InputAudioBufferCommitMessage(BaseModel):
    """Client → Server: the user's audio buffer is complete."""

    type: Literal["input_audio_buffer.commit"] = "input_audio_buffer.commit"


class OutputAudioBufferClearMessage(BaseModel):
    """Client → Server: drop audio queued for playback."""

    type: Literal["output_audio_buffer.clear"] = "output_audio_buffer.clear"


class InputTextContent(BaseModel):
    """Content part carrying user text."""

    type: Literal["input_text"] = "input_text"
    text: str = Field(..., min_length=1)


class UserMessageItem(BaseModel):
    """Conversation item for a typed user message."""

    type: Literal["message"] = "message"
    role: Literal["user"] = "user"
    content: list[InputTextContent]


class ConversationItemCreateMessage(BaseModel):
    """Client → Server: add a typed user message to the conversation."""

    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: UserMessageItem

    @classmethod
    def from_text(cls, text: str) -> "ConversationItemCreateMessage":
        return cls(item=UserMessageItem(content=[InputTextContent(text=text)]))


ClientMessage = (
    SessionUpdateMessage
    | ResponseCreateMessage
    | ResponseCancelMessage
    | InputAudioBufferCommitMessage
    | OutputAudioBufferClearMessage
    | ConversationItemCreateMessage
)


def encode_message(message: ClientMessage) -> str:
    """Serialize an outbound message to its JSON wire form."""
    return message.model_dump_json()


def parse_server_event(raw: str | bytes) -> dict[str, Any] | None:
    """Parse an inbound data-channel message.

    Returns:
        The decoded event object, or None if the payload is not a JSON object
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        event = json.loads(raw)
    except (UnicodeDecodeError, ValueError, TypeError):
        return None

    if not isinstance(event, dict):
        return None
    return event


def is_benign_error(event: dict[str, Any]) -> bool:
    """Check for errors the server reports for harmless client races.

    The client cancels any stale response when the channel opens; the server
    answers ``response_cancel_not_active`` when there was none.
    """
    if event.get("type") != ERROR:
        return False
    error = event.get("error")
    return isinstance(error, dict) and error.get("code") in BENIGN_ERROR_CODES


def response_id(event: dict[str, Any]) -> str | None:
    """Extract the response identifier from a response.created event."""
    response = event.get("response")
    if isinstance(response, dict) and response.get("id"):
        return str(response["id"])
    if event.get("response_id"):
        return str(event["response_id"])
    return None


def extract_assistant_text(event: Any) -> str:
    """Extract incremental assistant text from any server event.

    Candidates in priority order: a ``delta`` string, a ``text`` string, then
    the first ``text`` or ``transcript`` entry of ``item.content``.

    Returns:
        The first non-empty candidate, or "" if the event carries no text
    """
    if not isinstance(event, dict):
        return ""

    delta = event.get("delta")
    if isinstance(delta, str) and delta:
        return delta

    text = event.get("text")
    if isinstance(text, str) and text:
        return text

    item = event.get("item")
    content = item.get("content") if isinstance(item, dict) else None
    if isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            if isinstance(part.get("text"), str) and part["text"]:
                return part["text"]
            if isinstance(part.get("transcript"), str) and part["transcript"]:
                return part["transcript"]

    return ""
