# backend/protocol/messages.py
"""
Message envelope codec for the real-time session socket.

Text frames carry a JSON envelope:

    {
      "message_type": "Chat" | "VoiceData" | "StatusUpdate" | "Error" | "Ping" | "Pong",
      "session_id":   "<opaque id>" | null,
      "user_id":      "<opaque id>" | null,
      "data":         <string | object | ...>,
      "timestamp":    "2026-01-01T00:00:00.000000Z"
    }

Binary frames carry raw voice audio with no envelope (client -> server only).
When voice is sent inside the envelope, `data` is {"audio": <base64>, "format": <str>}.

Usage example:

    text = encode_message(WireMessage.create(MessageType.CHAT, "hi", session_id=sid))

    try:
        msg = decode_message(raw)
    except UnknownMessageType as e:
        observer(e.payload)
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# -------------------------
# Exceptions
# -------------------------

class WireProtocolError(Exception):
    """Base class for envelope codec errors."""


class MalformedMessage(WireProtocolError):
    """
    Raised when a text frame is not a JSON object or lacks message_type.

    The frame is unsafe to dispatch and must be dropped.
    """


class UnknownMessageType(WireProtocolError):
    """
    Raised when message_type is outside the known set.

    Carries the decoded payload so the caller can forward it to an observer
    instead of crashing.
    """

    def __init__(self, message_type: Any, payload: dict[str, Any]) -> None:
        super().__init__(f"Unknown message_type: {message_type!r}")
        self.message_type = message_type
        self.payload = payload


class MessageTooLarge(WireProtocolError):
    """Raised when a serialized envelope exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Message size {size} exceeds limit {limit}")
        self.size = size
        self.limit = limit


# -------------------------
# Types
# -------------------------

class MessageType(str, Enum):
    """Envelope discriminator; values are the exact wire spellings."""

    CHAT = "Chat"
    VOICE_DATA = "VoiceData"
    STATUS_UPDATE = "StatusUpdate"
    ERROR = "Error"
    PING = "Ping"
    PONG = "Pong"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WireMessage:
    """
    One structured real-time message.

    session_id / user_id:
        Stable identifiers supplied by the session owner. The transport fills
        them from its session when the caller leaves them unset; it never
        generates them.
    """
    message_type: MessageType
    data: Any = None
    session_id: str | None = None
    user_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @staticmethod
    def create(
        message_type: MessageType,
        data: Any = None,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
    ) -> WireMessage:
        """Build a message stamped with the current time."""
        return WireMessage(
            message_type=message_type,
            data=data,
            session_id=session_id,
            user_id=user_id,
        )

    def stamped(self) -> WireMessage:
        """Return a copy with the timestamp reset to now."""
        return replace(self, timestamp=_utcnow())


# -------------------------
# Timestamp helpers
# -------------------------

def format_timestamp(ts: datetime) -> str:
    """ISO-8601 UTC with a trailing Z."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp; missing or unparsable values become now.

    Pure function; never raises.
    """
    if not isinstance(raw, str) or not raw:
        return _utcnow()
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return _utcnow()
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# -------------------------
# Encode / decode
# -------------------------

def to_wire_dict(msg: WireMessage) -> dict[str, Any]:
    """Envelope as a JSON-ready dict."""
    return {
        "message_type": msg.message_type.value,
        "session_id": msg.session_id,
        "user_id": msg.user_id,
        "data": msg.data,
        "timestamp": format_timestamp(msg.timestamp),
    }


def encode_message(msg: WireMessage, *, max_size: int | None = None) -> str:
    """
    Serialize an envelope to a text frame.

    Raises:
        MessageTooLarge if max_size is given and the UTF-8 payload exceeds it.
    """
    text = json.dumps(to_wire_dict(msg), ensure_ascii=False, separators=(",", ":"))
    if max_size is not None:
        size = len(text.encode("utf-8"))
        if size > max_size:
            raise MessageTooLarge(size, max_size)
    return text


def decode_message(raw: str | bytes) -> WireMessage:
    """
    Decode a text frame into a WireMessage.

    Raises:
        MalformedMessage on invalid JSON, a non-object payload, or a missing
        message_type.
        UnknownMessageType when message_type is not one of MessageType.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedMessage(f"Envelope must be an object, got {type(payload).__name__}")

    raw_type = payload.get("message_type")
    if raw_type is None:
        raise MalformedMessage("Envelope missing message_type")

    try:
        message_type = MessageType(raw_type)
    except ValueError as e:
        raise UnknownMessageType(raw_type, payload) from e

    return WireMessage(
        message_type=message_type,
        data=payload.get("data"),
        session_id=_opt_str(payload.get("session_id")),
        user_id=_opt_str(payload.get("user_id")),
        timestamp=parse_timestamp(payload.get("timestamp")),
    )


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


# -------------------------
# Voice payload helpers
# -------------------------

def encode_voice_payload(audio: bytes, fmt: str) -> dict[str, str]:
    """Build the `data` object for an enveloped VoiceData message."""
    return {
        "audio": base64.b64encode(audio).decode("ascii"),
        "format": fmt,
    }


def decode_voice_payload(data: Any) -> tuple[bytes, str] | None:
    """
    Inverse of encode_voice_payload.

    Returns None when `data` does not carry base64 audio (e.g. a server-side
    VoiceData transcription result).
    """
    if not isinstance(data, dict):
        return None
    audio = data.get("audio")
    if not isinstance(audio, str):
        return None
    try:
        decoded = base64.b64decode(audio, validate=True)
    except ValueError:
        return None
    return decoded, str(data.get("format", ""))
