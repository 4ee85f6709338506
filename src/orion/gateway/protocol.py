"""
gateway/protocol.py — Gateway WebSocket Message Protocol

Every frame is a JSON object with a `type` field and a unique `id`;
payload goes in `data`. The first client frame on a connection must be
`auth` carrying the bearer token and the session to join.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────

class MessageType(str, Enum):
    # Client → Server
    AUTH                 = "auth"
    TEXT_INPUT           = "text_input"
    GET_STATUS           = "get_status"
    PING                 = "ping"

    # Server → Client
    CONNECTED            = "connected"
    TEXT_CHUNK           = "text_chunk"
    TEXT_COMPLETE        = "text_complete"
    STATUS               = "status"
    ERROR                = "error"
    SESSION_NAME_UPDATED = "session_name_updated"
    PONG                 = "pong"


class ErrorCode(str, Enum):
    AUTH_FAILED     = "auth_failed"
    INVALID_SESSION = "invalid_session"
    BAD_MESSAGE     = "bad_message"
    UNKNOWN_TYPE    = "unknown_type"
    TURN_FAILED     = "turn_failed"
    NO_SESSION      = "no_session"


# ─────────────────────────────────────────────────────────────────────────────
# Envelope
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class GatewayMessage:
    type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    session_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to JSON, dropping None fields."""
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, default=str)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "GatewayMessage":
        """
        Parse a frame. Raises ValueError on non-JSON input, a non-object
        frame, or a frame without a string `type`.
        """
        d = json.loads(raw)
        if not isinstance(d, dict) or not isinstance(d.get("type"), str):
            raise ValueError("frame must be a JSON object with a string 'type'")
        data = d.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("'data' must be a JSON object")
        return cls(
            type=d["type"],
            id=str(d.get("id") or str(uuid.uuid4())[:8]),
            session_id=d.get("session_id"),
            data=data,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers — Server → Client messages
# ─────────────────────────────────────────────────────────────────────────────

def make_connected(session_id: str, user_id: str, timestamp: str) -> GatewayMessage:
    return GatewayMessage(
        type=MessageType.CONNECTED.value,
        session_id=session_id,
        data={"sessionId": session_id, "userId": user_id, "timestamp": timestamp},
    )


def make_text_chunk(text: str) -> GatewayMessage:
    return GatewayMessage(type=MessageType.TEXT_CHUNK.value, data={"text": text})


def make_text_complete(full_text: str) -> GatewayMessage:
    return GatewayMessage(type=MessageType.TEXT_COMPLETE.value, data={"fullText": full_text})


def make_status(data: dict[str, Any]) -> GatewayMessage:
    return GatewayMessage(type=MessageType.STATUS.value, data=dict(data))


def make_error(
    code: str,
    message: str,
    *,
    reply_to: Optional[str] = None,
    session_id: Optional[str] = None,
) -> GatewayMessage:
    data: dict[str, Any] = {"code": code, "message": message}
    if reply_to:
        data["reply_to"] = reply_to
    return GatewayMessage(type=MessageType.ERROR.value, session_id=session_id, data=data)


def make_event(event: str, data: dict[str, Any], session_id: Optional[str] = None) -> GatewayMessage:
    return GatewayMessage(type=event, session_id=session_id, data=dict(data))


def make_pong(reply_to: Optional[str] = None) -> GatewayMessage:
    return GatewayMessage(
        type=MessageType.PONG.value,
        data={"reply_to": reply_to} if reply_to else {},
    )
