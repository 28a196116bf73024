"""Signaling wire messages.

Every frame on the signaling WebSocket is a JSON object of the form
``{"type": "offer" | "answer" | "candidate", "data": "<string>"}``.
"""

import json
from dataclasses import dataclass
from enum import Enum


class MessageError(ValueError):
    """Raised for a frame that is not a valid signaling message."""


class MessageKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"


@dataclass(frozen=True)
class SignalingMessage:
    """One offer, answer or candidate exchanged with the browser."""
    kind: MessageKind
    payload: str

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "data": self.payload}


def parse(raw: str | bytes) -> SignalingMessage:
    """Decode one channel frame. Raises MessageError if it is malformed."""
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageError(f"Invalid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise MessageError(f"Expected a JSON object, got {type(obj).__name__}")

    msg_type = obj.get("type", "")
    try:
        kind = MessageKind(msg_type)
    except ValueError:
        raise MessageError(f"Unknown message type: {msg_type!r}") from None

    data = obj.get("data", "")
    if not isinstance(data, str):
        raise MessageError(f"'data' must be a string, got {type(data).__name__}")

    return SignalingMessage(kind=kind, payload=data)


def serialize(message: SignalingMessage) -> str:
    return json.dumps(message.to_dict())
