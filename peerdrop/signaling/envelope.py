"""
Signaling envelopes exchanged through the relay.

Wire format (one JSON object per websocket message)::

    {"type": "offer" | "answer" | "candidate",
     "from": "<peer id>", "to": "<peer id>",
     "sdp": "<session description>",        # offer / answer
     "candidate": {"candidate": "...",      # candidate
                   "sdpMid": "0", "sdpMLineIndex": 0}}
"""

from dataclasses import dataclass
from enum import Enum
import json
from typing import Any

from peerdrop.exceptions import EnvelopeError


class SignalKind(Enum):
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"


@dataclass(frozen=True)
class SignalEnvelope:
    kind: SignalKind
    sender: str
    recipient: str
    payload: Any

    @classmethod
    def offer(cls, sender: str, recipient: str, sdp: str) -> "SignalEnvelope":
        return cls(SignalKind.OFFER, sender, recipient, sdp)

    @classmethod
    def answer(cls, sender: str, recipient: str, sdp: str) -> "SignalEnvelope":
        return cls(SignalKind.ANSWER, sender, recipient, sdp)

    @classmethod
    def candidate(
        cls, sender: str, recipient: str, candidate: dict[str, Any]
    ) -> "SignalEnvelope":
        return cls(SignalKind.CANDIDATE, sender, recipient, candidate)

    def is_addressed_to(self, peer_id: str) -> bool:
        return self.recipient == peer_id

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "type": self.kind.value,
            "from": self.sender,
            "to": self.recipient,
        }
        if self.kind is SignalKind.CANDIDATE:
            message["candidate"] = self.payload
        else:
            message["sdp"] = self.payload
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, message: Any) -> "SignalEnvelope":
        if not isinstance(message, dict):
            raise EnvelopeError(f"Envelope must be an object, got {type(message)}")

        try:
            kind = SignalKind(message.get("type"))
        except ValueError:
            raise EnvelopeError(f"Unknown envelope type: {message.get('type')!r}")

        sender = message.get("from")
        recipient = message.get("to")
        if not isinstance(sender, str) or not isinstance(recipient, str):
            raise EnvelopeError("Envelope is missing 'from' or 'to'")

        if kind is SignalKind.CANDIDATE:
            payload = message.get("candidate")
            if not isinstance(payload, dict) or not isinstance(
                payload.get("candidate"), str
            ):
                raise EnvelopeError("Candidate envelope has no candidate-init")
        else:
            payload = message.get("sdp")
            if not isinstance(payload, str) or not payload:
                raise EnvelopeError(f"{kind.value} envelope has no sdp")

        return cls(kind, sender, recipient, payload)

    @classmethod
    def from_json(cls, data: str | bytes) -> "SignalEnvelope":
        try:
            message = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EnvelopeError(f"Envelope is not valid JSON: {e}")
        return cls.from_dict(message)
