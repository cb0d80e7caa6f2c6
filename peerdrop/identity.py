import secrets

import base58

from .constants import PEER_ID_RANDOM_BYTES
from .exceptions import ValidationError


def generate_peer_id() -> str:
    """
    Generate a fresh local peer identity.

    The identity is the base58 encoding of random bytes: short enough to be
    read out and pasted by a user, and never reused across processes.
    """
    return base58.b58encode(secrets.token_bytes(PEER_ID_RANDOM_BYTES)).decode()


def validate_peer_id(peer_id: str) -> str:
    """Return ``peer_id`` stripped of surrounding whitespace, or raise."""
    if not isinstance(peer_id, str):
        raise ValidationError(f"peer id must be a string, got {type(peer_id)}")
    peer_id = peer_id.strip()
    if not peer_id:
        raise ValidationError("peer id must not be empty")
    return peer_id
