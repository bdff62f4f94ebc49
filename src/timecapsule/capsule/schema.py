"""Pydantic models for time capsules."""

from typing import Literal

from pydantic import BaseModel, ConfigDict


class Capsule(BaseModel):
    """A persisted capsule record. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    sender: str
    encrypted_message: bytes
    unlock_timestamp: int
    recipient_email_hash: str
    password_hash: str
    password_hint: str
    message_title: str
    created_at: int
    is_claimed: bool = False


class CapsuleInfo(BaseModel):
    """Public projection of a capsule. Holds no secret material."""

    message_title: str
    password_hint: str
    sender: str
    unlock_timestamp: int
    is_claimed: bool
    created_at: int


class UserCapsuleInfo(BaseModel):
    """Listing entry for a sender's capsules."""

    capsule_id: str
    unlock_timestamp: int
    message_title: str
    is_claimed: bool


class CapsuleEvent(BaseModel):
    """Lifecycle event recorded when a capsule is created or claimed."""

    capsule_id: str
    kind: Literal["created", "claimed"]
    actor: str | None = None
    timestamp: int
