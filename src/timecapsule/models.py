"""Pydantic schemas for the capsule HTTP API."""

import base64
import binascii
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def encode_payload(data: bytes) -> str:
    """Encode ciphertext for a JSON body."""
    return base64.b64encode(data).decode("ascii")


class CapsuleIn(BaseModel):
    """Incoming capsule creation request.

    Hash formats and field lengths are checked by the capsule factory, not
    here, so that rejections carry the capsule error codes.
    """

    encrypted_message: bytes = Field(description="Ciphertext, base64 encoded")
    unlock_timestamp: int
    recipient_email_hash: str
    password_hash: str
    password_hint: str = ""
    message_title: str = ""
    capsule_id: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{1,64}$")

    @field_validator("encrypted_message", mode="before")
    @classmethod
    def decode_base64(cls, v):
        if not isinstance(v, str):
            raise ValueError("encrypted_message must be a base64 string")
        if len(v) > 1_048_576:  # 1MB of base64
            raise ValueError("encrypted_message exceeds 1MB limit")
        try:
            return base64.b64decode(v, validate=True)
        except binascii.Error as e:
            raise ValueError("encrypted_message is not valid base64") from e


class CapsuleCreated(BaseModel):
    """Response after creating a capsule."""

    capsule_id: str
    created_at: int
    unlock_timestamp: int


class RetrieveIn(BaseModel):
    """Retrieval request carrying the presented password commitment.

    The value is passed to the gate unchecked. A locked capsule must answer
    StillLocked before anything about the presented hash is judged, so a
    oversized or non-string value still reaches the time check.
    """

    password_hash: Any = None


class RetrieveOut(BaseModel):
    """Released ciphertext, base64 encoded."""

    capsule_id: str
    encrypted_message: str
