"""Capsule creation and its validation rules."""

from dataclasses import dataclass

from .commitment import is_valid_hash
from .errors import (
    AlreadyInitialized,
    EmptyMessage,
    FieldTooLong,
    MalformedHash,
    UnlockTimeNotInFuture,
)
from .schema import Capsule


@dataclass(frozen=True)
class FieldLimits:
    """Maximum sizes for the bounded capsule fields."""

    max_title_length: int = 64
    max_hint_length: int = 128
    max_message_bytes: int = 5000


def create_capsule(
    encrypted_message: bytes,
    unlock_timestamp: int,
    recipient_email_hash: str,
    password_hash: str,
    password_hint: str,
    message_title: str,
    sender: str,
    now: int,
    *,
    slot_initialized: bool = False,
    limits: FieldLimits | None = None,
) -> Capsule:
    """Validate creation parameters and build a new, unclaimed capsule.

    Checks run in a fixed order and the first failure is raised:
    empty message, unlock time, hash format, field lengths, slot freshness.

    Hashes are stored exactly as given. Nothing here computes or normalises
    a hash.

    Raises:
        EmptyMessage, UnlockTimeNotInFuture, MalformedHash, FieldTooLong,
        AlreadyInitialized
    """
    limits = limits or FieldLimits()

    if not encrypted_message:
        raise EmptyMessage()

    if unlock_timestamp <= now:
        raise UnlockTimeNotInFuture()

    if not is_valid_hash(recipient_email_hash):
        raise MalformedHash("Invalid email hash (must be SHA256 64 characters)")
    if not is_valid_hash(password_hash):
        raise MalformedHash("Invalid password hash (must be SHA256 64 characters)")

    if len(message_title) > limits.max_title_length:
        raise FieldTooLong(f"Title is too long (max {limits.max_title_length} characters)")
    if len(password_hint) > limits.max_hint_length:
        raise FieldTooLong(f"Hint is too long (max {limits.max_hint_length} characters)")
    if len(encrypted_message) > limits.max_message_bytes:
        raise FieldTooLong(f"Message is too long (max {limits.max_message_bytes} bytes)")

    if slot_initialized:
        raise AlreadyInitialized()

    return Capsule(
        sender=sender,
        encrypted_message=bytes(encrypted_message),
        unlock_timestamp=unlock_timestamp,
        recipient_email_hash=recipient_email_hash,
        password_hash=password_hash,
        password_hint=password_hint,
        message_title=message_title,
        created_at=now,
        is_claimed=False,
    )
