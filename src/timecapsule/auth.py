"""Sender identity from API keys.

A key reads ``tcap_<lookup>_<secret>``: eight hex characters that locate the
stored record, then thirty-two hex characters of secret. Only an argon2 hash
of the whole key is kept. The record's name is the sender identity stamped
on every capsule created with the key, so names are restricted to a plain
handle alphabet.
"""

import logging
import re
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from pydantic import BaseModel

from . import db as db_ops

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()

_KEY_SHAPE = re.compile(r"tcap_([0-9a-f]{8})_[0-9a-f]{32}")
_SENDER_NAME = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.@-]{0,63}")

# Verified against when no record matches, so every attempt costs one argon2 check.
_UNMATCHABLE_HASH = _hasher.hash(secrets.token_hex(32))


class AuthError(Exception):
    """The caller could not be identified, or has used up its hourly quota."""

    def __init__(self, message: str = "Unauthorized", *, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


class Sender(BaseModel):
    """An authenticated caller."""

    key_id: int
    name: str
    key_lookup: str


def key_lookup(raw_key: str) -> str | None:
    """The lookup part of a well-formed key, or None."""
    match = _KEY_SHAPE.fullmatch(raw_key)
    return match.group(1) if match else None


def check_sender_name(name: str) -> str:
    """Return name unchanged if it can serve as a sender identity.

    Raises:
        ValueError: If the name is empty, too long, or uses other characters.
    """
    if not _SENDER_NAME.fullmatch(name):
        raise ValueError(
            f"Invalid sender name {name!r}: use up to 64 letters, digits, '_', '.', '@' or '-'"
        )
    return name


async def issue_key(db, name: str, rate_limit: int = 60) -> str:
    """Create a key for a sender and return it. Only its hash is stored."""
    check_sender_name(name)
    lookup = secrets.token_hex(4)
    raw_key = f"tcap_{lookup}_{secrets.token_hex(16)}"
    await db_ops.store_api_key(
        db,
        name=name,
        key_hash=_hasher.hash(raw_key),
        key_lookup=lookup,
        rate_limit=rate_limit,
    )
    logger.info(f"[AUTH] Issued key {lookup} for sender '{name}'")
    return raw_key


def _hash_matches(raw_key: str, key_hash: str) -> bool:
    try:
        return _hasher.verify(key_hash, raw_key)
    except VerifyMismatchError:
        return False


async def authenticate(db, authorization: str) -> Sender:
    """Resolve an Authorization header value to the sender it belongs to.

    Accepts ``Bearer <key>`` or the bare key. Each successful call counts
    against the key's hourly rate limit.

    Raises:
        AuthError: If the key is unknown or revoked, or its rate limit is reached.
    """
    raw_key = authorization.removeprefix("Bearer ").strip()
    lookup = key_lookup(raw_key)
    record = await db_ops.find_key_by_lookup(db, lookup) if lookup else None

    key_hash = record["key_hash"] if record else _UNMATCHABLE_HASH
    if not _hash_matches(raw_key, key_hash) or record is None:
        raise AuthError()

    if not await db_ops.check_and_log_rate_limit(db, record["id"], record["rate_limit"]):
        logger.warning(f"[AUTH] Sender '{record['name']}' hit the rate limit")
        raise AuthError("Rate limit exceeded", rate_limited=True)

    await db_ops.update_key_last_used(db, record["id"])
    return Sender(key_id=record["id"], name=record["name"], key_lookup=lookup)
