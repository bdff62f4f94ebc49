"""Commitment helpers for senders and recipients.

These run on the caller's side to turn a password or email address into the
64-character hex digest the service stores. The service itself never hashes.
"""

import hashlib


def sha256_hex(value: str) -> str:
    """SHA-256 of the UTF-8 encoding, as lowercase hex."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    return sha256_hex(password)


def hash_email(email: str) -> str:
    """Hash an email address after trimming and lowercasing it."""
    return sha256_hex(email.strip().lower())
