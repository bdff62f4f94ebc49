"""Checks on hex-encoded hash commitments."""

import hmac
import re

HASH_HEX_LENGTH = 64

_HEX_DIGEST = re.compile(r"[0-9a-fA-F]{64}")


def is_valid_hash(value: str) -> bool:
    """True if value is exactly 64 hexadecimal characters."""
    return isinstance(value, str) and _HEX_DIGEST.fullmatch(value) is not None


def hashes_match(presented: str, stored: str) -> bool:
    """Compare two commitments in constant time.

    Both values are compared verbatim; no case folding is applied.
    """
    return hmac.compare_digest(presented.encode("ascii"), stored.encode("ascii"))
