"""Retrieval gate: decides whether a capsule's payload may be released."""

from .commitment import hashes_match, is_valid_hash
from .errors import AlreadyClaimed, InvalidPassword, MalformedHash, StillLocked
from .schema import Capsule


def retrieve_message(
    capsule: Capsule,
    presented_password_hash: str,
    now: int,
    *,
    single_use: bool = False,
) -> bytes:
    """Run the gate predicates in order and release the payload.

    The time check always runs first, so a locked capsule answers
    StillLocked whatever is presented, even a value that is not a string.
    The password comparison is constant-time.

    The capsule is never modified. Setting the claim flag is the storage
    layer's job and must be conditional on the flag still being clear, so
    two releases racing on the same record claim it once. Under
    ``single_use`` a record already marked claimed raises AlreadyClaimed.

    Raises:
        StillLocked, MalformedHash, InvalidPassword, AlreadyClaimed
    """
    if now < capsule.unlock_timestamp:
        raise StillLocked()

    if not is_valid_hash(presented_password_hash):
        raise MalformedHash()

    if not hashes_match(presented_password_hash, capsule.password_hash):
        raise InvalidPassword()

    if single_use and capsule.is_claimed:
        raise AlreadyClaimed()

    return capsule.encrypted_message
