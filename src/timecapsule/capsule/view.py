"""Public projection of a capsule."""

from .schema import Capsule, CapsuleInfo


def get_capsule_info(capsule: Capsule) -> CapsuleInfo:
    """Return the non-secret fields of a capsule."""
    return CapsuleInfo(
        message_title=capsule.message_title,
        password_hint=capsule.password_hint,
        sender=capsule.sender,
        unlock_timestamp=capsule.unlock_timestamp,
        is_claimed=capsule.is_claimed,
        created_at=capsule.created_at,
    )
