"""Capsule state machine: creation, retrieval gate, and public view."""

from .errors import (
    AlreadyClaimed,
    AlreadyInitialized,
    CapsuleError,
    EmptyMessage,
    FieldTooLong,
    InvalidPassword,
    MalformedHash,
    NotFound,
    StillLocked,
    UnlockTimeNotInFuture,
)
from .factory import FieldLimits, create_capsule
from .gate import retrieve_message
from .schema import Capsule, CapsuleEvent, CapsuleInfo, UserCapsuleInfo
from .view import get_capsule_info

__all__ = [
    "AlreadyClaimed",
    "AlreadyInitialized",
    "Capsule",
    "CapsuleError",
    "CapsuleEvent",
    "CapsuleInfo",
    "EmptyMessage",
    "FieldLimits",
    "FieldTooLong",
    "InvalidPassword",
    "MalformedHash",
    "NotFound",
    "StillLocked",
    "UnlockTimeNotInFuture",
    "UserCapsuleInfo",
    "create_capsule",
    "get_capsule_info",
    "retrieve_message",
]
