"""Error taxonomy for capsule operations.

Every error is terminal for the operation that raised it. The ``code``
attribute is the stable name surfaced to API callers.
"""


class CapsuleError(Exception):
    """Base class for all capsule rejections."""

    code = "CapsuleError"
    message = "Capsule operation rejected"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class EmptyMessage(CapsuleError):
    code = "EmptyMessage"
    message = "Encrypted message must not be empty"


class UnlockTimeNotInFuture(CapsuleError):
    code = "UnlockTimeNotInFuture"
    message = "Unlock date must be in the future"


class MalformedHash(CapsuleError):
    code = "MalformedHash"
    message = "Hash must be exactly 64 hexadecimal characters"


class FieldTooLong(CapsuleError):
    code = "FieldTooLong"
    message = "Field exceeds its maximum length"


class AlreadyInitialized(CapsuleError):
    code = "AlreadyInitialized"
    message = "Capsule address is already in use"


class StillLocked(CapsuleError):
    code = "StillLocked"
    message = "This time capsule is still locked"


class InvalidPassword(CapsuleError):
    code = "InvalidPassword"
    message = "Incorrect password"


class AlreadyClaimed(CapsuleError):
    """Only raised under the single-use claim policy."""

    code = "AlreadyClaimed"
    message = "This time capsule has already been claimed"


class NotFound(CapsuleError):
    code = "NotFound"
    message = "Time capsule not found"


ERRORS_BY_CODE: dict[str, type[CapsuleError]] = {
    cls.code: cls
    for cls in (
        EmptyMessage,
        UnlockTimeNotInFuture,
        MalformedHash,
        FieldTooLong,
        AlreadyInitialized,
        StillLocked,
        InvalidPassword,
        AlreadyClaimed,
        NotFound,
    )
}
