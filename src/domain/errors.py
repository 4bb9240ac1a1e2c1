"""
Invite and authorization error taxonomy.

Domain errors derive from InviteError and describe a definitive outcome the
caller can show to a user. UnavailableError is a separate root: the store could
not be reached (or the caller's deadline elapsed) and the effect of the
operation is unknown, so retrying is safe.
"""

from __future__ import annotations


class InviteError(Exception):
    """Base class for domain errors."""

    code = "invite_error"

    def __init__(self, message: str, *, invite_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.invite_code = invite_code


class ValidationError(InviteError):
    code = "validation_error"


class NotFoundError(InviteError):
    code = "not_found"


class AlreadyUsedError(InviteError):
    code = "already_used"


class ExpiredError(InviteError):
    code = "expired"


class ConflictError(InviteError):
    """Lost a redemption race. Only a freshly issued code can succeed."""

    code = "conflict"


class AlreadyFinalizedError(InviteError):
    code = "already_finalized"


class AlreadyLinkedError(InviteError):
    code = "already_linked"


class DuplicateCodeError(InviteError):
    """Generated code collided with an existing row (store-level unique constraint)."""

    code = "duplicate_code"


class ActiveCodeExistsError(InviteError):
    """Store refused a second pending code for the same identity."""

    code = "active_code_exists"

    def __init__(self, message: str, *, identity_id: int) -> None:
        super().__init__(message)
        self.identity_id = identity_id


class GenerationFailedError(InviteError):
    code = "generation_failed"


class UnavailableError(Exception):
    """Transient store failure. The operation may or may not have applied."""

    code = "unavailable"

    def __init__(self, message: str = "Invite store is unavailable, try again") -> None:
        super().__init__(message)
        self.message = message


class DeadlineExceededError(UnavailableError):
    code = "deadline_exceeded"
