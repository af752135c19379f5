"""Exception types shared by routes and the signature workflow."""
from __future__ import annotations

from typing import Optional


class UnauthorizedException(Exception):
    def __init__(self, detail: str = "Not authenticated"):
        self.detail = detail
        super().__init__(detail)


class ForbiddenException(Exception):
    def __init__(self, detail: str = "Forbidden"):
        self.detail = detail
        super().__init__(detail)


class NotFoundException(Exception):
    def __init__(self, detail: str = "Not found"):
        self.detail = detail
        super().__init__(detail)


class ValidationException(Exception):
    def __init__(self, detail: str = "Invalid request"):
        self.detail = detail
        super().__init__(detail)


# Workflow errors

class WorkflowError(Exception):
    """Base class for signature workflow failures surfaced to the initiator."""

    status_code = 409

    def __init__(self, detail: str, convention_id: Optional[str] = None):
        self.detail = detail
        self.convention_id = convention_id
        super().__init__(detail)


class StaleTransitionError(WorkflowError):
    """The role has no legal action in the document's current status."""

    def __init__(self, role: str, status: str, convention_id: Optional[str] = None):
        self.role = role
        self.status = status
        super().__init__(
            f"Role '{role}' cannot act on a convention in status {status}",
            convention_id=convention_id,
        )


class NoOpTransitionError(WorkflowError):
    """Retry of an action that was already applied."""

    def __init__(self, role: str, status: str, convention_id: Optional[str] = None):
        self.role = role
        self.status = status
        super().__init__(
            f"Signature by '{role}' already recorded (status {status})",
            convention_id=convention_id,
        )


class CooldownActiveError(WorkflowError):
    status_code = 429

    def __init__(self, retry_after_seconds: int, convention_id: Optional[str] = None):
        self.retry_after_seconds = retry_after_seconds
        hours, rem = divmod(retry_after_seconds, 3600)
        minutes = rem // 60
        super().__init__(
            f"A reminder was sent recently; try again in {hours}h{minutes:02d}",
            convention_id=convention_id,
        )


class CodeCollisionError(WorkflowError):
    def __init__(self, code: str, convention_id: Optional[str] = None):
        self.code = code
        super().__init__(f"Verification code {code} is already in use", convention_id=convention_id)


class PersistenceError(WorkflowError):
    """Store write or read failed; nothing was committed, the caller must retry."""

    status_code = 503


class NotificationDispatchError(Exception):
    """A notification could not be delivered. Logged at the dispatch boundary, never raised to callers."""

    def __init__(self, recipient: str, subject: str, cause: Optional[BaseException] = None):
        self.recipient = recipient
        self.subject = subject
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Failed to deliver '{subject}' to {recipient}{reason}")
