"""Error taxonomy shared by every anchorline component.

Every error names the precondition that was not met, so callers can surface
it directly (e.g. "approvals 2 of required 3").
"""


class AnchorlineError(Exception):
    """Base class for all anchorline errors."""

    retryable: bool = False

    def __init__(self, message: str, precondition: str | None = None) -> None:
        super().__init__(message)
        self.precondition = precondition or message


class AuthorizationError(AnchorlineError):
    """Caller lacks the required site-scoped role."""


class ValidationError(AnchorlineError):
    """Zero, empty, malformed or out-of-range input."""


class NotFoundError(ValidationError):
    """Referenced site, anchor or intent does not exist."""


class BufferOverflowError(ValidationError):
    """A site buffer hit its hard cap; the event was rejected, not dropped."""


class ConflictError(AnchorlineError):
    """Duplicate id, already-approved, already-registered."""


class StateError(AnchorlineError):
    """Operation attempted from an illegal state."""


class IntegrityError(AnchorlineError):
    """Audit chain hash or signature mismatch. Never auto-healed."""


class ExternalError(AnchorlineError):
    """Ledger call failed or timed out."""

    retryable = True
