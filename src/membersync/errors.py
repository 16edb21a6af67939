"""Error taxonomy shared by the webhook pipeline and the HTTP surface.

Every error carries the HTTP status the request boundary answers with.
"""


class MemberSyncError(Exception):
    """Base class for errors converted into HTTP responses."""

    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class AuthError(MemberSyncError):
    """Missing, malformed or mismatched webhook signature."""

    status_code = 401


class ValidationError(MemberSyncError):
    """Request is well-authenticated but cannot be processed."""

    status_code = 400


class UnsupportedEventError(ValidationError):
    """Event type outside the subscription lifecycle."""


class WrongProductError(ValidationError):
    """Subscription belongs to a different product line."""


class UpstreamError(MemberSyncError):
    """Billing provider or membership store call failed."""

    def __init__(self, message: str, status: int | None = None, **context):
        super().__init__(message, **context)
        self.status = status


class InvariantViolationError(MemberSyncError):
    """Stores disagree with an invariant (e.g. two members for one email)."""


class LinkageError(MemberSyncError):
    """Member note does not hold a valid Stripe linkage."""
