"""Domain exceptions raised by the service layer.

Routes translate these into HTTP responses; services never import FastAPI.
"""


class PossumblyError(Exception):
    """Base exception for all Possumbly domain errors."""

    status_code = 500


class BadRequestError(PossumblyError):
    """Raised when input fails format or size validation."""

    status_code = 400


class NotFoundError(PossumblyError):
    """Raised when a requested resource does not exist."""

    status_code = 404

    def __init__(self, resource: str):
        """Initialize the exception.

        Args:
            resource: Human-readable resource kind, e.g. ``"Meme"``.
        """
        self.resource = resource
        super().__init__(f"{resource} not found")


class ForbiddenError(PossumblyError):
    """Raised when the actor lacks ownership or role for an action."""

    status_code = 403


class InvalidInviteError(BadRequestError):
    """Raised for every unusable invite code.

    Malformed, unknown and already-used codes share this one message so the
    response never reveals which codes exist.
    """

    def __init__(self, reason: str = "invalid"):
        """Initialize the exception.

        Args:
            reason: Internal cause for logs and the audit trail; never sent
                to the caller.
        """
        self.reason = reason
        super().__init__("Invalid invite code")


class InvalidImageError(BadRequestError):
    """Raised when uploaded bytes are not a readable image."""
