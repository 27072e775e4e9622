"""Error taxonomy shared by services, jobs and the API layer."""


class RotationError(Exception):
    """Base class for all creative rotator errors."""

    pass


class ValidationError(RotationError):
    """Input rejected before any state was written."""

    pass


class InvalidTransitionError(ValidationError):
    """Requested lifecycle change is not allowed from the current status."""

    def __init__(self, session_id: object, status: str, action: str) -> None:
        self.session_id = session_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} session {session_id} in status '{status}'")


class NotFoundError(RotationError):
    """Unknown session, account or campaign."""

    pass


class ProviderError(RotationError):
    """An outbound marketplace call failed."""

    pass


class ExternalServiceError(ProviderError):
    """Non rate-limit failure from the marketplace; never retried automatically."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimitedError(ProviderError):
    """The marketplace kept answering 429 until the retry budget ran out."""

    def __init__(self, message: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


class PersistenceError(RotationError):
    """A write was rejected by the store (constraint or conflict)."""

    pass
