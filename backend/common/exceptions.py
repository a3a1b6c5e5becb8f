"""Custom exceptions shared by the stores, matching and conversation layers."""


class ConflictError(Exception):
    """Raised when a compare-and-swap loses: the stored value no longer matches."""
    pass


class InvalidTransitionError(ConflictError):
    """Raised when a task status change is not an edge of the task state machine."""
    pass


class NotFoundError(Exception):
    """Raised when a session, task, offer or worker cannot be found."""
    pass


class ExpiredError(NotFoundError):
    """Raised when a session or offer exists but is past its deadline."""
    pass


class OfferNotFoundError(NotFoundError):
    """Raised when a worker holds no live offer for a task."""
    pass


class ValidationError(Exception):
    """Raised when user input does not match what the current step expects."""
    pass


class DuplicateSessionError(Exception):
    """Raised when a user already has an unexpired conversation session."""
    pass


class WorkerNotAvailableError(Exception):
    """Raised when a worker is not available to accept tasks."""
    pass
