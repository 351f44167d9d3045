"""
Domain exceptions raised by the session state machine.

Core modules raise these instead of HTTPException so they stay usable
outside a request. The application maps them to HTTP responses in
``proctor.main`` (NotFoundError -> 404, StateConflictError -> 409,
InvalidSessionWindowError -> 400).
"""


class ProctorError(Exception):
    """Base class for domain errors carrying a user-facing message."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ProctorError):
    """A referenced session, participant, attempt or question does not exist."""


class StateConflictError(ProctorError):
    """An operation was attempted from a state that does not allow it."""


class InvalidSessionWindowError(ProctorError):
    """A session's start/end times are malformed."""
