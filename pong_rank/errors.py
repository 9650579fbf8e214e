"""Exceptions raised by the ladder engine.

Every error carries a short machine-readable ``code`` so the front-end can
map a failed :class:`~pong_rank.models.Result` to a reply without parsing
messages.
"""

from __future__ import annotations


class PongRankError(Exception):
    """Base exception for all ladder errors."""

    code = "error"


class ValidationError(PongRankError):
    """Malformed roster or series score.

    Raised before anything is written.
    """

    code = "invalid"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        full_message = message
        if field:
            full_message = f"Invalid '{field}': {message}"
        super().__init__(full_message)


class AuthorizationError(PongRankError):
    """Caller is not allowed to perform the transition."""

    code = "forbidden"

    def __init__(self, message: str, user_id: int | None = None):
        self.user_id = user_id
        super().__init__(message)


class ConflictError(PongRankError):
    """Match is not in the state the requested transition needs."""

    code = "conflict"

    def __init__(
        self,
        message: str,
        match_id: int | None = None,
        status: str | None = None,
    ):
        self.match_id = match_id
        self.status = status
        full_message = message
        if match_id is not None:
            full_message = f"Match #{match_id}: {message}"
        if status:
            full_message += f" (status: {status})"
        super().__init__(full_message)


class NotFoundError(PongRankError):
    """Unknown match or player id."""

    code = "not_found"

    def __init__(self, kind: str, identifier: int):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} {identifier} not found")


class PersistenceError(PongRankError):
    """Storage failure inside an atomic unit.

    The transaction has already been rolled back when this is raised, so the
    operation is safe to retry.
    """

    code = "storage"

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        full_message = f"Storage error: {message}"
        if operation:
            full_message += f"\nOperation: {operation}"
        super().__init__(full_message)
