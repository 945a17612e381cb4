"""Domain errors raised by the service layer.

Routes let these propagate; ``tourneyhub.main`` renders them as
``{"detail": ..., "code": ...}`` with the status code below so clients can tell
a full tournament from a duplicate registration from a closed one.
"""


class TourneyError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or (self.__doc__ or self.code).strip()
        super().__init__(self.message)


class ValidationError(TourneyError):
    """Invalid input."""

    status_code = 422
    code = "validation_error"


class NotFoundError(TourneyError):
    """Not found."""

    status_code = 404
    code = "not_found"


class ConflictError(TourneyError):
    """Conflicts with existing data."""

    status_code = 409
    code = "conflict"


class AlreadyRegistered(ConflictError):
    """Team is already registered for this tournament."""

    code = "already_registered"


class TournamentFull(ConflictError):
    """Tournament is already full."""

    code = "tournament_full"


class TeamFull(ConflictError):
    """Team roster is full."""

    code = "team_full"


class NameTaken(ConflictError):
    """Name already exists."""

    code = "name_taken"


class TournamentClosed(TourneyError):
    """Tournament is closed for registration."""

    status_code = 409
    code = "tournament_closed"


class AuthorizationError(TourneyError):
    """Not allowed."""

    status_code = 403
    code = "forbidden"


class NotAuthorized(AuthorizationError):
    """You are not allowed to act for this team."""

    code = "not_authorized"


class TransientError(TourneyError):
    """Temporary database or network failure; retry later."""

    status_code = 503
    code = "transient"


__all__ = [
    "AlreadyRegistered",
    "AuthorizationError",
    "ConflictError",
    "NameTaken",
    "NotAuthorized",
    "NotFoundError",
    "TeamFull",
    "TournamentClosed",
    "TournamentFull",
    "TourneyError",
    "TransientError",
    "ValidationError",
]
