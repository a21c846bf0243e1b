"""Error taxonomy shared by all services.

Services raise these from business logic; `welfarehub.common.http` maps them to
the JSON error envelope with the matching status code.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for expected, client-visible failures."""

    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    status_code = 400

    @classmethod
    def from_pydantic(cls, message: str, exc) -> "ValidationError":
        """Wrap a pydantic `ValidationError` keeping its issue list."""

        details = [
            {"path": ".".join(str(part) for part in issue["loc"]), "message": issue["msg"]} for issue in exc.errors()
        ]
        return cls(message, details=details)


class Unauthenticated(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    """Duplicate names and similar uniqueness violations."""

    status_code = 400


class ConcurrencyConflict(ServiceError):
    """A guarded write lost a race against another writer."""

    status_code = 409


class InvalidTransition(ServiceError, ValueError):
    """Requested lifecycle transition is not in the transition table."""

    status_code = 409

    def __init__(self, current: str, new: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid transition: {current} -> {new}", current=current, requested=new)
        self.current = current
        self.new = new


class ExternalServiceError(ServiceError):
    """An upstream dependency (payment gateway) failed.

    `code` is one of TIMEOUT, NOT_FOUND, RATE_LIMITED, UPSTREAM_ERROR,
    UNAVAILABLE, NOT_CONFIGURED.
    """

    status_code = 502

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code)
        self.code = code
