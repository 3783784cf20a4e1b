from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    VALIDATION = (400, "Input validation failed")
    AUTHENTICATION = (401, "Authentication failed")
    AUTHORIZATION = (403, "Access denied")
    CONFLICT = (409, "Resource already exists")
    API = (502, "External service unavailable")
    DATABASE = (500, "Database operation failed")
    CACHE = (500, "Cache operation failed")
    CONFIGURATION = (500, "Configuration error")
    INTERNAL = (500, "Internal server error")

    def __init__(self, status_code: int, default_message: str) -> None:
        self.status_code = status_code
        self.default_message = default_message


class JobRecError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        user_message: str | None = None,
        technical_message: str | None = None,
        *,
        kind: ErrorKind | None = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        self.user_message = user_message or self.kind.default_message
        self.technical_message = technical_message or self.user_message
        super().__init__(self.technical_message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.name}, "
            f"user_message={self.user_message!r}, technical_message={self.technical_message!r})"
        )


class ValidationFailed(JobRecError):
    kind = ErrorKind.VALIDATION


class AuthenticationFailed(JobRecError):
    kind = ErrorKind.AUTHENTICATION


class NotAuthorized(JobRecError):
    kind = ErrorKind.AUTHORIZATION


class ConflictError(JobRecError):
    kind = ErrorKind.CONFLICT


class StorageError(JobRecError):
    kind = ErrorKind.DATABASE

    def __init__(self, technical_message: str) -> None:
        # Storage detail never reaches the client.
        super().__init__(None, technical_message)


class ConfigurationError(JobRecError):
    kind = ErrorKind.CONFIGURATION
