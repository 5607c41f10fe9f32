"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all kbclient exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this directly - always use a specific subclass so callers
    # can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class StorageError(DomainException):
    """Reading or writing persisted session data failed.

    Recovered locally: the session layer logs it and behaves as if there were
    no session, which forces the user to sign in again.
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("database_url must use an async driver")
    """

    pass


class AuthenticationError(DomainException):
    """The credential exchange at the login endpoint was rejected."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class RefreshFailedError(DomainException):
    """The refresh call failed (network, server, or malformed response).

    Hey future me - by the time a caller sees this, the session has ALREADY been
    cleared and the unauthorized event has fired. The one quiet case is
    error_code="session_gone": the user signed out while the refresh was running.
    Callers only decide what to show (usually: route to the login screen). Never
    retry a refresh on this error.
    """

    def __init__(
        self,
        message: str = "Session refresh failed. Please sign in again.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if the refresh token itself was rejected."""
        # 400 with invalid_grant means the refresh token is dead,
        # 401/403 mean the server refused it outright.
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class RefreshTokenExpiredError(RefreshFailedError):
    """The refresh token is past its lifetime or was rejected by the server.

    Terminal: a refresh with this token can never succeed, so it is not retried.
    """

    def __init__(
        self,
        message: str = "Refresh token expired. Please sign in again.",
        error_code: str | None = "invalid_grant",
        http_status: int | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, http_status=http_status)


class ApiError(DomainException):
    """Uniform error shape produced by the request pipeline.

    Attributes:
        status_code: HTTP status if the server answered, else None
        is_network_error: True when no response was received at all
        is_timeout: True when the request timed out
        data: Decoded response body (dict/list/str) if there was one
        url: The request URL, for logging
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        is_network_error: bool = False,
        is_timeout: bool = False,
        data: Any = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_network_error = is_network_error
        self.is_timeout = is_timeout
        self.data = data
        self.url = url

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, status_code={self.status_code}, "
            f"is_network_error={self.is_network_error}, is_timeout={self.is_timeout})"
        )


class NetworkError(ApiError):
    """No response was received (connection refused, DNS failure, reset)."""

    def __init__(self, message: str, *, is_timeout: bool = False, url: str | None = None) -> None:
        super().__init__(
            message, is_network_error=True, is_timeout=is_timeout, url=url
        )


class RequestTimeoutError(NetworkError):
    """The request did not complete within the configured timeout."""

    def __init__(self, message: str = "Request timed out", *, url: str | None = None) -> None:
        super().__init__(message, is_timeout=True, url=url)


class AuthorizationFailure(ApiError):
    """The server answered 401/403 and the pipeline could not recover."""

    pass


class ValidationError(ApiError):
    """The server answered with a payload of the wrong shape.

    Subclasses ApiError on purpose: screens handle it like any other failed call.
    """

    pass


__all__ = [
    "ApiError",
    "AuthenticationError",
    "AuthorizationFailure",
    "ConfigurationError",
    "DomainException",
    "NetworkError",
    "RefreshFailedError",
    "RefreshTokenExpiredError",
    "RequestTimeoutError",
    "StorageError",
    "ValidationError",
]
