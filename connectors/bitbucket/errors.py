"""Exception taxonomy shared by the client, the walkers and the mutator."""

from __future__ import annotations

from typing import Optional


class ConnectorError(Exception):
    """Base class for every error raised by the connector."""

    retryable: bool = False


# ----------------------------------------------------------------------
# Caller mistakes
# ----------------------------------------------------------------------


class InvalidArgumentError(ConnectorError):
    """Malformed input: bad ids, unsupported roles or principals."""


class InvalidResourceIdError(InvalidArgumentError):
    """A composite resource or entitlement id could not be decomposed."""


class UnsupportedRoleError(InvalidArgumentError):
    """Entitlement slug outside the fixed vocabulary of its resource type."""


class UnsupportedPrincipalError(InvalidArgumentError):
    """Principal type cannot hold the requested entitlement."""


class ProvisioningNotSupportedError(InvalidArgumentError):
    """The entitlement is valid but Bitbucket offers no endpoint to change it."""


class InvalidTokenError(InvalidArgumentError):
    """A page token is not a serialized cursor stack."""


# ----------------------------------------------------------------------
# Upstream answers
# ----------------------------------------------------------------------


class ApiError(ConnectorError):
    """Non-success HTTP answer from Bitbucket."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class BadRequestError(ApiError, InvalidArgumentError):
    """400 / 422."""


class UnauthenticatedError(ApiError):
    """401, failed login, or no usable workspace."""


class NoAuthenticatedWorkspacesError(UnauthenticatedError):
    """Scope resolution ended with an empty workspace set."""


class PermissionDeniedError(ApiError):
    """403."""


class NotFoundError(ApiError):
    """404."""


class TransportError(ApiError):
    """Network failure, exhausted rate limit or 5xx. Safe to retry later."""

    retryable = True


# ----------------------------------------------------------------------
# Provisioning preconditions (non-fatal for remediation callers)
# ----------------------------------------------------------------------


class PreconditionError(ConnectorError):
    """Current upstream state already differs from what the request expects."""


class AlreadyGrantedError(PreconditionError):
    pass


class NotCurrentlyGrantedError(PreconditionError):
    pass


class CancelledError(ConnectorError):
    """The caller's cancellation event was set before the call completed."""


def is_permission_denied(exc: BaseException) -> bool:
    """True for a 403, including errors that only carry it in their message."""
    if isinstance(exc, PermissionDeniedError):
        return True
    if isinstance(exc, ApiError) and exc.status_code is not None:
        return False
    return "status 403" in str(exc)


def error_for_status(status_code: int, message: str) -> ApiError:
    """Map an HTTP status to the matching exception instance."""
    if status_code in (400, 422):
        return BadRequestError(message, status_code)
    if status_code == 401:
        return UnauthenticatedError(message, status_code)
    if status_code == 403:
        return PermissionDeniedError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code == 429 or status_code >= 500:
        return TransportError(message, status_code)
    return ApiError(message, status_code)
