from __future__ import annotations


class DocgateError(Exception):
    """Base error for docgate."""

    code = "INTERNAL_ERROR"
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ResourceNotFoundError(DocgateError):
    """Resource is absent, or hidden from the caller."""

    code = "RESOURCE_NOT_FOUND"
    default_message = "Resource not found"


class ResourceNotAvailableError(DocgateError):
    """Document exists but is archived; surfaced to callers exactly like a miss."""

    code = "RESOURCE_NOT_AVAILABLE"
    default_message = "Resource not found"


class AccessDeniedError(DocgateError):
    """Authenticated actor lacks role or department scope for an admin-facing operation."""

    code = "ACCESS_DENIED"
    default_message = "Access denied"


class DuplicateRequestError(DocgateError):
    """An open access request already exists for the actor/document pair."""

    code = "DUPLICATE_REQUEST"
    default_message = "An open access request already exists for this document"


class RequestAlreadyFinalError(DocgateError):
    """Access request is no longer in a state that allows the operation."""

    code = "REQUEST_ALREADY_FINAL"
    default_message = "Access request is already final"


class UnauthenticatedError(DocgateError):
    """Session credential missing, invalid or expired."""

    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class RefreshTokenRevokedError(DocgateError):
    """Renewal credential absent, expired, consumed or revoked."""

    code = "REFRESH_TOKEN_REVOKED"
    default_message = "Session expired, please sign in again"


class InvalidFederatedTokenError(DocgateError):
    """Federated credential failed verification."""

    code = "INVALID_TOKEN"
    default_message = "Invalid federated credential"


class DomainNotAllowedError(DocgateError):
    """Verified identity belongs to a domain outside the allow-list."""

    code = "DOMAIN_NOT_ALLOWED"
    default_message = "Domain not allowed"


class ActorDisabledError(AccessDeniedError):
    """Actor exists but has been disabled."""

    default_message = "Account disabled"


class StorageUnavailableError(DocgateError):
    """Storage call timed out or the database could not be reached."""

    code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable"


class FileStoreError(DocgateError):
    """Document blob could not be read."""

    code = "INTERNAL_ERROR"
    default_message = "Internal server error"
