from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clubhouse.domain.principal import Principal


class ClubhouseError(Exception):
    """Base error for Clubhouse."""


class CredentialError(ClubhouseError):
    """Authentication failure; every subclass surfaces as the same opaque 401."""

    reason = "credential_error"

    def __init__(self, message: str | None = None, *, subject: Principal | None = None) -> None:
        super().__init__(message or self.reason)
        # Known account behind the failure, used as the audit actor when available.
        self.subject = subject


class AuthFailed(CredentialError):
    """Bad credentials at login."""

    reason = "auth_failed"


class TokenInvalid(CredentialError):
    """Token is unknown, malformed, or bound to an unusable account."""

    reason = "token_invalid"


class TokenRevoked(CredentialError):
    """Refresh token was already redeemed or revoked."""

    reason = "token_revoked"


class TokenExpired(CredentialError):
    """Token is past its expiry."""

    reason = "token_expired"


class TenantMismatch(ClubhouseError):
    """Request references an organization other than the caller's."""

    def __init__(self, location: str, key: str) -> None:
        self.location = location
        self.key = key
        super().__init__(
            "Access denied: cannot access resources from another organization "
            f"({location}.{key})"
        )


class AuditPersistFailure(ClubhouseError):
    """Audit entry could not be written; internal only, never surfaced to clients."""


class AuditEntryImmutable(ClubhouseError):
    """Persisted audit entries cannot be modified."""


class RegistrationError(ClubhouseError):
    """Account registration rejected."""


class UnknownOrganization(RegistrationError):
    """Registration targets an organization that does not exist."""


class EmailAlreadyRegistered(RegistrationError):
    """Registration email is already in use."""


class RoutePolicyError(ClubhouseError):
    """Route policy table is inconsistent with the mounted routes."""
