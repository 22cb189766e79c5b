"""
verification/errors.py -- Error taxonomy for the verification core.

Every failure a caller can act on is an AuthError subclass carrying the HTTP
status and the client-facing message. The API layer has a single handler for
AuthError that renders the uniform failure envelope, so no route has to map
exceptions to status codes by hand.

VerificationFailed deliberately has one message for "no record", "wrong
code", "expired" and "already consumed". Callers must never subclass it or
add detail that would let a client tell those cases apart.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors that are rendered as a failure response."""

    status_code: int = 400
    default_message: str = "Operation failed."

    def __init__(self, message: str | None = None, errors: list | dict | None = None) -> None:
        self.message = message or self.default_message
        self.errors = errors if errors is not None else []
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed or missing input. The caller can fix it and retry."""

    status_code = 422
    default_message = "Validation failed."


class RateLimitExceeded(AuthError):
    """Too many send attempts for this IP or contact within the window."""

    status_code = 429
    default_message = "Too many attempts, please try again later."

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class VerificationFailed(AuthError):
    """No record, wrong code, expired code or consumed code -- indistinguishable."""

    status_code = 400
    default_message = "Invalid or expired code."


class GateNotSatisfied(AuthError):
    """A gated action was attempted before the contact was verified."""

    status_code = 422

    def __init__(self, contact_type: str) -> None:
        super().__init__(f"{contact_type.capitalize()} verification required. Please verify your {contact_type} first.")
        self.contact_type = contact_type


class ProviderUnavailable(AuthError):
    """The delegated verification service could not be reached or answered garbage."""

    status_code = 503
    default_message = "Verification service unavailable. Please try again later."


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup. Never rendered to clients."""
