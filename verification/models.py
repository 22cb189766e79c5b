"""
verification/models.py -- Domain dataclasses for the verification core.

Pattern: Data class (pure data container). The store maps rows to these; the
gate and providers only ever see these, never SQLAlchemy rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Contact types accepted by send/verify.
EMAIL = "email"
PHONE = "phone"
CONTACT_TYPES = (EMAIL, PHONE)

# Actions that can be gated by a verified contact.
REGISTRATION = "registration"
LOGIN = "login"
PASSWORD_RESET = "password_reset"


def purpose_for(action: str, contact_type: str) -> str:
    """Return the composite purpose key, e.g. ("registration", "email") -> "registration_email"."""
    return f"{action}_{contact_type}"


@dataclass
class VerificationRecord:
    """One issued code for a (contact, purpose) pair.

    contact is stored exactly as submitted -- no case folding or phone
    normalization -- so lookups must use the same spelling the code was sent to.
    code_hash is a bcrypt hash; the plaintext code is never persisted.
    """

    contact: str
    purpose: str
    code_hash: str
    expires_at: datetime
    id: int | None = None
    verified_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        """Verified and not yet expired. Verification never extends expiry."""
        return self.verified_at is not None and not self.is_expired(now)


@dataclass
class SendResult:
    """Outcome of asking a provider to send a code."""

    success: bool
    message: str
