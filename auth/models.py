"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in verification/models.py -- dataclasses own domain shape; stores and routes
do the work.

Layer rule: no imports from api/ or verification/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    email is the primary identity and is required. username and phone are
    optional alternative login identifiers; each is unique when present.

    hashed_password is always set. Accounts created through social sign-in
    get a random password nobody knows, so they can only log in through the
    provider until they run a password reset.
    """

    email: str
    first_name: str
    hashed_password: str
    last_name: str | None = None
    username: str | None = None
    phone: str | None = None
    id: int | None = None
    created_at: str | None = None
    is_active: bool = True

    def to_public(self) -> dict:
        """Fields safe to return to clients (never the password hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "username": self.username,
            "phone": self.phone,
            "created_at": self.created_at,
        }


@dataclass
class OAuthAccount:
    """Link between a user and a social provider they have signed in with."""

    user_id: int
    provider: str  # "github", "google", "oidc"
    id: int | None = None
    created_at: str | None = None
