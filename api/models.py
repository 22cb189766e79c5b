"""
API request and response models for the authentication REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
verification/models.py, which own the internal domain representation. Route
handlers map between the two.

Response envelope (every endpoint):
  success -> {"success": true,  "message": str, "data": ...}
  failure -> {"success": false, "message": str, "errors": ...}
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from verification.gate import EMAIL_PATTERN

_EMAIL_REGEX = EMAIL_PATTERN.pattern


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContactTypeEnum(str, Enum):
    email = "email"
    phone = "phone"


class PurposeEnum(str, Enum):
    registration = "registration"
    login = "login"


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    data: Any = None


class FailureResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    errors: Any = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class SendVerificationCodeRequest(BaseModel):
    """Request body for POST /send-verification-code.

    contact is not stripped or case-folded: codes are keyed by the contact
    exactly as submitted.
    """

    contact: str = Field(min_length=1, max_length=255)
    type: ContactTypeEnum
    purpose: PurposeEnum = PurposeEnum.registration


class VerifyCodeRequest(BaseModel):
    """Request body for POST /verify-code."""

    contact: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=32)
    type: ContactTypeEnum
    purpose: PurposeEnum = PurposeEnum.registration

    @field_validator("code", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> Any:
        # Mobile clients often send the code as a JSON number.
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /register.

    email and phone are matched against verification records as sent, so
    they are not stripped here either.
    """

    email: str = Field(max_length=255, pattern=_EMAIL_REGEX)
    first_name: str = Field(min_length=1, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /login. Exactly one identifier is used.

    Priority when several are sent: email, then phone, then username.
    """

    email: Optional[str] = Field(default=None, max_length=255, pattern=_EMAIL_REGEX)
    phone: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=8, max_length=255)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not (self.email or self.phone or self.username):
            raise ValueError("One of email, phone or username is required.")
        return self

    def identifier(self) -> tuple[str, str]:
        """Return (field, value) for the identifier to authenticate with."""
        if self.email:
            return "email", self.email
        if self.phone:
            return "phone", self.phone
        return "username", self.username or ""


class PasswordResetCodeRequest(BaseModel):
    """Request body for POST /password/reset-code."""

    email: str = Field(max_length=255, pattern=_EMAIL_REGEX)


class PasswordResetRequest(BaseModel):
    """Request body for POST /password/reset."""

    email: str = Field(max_length=255, pattern=_EMAIL_REGEX)
    code: str = Field(pattern=r"^\d{1,12}$")
    new_password: str = Field(min_length=8, max_length=255)

    @field_validator("code", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
