"""
verification/gate.py -- Gating policy for verified-contact actions.

Each (contact, purpose) pair moves through:

    NONE --send--> SENT --verify--> VERIFIED --consume--> CONSUMED
                     \\                 /
                      `---- EXPIRED ---'      (by time, no transition call)

  send     rate limit (IP and contact) -> contact format -> for registration,
           the contact must not belong to an account -> provider send.
           A second send overwrites the first record, so the first code
           stops working.
  verify   one outcome for every failure: VerificationFailed
           ("Invalid or expired code."). No record, wrong code, expired and
           consumed are indistinguishable to the caller.
  gate     satisfied iff a record is verified AND unexpired right now.
           Expiry is re-checked on every read; verifying does not extend it.
  consume  password reset: the record is deleted as part of redeeming it.
           registration: deleted after the account is created when
           consume_registration_verification is on (the default).

Password reset codes always use the local store, whichever provider handles
contact verification.

Layer rule: no imports from api/ or auth/. The account lookup the gate needs
is injected as a ContactRegistry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from core.config import VerificationConfig
from verification.codes import burn_check, check_code, generate_code, hash_code, hash_contact
from verification.errors import GateNotSatisfied, RateLimitExceeded, ValidationError, VerificationFailed
from verification.events import ContactVerified, EventDispatcher, PasswordResetCodeGenerated
from verification.limiter import AttemptLimiter
from verification.models import (
    CONTACT_TYPES,
    EMAIL,
    PASSWORD_RESET,
    PHONE,
    REGISTRATION,
    SendResult,
    purpose_for,
)
from verification.providers import SelfManagedProvider, VerificationProvider
from verification.store import VerificationStore, utcnow

logger = logging.getLogger("userauth.verification")

# Deliberately loose: the only goal is rejecting obvious garbage before a
# code is generated. Deliverability is the delivery channel's problem.
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s.]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9 ().\-]{5,23}[0-9]$")
_MIN_PHONE_DIGITS = 7


class ContactRegistry(Protocol):
    """The slice of the user store the gate depends on."""

    def contact_taken(self, contact_type: str, contact: str) -> bool: ...


def is_valid_contact(contact: str, contact_type: str) -> bool:
    if contact_type == EMAIL:
        return bool(EMAIL_PATTERN.match(contact)) and len(contact) <= 255
    if contact_type == PHONE:
        digits = sum(ch.isdigit() for ch in contact)
        return bool(PHONE_PATTERN.match(contact)) and digits >= _MIN_PHONE_DIGITS
    return False


class VerificationGate:
    """Send/verify/consume protocol in front of every gated action."""

    def __init__(
        self,
        config: VerificationConfig,
        provider: VerificationProvider,
        store: VerificationStore,
        limiter: AttemptLimiter,
        registry: ContactRegistry,
        events: EventDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.provider = provider
        self._store = store
        self._limiter = limiter
        self._registry = registry
        self._events = events
        self._clock = clock

    @property
    def delegated(self) -> bool:
        return not isinstance(self.provider, SelfManagedProvider)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def _throttle(self, scope: str, contact: str, ip: str) -> None:
        """Reject if either counter is full, otherwise hit both.

        The contact key is an HMAC digest so limiter storage never holds PII.
        """
        attempts = self.config.rate_limit_attempts
        window = self.config.rate_limit_seconds
        ip_key = f"{scope}:ip:{ip}"
        contact_key = f"{scope}:contact:{hash_contact(contact, self.config.contact_hash_key)}"

        for key in (ip_key, contact_key):
            if self._limiter.too_many_attempts(key, attempts, window):
                retry_after = self._limiter.available_in(key, attempts, window)
                logger.warning("Rate limit reached for %s (retry in %ds)", key, retry_after)
                raise RateLimitExceeded(retry_after=retry_after)

        self._limiter.hit(ip_key, attempts, window)
        self._limiter.hit(contact_key, attempts, window)

    # ------------------------------------------------------------------
    # NONE -> SENT
    # ------------------------------------------------------------------

    def send_code(
        self, contact: str, contact_type: str, purpose: str = REGISTRATION, ip: str = "unknown"
    ) -> SendResult:
        """Issue a code for (contact, purpose).

        The rate limit is checked first, so malformed contacts still spend
        attempts. Raises RateLimitExceeded, ValidationError or (delegated,
        strict) ProviderUnavailable. A provider that answers "not sent"
        comes back as SendResult(success=False).
        """
        self._throttle("verification-code", contact, ip)

        if contact_type not in CONTACT_TYPES:
            raise ValidationError(errors={"type": ["The selected type is invalid."]})
        if not is_valid_contact(contact, contact_type):
            raise ValidationError(f"Invalid {'email address' if contact_type == EMAIL else 'phone number'}.")

        if purpose == REGISTRATION and self._registry.contact_taken(contact_type, contact):
            raise ValidationError(f"This {contact_type} is already registered.")

        result = self.provider.send_verification(contact, contact_type, purpose)
        if result.success:
            logger.info(
                "Verification code issued (purpose=%s, provider=%s)",
                purpose_for(purpose, contact_type),
                self.provider.name,
            )
        else:
            logger.warning("Provider %s did not send code: %s", self.provider.name, result.message)
        return result

    # ------------------------------------------------------------------
    # SENT -> VERIFIED
    # ------------------------------------------------------------------

    def verify_code(self, contact: str, code: str, contact_type: str, purpose: str = REGISTRATION) -> None:
        """Mark the pair verified or raise VerificationFailed."""
        if not self.provider.verify(contact, code, contact_type, purpose):
            raise VerificationFailed()
        self._events.dispatch(
            ContactVerified(contact=contact, purpose=purpose_for(purpose, contact_type), contact_type=contact_type)
        )

    # ------------------------------------------------------------------
    # Gate checks
    # ------------------------------------------------------------------

    def is_gate_satisfied(self, contact: str, purpose: str) -> bool:
        """True iff a verified, unexpired record exists for the composite purpose key."""
        return self._store.find_usable(contact, purpose, now=self._clock()) is not None

    def is_verified(self, contact: str, contact_type: str, action: str = REGISTRATION) -> bool:
        """Provider-aware gate check (delegated providers keep their own state)."""
        if self.delegated:
            return self.provider.is_verified(contact, contact_type, action)
        return self.is_gate_satisfied(contact, purpose_for(action, contact_type))

    def require_verified(self, contact: str, contact_type: str, action: str = REGISTRATION) -> None:
        if not self.is_verified(contact, contact_type, action):
            logger.info("Gate not satisfied for %s (%s)", action, contact_type)
            raise GateNotSatisfied(contact_type)

    def required_contacts(self, email: str | None, phone: str | None) -> list[tuple[str, str]]:
        """The (contact, type) pairs registration must have verified under current config."""
        pairs: list[tuple[str, str]] = []
        if self.config.require_email_verification and email:
            pairs.append((email, EMAIL))
        if self.config.require_phone_verification and phone:
            pairs.append((phone, PHONE))
        return pairs

    # ------------------------------------------------------------------
    # VERIFIED -> CONSUMED
    # ------------------------------------------------------------------

    def consume(self, contact: str, contact_type: str, action: str = REGISTRATION) -> bool:
        """Delete the verified record after the gated action succeeded.

        Returns True if a local record was removed. Delegated providers keep
        their own state, so there is nothing to consume here.
        """
        if self.delegated:
            return False
        if action == REGISTRATION and not self.config.consume_registration_verification:
            return False
        record = self._store.find(contact, purpose_for(action, contact_type))
        if record is None:
            return False
        return self._store.delete(record.id)

    # ------------------------------------------------------------------
    # Password reset (always local)
    # ------------------------------------------------------------------

    def send_password_reset_code(self, email: str, ip: str = "unknown") -> None:
        """Issue a password reset code for an existing account's email."""
        self._throttle("password-reset", email, ip)
        if not self._registry.contact_taken(EMAIL, email):
            raise ValidationError(errors={"email": ["The selected email is invalid."]})

        code = generate_code(self.config.code_length)
        now = self._clock()
        self._store.delete_expired(before=now)
        self._store.upsert(
            email,
            PASSWORD_RESET,
            hash_code(code),
            now + timedelta(minutes=self.config.password_reset_code_expiry_minutes),
        )
        self._events.dispatch(PasswordResetCodeGenerated(email=email, code=code))
        logger.info("Password reset code issued")

    def redeem_password_reset_code(self, email: str, code: str) -> None:
        """Check and delete the reset code in one step, or raise VerificationFailed.

        Deleting before the password changes makes the code single-use even
        under concurrent requests: only the caller whose delete removed the
        row proceeds.
        """
        record = self._store.find(email, PASSWORD_RESET)
        if record is None:
            burn_check(code)
            raise VerificationFailed()
        if not check_code(code, record.code_hash) or record.is_expired(self._clock()):
            raise VerificationFailed()
        if not self._store.delete(record.id):
            raise VerificationFailed()
