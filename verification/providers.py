"""
verification/providers.py -- Verification provider abstraction.

Two interchangeable implementations behind one Protocol:

  SelfManagedProvider -- codes are generated here, bcrypt-hashed into the
      VerificationStore, and delivered by whoever subscribes to
      VerificationCodeGenerated on the event port.

  DelegatedProvider -- a SmartPings-style REST service owns code generation,
      delivery and checking. We only forward the four operations over HTTPS.

build_provider() picks one of them once, at startup, from VerificationConfig.
There is no per-request reflection or class lookup.

Failure semantics of the delegated provider:
  Credentials missing at construction:
      strict_credentials=True  -> ConfigurationError (refuse to start)
      strict_credentials=False -> warning, provider disabled; build_provider
                                  falls back to self-managed so the gate still
                                  runs against local records
  Network/5xx/garbage response:
      verify()                     -> always ProviderUnavailable
      send_verification/is_verified with strict_provider_errors=True
                                   -> ProviderUnavailable
      ...with strict_provider_errors=False
                                   -> SendResult(False, ...) / False
  A 404 from the status lookup means the service has never seen the contact,
  which is "not verified", not an outage.

Every outbound call carries config.provider_timeout_seconds so a hung
provider surfaces as a failure instead of pinning the request thread.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

import requests

from core.config import SMARTPINGS_PROVIDER, VerificationConfig
from verification.codes import burn_check, check_code, generate_code, hash_code
from verification.errors import ConfigurationError, ProviderUnavailable
from verification.events import EventDispatcher, VerificationCodeGenerated
from verification.models import REGISTRATION, SendResult, purpose_for
from verification.store import VerificationStore, utcnow

logger = logging.getLogger("userauth.verification.provider")

_UNAVAILABLE_MESSAGE = "Verification service temporarily unavailable"


class VerificationProvider(Protocol):
    """Contract shared by both providers."""

    name: str

    def is_enabled(self) -> bool: ...

    def send_verification(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> SendResult: ...

    def verify(self, contact: str, code: str, contact_type: str, purpose: str = REGISTRATION) -> bool: ...

    def is_verified(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> bool: ...


# ---------------------------------------------------------------------------
# Self-managed
# ---------------------------------------------------------------------------


class SelfManagedProvider:
    """Local code store + generator. `purpose` here is the action, e.g. "registration"."""

    name = "default"

    def __init__(
        self,
        config: VerificationConfig,
        store: VerificationStore,
        events: EventDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._events = events
        self._clock = clock

    def is_enabled(self) -> bool:
        return True

    def send_verification(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> SendResult:
        key = purpose_for(purpose, contact_type)
        code = generate_code(self._config.code_length)
        now = self._clock()
        removed = self._store.delete_expired(before=now)
        if removed:
            logger.debug("Removed %d expired verification record(s)", removed)
        self._store.upsert(
            contact,
            key,
            hash_code(code),
            now + timedelta(minutes=self._config.code_expiry_minutes),
        )
        self._events.dispatch(
            VerificationCodeGenerated(contact=contact, purpose=key, contact_type=contact_type, code=code)
        )
        return SendResult(success=True, message=f"Verification code sent to your {contact_type}.")

    def verify(self, contact: str, code: str, contact_type: str, purpose: str = REGISTRATION) -> bool:
        record = self._store.find(contact, purpose_for(purpose, contact_type))
        if record is None:
            burn_check(code)
            return False
        if not check_code(code, record.code_hash):
            return False
        # Only a SENT record can become VERIFIED; a second verify is a replay.
        if record.verified_at is not None:
            return False
        now = self._clock()
        if record.is_expired(now):
            return False
        return self._store.mark_verified(record.id, now=now)

    def is_verified(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> bool:
        key = purpose_for(purpose, contact_type)
        return self._store.find_usable(contact, key, now=self._clock()) is not None


# ---------------------------------------------------------------------------
# Delegated (SmartPings)
# ---------------------------------------------------------------------------


class DelegatedProvider:
    """Forwards send/verify/status to the SmartPings verification API."""

    name = SMARTPINGS_PROVIDER

    _SEND_PATH = "/api/v1/verifications/send"
    _VERIFY_PATH = "/api/v1/verifications/verify"
    _STATUS_PATH = "/api/v1/verifications/status"

    def __init__(self, config: VerificationConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._enabled = config.provider == SMARTPINGS_PROVIDER and not config.self_managed
        self._session = session

        if not self._enabled:
            return
        if not (config.smartpings_client_id and config.smartpings_secret_id):
            if config.strict_credentials:
                logger.error("SmartPings is enabled but client_id or secret_id is missing")
                raise ConfigurationError(
                    "SmartPings verification is enabled but credentials are missing. "
                    "Set SMARTPINGS_CLIENT_ID and SMARTPINGS_SECRET_ID."
                )
            logger.warning("SmartPings is enabled but credentials are missing -- delegated verification disabled")
            self._enabled = False
            return
        if self._session is None:
            self._session = requests.Session()
            self._session.max_redirects = 3
        self._session.headers.update(
            {
                "X-Client-Id": config.smartpings_client_id,
                "X-Secret-Id": config.smartpings_secret_id,
                "Accept": "application/json",
            }
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def _url(self, path: str) -> str:
        return self._config.smartpings_base_url.rstrip("/") + path

    def _post(self, path: str, payload: dict) -> requests.Response:
        return self._session.post(self._url(path), json=payload, timeout=self._config.provider_timeout_seconds)

    @staticmethod
    def _json(resp: requests.Response) -> dict:
        """Decode a response body, treating 5xx and non-object bodies as outages."""
        if resp.status_code >= 500:
            raise ProviderUnavailable()
        data = resp.json()
        if not isinstance(data, dict):
            raise ProviderUnavailable()
        return data

    def send_verification(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> SendResult:
        if not self._enabled:
            return SendResult(success=False, message="SmartPings verification is not enabled")
        try:
            resp = self._post(
                self._SEND_PATH,
                {
                    "type": contact_type,
                    "contact": contact,
                    "expiration_minutes": self._config.code_expiry_minutes,
                },
            )
            data = self._json(resp)
        except (requests.RequestException, ValueError, ProviderUnavailable) as exc:
            logger.error("SmartPings send failed (type=%s): %s", contact_type, exc)
            if self._config.strict_provider_errors:
                raise ProviderUnavailable() from exc
            return SendResult(success=False, message=_UNAVAILABLE_MESSAGE)

        logger.info("SmartPings send response: status=%d success=%s", resp.status_code, data.get("success"))
        if data.get("success") is True:
            return SendResult(
                success=True,
                message=data.get("message") or f"{contact_type.capitalize()} verification sent successfully",
            )
        return SendResult(success=False, message=data.get("message") or "Failed to send verification")

    def verify(self, contact: str, code: str, contact_type: str, purpose: str = REGISTRATION) -> bool:
        if not self._enabled:
            return False
        try:
            resp = self._post(self._VERIFY_PATH, {"type": contact_type, "contact": contact, "code": code})
            data = self._json(resp)
        except (requests.RequestException, ValueError, ProviderUnavailable) as exc:
            # Never let an outage read as "wrong code".
            logger.error("SmartPings verify failed (type=%s): %s", contact_type, exc)
            raise ProviderUnavailable() from exc
        logger.info("SmartPings verify response: status=%d success=%s", resp.status_code, data.get("success"))
        return data.get("success") is True

    def is_verified(self, contact: str, contact_type: str, purpose: str = REGISTRATION) -> bool:
        if not self._enabled:
            return False
        try:
            resp = self._session.get(
                self._url(self._STATUS_PATH),
                params={"contact": contact},
                timeout=self._config.provider_timeout_seconds,
            )
            if resp.status_code == 404:
                logger.info("SmartPings has no record of contact (type=%s) -- treating as unverified", contact_type)
                return False
            data = self._json(resp)
        except (requests.RequestException, ValueError, ProviderUnavailable) as exc:
            logger.error("SmartPings status check failed (type=%s): %s", contact_type, exc)
            if self._config.strict_provider_errors:
                raise ProviderUnavailable() from exc
            return False

        if data.get("success") is not True:
            return False
        status = data.get("data") or {}
        return status.get("verified") is True


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def build_provider(
    config: VerificationConfig,
    store: VerificationStore,
    events: EventDispatcher,
    session: requests.Session | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> VerificationProvider:
    """Choose the provider once, from configuration.

    Raises ConfigurationError when the delegated provider is selected in
    strict mode without credentials. Unknown provider names are also a
    configuration error rather than a silent fallback.
    """
    if config.provider not in ("default", SMARTPINGS_PROVIDER):
        raise ConfigurationError(f"Unknown verification provider: {config.provider!r}")
    if config.provider == SMARTPINGS_PROVIDER and not config.self_managed:
        delegated = DelegatedProvider(config, session=session)
        if delegated.is_enabled():
            logger.info("Verification provider: SmartPings (delegated)")
            return delegated
        logger.warning("Delegated provider disabled -- falling back to self-managed verification")
    logger.info("Verification provider: self-managed")
    return SelfManagedProvider(config, store, events, clock=clock)
