"""
verification/events.py -- Outbound event port.

State transitions (code issued, contact verified, user registered, ...) are
announced through an EventDispatcher. Delivery (email, SMS, push, audit log)
is not this package's job: the host application subscribes handlers that
hand the event to whatever mechanism it uses.

Dispatch is synchronous and fire-and-forget. Handlers run in subscription
order; a handler that raises is logged and skipped so a broken mailer cannot
turn a successful send into a 500.

Events that carry a plaintext code exclude it from repr(), so logging an
event object never leaks the code.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger("userauth.verification.events")


@dataclass(frozen=True)
class VerificationCodeGenerated:
    contact: str
    purpose: str
    contact_type: str
    code: str = field(repr=False)


@dataclass(frozen=True)
class ContactVerified:
    contact: str
    purpose: str
    contact_type: str


@dataclass(frozen=True)
class PasswordResetCodeGenerated:
    email: str
    code: str = field(repr=False)


@dataclass(frozen=True)
class PasswordResetComplete:
    user_id: int
    email: str


@dataclass(frozen=True)
class UserRegistered:
    user_id: int
    email: str
    provider: str | None = None  # set for social sign-up


@dataclass(frozen=True)
class UserLoggedIn:
    user_id: int
    email: str
    provider: str | None = None


@dataclass(frozen=True)
class UserLoggedOut:
    user_id: int
    email: str


Handler = Callable[[object], None]


class EventDispatcher:
    """Synchronous in-process event port.

    Usage:
        events = EventDispatcher()
        events.subscribe(VerificationCodeGenerated, mailer.send_code)
        events.dispatch(VerificationCodeGenerated(...))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    def dispatch(self, event: object) -> None:
        handlers = list(self._handlers.get(type(event), []))
        logger.info("Dispatching %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)
