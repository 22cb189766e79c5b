"""
api/routes/v1/password.py -- Password reset by emailed code.

Routes:
  POST /password/reset-code  -- issue a reset code for an existing account
  POST /password/reset       -- redeem the code and set a new password

Reset codes always go through the local verification store, whichever
provider handles contact verification. The code is delivered by whoever
subscribes to PasswordResetCodeGenerated.

Security:
  The code is deleted before the password is written, so a code can change
  the password at most once.
  reset-code shares the gate's two-key throttle (scope "password-reset").
  reset is limited per IP by slowapi (PASSWORD_RESET_RATE_LIMIT).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.hooks import HookAction, run_after_hooks, run_before_hooks
from api.limiter import limiter, password_reset_limit
from api.models import PasswordResetCodeRequest, PasswordResetRequest
from api.responses import from_error, success
from auth.store import UserStore
from auth.tokens import hash_password
from verification.errors import AuthError, VerificationFailed
from verification.events import EventDispatcher, PasswordResetComplete
from verification.gate import VerificationGate

logger = logging.getLogger("userauth.api.password")

router = APIRouter()


@router.post("/password/reset-code")
def send_password_reset_code(request: Request, body: PasswordResetCodeRequest) -> JSONResponse:
    request = run_before_hooks(request, HookAction.PASSWORD_RESET_REQUEST)
    gate: VerificationGate = request.app.state.gate
    try:
        gate.send_password_reset_code(body.email, ip=get_remote_address(request))
    except AuthError as exc:
        resp = from_error(exc)
    else:
        resp = success(None, "Password reset code sent successfully.")
    return run_after_hooks(request, resp, HookAction.PASSWORD_RESET_REQUEST)


@limiter.limit(password_reset_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/password/reset")
def reset_password(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Redeem a reset code. Any code problem renders 400 "Invalid or expired code."."""
    request = run_before_hooks(request, HookAction.PASSWORD_RESET)
    gate: VerificationGate = request.app.state.gate
    user_store: UserStore = request.app.state.user_store
    events: EventDispatcher = request.app.state.events
    try:
        gate.redeem_password_reset_code(body.email, body.code)
        user = user_store.get_by_email(body.email)
        if user is None:
            # Account removed between issuing and redeeming the code.
            raise VerificationFailed()
        user_store.update_password(user.id, hash_password(body.new_password))
    except AuthError as exc:
        resp = from_error(exc)
    else:
        events.dispatch(PasswordResetComplete(user_id=user.id, email=user.email))
        logger.info("Password reset for user %d", user.id)
        resp = success(None, "Password has been reset successfully.")
    return run_after_hooks(request, resp, HookAction.PASSWORD_RESET)
