"""
api/routes/v1/verification.py -- Contact verification endpoints.

Routes:
  POST /send-verification-code  -- issue a code for (contact, type, purpose)
  POST /verify-code             -- check a code, mark the contact verified

All gating logic lives in verification/gate.py. These handlers only map the
request body onto VerificationGate calls and the outcome onto the envelope.

Security:
  send is throttled inside the gate on two keys (IP and contact digest).
  verify is additionally capped per IP by slowapi to slow code guessing.
  Every verify failure renders the same 400 body.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.hooks import HookAction, run_after_hooks, run_before_hooks
from api.limiter import limiter, verify_code_limit
from api.models import SendVerificationCodeRequest, VerifyCodeRequest
from api.responses import failure, from_error, success
from verification.errors import AuthError
from verification.gate import VerificationGate

router = APIRouter()


@router.post("/send-verification-code")
def send_verification_code(request: Request, body: SendVerificationCodeRequest) -> JSONResponse:
    """Issue a verification code.

    200 on success, 422 for a malformed or (registration) already-owned
    contact, 429 when either throttle key is full. A delegated provider that
    declines to send renders its own message with 500.
    """
    request = run_before_hooks(request, HookAction.SEND_VERIFICATION_CODE)
    gate: VerificationGate = request.app.state.gate
    try:
        result = gate.send_code(body.contact, body.type.value, body.purpose.value, ip=get_remote_address(request))
    except AuthError as exc:
        resp = from_error(exc)
    else:
        resp = success(None, result.message) if result.success else failure(result.message, 500)
    return run_after_hooks(request, resp, HookAction.SEND_VERIFICATION_CODE)


@limiter.limit(verify_code_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/verify-code")
def verify_code(request: Request, body: VerifyCodeRequest) -> JSONResponse:
    """Verify a code. 200 on success, 400 "Invalid or expired code." otherwise."""
    request = run_before_hooks(request, HookAction.VERIFY_CODE)
    gate: VerificationGate = request.app.state.gate
    try:
        gate.verify_code(body.contact, body.code, body.type.value, body.purpose.value)
    except AuthError as exc:
        resp = from_error(exc)
    else:
        resp = success(None, "Code verified successfully.")
    return run_after_hooks(request, resp, HookAction.VERIFY_CODE)
