"""
api/routes/v1/auth.py -- Account endpoints: register, login, logout, me.

Routes:
  POST /register  -- create an account (verification-gated when configured)
  POST /login     -- password login by email, phone or username; sets JWT cookie
  POST /logout    -- clears the cookie (requires auth)
  GET  /me        -- current user (requires auth)

Registration gate:
  With REQUIRE_EMAIL_VERIFICATION / REQUIRE_PHONE_VERIFICATION on, the
  submitted email (and phone, when given) must have a verified, unexpired
  registration record. After the account is created the records are consumed
  so one verification cannot register twice.

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Unknown identifier and wrong password return the same 401 body.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.hooks import HookAction, run_after_hooks, run_before_hooks
from api.limiter import limiter, login_limit
from api.models import LoginRequest, RegisterRequest
from api.responses import failure, from_error, success
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password, set_auth_cookie
from verification.errors import AuthError, ValidationError
from verification.events import EventDispatcher, UserLoggedIn, UserLoggedOut, UserRegistered
from verification.gate import VerificationGate

logger = logging.getLogger("userauth.api.auth")

router = APIRouter()


def _taken_fields(user_store: UserStore, body: RegisterRequest) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for field in ("email", "username", "phone"):
        value = getattr(body, field)
        if value and user_store.get_by_identifier(field, value) is not None:
            errors[field] = [f"The {field} has already been taken."]
    return errors


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and return {user, token}.

    422 when a unique field is taken or a required contact is unverified.
    """
    request = run_before_hooks(request, HookAction.REGISTER)
    user_store: UserStore = request.app.state.user_store
    gate: VerificationGate = request.app.state.gate
    events: EventDispatcher = request.app.state.events

    try:
        taken = _taken_fields(user_store, body)
        if taken:
            raise ValidationError(errors=taken)

        required = gate.required_contacts(body.email, body.phone)
        for contact, contact_type in required:
            gate.require_verified(contact, contact_type)

        user = User(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            username=body.username,
            phone=body.phone,
            hashed_password=hash_password(body.password),
        )
        try:
            user.id = user_store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same field.
            raise ValidationError(errors={"email": ["The email has already been taken."]}) from exc
    except AuthError as exc:
        return run_after_hooks(request, from_error(exc), HookAction.REGISTER)

    for contact, contact_type in required:
        gate.consume(contact, contact_type)

    user = user_store.get_by_id(user.id) or user
    events.dispatch(UserRegistered(user_id=user.id, email=user.email))
    logger.info("User %d registered", user.id)

    token = create_access_token(user.id, user.email)
    resp = success({"user": user.to_public(), "token": token}, "User registered successfully", 201)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return run_after_hooks(request, resp, HookAction.REGISTER)


@limiter.limit(login_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with one identifier plus password; set JWT cookie."""
    request = run_before_hooks(request, HookAction.LOGIN)
    user_store: UserStore = request.app.state.user_store
    events: EventDispatcher = request.app.state.events

    field, identifier = body.identifier()
    user = authenticate_user(user_store, field, identifier, body.password)
    if user is None:
        resp = failure("Invalid credentials", 401)
        resp.headers["Cache-Control"] = "no-store"
        return run_after_hooks(request, resp, HookAction.LOGIN)

    events.dispatch(UserLoggedIn(user_id=user.id, email=user.email))
    token = create_access_token(user.id, user.email)
    resp = success(
        {
            "token": token,
            "token_type": "Bearer",  # noqa: S106 -- token type, not a password
            "user": user.to_public(),
        },
        "User successfully logged in",
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return run_after_hooks(request, resp, HookAction.LOGIN)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Clear the JWT cookie.

    Tokens are stateless, so a Bearer token held elsewhere stays valid until
    it expires.
    """
    request = run_before_hooks(request, HookAction.LOGOUT)
    events: EventDispatcher = request.app.state.events
    events.dispatch(UserLoggedOut(user_id=current_user.id, email=current_user.email))
    resp = success([], "User has been logged out successfully")
    resp.delete_cookie("access_token")
    return run_after_hooks(request, resp, HookAction.LOGOUT)


@router.get("/me")
def me(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    data = current_user.to_public()
    data["oauth_providers"] = [a.provider for a in user_store.get_oauth_accounts(current_user.id)]
    return success(data, "Current user")
