"""
api/routes/v1/oauth.py -- Social sign-in over the JSON API.

Routes:
  GET /oauth/providers          -- enabled providers (public)
  GET /oauth/{driver}/login     -- {url} to send the browser to
  GET /oauth/{driver}/callback  -- exchange the code, return {user, token}

The login route returns the authorization URL instead of redirecting so SPA
and mobile clients can open it themselves. The state value is still saved in
the Starlette session, and authorize_access_token() checks it on callback.

Account matching (first-or-create):
  Existing account with the provider's verified email -> log in.
  Otherwise -> create an account (first_name = provider display name,
  random unusable password). Either way the (user, provider) link is
  recorded once.

Mounted only when REGISTER_OAUTH_ROUTES is true.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.hooks import HookAction, run_after_hooks, run_before_hooks
from api.models import OAuthProviderInfo
from api.responses import failure, success
from auth.models import User
from auth.oauth import get_enabled_providers, get_oauth_identity
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password, random_password, set_auth_cookie
from core.config import get_settings
from verification.events import EventDispatcher, UserLoggedIn, UserRegistered

logger = logging.getLogger("userauth.api.oauth")

router = APIRouter()


def _enabled(driver: str) -> bool:
    return driver in {p["name"] for p in get_enabled_providers()}


def _redirect_uri(driver: str) -> str:
    base = get_settings().oauth_redirect_base_url.rstrip("/")
    return f"{base}{get_settings().route_prefix}/oauth/{driver}/callback"


@router.get("/oauth/providers")
def list_providers() -> JSONResponse:
    """Return the configured OAuth providers. Empty list if none are set up."""
    providers = [OAuthProviderInfo(**p).model_dump() for p in get_enabled_providers()]
    return success(providers, "OAuth providers")


@router.get("/oauth/{driver}/login")
async def oauth_login(request: Request, driver: str) -> JSONResponse:
    request = run_before_hooks(request, HookAction.OAUTH_LOGIN)
    if not _enabled(driver):
        return run_after_hooks(request, failure("Unsupported OAuth provider.", 404), HookAction.OAUTH_LOGIN)

    client = request.app.state.oauth.create_client(driver)
    redirect_uri = _redirect_uri(driver)
    rv = await client.create_authorization_url(redirect_uri)
    await client.save_authorize_data(request, redirect_uri=redirect_uri, **rv)
    resp = success({"url": rv["url"], "message": "oauth login redirection url"}, "oauth login redirection url")
    return run_after_hooks(request, resp, HookAction.OAUTH_LOGIN)


@router.get("/oauth/{driver}/callback")
async def oauth_callback(request: Request, driver: str) -> JSONResponse:
    """Finish the provider round trip and sign the user in.

    400 when the token exchange fails or the provider does not confirm a
    verified email and a display name.
    """
    request = run_before_hooks(request, HookAction.OAUTH_CALLBACK)
    if not _enabled(driver):
        return run_after_hooks(request, failure("Unsupported OAuth provider.", 404), HookAction.OAUTH_CALLBACK)

    client = request.app.state.oauth.create_client(driver)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", driver)
        return run_after_hooks(request, failure("OAuth authentication failed.", 400), HookAction.OAUTH_CALLBACK)

    try:
        identity = await get_oauth_identity(client, driver, token)
    except ValueError:
        logger.warning("OAuth sign-in rejected: missing or unverified identity from %r", driver)
        resp = failure("Your app must request the name and email of the user", 400)
        return run_after_hooks(request, resp, HookAction.OAUTH_CALLBACK)

    user_store: UserStore = request.app.state.user_store
    events: EventDispatcher = request.app.state.events
    user = user_store.get_by_email(identity.email)
    if user is None:
        user = User(email=identity.email, first_name=identity.name, hashed_password=hash_password(random_password()))
        user.id = user_store.create_user(user)
        user = user_store.get_by_id(user.id) or user
        events.dispatch(UserRegistered(user_id=user.id, email=user.email, provider=driver))
        logger.info("User %d registered via %s", user.id, driver)
    elif not user.is_active:
        return run_after_hooks(request, failure("Account is disabled.", 403), HookAction.OAUTH_CALLBACK)
    else:
        events.dispatch(UserLoggedIn(user_id=user.id, email=user.email, provider=driver))
        logger.info("User %d logged in via %s", user.id, driver)

    user_store.link_oauth_account(user.id, driver)

    token_str = create_access_token(user.id, user.email)
    resp = success({"user": user.to_public(), "token": token_str}, "User authenticated successfully")
    set_auth_cookie(resp, token_str)
    resp.headers["Cache-Control"] = "no-store"
    return run_after_hooks(request, resp, HookAction.OAUTH_CALLBACK)
