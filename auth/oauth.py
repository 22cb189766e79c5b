"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Security notes:
  Email verification is mandatory. get_oauth_identity() raises ValueError if
  the provider does not confirm the email is verified. Social sign-in matches
  existing accounts by email, so an unverified provider email would let an
  attacker take over the account registered under that address.

  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. The login route saves the state in the session before
  returning the provider URL; the callback checks it.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/ or verification/. Import from core/ is
allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("userauth.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

# Generic OIDC -- Okta, Azure AD, Keycloak, Authentik, etc.
if _cfg.oidc_client_id and _cfg.oidc_client_secret and _cfg.oidc_discovery_url:
    oauth.register(
        name="oidc",
        client_id=_cfg.oidc_client_id,
        client_secret=_cfg.oidc_client_secret,
        server_metadata_url=_cfg.oidc_discovery_url,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Generic OIDC provider registered (display name: %s)", _cfg.oidc_display_name)


@dataclass
class OAuthIdentity:
    """What a provider tells us about the person signing in."""

    email: str
    name: str
    subject: str


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url:
        providers.append({"name": "oidc", "label": cfg.oidc_display_name})
    return providers


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_oauth_identity(client, provider: str, token: dict) -> OAuthIdentity:
    """Extract a verified (email, name, subject) from a provider token response.

    Raises:
        ValueError: If a verified email or a display name cannot be confirmed.
            The callback route turns this into a 400.
    """
    if provider == "github":
        return await _get_github_identity(client, token)
    elif provider in ("google", "oidc"):
        return _get_oidc_identity(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_identity(client, token: dict) -> OAuthIdentity:
    """GitHub needs two calls: /user for id and name, /user/emails for the verified email.

    Only the email where both primary=true AND verified=true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break
    if not email:
        raise ValueError("GitHub OAuth: no primary verified email found.")

    name = profile.get("name") or profile.get("login")
    if not name:
        raise ValueError("GitHub OAuth: profile has no name.")
    return OAuthIdentity(email=email, name=name, subject=str(profile["id"]))


def _get_oidc_identity(token: dict, provider: str) -> OAuthIdentity:
    """Google/OIDC: claims come from the id_token userinfo.

    Providers that omit email_verified are treated as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified.")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    name = userinfo.get("name") or userinfo.get("given_name")
    if not email or not subject or not name:
        raise ValueError(f"{provider} OAuth: missing email, name or sub claim in userinfo")
    return OAuthIdentity(email=email, name=name, subject=subject)
