"""Authentication routes: login, logout, registration, OAuth and ``/me``.

Sets up two FastAPI-Users authentication backends:

1. **Cookie backend** (``name="cookie"``): stores the JWT in an HttpOnly,
   SameSite=Lax cookie named ``access_token``.
2. **Bearer backend** (``name="bearer"``): clients pass
   ``Authorization: Bearer <token>`` headers.  The browser front end and
   the OAuth callbacks use this transport.

Both backends share the same ``JWTStrategy`` (same secret and lifetime),
so a token issued via one transport is valid on the other.

Google and Apple sign-in are plain authorization-code flows driven with
``httpx``.  Their callbacks resolve the identity through
:meth:`UserManager.oauth_login`, issue the same JWT as password login and
redirect to ``{APP_URL}/auth/callback?token=...``.

Exported names:
    fastapi_users: the ``FastAPIUsers`` instance (used by
        ``api/dependencies.py`` for the ``current_user`` dependencies).
    cookie_backend, bearer_backend: the ``AuthenticationBackend`` objects.
    auth_router: combined APIRouter mounted under ``/api/auth``.
    users_router: FastAPI-Users profile router mounted under ``/api/users``.
"""

from __future__ import annotations

import base64
import json
import secrets
import uuid
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

import httpx
import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from fastapi_users import FastAPIUsers
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    CookieTransport,
    JWTStrategy,
)
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.api.limiter import AUTH_LIMIT, limiter
from review_insight.config.settings import get_settings
from review_insight.core.database import get_db
from review_insight.core.models.users import User
from review_insight.core.subscription import can_user_analyze, get_subscription_limits
from review_insight.core.user_manager import (
    UserCreate,
    UserManager,
    UserRead,
    UserUpdate,
    get_user_manager,
)

logger = structlog.get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
APPLE_AUTH_URL = "https://appleid.apple.com/auth/authorize"
APPLE_TOKEN_URL = "https://appleid.apple.com/auth/token"

OAUTH_STATE_COOKIE = "oauth_state"
_OAUTH_STATE_MAX_AGE = 600
_OAUTH_TIMEOUT = 15.0

# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

settings = get_settings()

cookie_transport = CookieTransport(
    cookie_name="access_token",
    cookie_max_age=settings.jwt_lifetime_seconds,
    cookie_httponly=True,
    cookie_samesite="lax",
    cookie_secure=not settings.debug,
)
"""HttpOnly, SameSite=Lax cookie transport for browser sessions.

The ``Secure`` flag is only set when ``debug=False`` to allow HTTP
development.
"""

bearer_transport = BearerTransport(tokenUrl="/api/auth/bearer/login")


# ---------------------------------------------------------------------------
# JWT strategy factory
# ---------------------------------------------------------------------------


def get_jwt_strategy() -> JWTStrategy:
    """Build a ``JWTStrategy`` from application settings.

    Not cached so that a settings reload (e.g. in tests) picks up a fresh
    secret.
    """
    settings = get_settings()
    return JWTStrategy(
        secret=settings.secret_key,
        lifetime_seconds=settings.jwt_lifetime_seconds,
    )


# ---------------------------------------------------------------------------
# Authentication backends
# ---------------------------------------------------------------------------

cookie_backend: AuthenticationBackend = AuthenticationBackend(
    name="cookie",
    transport=cookie_transport,
    get_strategy=get_jwt_strategy,
)

bearer_backend: AuthenticationBackend = AuthenticationBackend(
    name="bearer",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

# ---------------------------------------------------------------------------
# FastAPIUsers instance
# ---------------------------------------------------------------------------

fastapi_users: FastAPIUsers[User, uuid.UUID] = FastAPIUsers(
    get_user_manager,
    [cookie_backend, bearer_backend],
)

current_active_user = fastapi_users.current_user(active=True)

# ---------------------------------------------------------------------------
# Router assembly
# ---------------------------------------------------------------------------

auth_router = APIRouter()
"""Combined router mounted under ``/api/auth``.

Routes provided:
- Cookie login/logout:  POST /api/auth/cookie/login, /api/auth/cookie/logout
- Bearer login/logout:  POST /api/auth/bearer/login, /api/auth/bearer/logout
- Registration:         POST /api/auth/register
- Password reset:       POST /api/auth/forgot-password, /api/auth/reset-password
- Current user:         GET  /api/auth/me
- OAuth:                GET  /api/auth/google, /api/auth/google/callback,
                        GET  /api/auth/apple, POST /api/auth/apple/callback
"""

auth_router.include_router(
    fastapi_users.get_auth_router(cookie_backend),
    prefix="/cookie",
    tags=["auth:cookie"],
)
auth_router.include_router(
    fastapi_users.get_auth_router(bearer_backend),
    prefix="/bearer",
    tags=["auth:bearer"],
)
auth_router.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    tags=["auth:register"],
)
auth_router.include_router(
    fastapi_users.get_reset_password_router(),
    tags=["auth:password-reset"],
)

users_router = APIRouter()
"""FastAPI-Users profile router (``GET/PATCH /api/users/me`` and admin routes)."""

users_router.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    tags=["users"],
)


# ---------------------------------------------------------------------------
# GET /api/auth/me
# ---------------------------------------------------------------------------


@auth_router.get("/me", tags=["auth"])
async def read_me(
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(current_active_user)],
) -> dict[str, Any]:
    """Return the signed-in user with their quota status and plan limits."""
    verdict = await can_user_analyze(db, user)
    await db.commit()
    return {
        "user": {
            "id": str(user.id),
            "email": user.email,
            "name": user.name,
            "subscriptionTier": user.subscription_tier,
            "subscriptionEnds": (
                user.subscription_ends.isoformat() if user.subscription_ends else None
            ),
            "emailVerified": user.is_verified,
            "monthlyAnalysisCount": user.monthly_analysis_count,
            "lastResetDate": user.last_reset_date.isoformat() if user.last_reset_date else None,
            "createdAt": user.created_at.isoformat() if user.created_at else None,
        },
        "canAnalyze": verdict,
        "subscriptionLimits": get_subscription_limits(user.subscription_tier).as_dict(),
    }


# ---------------------------------------------------------------------------
# OAuth helpers
# ---------------------------------------------------------------------------


def _callback_url(request: Request, route_name: str) -> str:
    base = get_settings().oauth_redirect_base_url
    if base:
        return f"{base.rstrip('/')}{request.app.url_path_for(route_name)}"
    return str(request.url_for(route_name))


def _frontend_redirect(**params: str) -> RedirectResponse:
    """Redirect to the front end's OAuth landing page with *params*."""
    app_url = get_settings().app_url.rstrip("/")
    response = RedirectResponse(
        f"{app_url}/auth/callback?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


def _login_redirect(error: str) -> RedirectResponse:
    app_url = get_settings().app_url.rstrip("/")
    response = RedirectResponse(
        f"{app_url}/login?{urlencode({'error': error})}",
        status_code=status.HTTP_302_FOUND,
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


def _consent_redirect(url: str, params: dict[str, str], state: str) -> RedirectResponse:
    response = RedirectResponse(f"{url}?{urlencode(params)}", status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=_OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=not get_settings().debug,
    )
    return response


def _state_matches(request: Request, state: Optional[str]) -> bool:
    expected = request.cookies.get(OAUTH_STATE_COOKIE)
    return bool(expected and state and secrets.compare_digest(expected, state))


def decode_id_token_claims(id_token: str) -> dict[str, Any]:
    """Decode the claims segment of a JWT without verifying its signature.

    Only used for tokens received directly from the provider's token
    endpoint over TLS in exchange for our client secret.

    Raises:
        ValueError: If the token is not a three-part JWT with JSON claims.
    """
    parts = id_token.split(".")
    if len(parts) != 3:
        raise ValueError("id_token is not a JWT")
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("id_token claims are not valid JSON") from exc
    if not isinstance(claims, dict):
        raise ValueError("id_token claims are not an object")
    return claims


async def _issue_token_redirect(user: User) -> RedirectResponse:
    token = await get_jwt_strategy().write_token(user)
    return _frontend_redirect(token=token)


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@auth_router.get("/google", tags=["auth:oauth"])
async def google_login(request: Request) -> RedirectResponse:
    """Redirect to Google's consent screen.

    Raises:
        HTTPException 503: If Google OAuth is not configured.
    """
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google OAuth is not configured. Please contact the administrator.",
        )
    state = secrets.token_urlsafe(24)
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": _callback_url(request, "google_callback"),
        "response_type": "code",
        "scope": "openid email profile",
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return _consent_redirect(GOOGLE_AUTH_URL, params, state)


@auth_router.get("/google/callback", name="google_callback", tags=["auth:oauth"])
@limiter.limit(AUTH_LIMIT)
async def google_callback(
    request: Request,
    user_manager: Annotated[UserManager, Depends(get_user_manager)],
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
) -> RedirectResponse:
    """Exchange the authorization code, resolve the user and hand over a JWT."""
    if error:
        return _login_redirect("Google login cancelled")
    if not code:
        return _login_redirect("Missing authorization code")
    if not _state_matches(request, state):
        return _login_redirect("Invalid OAuth state")

    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=_OAUTH_TIMEOUT) as client:
            token_response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": settings.google_client_id or "",
                    "client_secret": settings.google_client_secret or "",
                    "redirect_uri": _callback_url(request, "google_callback"),
                    "grant_type": "authorization_code",
                },
            )
            token_response.raise_for_status()
            access_token = token_response.json()["access_token"]

            info_response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            info_response.raise_for_status()
            google_user = info_response.json()
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("oauth.google_failed", error=str(exc))
        return _login_redirect("Google login failed")

    if not google_user.get("email") or not google_user.get("id"):
        logger.warning("oauth.google_incomplete_profile")
        return _login_redirect("Google login failed")

    user = await user_manager.oauth_login(
        "google",
        str(google_user["id"]),
        google_user["email"],
        name=google_user.get("name"),
        is_verified=bool(google_user.get("verified_email")),
        request=request,
    )
    logger.info("oauth.login", provider="google", user_id=str(user.id))
    return await _issue_token_redirect(user)


# ---------------------------------------------------------------------------
# Apple
# ---------------------------------------------------------------------------


@auth_router.get("/apple", tags=["auth:oauth"])
async def apple_login(request: Request) -> RedirectResponse:
    """Redirect to Sign in with Apple.

    Raises:
        HTTPException 503: If Apple OAuth is not configured.
    """
    settings = get_settings()
    if not settings.apple_client_id:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Apple OAuth is not configured. Please contact the administrator.",
        )
    state = secrets.token_urlsafe(24)
    params = {
        "client_id": settings.apple_client_id,
        "redirect_uri": _callback_url(request, "apple_callback"),
        "response_type": "code",
        "scope": "name email",
        "response_mode": "form_post",
        "state": state,
    }
    return _consent_redirect(APPLE_AUTH_URL, params, state)


@auth_router.post("/apple/callback", name="apple_callback", tags=["auth:oauth"])
@limiter.limit(AUTH_LIMIT)
async def apple_callback(
    request: Request,
    user_manager: Annotated[UserManager, Depends(get_user_manager)],
    code: Annotated[Optional[str], Form()] = None,
    error: Annotated[Optional[str], Form()] = None,
) -> RedirectResponse:
    """Exchange Apple's form-posted code and resolve the user from the id_token.

    Apple posts the callback cross-site, so the SameSite=Lax state cookie
    is not sent and no state is checked here.
    """
    if error:
        return _login_redirect("Apple login cancelled")
    if not code:
        return _login_redirect("Missing authorization code")

    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=_OAUTH_TIMEOUT) as client:
            token_response = await client.post(
                APPLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": settings.apple_client_id or "",
                    "client_secret": settings.apple_client_secret or "",
                    "grant_type": "authorization_code",
                    "redirect_uri": _callback_url(request, "apple_callback"),
                },
            )
            token_response.raise_for_status()
            claims = decode_id_token_claims(token_response.json()["id_token"])
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("oauth.apple_failed", error=str(exc))
        return _login_redirect("Apple login failed")

    if not claims.get("sub") or not claims.get("email"):
        logger.warning("oauth.apple_incomplete_claims")
        return _login_redirect("Apple login failed")

    user = await user_manager.oauth_login(
        "apple",
        str(claims["sub"]),
        claims["email"],
        is_verified=str(claims.get("email_verified")).lower() == "true",
        request=request,
    )
    logger.info("oauth.login", provider="apple", user_id=str(user.id))
    return await _issue_token_redirect(user)
