"""
Account routes: password sign-in and sign-up, sign-out, password reset,
confirmation resend, and the OAuth round trip through the identity provider.
"""

import logging
from typing import Annotated
from urllib.parse import quote, unquote, urlencode

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER

from app.auth import AuthClient, generate_code_verifier
from app.config import (
    DEFAULT_NEXT,
    OAUTH_NEXT_COOKIE,
    OAUTH_NEXT_MAX_AGE,
    OAUTH_VERIFIER_COOKIE,
    PUBLIC_BASE_URL,
    SITE_URL,
)
from app.deps import get_auth_client
from app.errors import AuthError
from app.routers.common import handle_vault_errors
from app.schemas import (
    EmailRequest,
    LoginRequest,
    SignupRequest,
    SignupResponse,
    StatusResponse,
    TokenResponse,
)
from app.session import Session

logger = logging.getLogger(__name__)

router = APIRouter()

OAUTH_PROVIDERS = ("google", "github", "apple")


def safe_next(target: str | None) -> str:
    """Only same-site absolute paths are allowed as post-login targets."""
    if not target or not target.startswith("/") or target.startswith(("//", "/\\")):
        return DEFAULT_NEXT
    return target


def callback_url(next_path: str | None = None) -> str:
    url = f"{PUBLIC_BASE_URL}/auth/callback"
    if next_path:
        url = f"{url}?{urlencode({'next': safe_next(next_path)})}"
    return url


def token_response(session: Session) -> TokenResponse:
    return TokenResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user_id=session.user_id,
        email=session.email,
    )


def _site_redirect(path: str, fragment: str = "") -> RedirectResponse:
    url = f"{SITE_URL}{path}"
    if fragment:
        url = f"{url}#{fragment}"
    response = RedirectResponse(url, status_code=HTTP_303_SEE_OTHER)
    response.delete_cookie(OAUTH_NEXT_COOKIE)
    response.delete_cookie(OAUTH_VERIFIER_COOKIE)
    return response


@router.post("/login", summary="Login", response_model=TokenResponse)
@handle_vault_errors
def login(
    body: Annotated[LoginRequest, Body()],
    auth: Annotated[AuthClient, Depends(get_auth_client)],
) -> TokenResponse:
    """
    Authenticate by email and password and return the provider's session.
    """
    return token_response(auth.sign_in(body.email.strip(), body.password))


@router.post("/signup", response_model=SignupResponse)
@handle_vault_errors
def signup(
    body: Annotated[SignupRequest, Body()],
    auth: Annotated[AuthClient, Depends(get_auth_client)],
) -> SignupResponse:
    session = auth.sign_up(body.email.strip(), body.password, callback_url(body.next))
    if session is None:
        return SignupResponse(status="confirmation_sent")
    return SignupResponse(status="signed_in", session=token_response(session))


@router.post("/logout", response_model=StatusResponse)
@handle_vault_errors
def logout(auth: Annotated[AuthClient, Depends(get_auth_client)]) -> StatusResponse:
    auth.sign_out()
    return StatusResponse(status="signed_out")


@router.post("/password-reset", response_model=StatusResponse)
@handle_vault_errors
def password_reset(
    body: Annotated[EmailRequest, Body()],
    auth: Annotated[AuthClient, Depends(get_auth_client)],
) -> StatusResponse:
    auth.reset_password(body.email.strip(), callback_url())
    return StatusResponse(status="sent")


@router.post("/resend-confirmation", response_model=StatusResponse)
@handle_vault_errors
def resend_confirmation(
    body: Annotated[EmailRequest, Body()],
    auth: Annotated[AuthClient, Depends(get_auth_client)],
) -> StatusResponse:
    auth.resend_confirmation(body.email.strip(), callback_url())
    return StatusResponse(status="sent")


@router.get("/auth/oauth/{provider}")
def oauth_start(
    provider: str,
    auth: Annotated[AuthClient, Depends(get_auth_client)],
    next: str | None = None,  # noqa: A002
) -> RedirectResponse:
    """
    Send the browser to the provider. The post-login target and the PKCE
    verifier ride along in short-lived cookies until the callback.
    """
    if provider not in OAUTH_PROVIDERS:
        return _site_redirect(f"/login?error={quote('Unsupported sign-in provider')}")
    verifier = generate_code_verifier()
    response = RedirectResponse(
        auth.oauth_url(provider, callback_url(), verifier),
        status_code=HTTP_303_SEE_OTHER,
    )
    cookies = {
        OAUTH_NEXT_COOKIE: quote(safe_next(next), safe=""),
        OAUTH_VERIFIER_COOKIE: verifier,
    }
    for name, value in cookies.items():
        response.set_cookie(
            name, value, max_age=OAUTH_NEXT_MAX_AGE, httponly=True, samesite="lax"
        )
    return response


@router.get("/auth/callback")
def auth_callback(
    request: Request,
    auth: Annotated[AuthClient, Depends(get_auth_client)],
) -> RedirectResponse:
    params = request.query_params
    error = params.get("error_description") or params.get("error")
    if error:
        return _site_redirect(f"/login?error={quote(error)}")

    next_path = safe_next(
        params.get("next") or unquote(request.cookies.get(OAUTH_NEXT_COOKIE, ""))
    )
    verifier = request.cookies.get(OAUTH_VERIFIER_COOKIE)
    code = params.get("code")

    if code and verifier:
        try:
            session = auth.exchange_code_for_session(str(request.url), verifier)
        except AuthError as exc:
            logger.warning("Code exchange failed: %s", exc)
            return _site_redirect(f"/login?error={quote(str(exc))}")
        fragment = urlencode(
            {
                "access_token": session.access_token,
                "refresh_token": session.refresh_token or "",
                "expires_at": session.expires_at or "",
            }
        )
        return _site_redirect(next_path, fragment)

    # Email confirmation links land here without a verifier from this browser
    if code or params.get("type") == "signup":
        return _site_redirect("/login?confirmed=1")
    return _site_redirect("/login?mode=signin")
