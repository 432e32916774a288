import base64
import hashlib
import os
import secrets
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import requests

from app.errors import AuthError
from app.session import AuthEvent, Listener, Session, SessionContext


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(48)


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class AuthClient:
    """
    Client for a GoTrue-compatible auth HTTP API (Supabase Auth).
    Session changes are published through the injected SessionContext.
    """

    _SUCCESS_CODES = (200, 201, 204)
    _TIMEOUT = 10  # seconds

    def __init__(self, context: SessionContext, url: str = "", key: str = "") -> None:
        self.context = context
        self.url = (url or os.getenv("SUPABASE_URL", "")).rstrip("/")
        self.key = key or os.getenv("SUPABASE_ANON_KEY", "") or os.getenv("SUPABASE_KEY", "")
        self.api = f"{self.url}/auth/v1"

    def _headers(self, token: str | None = None) -> dict[str, str]:
        if not self.url or not self.key:
            msg = "Supabase auth credentials are not set"
            raise AuthError(msg)
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {token or self.key}",
            "Content-Type": "application/json",
        }

    def _post(
        self,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        try:
            resp = requests.post(
                f"{self.api}{path}",
                headers=self._headers(token),
                params=params,
                json=body or {},
                timeout=self._TIMEOUT,
            )
        except requests.RequestException as exc:
            msg = f"Auth request failed: {exc}"
            raise AuthError(msg) from exc
        if resp.status_code not in self._SUCCESS_CODES:
            try:
                detail = resp.json()
            except ValueError:
                detail = {}
            message = (
                detail.get("error_description")
                or detail.get("msg")
                or detail.get("message")
                or resp.text
            )
            msg = f"Auth error: {resp.status_code} {message}"
            raise AuthError(msg)
        if resp.status_code == 204 or not resp.content:  # noqa: PLR2004
            return {}
        return resp.json()

    def get_session(self) -> Session | None:
        return self.context.current()

    def on_session_change(self, listener: Listener) -> Callable[[], None]:
        return self.context.subscribe(listener)

    def sign_in(self, email: str, password: str) -> Session:
        data = self._post(
            "/token",
            {"email": email, "password": password},
            params={"grant_type": "password"},
        )
        session = Session.from_token_response(data)
        self.context.set(session, AuthEvent.SIGNED_IN)
        return session

    def sign_up(self, email: str, password: str, redirect_to: str) -> Session | None:
        """
        Register an account. Returns None when the provider still waits for
        the email confirmation link to be followed.
        """
        data = self._post(
            "/signup",
            {"email": email, "password": password},
            params={"redirect_to": redirect_to},
        )
        if not data.get("access_token"):
            return None
        session = Session.from_token_response(data)
        self.context.set(session, AuthEvent.SIGNED_IN)
        return session

    def sign_out(self, scope: str = "global") -> None:
        current = self.context.current()
        if current is not None:
            self._post("/logout", params={"scope": scope}, token=current.access_token)
        self.context.set(None, AuthEvent.SIGNED_OUT)

    def exchange_code_for_session(self, url: str, code_verifier: str) -> Session:
        code = parse_qs(urlparse(url).query).get("code", [None])[0]
        if not code:
            msg = "No authorization code in callback URL"
            raise AuthError(msg)
        data = self._post(
            "/token",
            {"auth_code": code, "code_verifier": code_verifier},
            params={"grant_type": "pkce"},
        )
        session = Session.from_token_response(data)
        self.context.set(session, AuthEvent.SIGNED_IN)
        return session

    def reset_password(self, email: str, redirect_to: str) -> None:
        self._post("/recover", {"email": email}, params={"redirect_to": redirect_to})

    def resend_confirmation(self, email: str, redirect_to: str) -> None:
        self._post(
            "/resend",
            {"type": "signup", "email": email},
            params={"redirect_to": redirect_to},
        )

    def oauth_url(self, provider: str, redirect_to: str, code_verifier: str) -> str:
        query = urlencode(
            {
                "provider": provider,
                "redirect_to": redirect_to,
                "code_challenge": code_challenge(code_verifier),
                "code_challenge_method": "s256",
            }
        )
        return f"{self.api}/authorize?{query}"
