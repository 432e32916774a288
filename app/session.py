import enum
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class AuthEvent(enum.StrEnum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class Session:
    access_token: str
    user_id: str
    email: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None

    @classmethod
    def from_claims(cls, token: str, claims: Mapping[str, Any]) -> "Session":
        return cls(
            access_token=token,
            user_id=str(claims["sub"]),
            email=claims.get("email"),
            expires_at=claims.get("exp"),
        )

    @classmethod
    def from_token_response(cls, data: Mapping[str, Any]) -> "Session":
        user = data.get("user") or {}
        return cls(
            access_token=data["access_token"],
            user_id=str(user.get("id", "")),
            email=user.get("email"),
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )


Listener = Callable[[AuthEvent, Session | None], None]


class SessionContext:
    """
    Holds the current authentication state and tells subscribers when it
    changes. Created by whoever owns the request or client and passed to
    the code that needs it.
    """

    def __init__(self, session: Session | None = None) -> None:
        self._session = session
        self._listeners: list[Listener] = []

    def current(self) -> Session | None:
        return self._session

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, session: Session | None, event: AuthEvent | None = None) -> None:
        self._session = session
        if event is None:
            event = AuthEvent.SIGNED_IN if session else AuthEvent.SIGNED_OUT
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Session listener failed on %s", event)
