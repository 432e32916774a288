from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session as DBSession

from app.auth import AuthClient
from app.database import SessionLocal
from app.display import DisplayResolver
from app.feed import FeedAssembler
from app.pipeline import PublishingPipeline
from app.session import Session, SessionContext
from app.storage import ObjectStorage, get_storage_backend
from app.utils.jwt import decode_access_token

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[DBSession, None, None]:
    """
    Dependency that provides a database session and closes it when done.
    This function creates a new database session and ensures it's properly
    closed when the request is complete, regardless of whether an exception
    occurs. It uses FastAPI's dependency injection system.
    Yields:
        Session: SQLAlchemy database session
    """
    db: DBSession = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> SessionContext:
    """
    Build the request's session context from the bearer token, if any.
    An invalid or expired token is a 401; a missing one is an anonymous context.
    """
    if credentials is None:
        return SessionContext()
    claims = decode_access_token(credentials.credentials)
    return SessionContext(Session.from_claims(credentials.credentials, claims))


def require_session(
    context: Annotated[SessionContext, Depends(get_session_context)],
) -> Session:
    session = context.current()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


def get_storage() -> ObjectStorage:
    return get_storage_backend()


def get_auth_client(
    context: Annotated[SessionContext, Depends(get_session_context)],
) -> AuthClient:
    return AuthClient(context)


def get_pipeline(
    db: Annotated[DBSession, Depends(get_db)],
    storage: Annotated[ObjectStorage, Depends(get_storage)],
) -> PublishingPipeline:
    return PublishingPipeline(db, storage)


def get_resolver(
    storage: Annotated[ObjectStorage, Depends(get_storage)],
) -> DisplayResolver:
    return DisplayResolver(storage)


def get_feed(
    db: Annotated[DBSession, Depends(get_db)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> FeedAssembler:
    return FeedAssembler(db, resolver)

