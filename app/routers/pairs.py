from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.orm import Session as DBSession
from starlette.status import (
    HTTP_201_CREATED,
    HTTP_204_NO_CONTENT,
    HTTP_307_TEMPORARY_REDIRECT,
)

from app.dao import PairDAO
from app.deps import get_db, get_pipeline, get_resolver, require_session
from app.display import DisplayResolver, Visibility
from app.pipeline import PublishingPipeline
from app.routers.common import handle_vault_errors, not_found, to_upload
from app.schemas import PairDetailResponse, PairResponse
from app.session import Session

router = APIRouter()

PAIR_ROLES = ("before", "after")


def _public_pair_id(raw: str) -> int | None:
    """Route ids are decimal integers; anything else is simply not found."""
    if not raw.isdecimal():
        return None
    return int(raw)


@router.post("/pairs", response_model=PairResponse, status_code=HTTP_201_CREATED)
@handle_vault_errors
def create_pair(  # noqa: PLR0913
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    is_public: Annotated[bool, Form()],
    caption: Annotated[str | None, Form()] = None,
    before: Annotated[UploadFile | None, File()] = None,
    after: Annotated[UploadFile | None, File()] = None,
) -> PairResponse | JSONResponse:
    pair = pipeline.create_pair(
        session.user_id,
        to_upload(before),
        to_upload(after),
        caption,
        is_public=is_public,
    )
    return PairResponse(
        id=pair.id,
        caption=pair.caption,
        is_public=pair.is_public,
        created_at=pair.created_at,
        href=f"/p/{pair.id}",
    )


@router.delete("/pairs/{pair_id}", status_code=HTTP_204_NO_CONTENT)
@handle_vault_errors
def delete_pair(
    pair_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
) -> Response:
    pipeline.delete_pair(session.user_id, pair_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.get("/p/{pair_id}", response_model=PairDetailResponse)
@handle_vault_errors
def get_public_pair(
    pair_id: str,
    db: Annotated[DBSession, Depends(get_db)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> PairDetailResponse | JSONResponse:
    numeric_id = _public_pair_id(pair_id)
    pair = PairDAO(db).get_public(numeric_id) if numeric_id is not None else None
    if pair is None:
        return not_found("Post not found")
    return PairDetailResponse(
        id=pair.id,
        caption=pair.caption,
        created_at=pair.created_at,
        before_url=resolver.resolve(Visibility.PRIVATE, pair.before_path),
        after_url=resolver.resolve(Visibility.PRIVATE, pair.after_path),
        fallback_hrefs={role: f"/p/{pair.id}/image/{role}" for role in PAIR_ROLES},
    )


@router.get("/p/{pair_id}/image/{role}")
@handle_vault_errors
def refresh_pair_image(
    pair_id: str,
    role: str,
    db: Annotated[DBSession, Depends(get_db)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> Response:
    """Redirect to a freshly signed URL; clients call this once after a failed load."""
    numeric_id = _public_pair_id(pair_id)
    pair = PairDAO(db).get_public(numeric_id) if numeric_id is not None else None
    if pair is None or role not in PAIR_ROLES:
        return not_found("Post not found")
    path = pair.before_path if role == "before" else pair.after_path
    url = resolver.retry_url(Visibility.PRIVATE, path)
    if url is None:
        return not_found("Image not available")
    return RedirectResponse(url, status_code=HTTP_307_TEMPORARY_REDIRECT)
