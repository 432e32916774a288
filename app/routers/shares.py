from typing import Annotated

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.orm import Session as DBSession
from starlette.status import (
    HTTP_201_CREATED,
    HTTP_204_NO_CONTENT,
    HTTP_307_TEMPORARY_REDIRECT,
)

from app.dao import ShareDAO
from app.deps import get_db, get_pipeline, get_resolver, require_session
from app.display import DisplayResolver, Visibility
from app.feed import share_item
from app.models import Share
from app.pipeline import PublishingPipeline
from app.routers.common import handle_vault_errors, not_found
from app.schemas import ShareDetailResponse, ShareRequest, ShareResponse
from app.session import Session

router = APIRouter()


def share_response(share: Share, resolver: DisplayResolver | None = None) -> ShareResponse:
    image_url = None
    if resolver is not None and share.is_public:
        image_url = resolver.resolve(Visibility.PUBLIC, share.media_path)
    return ShareResponse(
        id=share.id,
        slug=share.slug,
        caption=share.caption,
        is_public=share.is_public,
        created_at=share.created_at,
        href=f"/s/{share.slug}",
        image_url=image_url,
    )


@router.post(
    "/entries/{entry_id}/share",
    response_model=ShareResponse,
    status_code=HTTP_201_CREATED,
)
@handle_vault_errors
def share_entry(
    entry_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    body: Annotated[ShareRequest, Body()],
) -> ShareResponse:
    share = pipeline.share_entry(
        session.user_id,
        entry_id,
        body.caption,
        body.attribution_name,
        body.attribution_url,
        show_attribution=body.show_attribution,
    )
    return share_response(share)


@router.get("/my-shares", response_model=list[ShareResponse])
@handle_vault_errors
def list_my_shares(
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> list[ShareResponse]:
    return [share_response(s, resolver) for s in pipeline.list_shares(session.user_id)]


@router.post("/my-shares/{share_id}/unshare", response_model=ShareResponse)
@handle_vault_errors
def unshare(
    share_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
) -> ShareResponse:
    return share_response(pipeline.unshare(session.user_id, share_id))


@router.delete("/my-shares/{share_id}", status_code=HTTP_204_NO_CONTENT)
@handle_vault_errors
def delete_share(
    share_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
) -> Response:
    pipeline.delete_share(session.user_id, share_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.get("/s/{slug}", response_model=ShareDetailResponse)
@handle_vault_errors
def get_public_share(
    slug: str,
    db: Annotated[DBSession, Depends(get_db)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> ShareDetailResponse | JSONResponse:
    share = ShareDAO(db).get_public_by_slug(slug)
    if share is None:
        return not_found("Share not found")
    item = share_item(share, resolver)
    return ShareDetailResponse(
        slug=share.slug,
        caption=share.caption,
        created_at=item.created_at,
        image_url=item.image_url,
        fallback_href=item.fallback_hrefs["image"],
        attribution_name=item.attribution_name,
        attribution_url=item.attribution_url,
    )


@router.get("/s/{slug}/image")
@handle_vault_errors
def share_image(
    slug: str,
    db: Annotated[DBSession, Depends(get_db)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> Response:
    """Second load attempt for a share image: a signed, cache-busted URL."""
    share = ShareDAO(db).get_public_by_slug(slug)
    if share is None:
        return not_found("Share not found")
    url = resolver.retry_url(Visibility.PUBLIC, share.media_path)
    if url is None:
        return not_found("Image not available")
    return RedirectResponse(url, status_code=HTTP_307_TEMPORARY_REDIRECT)
