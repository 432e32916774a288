from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST

from app.config import HOMEPAGE_LIMIT
from app.deps import get_feed
from app.feed import FeedAssembler, FeedItem
from app.routers.common import handle_vault_errors
from app.schemas import FeedItemResponse, FeedPageResponse, format_cursor

router = APIRouter()


def item_response(item: FeedItem) -> FeedItemResponse:
    return FeedItemResponse(
        key=item.key,
        type=item.type,
        id=item.id,
        caption=item.caption,
        created_at=item.created_at,
        href=item.href,
        image_url=item.image_url,
        before_url=item.before_url,
        after_url=item.after_url,
        fallback_hrefs=item.fallback_hrefs,
        attribution_name=item.attribution_name,
        attribution_url=item.attribution_url,
    )


@router.get("/community", response_model=FeedPageResponse)
@handle_vault_errors
def community_feed(
    feed: Annotated[FeedAssembler, Depends(get_feed)],
    q: Annotated[str | None, Query(max_length=200)] = None,
    cursor: Annotated[str | None, Query()] = None,
) -> FeedPageResponse | JSONResponse:
    """
    One page of public shares and pairs, newest first. Pass the returned
    next_cursor to load the following page; stop once exhausted is true.
    """
    try:
        page = feed.fetch_page(filter_text=q, cursor=cursor)
    except ValueError as exc:
        return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content={"detail": str(exc)})
    return FeedPageResponse(
        items=[item_response(item) for item in page.items],
        next_cursor=format_cursor(page.next_cursor),
        exhausted=page.exhausted,
    )


@router.get("/community/latest", response_model=list[FeedItemResponse])
@handle_vault_errors
def community_latest(
    feed: Annotated[FeedAssembler, Depends(get_feed)],
) -> list[FeedItemResponse]:
    return [item_response(item) for item in feed.latest(HOMEPAGE_LIMIT)]
