"""
Community feed: public shares and public before/after pairs merged into one
newest-first list, paginated by creation-time cursor.
"""

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.config import FEED_PAGE_SIZE, FEED_PER_SOURCE_LIMIT, FEED_URL_TTL
from app.dao import PairDAO, ShareDAO
from app.display import DisplayResolver, Visibility
from app.errors import VaultError
from app.models import BeforeAfterPair, Share
from app.pipeline import is_safe_url

logger = logging.getLogger(__name__)


class FetchCancelled(VaultError):  # noqa: N818
    """The reader went away before the page was assembled."""


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_cursor(cursor: str | datetime | None) -> datetime | None:
    if cursor is None or cursor == "":
        return None
    if isinstance(cursor, datetime):
        return as_utc(cursor)
    try:
        return as_utc(datetime.fromisoformat(cursor))
    except ValueError as exc:
        error_message = f"Invalid cursor: {cursor}"
        raise ValueError(error_message) from exc


@dataclass
class FeedItem:
    key: str
    type: str
    id: int | str
    caption: str
    created_at: datetime
    href: str
    image_url: str | None = None
    before_url: str | None = None
    after_url: str | None = None
    fallback_hrefs: dict[str, str] = field(default_factory=dict)
    attribution_name: str | None = None
    attribution_url: str | None = None
    # Raw paths, only used while the page is being assembled
    before_path: str | None = field(default=None, repr=False)
    after_path: str | None = field(default=None, repr=False)


@dataclass
class FeedPage:
    items: list[FeedItem]
    next_cursor: datetime | None
    exhausted: bool


def share_item(share: Share, resolver: DisplayResolver) -> FeedItem:
    show = bool(share.show_attribution) and (
        bool(share.attribution_name) or is_safe_url(share.attribution_url)
    )
    return FeedItem(
        key=f"share:{share.id}",
        type="single",
        id=share.slug,
        caption=share.caption or "Untitled",
        created_at=as_utc(share.created_at),
        href=f"/s/{share.slug}",
        image_url=resolver.resolve(Visibility.PUBLIC, share.media_path),
        fallback_hrefs={"image": f"/s/{share.slug}/image"},
        attribution_name=(share.attribution_name or "Anonymous") if show else None,
        attribution_url=share.attribution_url
        if show and is_safe_url(share.attribution_url)
        else None,
    )


def pair_item(pair: BeforeAfterPair) -> FeedItem:
    return FeedItem(
        key=f"pair:{pair.id}",
        type="pair",
        id=pair.id,
        caption=pair.caption or "Untitled",
        created_at=as_utc(pair.created_at),
        href=f"/p/{pair.id}",
        fallback_hrefs={
            "before": f"/p/{pair.id}/image/before",
            "after": f"/p/{pair.id}/image/after",
        },
        before_path=pair.before_path,
        after_path=pair.after_path,
    )


class FeedAssembler:
    def __init__(
        self,
        db: Session,
        resolver: DisplayResolver,
        page_size: int = FEED_PAGE_SIZE,
        per_source_limit: int = FEED_PER_SOURCE_LIMIT,
    ) -> None:
        self.shares = ShareDAO(db)
        self.pairs = PairDAO(db)
        self.resolver = resolver
        self.page_size = page_size
        # One row past the page edge shows whether anything is left to load
        self.per_source_limit = max(per_source_limit, page_size + 1)

    @staticmethod
    def _check(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            error_message = "Feed fetch cancelled"
            raise FetchCancelled(error_message)

    def fetch_page(
        self,
        filter_text: str | None = None,
        cursor: str | datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> FeedPage:
        before = parse_cursor(cursor)
        text = (filter_text or "").strip() or None
        limit = self.per_source_limit

        self._check(cancel)
        shares = self.shares.list_public(limit, text, before)
        self._check(cancel)
        pairs = self.pairs.list_public(limit, text, before)
        self._check(cancel)

        if not shares and not pairs:
            return FeedPage(items=[], next_cursor=before, exhausted=True)

        merged = sorted(
            [*(share_item(s, self.resolver) for s in shares), *(pair_item(p) for p in pairs)],
            key=lambda item: item.created_at,
            reverse=True,
        )
        page = merged[: self.page_size]

        # Newest timestamp that may still have rows we have not seen: the first
        # item cut by truncation, or the oldest row of a source that hit its
        # limit. Items at or below it wait for the next page, so a strict
        # "created_at < cursor" query neither repeats nor skips them.
        frontier: list[datetime] = []
        if len(merged) > self.page_size:
            frontier.append(merged[self.page_size].created_at)
        for rows in (shares, pairs):
            if len(rows) >= limit:
                frontier.append(as_utc(rows[-1].created_at))
        deferred = False
        if frontier:
            boundary = max(frontier)
            kept = [item for item in page if item.created_at > boundary]
            if kept:
                deferred = len(kept) < len(page)
                page = kept
            else:
                # The whole page sits on one timestamp; hand out every row at
                # it so the next cursor starts strictly below.
                self._check(cancel)
                page = self._tied_at(boundary, text)
                logger.info(
                    "Returning %d feed rows tied at %s", len(page), boundary.isoformat()
                )

        self._resolve_pairs(page)
        self._check(cancel)

        if not page:
            return FeedPage(items=[], next_cursor=before, exhausted=True)
        exhausted = not frontier and not deferred
        next_cursor = min(item.created_at for item in page)
        return FeedPage(items=page, next_cursor=next_cursor, exhausted=exhausted)

    def _tied_at(self, created_at: datetime, text: str | None) -> list[FeedItem]:
        return [
            *(
                share_item(s, self.resolver)
                for s in self.shares.list_public_at(created_at, text)
            ),
            *(pair_item(p) for p in self.pairs.list_public_at(created_at, text)),
        ]

    def _resolve_pairs(self, items: Sequence[FeedItem]) -> None:
        pair_items = [item for item in items if item.type == "pair"]
        if not pair_items:
            return
        signed = self.resolver.resolve_many(
            [p for item in pair_items for p in (item.before_path, item.after_path)],
            FEED_URL_TTL,
        )
        for item in pair_items:
            item.before_url = signed.get(item.before_path) if item.before_path else None
            item.after_url = signed.get(item.after_path) if item.after_path else None

    def latest(self, limit: int) -> list[FeedItem]:
        """Newest public items for the homepage strip. Not paginated."""
        merged = sorted(
            [
                *(share_item(s, self.resolver) for s in self.shares.list_public(limit)),
                *(pair_item(p) for p in self.pairs.list_public(limit)),
            ],
            key=lambda item: item.created_at,
            reverse=True,
        )[:limit]
        self._resolve_pairs(merged)
        return merged
