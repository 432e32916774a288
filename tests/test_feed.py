import threading
from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from app.config import MEDIA_BUCKET
from app.dao import PairDAO, ShareDAO
from app.display import DisplayResolver
from app.feed import FeedAssembler, FetchCancelled, as_utc, parse_cursor
from app.models import BeforeAfterPair, Share
from tests.conftest import USER_ID, RecordingStorage, make_image

NOON = datetime(2026, 1, 1, 12, tzinfo=UTC)


def _at(minutes: int) -> datetime:
    return NOON + timedelta(minutes=minutes)


def add_share(  # noqa: PLR0913
    db: Session,
    key: str,
    minutes: int,
    caption: str | None = None,
    *,
    is_public: bool = True,
    show_attribution: bool = False,
    attribution_name: str | None = None,
    attribution_url: str | None = None,
) -> Share:
    return ShareDAO(db).create(
        user_id=USER_ID,
        media_path=f"{USER_ID}/{key}.jpg",
        slug=f"{key}-abc123",
        caption=caption,
        is_public=is_public,
        show_attribution=show_attribution,
        attribution_name=attribution_name,
        attribution_url=attribution_url,
        created_at=_at(minutes),
    )


def add_pair(
    db: Session,
    key: str,
    minutes: int,
    caption: str | None = None,
    *,
    is_public: bool = True,
) -> BeforeAfterPair:
    return PairDAO(db).create(
        user_id=USER_ID,
        caption=caption,
        before_path=f"{USER_ID}/{key}/before.jpg",
        after_path=f"{USER_ID}/{key}/after.jpg",
        is_public=is_public,
        created_at=_at(minutes),
    )


@pytest.fixture
def resolver(storage: RecordingStorage) -> DisplayResolver:
    return DisplayResolver(storage)


def test_parse_cursor() -> None:
    assert parse_cursor(None) is None
    assert parse_cursor("") is None
    assert parse_cursor("2026-01-01T12:00:00Z") == NOON
    assert parse_cursor(datetime(2026, 1, 1, 12)) == NOON  # noqa: DTZ001
    with pytest.raises(ValueError, match="Invalid cursor"):
        parse_cursor("yesterday")


def test_as_utc_converts_offsets() -> None:
    eastern = datetime(2026, 1, 1, 7, tzinfo=timezone(timedelta(hours=-5)))
    assert as_utc(eastern) == NOON


def test_items_are_newest_first(db: Session, resolver: DisplayResolver) -> None:
    add_share(db, "old", 1, "Old share")
    add_pair(db, "mid", 2, "Middle pair")
    add_share(db, "new", 3, "New share")
    add_share(db, "hidden", 4, "Private", is_public=False)

    page = FeedAssembler(db, resolver).fetch_page()

    assert [item.key.split(":")[0] for item in page.items] == ["share", "pair", "share"]
    assert [item.caption for item in page.items] == ["New share", "Middle pair", "Old share"]
    assert page.exhausted is True
    assert page.next_cursor == _at(1)


def test_single_filtered_match_is_exhausted(db: Session, resolver: DisplayResolver) -> None:
    add_share(db, "kitchen", 5, "Kitchen remodel week 3")
    add_share(db, "bath", 6, "Bathroom tiles")
    add_pair(db, "porch", 7, "Porch paint")

    page = FeedAssembler(db, resolver).fetch_page(filter_text="kitchen")

    assert len(page.items) == 1
    assert page.items[0].caption == "Kitchen remodel week 3"
    assert page.exhausted is True


def test_filter_treats_wildcards_literally(db: Session, resolver: DisplayResolver) -> None:
    add_share(db, "pct", 1, "100% done")
    add_share(db, "plain", 2, "1000 done")

    page = FeedAssembler(db, resolver).fetch_page(filter_text="100%")

    assert [item.caption for item in page.items] == ["100% done"]


def test_empty_feed(db: Session, resolver: DisplayResolver) -> None:
    page = FeedAssembler(db, resolver).fetch_page()
    assert page.items == []
    assert page.exhausted is True


def test_pagination_covers_everything_once(db: Session, resolver: DisplayResolver) -> None:
    expected: set[str] = set()
    for i, minutes in enumerate([10, 9, 8, 7, 6, 5, 5]):
        expected.add(f"share:{add_share(db, f's{i}', minutes).id}")
    for i, minutes in enumerate([9, 7, 5, 3, 1]):
        expected.add(f"pair:{add_pair(db, f'p{i}', minutes).id}")

    feed = FeedAssembler(db, resolver, page_size=3, per_source_limit=3)
    seen: list[str] = []
    cursor = None
    for _ in range(20):
        page = feed.fetch_page(cursor=cursor)
        seen.extend(item.key for item in page.items)
        if page.exhausted:
            break
        cursor = page.next_cursor
    else:
        pytest.fail("feed never reported exhaustion")

    assert len(seen) == len(set(seen))
    assert set(seen) == expected


def test_more_ties_than_a_page_are_returned_together(
    db: Session, resolver: DisplayResolver
) -> None:
    tied = {f"share:{add_share(db, f't{i}', 5).id}" for i in range(5)}
    tied |= {f"pair:{add_pair(db, f'tp{i}', 5).id}" for i in range(2)}
    older = {f"share:{add_share(db, f'o{i}', 1).id}" for i in range(2)}

    feed = FeedAssembler(db, resolver, page_size=3, per_source_limit=3)
    first = feed.fetch_page()

    assert {item.key for item in first.items} == tied
    assert first.next_cursor == _at(5)
    assert first.exhausted is False

    second = feed.fetch_page(cursor=first.next_cursor)
    assert {item.key for item in second.items} == older
    assert second.exhausted is True


def test_pagination_over_crowded_timestamps(db: Session, resolver: DisplayResolver) -> None:
    expected: set[str] = set()
    for i in range(40):
        expected.add(f"share:{add_share(db, f'c{i}', i % 9).id}")
    for i in range(30):
        expected.add(f"pair:{add_pair(db, f'cp{i}', (i * 4) % 9).id}")

    feed = FeedAssembler(db, resolver, page_size=10, per_source_limit=10)
    seen: list[str] = []
    cursor = None
    for _ in range(50):
        page = feed.fetch_page(cursor=cursor)
        seen.extend(item.key for item in page.items)
        if page.exhausted:
            break
        cursor = page.next_cursor
    else:
        pytest.fail("feed never reported exhaustion")

    assert len(seen) == len(set(seen))
    assert set(seen) == expected


def test_pair_urls_are_signed_in_one_batch(
    db: Session, resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    pairs = [add_pair(db, f"p{i}", i) for i in range(3)]
    for pair in pairs:
        storage.inner.upload(MEDIA_BUCKET, pair.before_path, make_image(), "image/jpeg")
        storage.inner.upload(MEDIA_BUCKET, pair.after_path, make_image(), "image/jpeg")

    page = FeedAssembler(db, resolver).fetch_page()

    assert storage.call_names() == ["create_signed_urls"]
    for item in page.items:
        assert item.before_url is not None
        assert "token=" in item.before_url
        assert item.after_url is not None
        assert item.fallback_hrefs == {
            "before": f"/p/{item.id}/image/before",
            "after": f"/p/{item.id}/image/after",
        }


def test_broken_pair_image_is_hidden(
    db: Session, resolver: DisplayResolver, caplog: pytest.LogCaptureFixture
) -> None:
    add_pair(db, "gone", 1)

    page = FeedAssembler(db, resolver).fetch_page()

    assert len(page.items) == 1
    assert page.items[0].before_url is None
    assert page.items[0].after_url is None
    assert "Broken media reference" in caplog.text


def test_share_items_use_public_urls(db: Session, resolver: DisplayResolver) -> None:
    share = add_share(db, "pub", 1, None)

    item = FeedAssembler(db, resolver).fetch_page().items[0]

    assert item.type == "single"
    assert item.id == share.slug
    assert item.caption == "Untitled"
    assert item.href == f"/s/{share.slug}"
    assert item.image_url == f"http://testserver/storage/community/{share.media_path}"


def test_attribution_rules(db: Session, resolver: DisplayResolver) -> None:
    add_share(db, "off", 1, "a", attribution_name="Pat", attribution_url="https://pat.example")
    add_share(
        db,
        "unsafe",
        2,
        "b",
        show_attribution=True,
        attribution_name="Pat",
        attribution_url="javascript:alert(1)",
    )
    add_share(db, "nobody", 3, "c", show_attribution=True, attribution_url="javascript:x")
    add_share(
        db, "anon", 4, "d", show_attribution=True, attribution_url="mailto:pat@example.com"
    )

    items = {item.caption: item for item in FeedAssembler(db, resolver).fetch_page().items}

    assert (items["a"].attribution_name, items["a"].attribution_url) == (None, None)
    assert (items["b"].attribution_name, items["b"].attribution_url) == ("Pat", None)
    assert (items["c"].attribution_name, items["c"].attribution_url) == (None, None)
    assert (items["d"].attribution_name, items["d"].attribution_url) == (
        "Anonymous",
        "mailto:pat@example.com",
    )


def test_cancelled_fetch(db: Session, resolver: DisplayResolver) -> None:
    add_share(db, "one", 1, "one")
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(FetchCancelled):
        FeedAssembler(db, resolver).fetch_page(cancel=cancel)


def test_latest_is_bounded(db: Session, resolver: DisplayResolver) -> None:
    for i in range(5):
        add_share(db, f"s{i}", i, f"share {i}")

    items = FeedAssembler(db, resolver).latest(3)

    assert [item.caption for item in items] == ["share 4", "share 3", "share 2"]
