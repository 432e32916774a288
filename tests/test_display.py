import pytest

from app.config import COMMUNITY_BUCKET, EDITING_URL_TTL, MEDIA_BUCKET
from app.display import DisplayResolver, ImageSource, Visibility
from tests.conftest import RecordingStorage, make_image


@pytest.fixture
def resolver(storage: RecordingStorage) -> DisplayResolver:
    return DisplayResolver(storage)


def test_bucket_for_visibility(resolver: DisplayResolver) -> None:
    assert resolver.bucket_for(Visibility.PUBLIC) == COMMUNITY_BUCKET
    assert resolver.bucket_for(Visibility.PRIVATE) == MEDIA_BUCKET


def test_public_url_needs_no_storage_call(
    resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    url = resolver.resolve(Visibility.PUBLIC, "u/missing.jpg")
    assert url == "http://testserver/storage/community/u/missing.jpg"
    assert storage.calls == []


def test_private_url_is_signed(resolver: DisplayResolver, storage: RecordingStorage) -> None:
    storage.inner.upload(MEDIA_BUCKET, "u/a.jpg", make_image(), "image/jpeg")
    url = resolver.resolve(Visibility.PRIVATE, "u/a.jpg", EDITING_URL_TTL)
    assert url is not None
    assert url.startswith("http://testserver/storage/media/u/a.jpg?token=")


def test_missing_private_object_resolves_to_none(
    resolver: DisplayResolver, caplog: pytest.LogCaptureFixture
) -> None:
    assert resolver.resolve(Visibility.PRIVATE, "u/gone.jpg") is None
    assert "hiding image" in caplog.text


def test_empty_path_resolves_to_none(resolver: DisplayResolver) -> None:
    assert resolver.resolve(Visibility.PUBLIC, None) is None
    assert resolver.resolve(Visibility.PRIVATE, "") is None


def test_resolve_many_single_call(resolver: DisplayResolver, storage: RecordingStorage) -> None:
    storage.inner.upload(MEDIA_BUCKET, "u/a.jpg", make_image(), "image/jpeg")
    result = resolver.resolve_many(["u/a.jpg", "u/gone.jpg", None, "u/a.jpg"])
    assert storage.call_names() == ["create_signed_urls"]
    assert storage.calls[0][2] == ("u/a.jpg", "u/gone.jpg")
    assert result["u/a.jpg"] is not None
    assert result["u/gone.jpg"] is None


def test_resolve_many_failure_hides_everything(
    resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    storage.fail_on = {"create_signed_urls"}
    assert resolver.resolve_many(["u/a.jpg"]) == {}


def test_image_source_retries_once(
    resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    storage.inner.upload(COMMUNITY_BUCKET, "u/p.jpg", make_image(), "image/jpeg")
    source = ImageSource(resolver, Visibility.PUBLIC, "u/p.jpg")
    assert not source.hidden

    retry = source.on_load_error()
    assert retry is not None
    assert "token=" in retry
    assert "rb=" in retry
    assert source.tried_signed

    assert source.on_load_error() is None
    assert source.hidden
    # No further signing after the permanent failure
    assert storage.call_names() == ["create_signed_url"]


def test_image_source_hidden_when_resign_fails(
    resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    source = ImageSource(resolver, Visibility.PUBLIC, "u/p.jpg")
    storage.fail_on = {"create_signed_url"}
    assert source.on_load_error() is None
    assert source.hidden


def test_retry_url_signs_even_public_objects(
    resolver: DisplayResolver, storage: RecordingStorage
) -> None:
    storage.inner.upload(COMMUNITY_BUCKET, "u/p.jpg", make_image(), "image/jpeg")
    url = resolver.retry_url(Visibility.PUBLIC, "u/p.jpg")
    assert url is not None
    assert url.startswith("http://testserver/storage/community/u/p.jpg?token=")
    assert "&rb=" in url
    assert storage.call_names() == ["create_signed_url"]
    assert storage.calls[0][1] == COMMUNITY_BUCKET


def test_retry_url_is_none_when_signing_fails(resolver: DisplayResolver) -> None:
    assert resolver.retry_url(Visibility.PUBLIC, "u/gone.jpg") is None
