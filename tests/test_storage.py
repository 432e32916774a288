import pathlib
from typing import Any
from unittest.mock import patch

import pytest
import requests

from app.errors import StorageError
from app.storage import (
    FileSystemStorage,
    ObjectStorage,
    SupabaseStorage,
    SupabaseStorageError,
    get_storage_backend,
)

OK = 200


class MockResponse:
    def __init__(self, status_code: int = OK, payload: Any = None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = "error text"

    def json(self) -> Any:
        return self._payload


@pytest.fixture
def fs(tmp_path: pathlib.Path) -> FileSystemStorage:
    return FileSystemStorage(
        base_path=str(tmp_path), base_url="http://files.test", public_buckets={"community"}
    )


def test_storage_interface() -> None:
    with pytest.raises(TypeError):
        ObjectStorage()  # type: ignore[abstract]


def test_default_storage_is_supabase(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORAGE_BACKEND", raising=False)
    assert isinstance(get_storage_backend(), SupabaseStorage)


def test_override_backend_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "FileSystem")
    backend = get_storage_backend()
    assert isinstance(backend, FileSystemStorage)
    assert backend.is_public("community")
    assert not backend.is_public("media")


def test_unknown_backend_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "unknown")
    with pytest.raises(ValueError, match="Unknown storage backend"):
        get_storage_backend()


# --- filesystem ------------------------------------------------------------


def test_filesystem_upload_and_public_read(fs: FileSystemStorage) -> None:
    fs.upload("community", "u/a.jpg", b"data", "image/jpeg")
    assert fs.get_public_url("community", "u/a.jpg") == "http://files.test/storage/community/u/a.jpg"
    assert fs.fetch(fs.get_public_url("community", "u/a.jpg")) == b"data"


def test_filesystem_refuses_overwrite(fs: FileSystemStorage) -> None:
    fs.upload("media", "u/a.jpg", b"one", "image/jpeg")
    with pytest.raises(StorageError, match="already exists"):
        fs.upload("media", "u/a.jpg", b"two", "image/jpeg")
    fs.upload("media", "u/a.jpg", b"two", "image/jpeg", overwrite=True)


def test_filesystem_private_needs_token(fs: FileSystemStorage) -> None:
    fs.upload("media", "u/a.jpg", b"secret", "image/jpeg")
    with pytest.raises(StorageError, match="token"):
        fs.fetch("http://files.test/storage/media/u/a.jpg")
    signed = fs.create_signed_url("media", "u/a.jpg", 60)
    assert fs.fetch(signed) == b"secret"


def test_filesystem_token_is_bound_to_path(fs: FileSystemStorage) -> None:
    fs.upload("media", "u/a.jpg", b"a", "image/jpeg")
    fs.upload("media", "u/b.jpg", b"b", "image/jpeg")
    token = fs.create_signed_url("media", "u/a.jpg", 60).split("token=")[1]
    with pytest.raises(StorageError):
        fs.read("media", "u/b.jpg", token)


def test_filesystem_signing_missing_object(fs: FileSystemStorage) -> None:
    with pytest.raises(StorageError, match="not found"):
        fs.create_signed_url("media", "u/none.jpg", 60)
    assert fs.create_signed_urls("media", ["u/none.jpg"], 60) == [None]


def test_filesystem_rejects_traversal(fs: FileSystemStorage) -> None:
    with pytest.raises(StorageError, match="escapes"):
        fs.upload("media", "../outside.jpg", b"x", "image/jpeg")


def test_filesystem_remove_is_idempotent(fs: FileSystemStorage) -> None:
    fs.upload("media", "u/a.jpg", b"x", "image/jpeg")
    fs.remove("media", ["u/a.jpg", "u/never.jpg"])
    fs.remove("media", ["u/a.jpg"])
    with pytest.raises(StorageError):
        fs.create_signed_url("media", "u/a.jpg", 60)


# --- supabase --------------------------------------------------------------


@pytest.fixture
def supabase() -> SupabaseStorage:
    return SupabaseStorage(url="https://proj.supabase.co/", key="service-key")


def test_supabase_missing_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    storage = SupabaseStorage()
    with pytest.raises(SupabaseStorageError, match="credentials are not set"):
        storage.create_signed_url("media", "a.jpg", 60)


def test_supabase_public_url(supabase: SupabaseStorage) -> None:
    assert (
        supabase.get_public_url("community", "u/my file.jpg")
        == "https://proj.supabase.co/storage/v1/object/public/community/u/my%20file.jpg"
    )


def test_supabase_signed_url(supabase: SupabaseStorage) -> None:
    def mock_request(method: str, url: str, **kwargs: Any) -> MockResponse:
        assert method == "POST"
        assert url.endswith("/storage/v1/object/sign/media/u/a.jpg")
        assert kwargs["json"] == {"expiresIn": 60}
        assert kwargs["headers"]["Authorization"] == "Bearer service-key"
        return MockResponse(payload={"signedURL": "/object/sign/media/u/a.jpg?token=t"})

    with patch("requests.request", mock_request):
        url = supabase.create_signed_url("media", "u/a.jpg", 60)
    assert url == "https://proj.supabase.co/storage/v1/object/sign/media/u/a.jpg?token=t"


def test_supabase_batch_signing_keeps_order(supabase: SupabaseStorage) -> None:
    payload = [
        {"path": "b.jpg", "signedURL": "/object/sign/media/b.jpg?token=b"},
        {"path": "a.jpg", "error": "Either the object does not exist", "signedURL": None},
    ]
    with patch("requests.request", return_value=MockResponse(payload=payload)) as mocked:
        urls = supabase.create_signed_urls("media", ["a.jpg", "b.jpg"], 60)
    assert mocked.call_count == 1
    assert urls == [None, "https://proj.supabase.co/storage/v1/object/sign/media/b.jpg?token=b"]


def test_supabase_upload_headers(supabase: SupabaseStorage) -> None:
    with patch("requests.request", return_value=MockResponse()) as mocked:
        supabase.upload("media", "u/a.webp", b"img", "image/webp")
    args, kwargs = mocked.call_args
    assert args == ("POST", "https://proj.supabase.co/storage/v1/object/media/u/a.webp")
    assert kwargs["headers"]["Content-Type"] == "image/webp"
    assert kwargs["headers"]["x-upsert"] == "false"
    assert kwargs["data"] == b"img"


def test_supabase_remove(supabase: SupabaseStorage) -> None:
    with patch("requests.request", return_value=MockResponse()) as mocked:
        supabase.remove("community", ["u/a.jpg"])
        supabase.remove("community", [])
    assert mocked.call_count == 1
    assert mocked.call_args.kwargs["json"] == {"prefixes": ["u/a.jpg"]}


def test_supabase_fetch(supabase: SupabaseStorage) -> None:
    with patch("requests.request", return_value=MockResponse(content=b"bytes")):
        assert supabase.fetch("https://signed.example/x") == b"bytes"


def test_supabase_error_status(supabase: SupabaseStorage) -> None:
    with patch("requests.request", return_value=MockResponse(status_code=400)):
        with pytest.raises(SupabaseStorageError, match="400"):
            supabase.upload("media", "u/a.jpg", b"x", "image/jpeg")


def test_supabase_network_error(supabase: SupabaseStorage) -> None:
    with patch("requests.request", side_effect=requests.ConnectionError("down")):
        with pytest.raises(StorageError, match="request failed"):
            supabase.remove("media", ["u/a.jpg"])
