"""Shared fixtures: in-memory database, filesystem storage, signed-in clients."""

import logging
import os
from collections.abc import Generator, Sequence
from io import BytesIO
from typing import Any

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "testsecret")
os.environ.setdefault("STORAGE_BACKEND", "filesystem")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import COMMUNITY_BUCKET, LOG_FORMAT  # noqa: E402
from app.database import Base  # noqa: E402
from app.deps import get_db, get_storage  # noqa: E402
from app.errors import StorageError  # noqa: E402
from app.main import app  # noqa: E402
from app.storage import FileSystemStorage  # noqa: E402
from app.utils.jwt import create_access_token  # noqa: E402

# Configure basic logging for tests
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class RecordingStorage(FileSystemStorage):
    """
    Filesystem storage that records every mutating or signing call and fails
    the methods named in `fail_on` with StorageError. `inner` reaches the
    same files without recording.
    """

    def __init__(self, base_path: str) -> None:
        super().__init__(base_path, "http://testserver", {COMMUNITY_BUCKET})
        self.inner = FileSystemStorage(base_path, "http://testserver", {COMMUNITY_BUCKET})
        self.calls: list[tuple[Any, ...]] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            error_message = f"{name} failed"
            raise StorageError(error_message)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def get_public_url(self, bucket: str, path: str) -> str:
        return self.inner.get_public_url(bucket, path)

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        self._record("create_signed_url", bucket, path)
        return self.inner.create_signed_url(bucket, path, ttl_seconds)

    def create_signed_urls(
        self, bucket: str, paths: Sequence[str], ttl_seconds: int
    ) -> list[str | None]:
        self._record("create_signed_urls", bucket, tuple(paths))
        return self.inner.create_signed_urls(bucket, paths, ttl_seconds)

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = False,
    ) -> None:
        self._record("upload", bucket, path)
        self.inner.upload(bucket, path, data, content_type, overwrite=overwrite)

    def fetch(self, url: str) -> bytes:
        self._record("fetch", url)
        return self.inner.fetch(url)

    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        self._record("remove", bucket, tuple(paths))
        self.inner.remove(bucket, paths)


def make_image(
    size: tuple[int, int] = (64, 48), fmt: str = "JPEG", color: str = "teal"
) -> bytes:
    output = BytesIO()
    Image.new("RGB", size, color).save(output, format=fmt)
    return output.getvalue()


def auth_header(user_id: str = USER_ID) -> dict[str, str]:
    token = create_access_token({"sub": user_id, "email": f"{user_id}@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def storage(tmp_path: Any) -> RecordingStorage:
    return RecordingStorage(str(tmp_path / "objects"))


@pytest.fixture
def client(db: Session, storage: RecordingStorage) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()
