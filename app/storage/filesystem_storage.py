import os
from collections.abc import Collection, Sequence
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlparse

from app.errors import StorageError
from app.utils.jwt import create_storage_token, verify_storage_token

from .object_storage import ObjectStorage

_ROUTE_PREFIX = "/storage/"


class FileSystemStorage(ObjectStorage):
    """
    Object storage on the local filesystem, one directory per bucket.
    Objects are served by the app under /storage/{bucket}/{path}; private
    buckets require a signed token in the query string.
    """

    def __init__(
        self,
        base_path: str = "",
        base_url: str = "",
        public_buckets: Collection[str] = (),
    ) -> None:
        self.base_path = Path(base_path or os.getenv("STORAGE_ROOT", "./storage"))
        self.base_url = (
            base_url or os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
        ).rstrip("/")
        self.public_buckets = set(public_buckets)

    def _object_path(self, bucket: str, path: str) -> Path:
        bucket_root = (self.base_path / bucket).resolve()
        target = (bucket_root / path).resolve()
        if bucket_root not in target.parents:
            error_message = f"Path escapes bucket: {bucket}/{path}"
            raise StorageError(error_message)
        return target

    def _url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}{_ROUTE_PREFIX}{bucket}/{quote(path, safe='/')}"

    def is_public(self, bucket: str) -> bool:
        return bucket in self.public_buckets

    def get_public_url(self, bucket: str, path: str) -> str:
        return self._url(bucket, path)

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        if not self._object_path(bucket, path).is_file():
            error_message = f"Object not found: {bucket}/{path}"
            raise StorageError(error_message)
        token = create_storage_token(bucket, path, ttl_seconds)
        return f"{self._url(bucket, path)}?token={token}"

    def create_signed_urls(
        self, bucket: str, paths: Sequence[str], ttl_seconds: int
    ) -> list[str | None]:
        urls: list[str | None] = []
        for path in paths:
            try:
                urls.append(self.create_signed_url(bucket, path, ttl_seconds))
            except StorageError:
                urls.append(None)
        return urls

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,  # noqa: ARG002
        *,
        overwrite: bool = False,
    ) -> None:
        target = self._object_path(bucket, path)
        if target.exists() and not overwrite:
            error_message = f"Object already exists: {bucket}/{path}"
            raise StorageError(error_message)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            error_message = f"Failed to write {bucket}/{path}: {exc}"
            raise StorageError(error_message) from exc

    def read(self, bucket: str, path: str, token: str | None = None) -> bytes:
        """
        Read an object, enforcing the signed token on private buckets.
        """
        if not self.is_public(bucket) and not (
            token and verify_storage_token(token, bucket, path)
        ):
            error_message = f"Missing or invalid token for {bucket}/{path}"
            raise StorageError(error_message)
        target = self._object_path(bucket, path)
        try:
            return target.read_bytes()
        except OSError as exc:
            error_message = f"Failed to read {bucket}/{path}: {exc}"
            raise StorageError(error_message) from exc

    def fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        if not parsed.path.startswith(_ROUTE_PREFIX):
            error_message = f"Not a storage URL: {url}"
            raise StorageError(error_message)
        bucket, _, path = unquote(parsed.path[len(_ROUTE_PREFIX):]).partition("/")
        token = parse_qs(parsed.query).get("token", [None])[0]
        return self.read(bucket, path, token)

    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        for path in paths:
            target = self._object_path(bucket, path)
            try:
                target.unlink(missing_ok=True)
            except OSError as exc:
                error_message = f"Failed to remove {bucket}/{path}: {exc}"
                raise StorageError(error_message) from exc
