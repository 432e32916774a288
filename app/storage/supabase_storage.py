import os
from collections.abc import Sequence
from urllib.parse import quote

import requests

from app.errors import StorageError

from .object_storage import ObjectStorage


class SupabaseStorageError(StorageError):
    """Custom exception for SupabaseStorage errors."""


class SupabaseStorage(ObjectStorage):
    """
    Object storage using the Supabase Storage HTTP API.
    """

    _SUCCESS_CODE = 200
    _TIMEOUT = 10  # seconds

    def __init__(self, url: str = "", key: str = "") -> None:
        """
        Args:
            url: Project URL. Falls back to SUPABASE_URL.
            key: Service key sent as bearer token and apikey. Falls back to
                SUPABASE_KEY.
        """
        self.url = (url or os.getenv("SUPABASE_URL", "")).rstrip("/")
        self.key = key or os.getenv("SUPABASE_KEY", "")
        self.api = f"{self.url}/storage/v1"

    def _headers(self, content_type: str = "application/json") -> dict[str, str]:
        if not self.url or not self.key:
            error_message = "Supabase storage credentials are not set"
            raise SupabaseStorageError(error_message)
        return {
            "Authorization": f"Bearer {self.key}",
            "apikey": self.key,
            "Content-Type": content_type,
        }

    def _request(self, method: str, url: str, **kwargs: object) -> requests.Response:
        try:
            resp = requests.request(method, url, timeout=self._TIMEOUT, **kwargs)  # type: ignore[arg-type]
        except requests.RequestException as exc:
            error_message = f"Supabase storage request failed: {exc}"
            raise SupabaseStorageError(error_message) from exc
        if resp.status_code != self._SUCCESS_CODE:
            error_message = f"Supabase storage error: {resp.status_code} {resp.text}"
            raise SupabaseStorageError(error_message)
        return resp

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.api}/object/public/{bucket}/{quote(path, safe='/')}"

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        resp = self._request(
            "POST",
            f"{self.api}/object/sign/{bucket}/{quote(path, safe='/')}",
            headers=self._headers(),
            json={"expiresIn": ttl_seconds},
        )
        signed = resp.json().get("signedURL")
        if not signed:
            error_message = f"No signed URL returned for {bucket}/{path}"
            raise SupabaseStorageError(error_message)
        return f"{self.api}{signed}"

    def create_signed_urls(
        self, bucket: str, paths: Sequence[str], ttl_seconds: int
    ) -> list[str | None]:
        if not paths:
            return []
        resp = self._request(
            "POST",
            f"{self.api}/object/sign/{bucket}",
            headers=self._headers(),
            json={"expiresIn": ttl_seconds, "paths": list(paths)},
        )
        by_path = {
            item.get("path"): item.get("signedURL")
            for item in resp.json()
            if not item.get("error")
        }
        return [
            f"{self.api}{by_path[path]}" if by_path.get(path) else None
            for path in paths
        ]

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = False,
    ) -> None:
        headers = self._headers(content_type)
        headers["x-upsert"] = "true" if overwrite else "false"
        self._request(
            "POST",
            f"{self.api}/object/{bucket}/{quote(path, safe='/')}",
            headers=headers,
            data=data,
        )

    def fetch(self, url: str) -> bytes:
        return self._request("GET", url).content

    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        if not paths:
            return
        self._request(
            "DELETE",
            f"{self.api}/object/{bucket}",
            headers=self._headers(),
            json={"prefixes": list(paths)},
        )
