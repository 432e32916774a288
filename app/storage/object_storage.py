from abc import ABC, abstractmethod
from collections.abc import Sequence


class ObjectStorage(ABC):
    """
    Interface for bucket-scoped object storage backends.
    """

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """
        Deterministic URL for an object in a world-readable bucket.
        Existence is not checked.
        """
        error_message = "get_public_url not implemented"
        raise NotImplementedError(error_message)

    @abstractmethod
    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """
        Time-limited URL granting read access to a private object.
        """
        error_message = "create_signed_url not implemented"
        raise NotImplementedError(error_message)

    @abstractmethod
    def create_signed_urls(
        self, bucket: str, paths: Sequence[str], ttl_seconds: int
    ) -> list[str | None]:
        """
        Sign many paths in one call. The result lines up with `paths`;
        an entry is None when that path could not be signed.
        """
        error_message = "create_signed_urls not implemented"
        raise NotImplementedError(error_message)

    @abstractmethod
    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        overwrite: bool = False,
    ) -> None:
        error_message = "upload not implemented"
        raise NotImplementedError(error_message)

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """
        Retrieve the raw bytes behind a URL minted by this backend.
        """
        error_message = "fetch not implemented"
        raise NotImplementedError(error_message)

    @abstractmethod
    def remove(self, bucket: str, paths: Sequence[str]) -> None:
        """
        Delete objects. Paths that are already absent are not an error.
        """
        error_message = "remove not implemented"
        raise NotImplementedError(error_message)
