import enum
import logging
import time
from collections.abc import Sequence

from app.config import COMMUNITY_BUCKET, FEED_URL_TTL, MEDIA_BUCKET
from app.errors import StorageError
from app.storage import ObjectStorage

logger = logging.getLogger(__name__)


class Visibility(enum.StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


class DisplayResolver:
    """
    Turns stored paths into renderable URLs.

    Public objects get their deterministic URL without an existence check;
    private objects get a signed URL, or None when signing fails. Callers
    treat None like a failed load and hide the image.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        public_bucket: str = COMMUNITY_BUCKET,
        private_bucket: str = MEDIA_BUCKET,
    ) -> None:
        self.storage = storage
        self.buckets = {
            Visibility.PUBLIC: public_bucket,
            Visibility.PRIVATE: private_bucket,
        }

    def bucket_for(self, visibility: Visibility) -> str:
        return self.buckets[visibility]

    def resolve(
        self, visibility: Visibility, path: str | None, ttl: int = FEED_URL_TTL
    ) -> str | None:
        if not path:
            return None
        if visibility is Visibility.PUBLIC:
            return self.storage.get_public_url(self.bucket_for(visibility), path)
        return self.sign(visibility, path, ttl)

    def sign(
        self, visibility: Visibility, path: str, ttl: int = FEED_URL_TTL
    ) -> str | None:
        bucket = self.bucket_for(visibility)
        try:
            return self.storage.create_signed_url(bucket, path, ttl)
        except StorageError:
            logger.warning("Could not sign %s/%s; hiding image", bucket, path, exc_info=True)
            return None

    def retry_url(
        self, visibility: Visibility, path: str, ttl: int = FEED_URL_TTL
    ) -> str | None:
        """Freshly signed, cache-busted URL for a second load attempt."""
        signed = self.sign(visibility, path, ttl)
        return _cache_bust(signed) if signed else None

    def resolve_many(
        self, paths: Sequence[str | None], ttl: int = FEED_URL_TTL
    ) -> dict[str, str | None]:
        """Batch-sign private paths with a single storage call."""
        clean = list(dict.fromkeys(p for p in paths if p))
        if not clean:
            return {}
        bucket = self.bucket_for(Visibility.PRIVATE)
        try:
            urls = self.storage.create_signed_urls(bucket, clean, ttl)
        except StorageError:
            logger.exception("Batch signing failed for %d paths in %s", len(clean), bucket)
            return {}
        resolved = dict(zip(clean, urls, strict=False))
        for path, url in resolved.items():
            if url is None:
                logger.warning("Broken media reference %s/%s; hiding image", bucket, path)
        return resolved


def _cache_bust(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}rb={int(time.time() * 1000)}"


class ImageSource:
    """
    Render-side state for one image.

    The first load failure triggers exactly one retry with a freshly
    signed URL; after a second failure the image stays hidden.
    """

    def __init__(
        self,
        resolver: DisplayResolver,
        visibility: Visibility,
        path: str | None,
        ttl: int = FEED_URL_TTL,
    ) -> None:
        self.resolver = resolver
        self.visibility = visibility
        self.path = path
        self.ttl = ttl
        self.tried_signed = False
        self.src = resolver.resolve(visibility, path, ttl)

    @property
    def hidden(self) -> bool:
        return self.src is None

    def on_load_error(self) -> str | None:
        if self.tried_signed or not self.path:
            logger.warning(
                "Image failed permanently: %s/%s",
                self.resolver.bucket_for(self.visibility),
                self.path,
            )
            self.src = None
            return None
        self.tried_signed = True
        self.src = self.resolver.retry_url(self.visibility, self.path, self.ttl)
        return self.src
