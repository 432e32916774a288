import os

from dotenv import load_dotenv

load_dotenv()

# Buckets: community is world-readable by path, media needs a signed URL
MEDIA_BUCKET: str = os.getenv("MEDIA_BUCKET", "media")
COMMUNITY_BUCKET: str = os.getenv("COMMUNITY_BUCKET", "community")

# Hard ceiling on incoming files, checked before any network call
MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(15 * 1024 * 1024)))
MAX_CAPTION_LENGTH = 160

# Signed URL validity windows (seconds)
FEED_URL_TTL = 60 * 60 * 24 * 7
EDITING_URL_TTL = 60 * 60
REPUBLISH_URL_TTL = 60

# Community feed
FEED_PAGE_SIZE = 24
FEED_PER_SOURCE_LIMIT = 24
HOMEPAGE_LIMIT = 8

# Front end the browser lands on after auth redirects
SITE_URL: str = os.getenv("SITE_URL", "http://localhost:5173").rstrip("/")
# This service, where auth callbacks and local storage URLs point
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
DEFAULT_NEXT = "/projects"
OAUTH_NEXT_COOKIE = "oauth_next"
OAUTH_VERIFIER_COOKIE = "oauth_verifier"
OAUTH_NEXT_MAX_AGE = 10 * 60

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
