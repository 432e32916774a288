"""
Storage keys and public slugs.

Every private key starts with the owner's id: storage access rules only
look at that first segment to decide who may read or write the object.
"""

import re
import secrets
import string
import time

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SLUG_ALPHABET = string.ascii_lowercase + string.digits
SLUG_SUFFIX_LENGTH = 6
SLUG_BASE_MAX = 48


def _check_owner(owner_id: str) -> str:
    if not owner_id or "/" in owner_id or owner_id in (".", ".."):
        error_message = f"Invalid owner id for a storage path: {owner_id!r}"
        raise ValueError(error_message)
    return owner_id


def _token() -> str:
    return secrets.token_hex(6)


def sanitize_name(name: str | None) -> str:
    """Lower-case file stem with non-alphanumeric runs collapsed to '-'."""
    name = name or ""
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return _NON_ALNUM.sub("-", stem.lower()).strip("-") or "image"


def extension_for(content_type: str | None) -> str:
    mime = (content_type or "").lower()
    if "png" in mime:
        return ".png"
    if "webp" in mime:
        return ".webp"
    return ".jpg"


def private_path(
    owner_id: str,
    group: str,
    role: str,
    filename: str | None = None,
    content_type: str | None = None,
) -> str:
    name = f"-{sanitize_name(filename)}" if filename else ""
    return f"{_check_owner(owner_id)}/{group}/{role}-{_token()}{name}{extension_for(content_type)}"


def entry_path(
    owner_id: str, project_id: int, filename: str | None, content_type: str | None
) -> str:
    return private_path(owner_id, str(project_id), "entry", filename, content_type)


def pair_paths(
    owner_id: str,
    before_name: str | None,
    after_name: str | None,
    content_type: str | None,
    after_content_type: str | None = None,
) -> tuple[str, str]:
    """Two keys under one timestamped grouping directory."""
    group = f"{int(time.time() * 1000)}-{_token()}"
    before = private_path(owner_id, group, "before", before_name, content_type)
    after = private_path(
        owner_id, group, "after", after_name, after_content_type or content_type
    )
    return before, after


def public_share_path(owner_id: str, entry_id: int, content_type: str | None) -> str:
    return f"{_check_owner(owner_id)}/{entry_id}-{_token()}{extension_for(content_type)}"


def slug_base(text: str | None) -> str:
    base = _NON_ALNUM.sub("-", (text or "").lower()).strip("-")
    return base[:SLUG_BASE_MAX].rstrip("-") or "share"


def make_slug(text: str | None) -> str:
    suffix = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(SLUG_SUFFIX_LENGTH))
    return f"{slug_base(text)}-{suffix}"


def content_type_for(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith(".png"):
        return "image/png"
    if lowered.endswith(".webp"):
        return "image/webp"
    return "image/jpeg"
