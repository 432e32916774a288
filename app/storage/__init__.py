import os

from app.config import COMMUNITY_BUCKET

from .filesystem_storage import FileSystemStorage
from .object_storage import ObjectStorage
from .supabase_storage import SupabaseStorage, SupabaseStorageError


def get_storage_backend() -> ObjectStorage:
    """
    Factory for storage backend based on STORAGE_BACKEND env var.
    Defaults to SupabaseStorage.

    Supported values (case-insensitive):
      - 'supabase'
      - 'filesystem'
    """
    backend = os.getenv("STORAGE_BACKEND", "supabase").lower()
    if backend == "filesystem":
        return FileSystemStorage(public_buckets={COMMUNITY_BUCKET})
    if backend in ("supabase", ""):  # default
        return SupabaseStorage()
    error_message = f"Unknown storage backend: {backend}"
    raise ValueError(error_message)


__all__ = [
    "FileSystemStorage",
    "ObjectStorage",
    "SupabaseStorage",
    "SupabaseStorageError",
    "get_storage_backend",
]
