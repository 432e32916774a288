from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from app.deps import get_storage
from app.errors import StorageError
from app.paths import content_type_for
from app.routers.common import not_found
from app.storage import FileSystemStorage, ObjectStorage

router = APIRouter()


@router.get("/storage/{bucket}/{path:path}")
def read_object(
    bucket: str,
    path: str,
    storage: Annotated[ObjectStorage, Depends(get_storage)],
    token: Annotated[str | None, Query()] = None,
) -> Response:
    """
    Serve objects from the local filesystem backend. Private buckets need
    the token from a signed URL; any failure looks like a missing object.
    """
    if not isinstance(storage, FileSystemStorage):
        return not_found()
    try:
        data = storage.read(bucket, path, token)
    except StorageError:
        return not_found()
    return Response(content=data, media_type=content_type_for(path))
