import logging
from collections.abc import Callable
from functools import wraps

from fastapi import UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from app.config import MAX_UPLOAD_BYTES
from app.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    PipelineError,
    StorageError,
    StoreError,
    ValidationError,
)
from app.pipeline import Upload

logger = logging.getLogger(__name__)

NOINDEX = {"X-Robots-Tag": "noindex"}


def not_found(detail: str = "Not found") -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_404_NOT_FOUND, content={"detail": detail}, headers=NOINDEX
    )


def error_response(exc: Exception) -> JSONResponse:  # noqa: PLR0911
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content={"detail": str(exc)})
    if isinstance(exc, NotFoundError):
        return not_found(str(exc))
    if isinstance(exc, PipelineError):
        return JSONResponse(
            status_code=HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc), "state": exc.state},
        )
    if isinstance(exc, ConflictError):
        return JSONResponse(status_code=HTTP_409_CONFLICT, content={"detail": str(exc)})
    if isinstance(exc, AuthError):
        return JSONResponse(status_code=HTTP_401_UNAUTHORIZED, content={"detail": str(exc)})
    if isinstance(exc, StorageError):
        return JSONResponse(status_code=HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})
    if isinstance(exc, StoreError):
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)}
        )
    raise exc


def handle_vault_errors(func: Callable[..., object]) -> Callable[..., object]:
    """Turn application errors raised by a handler into JSON error responses."""

    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> object:
        try:
            return func(*args, **kwargs)
        except (ValidationError, NotFoundError) as exc:
            return error_response(exc)
        except (PipelineError, AuthError, StorageError, StoreError) as exc:
            logger.error("%s failed: %s", func.__name__, exc)
            return error_response(exc)
        except SQLAlchemyError as exc:
            logger.exception("%s failed reading the data store", func.__name__)
            return error_response(StoreError(f"Data store read failed: {exc}"))

    return wrapper


def to_upload(
    file: UploadFile | None, max_bytes: int = MAX_UPLOAD_BYTES
) -> Upload | None:
    """
    Read at most one byte past the ceiling, enough for validation to reject
    an oversize file without buffering all of it.
    """
    if file is None or not file.filename:
        return None
    return Upload(
        data=file.file.read(max_bytes + 1),
        content_type=file.content_type or "",
        filename=file.filename,
    )
