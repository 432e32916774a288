from typing import Annotated

from fastapi import APIRouter, Body, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, Response
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT

from app.config import EDITING_URL_TTL
from app.deps import get_pipeline, get_resolver, require_session
from app.display import DisplayResolver, Visibility
from app.models import Entry, Project
from app.pipeline import PublishingPipeline
from app.routers.common import handle_vault_errors, to_upload
from app.schemas import (
    EntryResponse,
    ProjectCreateRequest,
    ProjectDetailResponse,
    ProjectResponse,
)
from app.session import Session

router = APIRouter()


def project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        title=project.title,
        category=str(project.category),
        created_at=project.created_at,
    )


def entry_response(entry: Entry, resolver: DisplayResolver | None = None) -> EntryResponse:
    image_url = None
    if resolver is not None:
        image_url = resolver.resolve(Visibility.PRIVATE, entry.media_path, EDITING_URL_TTL)
    return EntryResponse(
        id=entry.id,
        project_id=entry.project_id,
        kind=str(entry.kind),
        note=entry.note,
        taken_at=entry.taken_at,
        media_path=entry.media_path,
        image_url=image_url,
    )


@router.get("/projects", response_model=list[ProjectResponse])
@handle_vault_errors
def list_projects(
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
) -> list[ProjectResponse]:
    return [project_response(p) for p in pipeline.list_projects(session.user_id)]


@router.post("/projects", response_model=ProjectResponse, status_code=HTTP_201_CREATED)
@handle_vault_errors
def create_project(
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    body: Annotated[ProjectCreateRequest, Body(...)],
) -> ProjectResponse:
    project = pipeline.create_project(session.user_id, body.title, body.category)
    return project_response(project)


@router.get("/projects/{project_id}", response_model=ProjectDetailResponse)
@handle_vault_errors
def get_project(
    project_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    resolver: Annotated[DisplayResolver, Depends(get_resolver)],
) -> ProjectDetailResponse:
    project, entries = pipeline.get_project(session.user_id, project_id)
    return ProjectDetailResponse(
        project=project_response(project),
        entries=[entry_response(e, resolver) for e in entries],
    )


@router.post(
    "/projects/{project_id}/entries",
    response_model=EntryResponse,
    status_code=HTTP_201_CREATED,
)
@handle_vault_errors
def create_entry(  # noqa: PLR0913
    project_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
    kind: Annotated[str, Form()] = "update",
    note: Annotated[str | None, Form()] = None,
    file: Annotated[UploadFile | None, File()] = None,
) -> EntryResponse | JSONResponse:
    entry = pipeline.create_entry(
        session.user_id, project_id, kind, note, to_upload(file)
    )
    return entry_response(entry)


@router.delete("/entries/{entry_id}", status_code=HTTP_204_NO_CONTENT)
@handle_vault_errors
def delete_entry(
    entry_id: int,
    session: Annotated[Session, Depends(require_session)],
    pipeline: Annotated[PublishingPipeline, Depends(get_pipeline)],
) -> Response:
    pipeline.delete_entry(session.user_id, entry_id)
    return Response(status_code=HTTP_204_NO_CONTENT)
