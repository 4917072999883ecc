"""
Project API routes.

Provides endpoints for managing projects and their epics.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from flux.dependencies.auth import require_api_key
from flux.dependencies.services import get_task_service
from flux.models.task import TaskStatus
from flux.services.task_service import (
    EpicNotFoundError,
    InvalidUpdateError,
    ProjectNotFoundError,
    TaskService,
    epic_to_dict,
    project_to_dict,
)


router = APIRouter(
    prefix="/api/projects",
    tags=["projects"],
    dependencies=[Depends(require_api_key)],
)


class CreateProjectRequest(BaseModel):
    """Request model for creating a project."""
    name: str
    description: str | None = None


class UpdateProjectRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    name: str | None = None
    description: str | None = None


class CreateEpicRequest(BaseModel):
    """Request model for creating an epic."""
    title: str
    notes: str | None = None


class UpdateEpicRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: str | None = None
    notes: str | None = None
    status: TaskStatus | None = None
    depends_on: list[str] | None = None


def not_found(e: LookupError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def invalid(e: InvalidUpdateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    service: TaskService = Depends(get_task_service),
):
    """Create a new project."""
    project = await service.create_project(request.name, request.description)
    return project_to_dict(project)


@router.get("", response_model=list[dict])
async def list_projects(service: TaskService = Depends(get_task_service)):
    """List all projects."""
    return [project_to_dict(project) for project in await service.list_projects()]


@router.get("/{project_id}", response_model=dict)
async def get_project(
    project_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Get a single project."""
    try:
        project = await service.get_project(project_id)
    except ProjectNotFoundError as e:
        raise not_found(e)
    return project_to_dict(project)


@router.patch("/{project_id}", response_model=dict)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    service: TaskService = Depends(get_task_service),
):
    """Rename a project or change its description."""
    try:
        project = await service.update_project(project_id, **request.model_dump(exclude_unset=True))
    except ProjectNotFoundError as e:
        raise not_found(e)
    except InvalidUpdateError as e:
        raise invalid(e)
    return project_to_dict(project)


@router.delete("/{project_id}", response_model=dict)
async def delete_project(
    project_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Delete a project together with its epics and tasks."""
    try:
        await service.delete_project(project_id)
    except ProjectNotFoundError as e:
        raise not_found(e)
    return {"message": "Project deleted"}


@router.post("/{project_id}/epics", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_epic(
    project_id: str,
    request: CreateEpicRequest,
    service: TaskService = Depends(get_task_service),
):
    """Create an epic in a project."""
    try:
        epic = await service.create_epic(project_id, request.title, request.notes)
    except ProjectNotFoundError as e:
        raise not_found(e)
    return epic_to_dict(epic)


@router.get("/{project_id}/epics", response_model=list[dict])
async def list_epics(
    project_id: str,
    service: TaskService = Depends(get_task_service),
):
    """List the epics of a project."""
    return [epic_to_dict(epic) for epic in await service.list_epics(project_id)]


async def get_project_epic(service: TaskService, project_id: str, epic_id: str):
    """Epic lookup that 404s when the epic belongs to another project."""
    epic = await service.get_epic(epic_id)
    if epic.project_id != project_id:
        raise EpicNotFoundError(epic_id)
    return epic


@router.patch("/{project_id}/epics/{epic_id}", response_model=dict)
async def update_epic(
    project_id: str,
    epic_id: str,
    request: UpdateEpicRequest,
    service: TaskService = Depends(get_task_service),
):
    """Update epic fields."""
    try:
        await get_project_epic(service, project_id, epic_id)
        epic = await service.update_epic(epic_id, **request.model_dump(exclude_unset=True))
    except EpicNotFoundError as e:
        raise not_found(e)
    except InvalidUpdateError as e:
        raise invalid(e)
    return epic_to_dict(epic)


@router.delete("/{project_id}/epics/{epic_id}", response_model=dict)
async def delete_epic(
    project_id: str,
    epic_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Delete an epic. Its tasks stay in the project without an epic."""
    try:
        await get_project_epic(service, project_id, epic_id)
        await service.delete_epic(epic_id)
    except EpicNotFoundError as e:
        raise not_found(e)
    return {"message": "Epic deleted"}
