"""
Task API routes.

Provides task CRUD plus the ready-task query used by the CLI and web UI.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from flux.dependencies.auth import require_api_key
from flux.dependencies.services import get_task_service
from flux.models.task import CommentAuthor, TaskStatus
from flux.services.task_service import (
    InvalidUpdateError,
    ProjectNotFoundError,
    TaskNotFoundError,
    TaskService,
    task_to_dict,
)


router = APIRouter(prefix="/api", tags=["tasks"], dependencies=[Depends(require_api_key)])


class CreateTaskRequest(BaseModel):
    """Request model for creating a task."""
    title: str
    epic_id: str | None = None
    notes: str | None = None
    priority: int | None = Field(default=None, ge=0, le=2)
    depends_on: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.TODO


class UpdateTaskRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: str | None = None
    epic_id: str | None = None
    notes: str | None = None
    status: TaskStatus | None = None
    priority: int | None = Field(default=None, ge=0, le=2)
    depends_on: list[str] | None = None
    archived: bool | None = None
    blocked_reason: str | None = None


class AddCommentRequest(BaseModel):
    """Request model for commenting on a task."""
    body: str
    author: CommentAuthor = CommentAuthor.USER


def not_found(e: LookupError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/projects/{project_id}/tasks", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_task(
    project_id: str,
    request: CreateTaskRequest,
    service: TaskService = Depends(get_task_service),
):
    """Create a task in a project."""
    try:
        task = await service.create_task(
            project_id,
            request.title,
            epic_id=request.epic_id,
            notes=request.notes,
            priority=request.priority,
            depends_on=request.depends_on,
            status=request.status,
        )
    except ProjectNotFoundError as e:
        raise not_found(e)
    return task_to_dict(task)


@router.get("/projects/{project_id}/tasks", response_model=list[dict])
async def list_project_tasks(
    project_id: str,
    service: TaskService = Depends(get_task_service),
):
    """List a project's tasks with their blocked status."""
    tasks_by_id = await service.get_task_index()
    return [
        task_to_dict(task, tasks_by_id)
        for task in tasks_by_id.values()
        if task.project_id == project_id
    ]


@router.get("/tasks/ready", response_model=list[dict])
async def get_ready_tasks(
    project_id: str | None = None,
    service: TaskService = Depends(get_task_service),
):
    """
    Ready tasks: unblocked, not done, not archived.

    Sorted by priority (P0 first, missing priority counts as P2).
    """
    return [task_to_dict(task) for task in await service.get_ready_tasks(project_id or None)]


@router.get("/tasks/{task_id}", response_model=dict)
async def get_task(
    task_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Get a task including `blocked` and `blocked_by`."""
    tasks_by_id = await service.get_task_index()
    task = tasks_by_id.get(task_id)
    if task is None:
        raise not_found(TaskNotFoundError(task_id))
    return task_to_dict(task, tasks_by_id)


@router.patch("/tasks/{task_id}", response_model=dict)
async def update_task(
    task_id: str,
    request: UpdateTaskRequest,
    service: TaskService = Depends(get_task_service),
):
    """Update task fields."""
    try:
        task = await service.update_task(task_id, **request.model_dump(exclude_unset=True))
    except TaskNotFoundError as e:
        raise not_found(e)
    except InvalidUpdateError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return task_to_dict(task)


@router.delete("/tasks/{task_id}", response_model=dict)
async def delete_task(
    task_id: str,
    service: TaskService = Depends(get_task_service),
):
    """Delete a task."""
    try:
        await service.delete_task(task_id)
    except TaskNotFoundError as e:
        raise not_found(e)
    return {"message": "Task deleted"}


@router.post("/tasks/{task_id}/comments", response_model=dict, status_code=status.HTTP_201_CREATED)
async def add_comment(
    task_id: str,
    request: AddCommentRequest,
    service: TaskService = Depends(get_task_service),
):
    """Append a comment to a task."""
    try:
        task = await service.add_comment(task_id, request.body, request.author)
    except TaskNotFoundError as e:
        raise not_found(e)
    return task_to_dict(task)
