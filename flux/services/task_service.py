"""
Task service for project, epic and task management.

Every committed mutation is announced to the webhook dispatcher as a
domain event. Readiness queries load a fresh snapshot of all tasks and hand
it to the task graph evaluator.
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from flux.models.base import new_id, utc_now
from flux.models.project import Epic, Project
from flux.models.task import CommentAuthor, Task, TaskStatus
from flux.models.webhook import WebhookEventType
from flux.routes.metrics import update_ready_tasks
from flux.services import task_graph
from flux.services.webhook_service import WebhookDispatcher


TASK_FIELDS = frozenset({
    "title",
    "notes",
    "status",
    "priority",
    "depends_on",
    "archived",
    "blocked_reason",
    "epic_id",
})

# Columns that cannot be cleared with an explicit null
REQUIRED_TASK_FIELDS = frozenset({"title", "status", "depends_on", "archived"})

PROJECT_FIELDS = frozenset({"name", "description"})
REQUIRED_PROJECT_FIELDS = frozenset({"name"})

EPIC_FIELDS = frozenset({"title", "notes", "status", "depends_on"})
REQUIRED_EPIC_FIELDS = frozenset({"title", "status", "depends_on"})


class ProjectNotFoundError(LookupError):
    """Raised when a project id does not exist."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class EpicNotFoundError(LookupError):
    """Raised when an epic id does not exist."""

    def __init__(self, epic_id: str):
        super().__init__(f"Epic not found: {epic_id}")
        self.epic_id = epic_id


class TaskNotFoundError(LookupError):
    """Raised when a task id does not exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidUpdateError(ValueError):
    """Raised when an update names unknown fields or clears a required one."""


def check_update_fields(fields: dict, allowed: frozenset, required: frozenset):
    unknown = set(fields) - allowed
    if unknown:
        raise InvalidUpdateError(f"Cannot update fields: {sorted(unknown)}")
    cleared = sorted(name for name in required if name in fields and fields[name] is None)
    if cleared:
        raise InvalidUpdateError(f"Fields cannot be null: {cleared}")


def _isoformat(value):
    return value.isoformat() if value else None


def project_to_dict(project: Project) -> dict:
    """Convert Project model to a JSON-ready dict."""
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "created_at": _isoformat(project.created_at),
        "updated_at": _isoformat(project.updated_at),
    }


def epic_to_dict(epic: Epic) -> dict:
    """Convert Epic model to a JSON-ready dict."""
    return {
        "id": epic.id,
        "project_id": epic.project_id,
        "title": epic.title,
        "notes": epic.notes,
        "status": epic.status,
        "depends_on": list(epic.depends_on or []),
        "created_at": _isoformat(epic.created_at),
        "updated_at": _isoformat(epic.updated_at),
    }


def task_to_dict(task: Task, tasks_by_id: dict | None = None) -> dict:
    """
    Convert Task model to a JSON-ready dict.

    When a task index is given, `blocked` and `blocked_by` are included.
    """
    data = {
        "id": task.id,
        "project_id": task.project_id,
        "epic_id": task.epic_id,
        "title": task.title,
        "notes": task.notes,
        "status": task.status,
        "priority": task.priority,
        "depends_on": list(task.depends_on or []),
        "archived": task.archived,
        "blocked_reason": task.blocked_reason,
        "comments": list(task.comments or []),
        "created_at": _isoformat(task.created_at),
        "updated_at": _isoformat(task.updated_at),
    }
    if tasks_by_id is not None:
        blocking = task_graph.get_blocking_tasks(task, tasks_by_id)
        data["blocked"] = bool(blocking)
        data["blocked_by"] = [dep.id for dep in blocking]
    return data


class TaskService:
    """Service for managing projects, epics and tasks."""

    def __init__(self, db: AsyncSession, dispatcher: WebhookDispatcher | None = None):
        self.db = db
        self.dispatcher = dispatcher

    async def _emit(self, event: WebhookEventType, data: dict, project_id: str | None):
        if self.dispatcher is not None:
            await self.dispatcher.dispatch_event(event, data, project_id=project_id)

    # ----------------------------------------
    # Projects
    # ----------------------------------------

    async def create_project(self, name: str, description: str | None = None) -> Project:
        """Create a project and emit project.created."""
        project = Project(id=new_id(), name=name, description=description, created_at=utc_now())
        self.db.add(project)
        await self.db.commit()
        await self.db.refresh(project)

        await self._emit(
            WebhookEventType.PROJECT_CREATED,
            {"project": project_to_dict(project)},
            project.id,
        )
        return project

    async def get_project(self, project_id: str) -> Project:
        """Get project by ID. Raises ProjectNotFoundError."""
        project = await self.db.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def list_projects(self) -> list[Project]:
        """All projects in creation order."""
        result = await self.db.execute(select(Project).order_by(Project.created_at))
        return list(result.scalars().all())

    async def update_project(self, project_id: str, **fields) -> Project:
        """Patch project name or description and emit project.updated."""
        check_update_fields(fields, PROJECT_FIELDS, REQUIRED_PROJECT_FIELDS)
        project = await self.get_project(project_id)

        for name, value in fields.items():
            setattr(project, name, value)

        await self.db.commit()
        await self.db.refresh(project)

        await self._emit(
            WebhookEventType.PROJECT_UPDATED,
            {"project": project_to_dict(project)},
            project.id,
        )
        return project

    async def delete_project(self, project_id: str):
        """Delete a project with its epics and tasks, emitting project.deleted."""
        project = await self.get_project(project_id)
        data = {"project": project_to_dict(project)}
        await self.db.delete(project)
        await self.db.commit()

        await self._emit(WebhookEventType.PROJECT_DELETED, data, project_id)

    # ----------------------------------------
    # Epics
    # ----------------------------------------

    async def create_epic(self, project_id: str, title: str, notes: str | None = None) -> Epic:
        """Create an epic in a project and emit epic.created."""
        await self.get_project(project_id)

        epic = Epic(
            id=new_id(),
            project_id=project_id,
            title=title,
            notes=notes,
            status=TaskStatus.TODO.value,
            depends_on=[],
            created_at=utc_now(),
        )
        self.db.add(epic)
        await self.db.commit()
        await self.db.refresh(epic)

        await self._emit(WebhookEventType.EPIC_CREATED, {"epic": epic_to_dict(epic)}, project_id)
        return epic

    async def list_epics(self, project_id: str) -> list[Epic]:
        """Epics of a project in creation order."""
        stmt = select(Epic).where(Epic.project_id == project_id).order_by(Epic.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_epic(self, epic_id: str) -> Epic:
        """Get epic by ID. Raises EpicNotFoundError."""
        epic = await self.db.get(Epic, epic_id)
        if epic is None:
            raise EpicNotFoundError(epic_id)
        return epic

    async def update_epic(self, epic_id: str, **fields) -> Epic:
        """Patch epic fields and emit epic.updated."""
        check_update_fields(fields, EPIC_FIELDS, REQUIRED_EPIC_FIELDS)
        epic = await self.get_epic(epic_id)

        for name, value in fields.items():
            if name == "status":
                value = TaskStatus(value).value
            elif name == "depends_on":
                value = list(value)
            setattr(epic, name, value)

        await self.db.commit()
        await self.db.refresh(epic)

        await self._emit(WebhookEventType.EPIC_UPDATED, {"epic": epic_to_dict(epic)}, epic.project_id)
        return epic

    async def delete_epic(self, epic_id: str):
        """
        Delete an epic and emit epic.deleted.

        Its tasks stay in the project with `epic_id` cleared.
        """
        epic = await self.get_epic(epic_id)
        data = {"epic": epic_to_dict(epic)}
        project_id = epic.project_id

        await self.db.execute(update(Task).where(Task.epic_id == epic_id).values(epic_id=None))
        await self.db.delete(epic)
        await self.db.commit()

        await self._emit(WebhookEventType.EPIC_DELETED, data, project_id)

    # ----------------------------------------
    # Tasks
    # ----------------------------------------

    async def create_task(
        self,
        project_id: str,
        title: str,
        epic_id: str | None = None,
        notes: str | None = None,
        priority: int | None = None,
        depends_on: list[str] | None = None,
        status: TaskStatus | str = TaskStatus.TODO,
    ) -> Task:
        """
        Create a task and emit task.created.

        Dependency ids are stored as given; they are not checked for
        existence.
        """
        await self.get_project(project_id)

        task = Task(
            id=new_id(),
            project_id=project_id,
            epic_id=epic_id,
            title=title,
            notes=notes,
            priority=priority,
            depends_on=list(depends_on or []),
            status=TaskStatus(status).value,
            archived=False,
            comments=[],
            created_at=utc_now(),
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)

        await self._emit(WebhookEventType.TASK_CREATED, {"task": task_to_dict(task)}, project_id)
        return task

    async def get_task(self, task_id: str) -> Task:
        """Get task by ID. Raises TaskNotFoundError."""
        task = await self.db.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(self, project_id: str | None = None) -> list[Task]:
        """Tasks in creation order, optionally for one project."""
        stmt = select(Task).order_by(Task.created_at)
        if project_id is not None:
            stmt = stmt.where(Task.project_id == project_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_task(self, task_id: str, **fields) -> Task:
        """
        Patch task fields.

        Emits task.updated, plus task.status_changed when the status moves
        and task.archived when the task gets archived.
        """
        check_update_fields(fields, TASK_FIELDS, REQUIRED_TASK_FIELDS)

        task = await self.get_task(task_id)
        previous_status = task.status
        was_archived = task.archived

        for name, value in fields.items():
            if name == "status":
                value = TaskStatus(value).value
            elif name == "depends_on":
                value = list(value or [])
            setattr(task, name, value)

        await self.db.commit()
        await self.db.refresh(task)

        data = {"task": task_to_dict(task)}
        await self._emit(WebhookEventType.TASK_UPDATED, data, task.project_id)
        if task.status != previous_status:
            await self._emit(
                WebhookEventType.TASK_STATUS_CHANGED,
                {**data, "previous_status": previous_status},
                task.project_id,
            )
        if task.archived and not was_archived:
            await self._emit(WebhookEventType.TASK_ARCHIVED, data, task.project_id)
        return task

    async def add_comment(
        self,
        task_id: str,
        body: str,
        author: CommentAuthor | str = CommentAuthor.USER,
    ) -> Task:
        """Append a comment to a task and emit task.updated."""
        task = await self.get_task(task_id)
        comment = {
            "id": new_id(),
            "body": body,
            "author": CommentAuthor(author).value,
            "created_at": utc_now().isoformat(),
        }
        task.comments = [*(task.comments or []), comment]
        await self.db.commit()
        await self.db.refresh(task)

        await self._emit(WebhookEventType.TASK_UPDATED, {"task": task_to_dict(task)}, task.project_id)
        return task

    async def delete_task(self, task_id: str):
        """
        Delete a task and emit task.deleted.

        Other tasks that depend on it keep the id; the evaluator treats it
        as dangling.
        """
        task = await self.get_task(task_id)
        data = {"task": task_to_dict(task)}
        project_id = task.project_id
        await self.db.delete(task)
        await self.db.commit()

        await self._emit(WebhookEventType.TASK_DELETED, data, project_id)

    # ----------------------------------------
    # Readiness
    # ----------------------------------------

    async def get_task_index(self) -> dict[str, Task]:
        """Snapshot of every task keyed by id."""
        return task_graph.index_tasks(await self.list_tasks())

    async def get_ready_tasks(self, project_id: str | None = None) -> list[Task]:
        """Unblocked, open, unarchived tasks sorted by priority."""
        ready = task_graph.get_ready_tasks(project_id, await self.list_tasks())
        update_ready_tasks(project_id, len(ready))
        return ready
