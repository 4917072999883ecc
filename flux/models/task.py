"""
Task model.

Tasks belong to a project, optionally to an epic, and may depend on other
tasks by id. Dependency ids are not foreign keys: they may point at tasks in
other projects, or at tasks that no longer exist.
"""
import enum
from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from flux.models.base import Base, TimestampMixin, new_id


class TaskStatus(str, enum.Enum):
    """Task status enum."""
    PLANNING = "planning"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class CommentAuthor(str, enum.Enum):
    """Who wrote a task comment."""
    USER = "user"
    MCP = "mcp"


# Missing priority sorts as P2
DEFAULT_PRIORITY = 2


class Task(Base, TimestampMixin):
    """
    Unit of work within a project.

    `comments` is stored as a JSON list of
    {id, body, author, created_at} dicts, in insertion order.
    """
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    epic_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("epics.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.TODO.value)
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    depends_on: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    comments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self):
        return f"<Task(id={self.id}, status={self.status}, priority={self.priority})>"
