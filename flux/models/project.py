"""
Project and Epic models.

A project groups epics and tasks; an epic is a milestone-like grouping of
tasks within one project.
"""
from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from flux.models.base import Base, TimestampMixin, new_id
from flux.models.task import TaskStatus


class Project(Base, TimestampMixin):
    """Top-level container for epics and tasks."""
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    epics = relationship(
        "Epic",
        back_populates="project",
        cascade="all, delete-orphan"
    )
    tasks = relationship(
        "Task",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name})>"


class Epic(Base, TimestampMixin):
    """Grouping of tasks within a project."""
    __tablename__ = "epics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.TODO.value)
    depends_on: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    project = relationship("Project", back_populates="epics")

    def __repr__(self):
        return f"<Epic(id={self.id}, title={self.title}, status={self.status})>"
