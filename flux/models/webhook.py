"""
Webhook Models

Registered webhook endpoints and the ledger of outbound deliveries.
"""
import enum
from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from flux.models.base import Base, TimestampMixin, new_id


class WebhookEventType(str, enum.Enum):
    """Domain events a webhook can subscribe to."""
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_DELETED = "project.deleted"
    EPIC_CREATED = "epic.created"
    EPIC_UPDATED = "epic.updated"
    EPIC_DELETED = "epic.deleted"
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_DELETED = "task.deleted"
    TASK_STATUS_CHANGED = "task.status_changed"
    TASK_ARCHIVED = "task.archived"


class DeliveryStatus(str, enum.Enum):
    """Delivery status enum. SUCCESS and FAILED are terminal."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DeliveryStatus.SUCCESS.value, DeliveryStatus.FAILED.value})


class Webhook(Base, TimestampMixin):
    """
    A registered webhook endpoint.

    When `project_id` is set, only events of that project are delivered.
    """
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    def __repr__(self):
        return f"<Webhook(id={self.id}, url={self.url}, enabled={self.enabled})>"


class WebhookDelivery(Base, TimestampMixin):
    """Webhook delivery tracking, one row per dispatched event."""
    __tablename__ = "webhook_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webhook_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WebhookDelivery(id={self.id}, status={self.status}, attempts={self.attempts})>"
