"""
Service dependencies for FastAPI routes.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from flux.database import get_db
from flux.services.task_service import TaskService
from flux.services.webhook_registry import WebhookRegistry
from flux.services.webhook_service import WebhookDispatcher


def get_dispatcher(request: Request) -> WebhookDispatcher:
    """The app-wide webhook dispatcher created in the lifespan."""
    return request.app.state.dispatcher


def get_task_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> TaskService:
    return TaskService(db, dispatcher)


def get_webhook_registry(db: AsyncSession = Depends(get_db)) -> WebhookRegistry:
    return WebhookRegistry(db)
