"""
Webhook API routes.

Provides endpoints for registering webhooks, sending test deliveries and
reading delivery history.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from flux.dependencies.auth import require_api_key
from flux.dependencies.services import get_dispatcher, get_webhook_registry
from flux.models.webhook import Webhook, WebhookDelivery, WebhookEventType
from flux.services.webhook_registry import WebhookNotFoundError, WebhookRegistry
from flux.services.webhook_service import WebhookDispatcher


router = APIRouter(prefix="/api", tags=["webhooks"], dependencies=[Depends(require_api_key)])


class CreateWebhookRequest(BaseModel):
    """Request model for registering a webhook."""
    name: str
    url: str
    events: list[WebhookEventType] = Field(min_length=1)
    secret: str | None = None
    project_id: str | None = None
    enabled: bool = True


class UpdateWebhookRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    name: str | None = None
    url: str | None = None
    events: list[WebhookEventType] | None = None
    secret: str | None = None
    project_id: str | None = None
    enabled: bool | None = None


def webhook_to_response(webhook: Webhook) -> dict:
    """Convert Webhook model to response dict. The secret is never returned."""
    return {
        "id": webhook.id,
        "name": webhook.name,
        "url": webhook.url,
        "events": list(webhook.events or []),
        "enabled": webhook.enabled,
        "project_id": webhook.project_id,
        "has_secret": bool(webhook.secret),
        "created_at": webhook.created_at.isoformat() if webhook.created_at else None,
    }


def delivery_to_response(delivery: WebhookDelivery) -> dict:
    """Convert WebhookDelivery model to response dict."""
    return {
        "id": delivery.id,
        "webhook_id": delivery.webhook_id,
        "event": delivery.event,
        "payload": delivery.payload,
        "status": delivery.status,
        "attempts": delivery.attempts,
        "response_code": delivery.response_code,
        "response_body": delivery.response_body,
        "error": delivery.error,
        "delivered_at": delivery.delivered_at.isoformat() if delivery.delivered_at else None,
        "created_at": delivery.created_at.isoformat() if delivery.created_at else None,
    }


def not_found(e: WebhookNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/webhooks", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    request: CreateWebhookRequest,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """
    Register a webhook.

    The webhook will receive signed POST requests for its subscribed events.
    """
    webhook = await registry.create(
        name=request.name,
        url=request.url,
        events=request.events,
        secret=request.secret,
        project_id=request.project_id,
        enabled=request.enabled,
    )
    return webhook_to_response(webhook)


@router.get("/webhooks", response_model=list[dict])
async def list_webhooks(registry: WebhookRegistry = Depends(get_webhook_registry)):
    """List registered webhooks."""
    return [webhook_to_response(webhook) for webhook in await registry.list_all()]


@router.get("/webhooks/{webhook_id}", response_model=dict)
async def get_webhook(
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Get one webhook."""
    try:
        return webhook_to_response(await registry.get(webhook_id))
    except WebhookNotFoundError as e:
        raise not_found(e)


@router.patch("/webhooks/{webhook_id}", response_model=dict)
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Update webhook configuration."""
    try:
        webhook = await registry.update(webhook_id, **request.model_dump(exclude_unset=True))
    except WebhookNotFoundError as e:
        raise not_found(e)
    return webhook_to_response(webhook)


@router.delete("/webhooks/{webhook_id}", response_model=dict)
async def delete_webhook(
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
):
    """Remove a webhook. Retries already scheduled still run."""
    try:
        await registry.delete(webhook_id)
    except WebhookNotFoundError as e:
        raise not_found(e)
    return {"message": "Webhook removed successfully"}


@router.post("/webhooks/{webhook_id}/test", response_model=dict)
async def test_webhook(
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Send a single test delivery. No delivery record is created."""
    try:
        webhook = await registry.get(webhook_id)
    except WebhookNotFoundError as e:
        raise not_found(e)
    outcome = await dispatcher.test_webhook_delivery(webhook)
    return outcome.to_dict()


@router.get("/webhooks/{webhook_id}/deliveries", response_model=list[dict])
async def list_webhook_deliveries(
    webhook_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    registry: WebhookRegistry = Depends(get_webhook_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Recent deliveries of one webhook, newest first."""
    try:
        await registry.get(webhook_id)
    except WebhookNotFoundError as e:
        raise not_found(e)
    deliveries = await dispatcher.get_recent_deliveries(webhook_id, limit)
    return [delivery_to_response(delivery) for delivery in deliveries]


@router.get("/deliveries", response_model=list[dict])
async def list_deliveries(
    webhook_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Recent deliveries across all webhooks, newest first."""
    deliveries = await dispatcher.get_recent_deliveries(webhook_id, limit)
    return [delivery_to_response(delivery) for delivery in deliveries]
