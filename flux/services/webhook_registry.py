"""
Webhook registry service.

CRUD for registered webhooks and the lookup of which webhooks want a
given event.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from flux.models.webhook import Webhook, WebhookEventType


class WebhookNotFoundError(LookupError):
    """Raised when a webhook id does not exist."""

    def __init__(self, webhook_id: str):
        super().__init__(f"Webhook not found: {webhook_id}")
        self.webhook_id = webhook_id


def normalize_events(events: list) -> list[str]:
    """Validate event names and return them as plain strings, deduplicated."""
    normalized = []
    for event in events:
        value = WebhookEventType(event).value
        if value not in normalized:
            normalized.append(value)
    return normalized


class WebhookRegistry:
    """Service for managing webhooks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        name: str,
        url: str,
        events: list,
        secret: str | None = None,
        project_id: str | None = None,
        enabled: bool = True,
    ) -> Webhook:
        """
        Register a new webhook.

        Args:
            name: Display name
            url: Endpoint receiving POST requests
            events: Event types to subscribe to
            secret: Optional HMAC signing key
            project_id: Restrict deliveries to one project
            enabled: Whether deliveries are made at all

        Returns:
            Newly created Webhook
        """
        webhook = Webhook(
            name=name,
            url=url,
            events=normalize_events(events),
            secret=secret,
            project_id=project_id,
            enabled=enabled,
        )
        self.db.add(webhook)
        await self.db.commit()
        await self.db.refresh(webhook)
        return webhook

    async def get(self, webhook_id: str) -> Webhook:
        """Get webhook by ID. Raises WebhookNotFoundError."""
        webhook = await self.db.get(Webhook, webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        return webhook

    async def list_all(self) -> list[Webhook]:
        """All webhooks in registration order."""
        stmt = select(Webhook).order_by(Webhook.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update(self, webhook_id: str, **fields) -> Webhook:
        """Patch webhook fields. `None` values are ignored except for `secret` and `project_id`."""
        webhook = await self.get(webhook_id)

        for name, value in fields.items():
            if value is None and name not in ("secret", "project_id"):
                continue
            if name == "events":
                value = normalize_events(value)
            setattr(webhook, name, value)

        await self.db.commit()
        await self.db.refresh(webhook)
        return webhook

    async def delete(self, webhook_id: str):
        """
        Delete a webhook.

        Deliveries already scheduled for it keep running to completion.
        """
        webhook = await self.get(webhook_id)
        await self.db.delete(webhook)
        await self.db.commit()

    async def list_subscribed(self, event: str, project_id: str | None = None) -> list[Webhook]:
        """
        Enabled webhooks subscribed to `event`.

        Webhooks scoped to a project only match events of that project.
        """
        stmt = select(Webhook).where(Webhook.enabled.is_(True)).order_by(Webhook.created_at)
        result = await self.db.execute(stmt)
        return [
            webhook for webhook in result.scalars().all()
            if event in (webhook.events or [])
            and (webhook.project_id is None or webhook.project_id == project_id)
        ]
