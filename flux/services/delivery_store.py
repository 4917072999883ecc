"""
Delivery Record Store

Durable ledger of webhook deliveries. Every call opens its own session, so
concurrent delivery flows never share ORM state.
"""
import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flux.models.base import new_id, utc_now
from flux.models.webhook import TERMINAL_STATUSES, DeliveryStatus, WebhookDelivery


UPDATABLE_FIELDS = frozenset({
    "status",
    "attempts",
    "response_code",
    "response_body",
    "error",
    "delivered_at",
})


class DeliveryNotFoundError(LookupError):
    """Raised when a delivery id does not exist."""

    def __init__(self, delivery_id: str):
        super().__init__(f"Webhook delivery not found: {delivery_id}")
        self.delivery_id = delivery_id


class DeliveryStateError(ValueError):
    """Raised when an update would break the delivery lifecycle."""


class DeliveryRecordStore:
    """SQLAlchemy-backed store for WebhookDelivery rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        webhook_id: str,
        event: str,
        payload: dict | str,
        delivery_id: str | None = None,
    ) -> WebhookDelivery:
        """
        Create a delivery record in PENDING status.

        Args:
            webhook_id: Target webhook
            event: Event type string
            payload: Envelope dict, or its already-serialized JSON text
            delivery_id: Optional pre-generated id

        Returns:
            Newly created WebhookDelivery
        """
        if not isinstance(payload, str):
            payload = json.dumps(payload, separators=(",", ":"))

        delivery = WebhookDelivery(
            id=delivery_id or new_id(),
            webhook_id=webhook_id,
            event=event,
            payload=payload,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            created_at=utc_now(),
        )
        async with self.session_factory() as db:
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
        return delivery

    async def get(self, delivery_id: str) -> WebhookDelivery | None:
        """Get delivery by ID."""
        async with self.session_factory() as db:
            return await db.get(WebhookDelivery, delivery_id)

    async def update(self, delivery_id: str, **fields: Any) -> WebhookDelivery:
        """
        Apply a partial update to a delivery record.

        Raises:
            DeliveryNotFoundError: unknown delivery id
            DeliveryStateError: status change out of a terminal state, or
                an attempt count lower than the stored one
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update delivery fields: {sorted(unknown)}")

        async with self.session_factory() as db:
            delivery = await db.get(WebhookDelivery, delivery_id)
            if delivery is None:
                raise DeliveryNotFoundError(delivery_id)

            status = fields.get("status")
            if status is not None:
                status = DeliveryStatus(status).value
                if delivery.status in TERMINAL_STATUSES and status != delivery.status:
                    raise DeliveryStateError(
                        f"Delivery {delivery_id} is already {delivery.status}"
                    )
                fields["status"] = status

            attempts = fields.get("attempts")
            if attempts is not None and attempts < delivery.attempts:
                raise DeliveryStateError(
                    f"Delivery {delivery_id} attempts cannot go from "
                    f"{delivery.attempts} to {attempts}"
                )

            for name, value in fields.items():
                setattr(delivery, name, value)

            await db.commit()
            await db.refresh(delivery)
            return delivery

    async def list(self, webhook_id: str | None = None, limit: int = 50) -> list[WebhookDelivery]:
        """Most recent deliveries first, optionally for one webhook."""
        stmt = select(WebhookDelivery)
        if webhook_id is not None:
            stmt = stmt.where(WebhookDelivery.webhook_id == webhook_id)
        stmt = stmt.order_by(WebhookDelivery.created_at.desc()).limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())
