"""
Webhook Service

Handles outbound webhook delivery with retry logic.

WebhookDeliveryEngine performs signed HTTP POSTs and retries failed
attempts on a fixed backoff schedule, recording every attempt in the
delivery store. WebhookDispatcher is what the rest of the app calls: it
creates the delivery record, starts the retry flow as a background task and
returns straight away.
"""
import asyncio
import enum
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flux.config import Settings
from flux.logging_config import get_logger
from flux.models.base import new_id, utc_now
from flux.models.webhook import DeliveryStatus, Webhook, WebhookDelivery, WebhookEventType
from flux.routes.metrics import track_webhook_retry, track_webhook_sent
from flux.sentry_config import capture_exception
from flux.services.delivery_store import DeliveryRecordStore, DeliveryStateError
from flux.services.webhook_registry import WebhookRegistry


USER_AGENT = "Flux-Webhook/1.0"


@dataclass(frozen=True)
class WebhookDeliveryConfig:
    """Delivery tuning passed explicitly to the engine."""
    timeout: float = 10.0
    max_retries: int = 3
    # Backoff delays in seconds: 1s, 5s, 30s
    retry_delays: tuple[float, ...] = (1.0, 5.0, 30.0)
    response_body_limit: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookDeliveryConfig":
        return cls(
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            max_retries=settings.WEBHOOK_MAX_RETRIES,
            retry_delays=tuple(settings.WEBHOOK_RETRY_DELAYS),
            response_body_limit=settings.WEBHOOK_RESPONSE_BODY_LIMIT,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt after `attempt`, clamped to the last entry."""
        if not self.retry_delays:
            return 0.0
        return self.retry_delays[min(attempt, len(self.retry_delays) - 1)]


class WebhookPayload(BaseModel):
    """Envelope POSTed to webhook endpoints."""
    event: str
    timestamp: str
    webhook_id: str
    data: dict[str, Any] = Field(default_factory=dict)


@dataclass
class DeliveryOutcome:
    """Result of a single delivery attempt."""
    success: bool
    status_code: int | None = None
    body: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status_code": self.status_code,
            "body": self.body,
            "error": self.error,
        }


def iso_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def event_value(event: str | WebhookEventType) -> str:
    return event.value if isinstance(event, enum.Enum) else event


def build_payload(
    event: str | WebhookEventType,
    data: dict,
    webhook_id: str,
    timestamp: str | None = None,
) -> WebhookPayload:
    """Build the delivery envelope."""
    return WebhookPayload(
        event=event_value(event),
        timestamp=timestamp or iso_timestamp(),
        webhook_id=webhook_id,
        data=data,
    )


def serialize_payload(payload: WebhookPayload) -> str:
    """
    Serialize the envelope to compact JSON.

    The returned string is exactly what gets signed and sent.
    """
    return json.dumps(payload.model_dump(mode="json"), separators=(",", ":"))


def generate_signature(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for webhook payload."""
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def build_headers(webhook: Webhook, payload: WebhookPayload, body: str) -> dict[str, str]:
    """Headers sent on every delivery attempt."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-Flux-Event": payload.event,
        "X-Flux-Delivery": payload.webhook_id,
        "X-Flux-Timestamp": payload.timestamp,
    }
    if webhook.secret:
        headers["X-Flux-Signature"] = f"sha256={generate_signature(body, webhook.secret)}"
    return headers


class WebhookDeliveryEngine:
    """Sends webhook payloads and retries failed deliveries."""

    def __init__(
        self,
        store: DeliveryRecordStore,
        config: WebhookDeliveryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.config = config or WebhookDeliveryConfig()
        self.transport = transport

    async def deliver(self, webhook: Webhook, payload: WebhookPayload) -> DeliveryOutcome:
        """
        Make one delivery attempt.

        Never raises: timeouts, connection errors and non-2xx responses are
        all reported through the returned DeliveryOutcome.
        """
        body = serialize_payload(payload)
        headers = build_headers(webhook, payload, body)
        timeout = self.config.timeout

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                response = await asyncio.wait_for(
                    client.post(webhook.url, content=body.encode(), headers=headers),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return DeliveryOutcome(success=False, error=f"Request timed out after {timeout:g}s")
        except Exception as e:
            return DeliveryOutcome(success=False, error=str(e) or e.__class__.__name__)

        limit = self.config.response_body_limit
        return DeliveryOutcome(
            success=response.is_success,
            status_code=response.status_code,
            body=response.content[:limit].decode(response.encoding or "utf-8", errors="ignore"),
        )

    async def deliver_with_retry(
        self,
        webhook: Webhook,
        payload: WebhookPayload,
        delivery_id: str,
        attempt: int = 0,
    ) -> DeliveryStatus:
        """
        Deliver until success or until retries are exhausted.

        Every attempt is written to the delivery record before the next one
        starts. Returns the terminal status. Store errors propagate to the
        caller.
        """
        log = get_logger(webhook_id=webhook.id, delivery_id=delivery_id, event=payload.event)

        while True:
            outcome = await self.deliver(webhook, payload)
            log.info(
                "webhook_delivery_attempt",
                attempt=attempt + 1,
                success=outcome.success,
                status_code=outcome.status_code,
                error=outcome.error,
            )

            await self.store.update(
                delivery_id,
                attempts=attempt + 1,
                response_code=outcome.status_code,
                response_body=outcome.body,
                error=outcome.error,
            )

            if outcome.success:
                await self.store.update(
                    delivery_id,
                    status=DeliveryStatus.SUCCESS,
                    delivered_at=utc_now(),
                )
                track_webhook_sent(DeliveryStatus.SUCCESS.value)
                log.info("webhook_delivered", attempts=attempt + 1, url=webhook.url)
                return DeliveryStatus.SUCCESS

            if attempt < self.config.max_retries - 1:
                delay = self.config.backoff_delay(attempt)
                track_webhook_retry()
                log.info("webhook_retry_scheduled", next_attempt=attempt + 2, delay_seconds=delay)
                await asyncio.sleep(delay)
                attempt += 1
                continue

            await self.store.update(delivery_id, status=DeliveryStatus.FAILED)
            track_webhook_sent(DeliveryStatus.FAILED.value)
            log.warning("webhook_failed", attempts=attempt + 1, url=webhook.url, error=outcome.error)
            return DeliveryStatus.FAILED


class WebhookDispatcher:
    """
    Entry point for domain events.

    Delivery flows run as asyncio tasks; callers only ever wait for the
    delivery record to be created.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: WebhookDeliveryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        engine: WebhookDeliveryEngine | None = None,
    ):
        self.session_factory = session_factory
        self.store = DeliveryRecordStore(session_factory)
        self.engine = engine or WebhookDeliveryEngine(self.store, config, transport)
        self._in_flight: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        """Number of delivery flows still running."""
        return len(self._in_flight)

    async def handle_webhook_event(
        self,
        event: str | WebhookEventType,
        payload: WebhookPayload,
        webhook: Webhook,
        delivery_id: str | None = None,
    ) -> WebhookDelivery:
        """
        Record a delivery and start delivering it in the background.

        Returns the PENDING delivery record as soon as it exists.
        """
        delivery = await self.store.create(
            webhook.id,
            event_value(event),
            serialize_payload(payload),
            delivery_id=delivery_id,
        )

        task = asyncio.create_task(
            self._run_delivery(webhook, payload, delivery.id),
            name=f"webhook-delivery-{delivery.id}",
        )
        self._in_flight[delivery.id] = task
        task.add_done_callback(lambda _: self._in_flight.pop(delivery.id, None))
        return delivery

    async def _run_delivery(self, webhook: Webhook, payload: WebhookPayload, delivery_id: str):
        try:
            await self.engine.deliver_with_retry(webhook, payload, delivery_id)
        except Exception as exc:
            log = get_logger(webhook_id=webhook.id, delivery_id=delivery_id)
            # Record state first; logging and Sentry come after
            try:
                await self.store.update(
                    delivery_id,
                    status=DeliveryStatus.FAILED,
                    error=str(exc) or exc.__class__.__name__,
                )
            except DeliveryStateError as state_exc:
                log.warning("webhook_delivery_already_terminal", error=str(state_exc))
            except Exception as store_exc:
                log.error("webhook_delivery_mark_failed_error", error=str(store_exc), exc_info=True)
                capture_exception(store_exc)
            else:
                track_webhook_sent(DeliveryStatus.FAILED.value)
            log.error("webhook_delivery_crashed", error=str(exc), exc_info=exc)
            capture_exception(exc)

    async def dispatch_event(
        self,
        event: str | WebhookEventType,
        data: dict,
        project_id: str | None = None,
    ) -> list[WebhookDelivery]:
        """
        Fan an event out to every interested webhook.

        Each envelope carries its own delivery id in `webhook_id`.
        """
        event = event_value(event)
        async with self.session_factory() as db:
            webhooks = await WebhookRegistry(db).list_subscribed(event, project_id)

        deliveries = []
        for webhook in webhooks:
            delivery_id = new_id()
            payload = build_payload(event, data, webhook_id=delivery_id)
            deliveries.append(
                await self.handle_webhook_event(event, payload, webhook, delivery_id=delivery_id)
            )
        return deliveries

    async def test_webhook_delivery(self, webhook: Webhook) -> DeliveryOutcome:
        """Send a canned task.created event once. Nothing is recorded."""
        now = iso_timestamp()
        payload = build_payload(
            WebhookEventType.TASK_CREATED,
            {
                "task": {
                    "id": "test-task-id",
                    "title": "Test Task",
                    "status": "todo",
                    "depends_on": [],
                    "comments": [{
                        "id": "test",
                        "body": "This is a test webhook delivery",
                        "author": "user",
                        "created_at": now,
                    }],
                    "project_id": "test-project-id",
                },
            },
            webhook_id=webhook.id,
            timestamp=now,
        )
        return await self.engine.deliver(webhook, payload)

    async def get_recent_deliveries(
        self,
        webhook_id: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        """Delivery history, newest first."""
        return await self.store.list(webhook_id, limit)

    async def drain(self):
        """Wait until every in-flight delivery flow has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def aclose(self, timeout: float = 5.0):
        """
        Give in-flight deliveries `timeout` seconds, then cancel the rest.

        Cancelled deliveries keep their PENDING record.
        """
        tasks = list(self._in_flight.values())
        if not tasks:
            return
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            get_logger().warning("webhook_deliveries_cancelled", count=len(still_running))
