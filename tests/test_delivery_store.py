"""Delivery record store tests."""
import json

import pytest

from flux.models.webhook import DeliveryStatus
from flux.services.delivery_store import (
    DeliveryNotFoundError,
    DeliveryRecordStore,
    DeliveryStateError,
)


@pytest.fixture
def store(session_factory) -> DeliveryRecordStore:
    return DeliveryRecordStore(session_factory)


@pytest.mark.asyncio
async def test_create_starts_pending(store):
    delivery = await store.create("wh-1", "task.created", {"event": "task.created", "data": {}})

    assert delivery.status == DeliveryStatus.PENDING.value
    assert delivery.attempts == 0
    assert delivery.delivered_at is None
    assert json.loads(delivery.payload) == {"event": "task.created", "data": {}}


@pytest.mark.asyncio
async def test_create_with_given_id_keeps_payload_text(store):
    delivery = await store.create("wh-1", "task.created", '{"a":1}', delivery_id="d-1")

    assert delivery.id == "d-1"
    assert delivery.payload == '{"a":1}'


@pytest.mark.asyncio
async def test_update_applies_partial_fields(store):
    delivery = await store.create("wh-1", "task.created", {})

    updated = await store.update(delivery.id, attempts=1, response_code=500, error="boom")

    assert updated.attempts == 1
    assert updated.response_code == 500
    assert updated.error == "boom"
    assert updated.status == DeliveryStatus.PENDING.value


@pytest.mark.asyncio
async def test_update_unknown_id_raises(store):
    with pytest.raises(DeliveryNotFoundError):
        await store.update("missing", attempts=1)


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(store):
    delivery = await store.create("wh-1", "task.created", {})
    with pytest.raises(ValueError):
        await store.update(delivery.id, webhook_id="other")


@pytest.mark.asyncio
async def test_terminal_status_is_final(store):
    delivery = await store.create("wh-1", "task.created", {})
    await store.update(delivery.id, status=DeliveryStatus.SUCCESS)

    with pytest.raises(DeliveryStateError):
        await store.update(delivery.id, status=DeliveryStatus.FAILED)
    with pytest.raises(DeliveryStateError):
        await store.update(delivery.id, status=DeliveryStatus.PENDING)

    assert (await store.get(delivery.id)).status == DeliveryStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_attempts_cannot_decrease(store):
    delivery = await store.create("wh-1", "task.created", {})
    await store.update(delivery.id, attempts=2)

    with pytest.raises(DeliveryStateError):
        await store.update(delivery.id, attempts=1)


@pytest.mark.asyncio
async def test_list_newest_first_filtered_and_limited(store):
    first = await store.create("wh-1", "task.created", {})
    await store.create("wh-2", "task.created", {})
    third = await store.create("wh-1", "task.updated", {})

    all_for_wh1 = await store.list("wh-1")
    assert [d.id for d in all_for_wh1] == [third.id, first.id]

    assert len(await store.list()) == 3
    assert [d.id for d in await store.list(limit=1)] == [third.id]
