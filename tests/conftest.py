"""Shared fixtures: temporary SQLite database, webhook endpoints, API client."""
from collections.abc import AsyncGenerator
from pathlib import Path

import httpx
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from flux.config import Settings
from flux.database import create_all_tables, create_engine, create_session_factory
from flux.services.webhook_service import WebhookDeliveryConfig, WebhookDispatcher


# No backoff in tests; the schedule itself is covered by config tests
FAST_CONFIG = WebhookDeliveryConfig(timeout=1.0, max_retries=3, retry_delays=(0, 0, 0))


class RecordingEndpoint:
    """
    httpx MockTransport handler that records requests.

    `statuses` is consumed one per request; the last status repeats.
    """

    def __init__(self, statuses=(200,), body: str = "ok"):
        self.statuses = list(statuses)
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.statuses) - 1)
        return httpx.Response(self.statuses[index], text=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Session factory over a fresh SQLite file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'flux.db'}")
    await create_all_tables(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()


@pytest_asyncio.fixture
async def dispatcher(session_factory, endpoint) -> AsyncGenerator[WebhookDispatcher, None]:
    dispatcher = WebhookDispatcher(session_factory, config=FAST_CONFIG, transport=endpoint.transport)
    yield dispatcher
    await dispatcher.drain()


@pytest_asyncio.fixture
async def settings() -> Settings:
    return Settings(_env_file=None, FLUX_API_KEY=None, SENTRY_DSN=None)


@pytest_asyncio.fixture
async def app(settings, session_factory, dispatcher):
    """App with state wired by hand (ASGITransport does not run the lifespan)."""
    from flux.main import create_app

    application = create_app(settings=settings, session_factory=session_factory)
    application.state.session_factory = session_factory
    application.state.dispatcher = dispatcher
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
