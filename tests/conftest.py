"""
Shared pytest fixtures for unit and integration tests.

Uses FakeListChatModel for deterministic LLM mocking, in-memory SQLite and the
in-memory state store, so no API keys, database server or Redis needed.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from newsdesk.automation.activity import AutomationLog
from newsdesk.automation.runtime import build_runtime
from newsdesk.automation.scheduler import Scheduler
from newsdesk.automation.store import InMemoryStateStore
from newsdesk.core.config import Settings
from newsdesk.models.database import build_engine, build_session_factory, init_models
from newsdesk.models.models import SourceModel
from newsdesk.pipeline.llm import ContentModel
from newsdesk.services.fetcher import FetchedItem, FetchError

ANALYSIS_JSON = json.dumps(
    {
        "signal_type": "breaking",
        "confidence_score": 90,
        "significance_score": 70,
        "notes": "Confirmed by two wire services.",
    }
)

DRAFT_JSON = (
    "```json\n"
    + json.dumps(
        {
            "headline": "Parliament Passes Budget Bill",
            "summary": "The budget passed its final reading.",
            "content": "The bill passed 180-140 after a late amendment.",
        }
    )
    + "\n```"
)


class FakeClock:
    """Controllable clock; every component that takes `clock=` reads from it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeFetcher:
    def __init__(self, items: dict[str, list[FetchedItem]] | None = None, failing: set[str] | None = None) -> None:
        self.items = items or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, datetime | None]] = []

    async def fetch(self, url: str, since: datetime | None) -> list[FetchedItem]:
        self.calls.append((url, since))
        if url in self.failing:
            raise FetchError(f"HTTPStatusError: 503 for {url}")
        return [
            item
            for item in self.items.get(url, [])
            if since is None or item.published_at is None or item.published_at > since
        ]


class FakeDeliverer:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.payloads: list[dict] = []

    async def deliver(self, payload: dict) -> bool:
        self.payloads.append(payload)
        return self.ok


def fake_model(*responses: str, name: str = "gemini-2.5-flash") -> ContentModel:
    return ContentModel(FakeListChatModel(responses=list(responses)), name)


async def add_source(session_factory, **overrides) -> SourceModel:
    values = {"name": "Wire", "url": "https://wire.example.com/feed.xml", "reliability_score": 80}
    values.update(overrides)
    async with session_factory() as session:
        source = SourceModel(**values)
        session.add(source)
        await session.commit()
        return source


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        state_backend="memory",
        api_key="test-api-key",
        automation_cron_secret="test-cron-secret",
        publish_webhook_url="https://hooks.example.com/publish",
        google_api_key="test-google-key",
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
async def session_factory(settings):
    engine = build_engine(settings)
    await init_models(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def scheduler(store, clock) -> Scheduler:
    return Scheduler(store, clock=clock)


@pytest.fixture
def activity(store, clock) -> AutomationLog:
    return AutomationLog(store, clock=clock)


@pytest.fixture
def sample_items(clock) -> list[FetchedItem]:
    return [
        FetchedItem(
            url="https://wire.example.com/budget-bill",
            title="Budget bill clears final reading",
            body="The chamber voted 180-140 to pass the budget bill.",
            published_at=clock.now - timedelta(hours=2),
        ),
        FetchedItem(
            url="https://wire.example.com/minister-resigns",
            title="Transport minister resigns",
            body="The minister stepped down citing personal reasons.",
            published_at=clock.now - timedelta(hours=1),
        ),
    ]


@pytest.fixture
def fetcher(sample_items) -> FakeFetcher:
    return FakeFetcher({"https://wire.example.com/feed.xml": sample_items})


@pytest.fixture
def deliverer() -> FakeDeliverer:
    return FakeDeliverer()


@pytest.fixture
async def runtime(settings, store, clock, fetcher, deliverer):
    rt = await build_runtime(
        settings,
        store=store,
        fetcher=fetcher,
        analyst=fake_model(ANALYSIS_JSON),
        writer=fake_model(DRAFT_JSON, name="gemini-2.5-pro"),
        deliverer=deliverer,
        clock=clock,
    )
    yield rt
    await rt.close()
