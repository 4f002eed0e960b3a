"""Unit tests for the operator activity log."""

from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError

from newsdesk.automation.activity import LOGS_KEY, AutomationLog
from newsdesk.automation.store import InMemoryStateStore


class UnwritableStore(InMemoryStateStore):
    async def list_push(self, key: str, value: str) -> None:
        raise RedisConnectionError("connection reset")


class TestAutomationLog:
    async def test_entries_are_newest_first(self, activity):
        await activity.info("ingest", "first")
        await activity.info("ingest", "second")
        logs, total = await activity.recent()
        assert [e.message for e in logs] == ["second", "first"]
        assert total == 2

    async def test_metadata_and_cycle_are_kept(self, activity):
        await activity.warn("publish", "webhook_delivery_failed", cycle_id="cycle-1", article_id="a-1")
        (entry,), _ = await activity.recent()
        assert entry.level == "warn"
        assert entry.cycle_id == "cycle-1"
        assert entry.metadata == {"article_id": "a-1"}

    async def test_filters_apply_before_limit(self, activity):
        await activity.error("ingest", "source_fetch_failed")
        for i in range(5):
            await activity.info("publish", f"published-{i}")
        await activity.error("ingest", "source_auto_disabled")

        logs, total = await activity.recent(limit=1, component="ingest")
        assert [e.message for e in logs] == ["source_auto_disabled"]
        assert total == 2

        logs, total = await activity.recent(limit=10, level="info")
        assert total == 5

    async def test_for_cycle(self, activity):
        await activity.info("orchestrator", "automation_cycle_started", cycle_id="cycle-a")
        await activity.info("orchestrator", "automation_cycle_started", cycle_id="cycle-b")
        await activity.info("ingest", "ingest_completed", cycle_id="cycle-a")
        logs = await activity.for_cycle("cycle-a")
        assert [e.message for e in logs] == ["ingest_completed", "automation_cycle_started"]

    async def test_ring_is_capped(self, store, clock):
        log = AutomationLog(store, size=3, clock=clock)
        for i in range(5):
            await log.info("ingest", f"m{i}")
        assert len(await store.list_range(LOGS_KEY, 0, -1)) == 3

    async def test_store_failure_does_not_raise(self, clock):
        log = AutomationLog(UnwritableStore(), clock=clock)
        await log.error("ingest", "source_fetch_failed")


class TestHealth:
    async def test_healthy_when_quiet(self, activity):
        await activity.info("orchestrator", "automation_cycle_completed")
        health = await activity.health()
        assert health["status"] == "healthy"
        assert health["last_cycle_run"] is not None

    async def test_degraded_on_any_warning(self, activity):
        await activity.warn("publish", "webhook_delivery_failed")
        assert (await activity.health())["status"] == "degraded"

    async def test_five_errors_is_still_degraded(self, activity):
        for _ in range(5):
            await activity.error("ingest", "source_fetch_failed")
        assert (await activity.health())["status"] == "degraded"

    async def test_unhealthy_above_five_errors(self, activity):
        for _ in range(6):
            await activity.error("ingest", "source_fetch_failed")
        health = await activity.health()
        assert health["status"] == "unhealthy"
        assert health["recent_errors"] == 6

    async def test_only_last_hundred_entries_count(self, activity):
        for _ in range(6):
            await activity.error("ingest", "source_fetch_failed")
        for _ in range(100):
            await activity.info("ingest", "ingest_completed")
        assert (await activity.health())["status"] == "healthy"
