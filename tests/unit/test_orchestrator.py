"""Cycle orchestration: ordering, interval gating, pause, and stage failure isolation."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from newsdesk.automation.orchestrator import CYCLE_METRIC, Orchestrator
from newsdesk.models.models import ArticleModel
from newsdesk.schemas.schemas import JobName
from tests.conftest import add_source


def stub_context(cycle_id, approval_rules, publishing_rules):
    return SimpleNamespace(cycle_id=cycle_id)


def recording_stages(calls: list[str], overrides: dict | None = None):
    def make(job: JobName):
        async def stage(ctx):
            calls.append(job.value)
            return {"ran": job.value}

        return stage

    stages = {job: make(job) for job in JobName}
    stages.update(overrides or {})
    return stages


@pytest.fixture
def calls() -> list[str]:
    return []


@pytest.fixture
def orchestrator(scheduler, activity, calls) -> Orchestrator:
    return Orchestrator(scheduler, activity, stub_context, stages=recording_stages(calls))


class TestCycle:
    async def test_all_stages_run_in_order_on_first_cycle(self, orchestrator, scheduler, calls):
        summary = await orchestrator.run_cycle()

        assert calls == ["ingest", "signal-process", "synthesize", "publish"]
        assert summary.tasks_executed == list(JobName)
        assert summary.cycle_id.startswith("cycle-")
        assert summary.task_results["ingest"]["status"] == "success"
        assert summary.task_results["ingest"]["ran"] == "ingest"

        for job in JobName:
            (execution,) = await scheduler.get_job_execution_history(job)
            assert execution.status == "success"
            assert execution.cycle_id == summary.cycle_id
            assert await scheduler.get_last_run_time(job) == scheduler.now_ms()

        (metric,) = await scheduler.get_recent_metrics()
        assert metric.name == CYCLE_METRIC
        assert metric.metadata["tasks_executed"] == 4
        assert metric.metadata["cycle_id"] == summary.cycle_id

    async def test_immediate_rerun_runs_nothing(self, orchestrator, calls):
        await orchestrator.run_cycle()
        calls.clear()

        summary = await orchestrator.run_cycle()
        assert calls == []
        assert summary.tasks_executed == []
        assert summary.task_results["publish"] == {"status": "skipped", "reason": "not due"}

    async def test_only_due_stages_run(self, orchestrator, clock, calls):
        await orchestrator.run_cycle()
        calls.clear()

        clock.advance(minutes=5)
        summary = await orchestrator.run_cycle()
        assert calls == ["publish"]
        assert summary.tasks_executed == [JobName.PUBLISH]

        clock.advance(minutes=5)
        await orchestrator.run_cycle()
        assert calls == ["publish", "signal-process", "publish"]

    async def test_interval_restarts_when_stage_finishes(self, scheduler, activity, clock, calls):
        claimed_at = scheduler.now_ms()

        async def slow_ingest(ctx):
            clock.advance(minutes=3)
            return {}

        orchestrator = Orchestrator(
            scheduler, activity, stub_context, stages=recording_stages(calls, {JobName.INGEST: slow_ingest})
        )
        await orchestrator.run_cycle()

        finished_at = await scheduler.get_last_run_time(JobName.INGEST)
        assert finished_at == claimed_at + 3 * 60_000

        # 15 minutes after the claim is only 12 after the finish: not due yet
        clock.advance(minutes=12)
        calls.clear()
        await orchestrator.run_cycle()
        assert "ingest" not in calls

    async def test_paused_cycle_is_a_no_op(self, orchestrator, scheduler, calls):
        await scheduler.set_automation_state("paused")
        summary = await orchestrator.run_cycle()

        assert summary.paused is True
        assert summary.message == "Automation is paused"
        assert summary.tasks_executed == []
        assert calls == []
        assert await scheduler.get_recent_metrics() == []
        assert await scheduler.get_job_execution_history(JobName.INGEST) == []
        # a paused cycle does not consume the interval
        assert await scheduler.get_last_run_time(JobName.INGEST) is None

    async def test_cycles_are_logged(self, orchestrator, activity):
        summary = await orchestrator.run_cycle()
        messages = [e.message for e in await activity.for_cycle(summary.cycle_id)]
        assert messages == ["automation_cycle_completed", "automation_cycle_started"]

    async def test_cycle_ids_are_unique(self, orchestrator):
        assert orchestrator.new_cycle_id() != orchestrator.new_cycle_id()


class TestStageFailures:
    async def test_failing_stage_is_recorded_and_cycle_continues(self, scheduler, activity, calls):
        async def broken(ctx):
            raise RuntimeError("feed parser exploded")

        orchestrator = Orchestrator(
            scheduler, activity, stub_context, stages=recording_stages(calls, {JobName.INGEST: broken})
        )
        summary = await orchestrator.run_cycle()

        assert calls == ["signal-process", "synthesize", "publish"]
        assert summary.success is True
        assert summary.task_results["ingest"]["status"] == "failure"
        assert summary.task_results["ingest"]["error"] == "feed parser exploded"

        (execution,) = await scheduler.get_job_execution_history(JobName.INGEST)
        assert execution.status == "failure"
        assert execution.details == {"error": "feed parser exploded"}
        # a failed run still consumes its interval
        assert await scheduler.should_job_run(JobName.INGEST, 15) is False

        logs, _ = await activity.recent(component="ingest", level="error")
        assert logs[0].message == "stage_failed"
        assert logs[0].metadata["error_type"] == "RuntimeError"

    async def test_slow_stage_times_out(self, scheduler, activity, calls):
        async def stuck(ctx):
            await asyncio.sleep(10)

        orchestrator = Orchestrator(
            scheduler,
            activity,
            stub_context,
            stages=recording_stages(calls, {JobName.SYNTHESIZE: stuck}),
            timeouts={JobName.SYNTHESIZE: 0.01},
        )
        summary = await orchestrator.run_cycle()

        assert summary.task_results["synthesize"]["status"] == "failure"
        assert "timed out" in summary.task_results["synthesize"]["error"]
        assert calls == ["ingest", "signal-process", "publish"]

    async def test_bookkeeping_failure_propagates(self, orchestrator, scheduler, monkeypatch):
        async def unavailable(*args, **kwargs):
            raise ConnectionError("state store unavailable")

        monkeypatch.setattr(scheduler, "record_job_execution", unavailable)
        with pytest.raises(ConnectionError):
            await orchestrator.run_cycle()


class TestEndToEnd:
    async def test_feed_items_become_published_articles(self, runtime, deliverer):
        await add_source(runtime.session_factory)
        summary = await runtime.orchestrator().run_cycle()

        assert summary.tasks_executed == list(JobName)
        assert summary.task_results["ingest"]["new_items"] == 2
        assert summary.task_results["signal-process"]["approved"] == 2
        assert summary.task_results["synthesize"]["drafted"] == 2
        assert summary.task_results["publish"]["published"] == 2
        assert len(deliverer.payloads) == 2

        async with runtime.session_factory() as session:
            published = (
                await session.execute(
                    select(func.count()).select_from(ArticleModel).where(ArticleModel.is_draft.is_(False))
                )
            ).scalar_one()
        assert published == 2
