"""
Cycle orchestrator: one call runs every due stage, in order, exactly once.

There is no internal timer: an external cron hits the trigger endpoint (or runs
cron/trigger.py) and each call is one cycle. Stages run sequentially; a stage
is "due" when `Scheduler.try_claim()` wins its interval, so two overlapping
triggers never run the same stage twice.

A stage failure (exception or timeout) is recorded and the cycle moves on.
Only a failure in the orchestrator's own bookkeeping propagates to the caller.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog

from newsdesk.automation.activity import AutomationLog
from newsdesk.automation.scheduler import Scheduler
from newsdesk.automation.triage import ApprovalRules, PublishingRules
from newsdesk.core.logging import get_logger
from newsdesk.pipeline.context import Stage, StageContext
from newsdesk.pipeline.ingest import run_ingest
from newsdesk.pipeline.publishing import run_publishing
from newsdesk.pipeline.signal_processing import run_signal_processing
from newsdesk.pipeline.synthesis import run_synthesis
from newsdesk.schemas.schemas import CycleSummary, JobName

logger = get_logger(__name__)

DEFAULT_STAGES: dict[JobName, Stage] = {
    JobName.INGEST: run_ingest,
    JobName.SIGNAL_PROCESS: run_signal_processing,
    JobName.SYNTHESIZE: run_synthesis,
    JobName.PUBLISH: run_publishing,
}

CYCLE_METRIC = "automation-cycle"

ContextFactory = Callable[[str, ApprovalRules, PublishingRules], StageContext]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class Orchestrator:
    def __init__(
        self,
        scheduler: Scheduler,
        activity: AutomationLog,
        context_factory: ContextFactory,
        *,
        stages: dict[JobName, Stage] | None = None,
        timeouts: dict[JobName, float] | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.activity = activity
        self.context_factory = context_factory
        self.stages = stages or DEFAULT_STAGES
        self.timeouts = timeouts or {}

    def new_cycle_id(self) -> str:
        return f"cycle-{self.scheduler.now_ms()}-{uuid.uuid4().hex[:8]}"

    async def run_cycle(self) -> CycleSummary:
        cycle_id = self.new_cycle_id()
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(cycle_id=cycle_id):
            if await self.scheduler.get_automation_state() == "paused":
                await self.activity.info("orchestrator", "automation_paused", cycle_id=cycle_id)
                return CycleSummary(
                    cycle_id=cycle_id,
                    duration=_elapsed_ms(started),
                    paused=True,
                    message="Automation is paused",
                )

            config = await self.scheduler.get_scheduler_config()
            ctx = self.context_factory(
                cycle_id,
                await self.scheduler.get_approval_rules(),
                await self.scheduler.get_publishing_rules(),
            )
            await self.activity.info("orchestrator", "automation_cycle_started", cycle_id=cycle_id)

            tasks_executed: list[JobName] = []
            task_results: dict[str, Any] = {}
            for job in JobName:
                stage = self.stages.get(job)
                if stage is None:
                    continue
                if not await self.scheduler.try_claim(job, config.interval_for(job)):
                    task_results[job.value] = {"status": "skipped", "reason": "not due"}
                    continue

                status, details, duration_ms = await self._run_stage(job, stage, ctx)
                # restart the interval from when the stage finished, not when it was claimed
                await self.scheduler.set_last_run_time(job, self.scheduler.now_ms())
                await self.scheduler.record_job_execution(
                    job, status, duration_ms, details, cycle_id=cycle_id
                )
                tasks_executed.append(job)
                task_results[job.value] = {"status": status, "duration_ms": duration_ms, **details}

            duration = _elapsed_ms(started)
            await self.scheduler.record_metric(
                CYCLE_METRIC,
                duration,
                {
                    "tasks_executed": len(tasks_executed),
                    "tasks": [job.value for job in tasks_executed],
                    "cycle_id": cycle_id,
                },
            )
            await self.activity.info(
                "orchestrator",
                "automation_cycle_completed",
                cycle_id=cycle_id,
                tasks_executed=len(tasks_executed),
                duration_ms=duration,
            )
            return CycleSummary(
                cycle_id=cycle_id,
                duration=duration,
                tasks_executed=tasks_executed,
                task_results=task_results,
            )

    async def _run_stage(
        self, job: JobName, stage: Stage, ctx: StageContext
    ) -> tuple[str, dict[str, Any], int]:
        started = time.perf_counter()
        timeout = self.timeouts.get(job)
        try:
            details = await asyncio.wait_for(stage(ctx), timeout=timeout)
        except TimeoutError:
            error = f"Stage timed out after {timeout}s"
            await self.activity.error(job.value, "stage_failed", cycle_id=ctx.cycle_id, error=error)
            return "failure", {"error": error}, _elapsed_ms(started)
        except Exception as e:
            await self.activity.error(
                job.value, "stage_failed", cycle_id=ctx.cycle_id, error=str(e), error_type=type(e).__name__
            )
            return "failure", {"error": str(e)}, _elapsed_ms(started)

        return "success", dict(details or {}), _elapsed_ms(started)
