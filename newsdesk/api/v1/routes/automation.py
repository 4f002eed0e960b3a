"""
Automation control-plane endpoints.

POST /api/v1/automation/cron            run one cycle (external cron, bearer secret)
GET  /api/v1/automation/cron            liveness for the cron caller
GET  /api/v1/automation/status          state, config, rules, recent executions
POST /api/v1/automation/status          pause/resume, partial config/rules update
GET  /api/v1/automation/logs            activity log, newest first
GET  /api/v1/automation/logs/{cycle_id} activity log of one cycle
GET  /api/v1/automation/health          activity-log health + breaker state
GET  /api/v1/automation/spending        daily/monthly AI spend
GET  /api/v1/automation/metrics         recent cycle metrics
"""

# No `from __future__ import annotations` here: slowapi's decorator wraps the
# endpoint, and FastAPI must see the real Annotated dependencies on it.
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from newsdesk.api.v1.deps import AuthenticatedUser, CronCaller, Runtime
from newsdesk.automation.runtime import AutomationRuntime
from newsdesk.core.config import get_settings
from newsdesk.core.logging import get_logger
from newsdesk.core.security import limiter
from newsdesk.schemas.schemas import (
    AutomationHealthResponse,
    CronHealthResponse,
    CycleLogsResponse,
    CycleSummary,
    JobName,
    LogsResponse,
    MetricsResponse,
    RulesPayload,
    SpendingResponse,
    StatusResponse,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/automation", tags=["automation"])
logger = get_logger(__name__)


def _cron_rate_limit() -> str:
    return get_settings().cron_rate_limit


# ── Cron trigger ────────────────────────────────────────────
@router.post("/cron", response_model=CycleSummary)
@limiter.limit(_cron_rate_limit)
async def trigger_cycle(request: Request, runtime: Runtime, _caller: CronCaller):
    """Run one automation cycle. Stage failures are reported in taskResults, not as errors."""
    try:
        summary = await runtime.orchestrator().run_cycle()
    except Exception as e:
        logger.error("automation_cycle_failed", error=str(e), error_type=type(e).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)},
        )

    logger.info(
        "cron_cycle_completed",
        cycle_id=summary.cycle_id,
        tasks_executed=[job.value for job in summary.tasks_executed],
        paused=summary.paused,
    )
    return summary


@router.get("/cron", response_model=CronHealthResponse)
async def cron_health(runtime: Runtime) -> CronHealthResponse:
    return CronHealthResponse(
        automation_state=await runtime.scheduler.get_automation_state(),
        timestamp=runtime.scheduler.now_ms(),
    )


# ── Status ──────────────────────────────────────────────────
async def _status(runtime: AutomationRuntime, message: str | None = None) -> StatusResponse:
    scheduler = runtime.scheduler
    return StatusResponse(
        state=await scheduler.get_automation_state(),
        config=await scheduler.get_scheduler_config(),
        rules=RulesPayload(
            approval=await scheduler.get_approval_rules(),
            publishing=await scheduler.get_publishing_rules(),
        ),
        executions={
            job.value: await scheduler.get_job_execution_history(job, limit=10) for job in JobName
        },
        store_backend=runtime.store.backend,
        circuit=runtime.governor.breaker.snapshot(),
        message=message,
        timestamp=scheduler.now_ms(),
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(runtime: Runtime, _api_key: AuthenticatedUser) -> StatusResponse:
    return await _status(runtime)


@router.post("/status", response_model=StatusResponse)
async def update_status(
    body: StatusUpdateRequest,
    runtime: Runtime,
    _api_key: AuthenticatedUser,
) -> StatusResponse:
    """Apply whichever of state / config / approvalRules / publishingRules is present."""
    scheduler = runtime.scheduler
    changes: list[str] = []

    if body.action == "setState" or body.state is not None:
        if body.state is None:
            raise HTTPException(status_code=400, detail="setState requires a state")
        await scheduler.set_automation_state(body.state)
        await runtime.activity.info("api", "automation_state_changed", state=body.state)
        changes.append(f"state={body.state}")

    if body.config is not None:
        await scheduler.update_scheduler_config(body.config)
        changes.append("config")

    try:
        if body.approval_rules is not None:
            await scheduler.update_approval_rules(body.approval_rules)
            changes.append("approvalRules")
        if body.publishing_rules is not None:
            await scheduler.update_publishing_rules(body.publishing_rules)
            changes.append("publishingRules")
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")

    logger.info("automation_status_updated", changes=changes)
    return await _status(runtime, message=f"Updated {', '.join(changes)}")


# ── Activity log ────────────────────────────────────────────
@router.get("/logs", response_model=LogsResponse)
async def get_logs(
    runtime: Runtime,
    _api_key: AuthenticatedUser,
    limit: int = Query(50, ge=1, le=1000),
    component: str | None = Query(None),
    level: Literal["info", "warn", "error"] | None = Query(None),
) -> LogsResponse:
    logs, total = await runtime.activity.recent(limit=limit, component=component, level=level)
    return LogsResponse(logs=logs, total=total, timestamp=runtime.scheduler.now_ms())


@router.get("/logs/{cycle_id}", response_model=CycleLogsResponse)
async def get_cycle_logs(cycle_id: str, runtime: Runtime, _api_key: AuthenticatedUser) -> CycleLogsResponse:
    logs = await runtime.activity.for_cycle(cycle_id)
    if not logs:
        raise HTTPException(status_code=404, detail=f"No log entries for cycle {cycle_id}")
    return CycleLogsResponse(cycle_id=cycle_id, logs=logs)


# ── Health / spend / metrics ────────────────────────────────
@router.get("/health", response_model=AutomationHealthResponse)
async def automation_health(runtime: Runtime) -> AutomationHealthResponse:
    health = await runtime.activity.health()
    if runtime.governor.is_circuit_open() and health["status"] == "healthy":
        health["status"] = "degraded"
    return AutomationHealthResponse(
        **health,
        circuit=runtime.governor.breaker.snapshot(),
        store_backend=runtime.store.backend,
        timestamp=runtime.clock(),
    )


@router.get("/spending", response_model=SpendingResponse)
async def spending(runtime: Runtime, _api_key: AuthenticatedUser) -> SpendingResponse:
    governor = runtime.governor
    windows = await governor.spending_status()
    return SpendingResponse(
        **windows,
        per_item_limit=governor.limits.per_item_usd,
        fail_open=governor.fail_open,
        circuit=governor.breaker.snapshot(),
    )


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(
    runtime: Runtime,
    _api_key: AuthenticatedUser,
    limit: int = Query(100, ge=1, le=1000),
) -> MetricsResponse:
    return MetricsResponse(
        metrics=await runtime.scheduler.get_recent_metrics(limit),
        timestamp=runtime.scheduler.now_ms(),
    )
