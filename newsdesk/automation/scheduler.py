"""
Scheduler bookkeeping on top of the state store.

Key layout (all opaque to the store):
  automation:state                 running | paused
  automation:config                SchedulerConfig JSON
  automation:lastrun:<job>         epoch ms of the last run
  automation:executions:<job>      JobExecution JSON list, newest first, capped
  automation:metrics               Metric JSON list, newest first, capped
  automation:rules:approval        ApprovalRules JSON
  automation:rules:publishing      PublishingRules JSON
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from newsdesk.automation.governor import Clock
from newsdesk.automation.store import StateStore
from newsdesk.automation.triage import ApprovalRules, PublishingRules
from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models.models import utc_now
from newsdesk.schemas.schemas import (
    AutomationState,
    JobExecution,
    JobName,
    Metric,
    SchedulerConfig,
    SchedulerConfigUpdate,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

STATE_KEY = "automation:state"
CONFIG_KEY = "automation:config"
METRICS_KEY = "automation:metrics"
APPROVAL_RULES_KEY = "automation:rules:approval"
PUBLISHING_RULES_KEY = "automation:rules:publishing"


def last_run_key(job: JobName) -> str:
    return f"automation:lastrun:{JobName(job).value}"


def executions_key(job: JobName) -> str:
    return f"automation:executions:{JobName(job).value}"


class Scheduler:
    def __init__(
        self,
        store: StateStore,
        *,
        default_config: SchedulerConfig | None = None,
        history_size: int = 100,
        metrics_size: int = 1000,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.default_config = default_config or SchedulerConfig()
        self.history_size = history_size
        self.metrics_size = metrics_size
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, store: StateStore, *, clock: Clock = utc_now) -> Scheduler:
        return cls(
            store,
            default_config=SchedulerConfig(
                ingest_interval_minutes=settings.ingest_interval_minutes,
                signal_process_interval_minutes=settings.signal_process_interval_minutes,
                synthesize_interval_minutes=settings.synthesize_interval_minutes,
                publish_interval_minutes=settings.publish_interval_minutes,
            ),
            history_size=settings.execution_history_size,
            metrics_size=settings.metrics_buffer_size,
            clock=clock,
        )

    def now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    # ── Interval gate ───────────────────────────────────────
    async def get_last_run_time(self, job: JobName) -> int | None:
        raw = await self.store.get(last_run_key(job))
        return int(raw) if raw else None

    async def set_last_run_time(self, job: JobName, timestamp_ms: int) -> None:
        await self.store.set(last_run_key(job), str(timestamp_ms))

    async def should_job_run(self, job: JobName, interval_minutes: int) -> bool:
        last_run = await self.get_last_run_time(job)
        if last_run is None:
            return True  # first run
        return self.now_ms() - last_run >= interval_minutes * 60_000

    async def try_claim(self, job: JobName, interval_minutes: int) -> bool:
        """Atomic should_job_run + set_last_run_time; at most one caller wins per interval."""
        return await self.store.claim_interval(
            last_run_key(job), self.now_ms(), interval_minutes * 60_000
        )

    # ── Execution history ───────────────────────────────────
    async def record_job_execution(
        self,
        job: JobName,
        status: str,
        duration_ms: int,
        details: dict[str, Any] | None = None,
        *,
        cycle_id: str | None = None,
    ) -> JobExecution:
        execution = JobExecution(
            job_name=job,
            status=status,
            duration_ms=duration_ms,
            timestamp_ms=self.now_ms(),
            cycle_id=cycle_id,
            details=details or {},
        )
        key = executions_key(job)
        await self.store.list_push(key, execution.model_dump_json())
        await self.store.list_trim(key, 0, self.history_size - 1)
        return execution

    async def get_job_execution_history(self, job: JobName, limit: int = 20) -> list[JobExecution]:
        raw = await self.store.list_range(executions_key(job), 0, limit - 1)
        return _parse_all(JobExecution, raw)

    # ── Metrics ─────────────────────────────────────────────
    async def record_metric(self, name: str, value: float, metadata: dict[str, Any] | None = None) -> Metric:
        metric = Metric(name=name, value=value, timestamp_ms=self.now_ms(), metadata=metadata or {})
        await self.store.list_push(METRICS_KEY, metric.model_dump_json())
        await self.store.list_trim(METRICS_KEY, 0, self.metrics_size - 1)
        return metric

    async def get_recent_metrics(self, limit: int = 100) -> list[Metric]:
        raw = await self.store.list_range(METRICS_KEY, 0, limit - 1)
        return _parse_all(Metric, raw)

    # ── Automation state ────────────────────────────────────
    async def get_automation_state(self) -> AutomationState:
        state = await self.store.get(STATE_KEY)
        return "paused" if state == "paused" else "running"

    async def set_automation_state(self, state: AutomationState) -> None:
        if state not in ("running", "paused"):
            raise ValueError(f"Invalid automation state {state!r}")
        await self.store.set(STATE_KEY, state)
        logger.info("automation_state_changed", state=state)

    # ── Config ──────────────────────────────────────────────
    async def get_scheduler_config(self) -> SchedulerConfig:
        raw = await self.store.get(CONFIG_KEY)
        if raw:
            try:
                return SchedulerConfig.model_validate_json(raw)
            except ValidationError as e:
                logger.error("scheduler_config_corrupt", error=str(e))
        else:
            logger.info("scheduler_config_initialised")
        await self.store.set(CONFIG_KEY, self.default_config.model_dump_json())
        return self.default_config

    async def update_scheduler_config(self, update: SchedulerConfigUpdate | dict[str, Any]) -> SchedulerConfig:
        if isinstance(update, dict):
            update = SchedulerConfigUpdate.model_validate(update)
        current = await self.get_scheduler_config()
        merged = current.model_copy(update=update.model_dump(exclude_none=True))
        merged = SchedulerConfig.model_validate(merged.model_dump())
        await self.store.set(CONFIG_KEY, merged.model_dump_json())
        logger.info("scheduler_config_updated", **merged.model_dump())
        return merged

    # ── Triage / publishing rules ───────────────────────────
    async def get_approval_rules(self) -> ApprovalRules:
        return await self._get_model(APPROVAL_RULES_KEY, ApprovalRules)

    async def update_approval_rules(self, update: dict[str, Any]) -> ApprovalRules:
        return await self._merge_model(APPROVAL_RULES_KEY, ApprovalRules, update)

    async def get_publishing_rules(self) -> PublishingRules:
        return await self._get_model(PUBLISHING_RULES_KEY, PublishingRules)

    async def update_publishing_rules(self, update: dict[str, Any]) -> PublishingRules:
        return await self._merge_model(PUBLISHING_RULES_KEY, PublishingRules, update)

    async def _get_model(self, key: str, model: type[M]) -> M:
        raw = await self.store.get(key)
        if raw:
            try:
                return model.model_validate_json(raw)
            except ValidationError as e:
                logger.error("rules_corrupt", key=key, error=str(e))
        return model()

    async def _merge_model(self, key: str, model: type[M], update: dict[str, Any]) -> M:
        current = await self._get_model(key, model)
        # accept camelCase aliases as well as field names in partial updates
        names = {field.alias or name: name for name, field in model.model_fields.items()}
        normalised = {names.get(k, k): v for k, v in update.items()}
        merged = model.model_validate({**current.model_dump(), **normalised})
        await self.store.set(key, merged.model_dump_json())
        logger.info("rules_updated", key=key, **merged.model_dump())
        return merged


def _parse_all(model: type[M], raw: list[str]) -> list[M]:
    parsed: list[M] = []
    for item in raw:
        try:
            parsed.append(model.model_validate_json(item))
        except ValidationError as e:
            logger.error("record_parse_failed", model=model.__name__, error=str(e))
    return parsed
