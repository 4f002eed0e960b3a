"""
Pydantic v2 schemas for stored automation records and API request/response validation.

Stored records (JobExecution, Metric, ActivityLogEntry, SchedulerConfig) are
serialised snake_case into the state store; API models render camelCase.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from newsdesk.automation.triage import ApprovalRules, PublishingRules
from newsdesk.models.models import SignalStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Scheduling ──────────────────────────────────────────────
class JobName(str, enum.Enum):
    """Pipeline stages, declared in the order a cycle runs them."""

    INGEST = "ingest"
    SIGNAL_PROCESS = "signal-process"
    SYNTHESIZE = "synthesize"
    PUBLISH = "publish"


AutomationState = Literal["running", "paused"]


class SchedulerConfig(CamelModel):
    ingest_interval_minutes: int = Field(default=15, ge=1)
    signal_process_interval_minutes: int = Field(default=10, ge=1)
    synthesize_interval_minutes: int = Field(default=30, ge=1)
    publish_interval_minutes: int = Field(default=5, ge=1)

    def interval_for(self, job: JobName) -> int:
        return {
            JobName.INGEST: self.ingest_interval_minutes,
            JobName.SIGNAL_PROCESS: self.signal_process_interval_minutes,
            JobName.SYNTHESIZE: self.synthesize_interval_minutes,
            JobName.PUBLISH: self.publish_interval_minutes,
        }[job]


class SchedulerConfigUpdate(CamelModel):
    ingest_interval_minutes: int | None = Field(default=None, ge=1)
    signal_process_interval_minutes: int | None = Field(default=None, ge=1)
    synthesize_interval_minutes: int | None = Field(default=None, ge=1)
    publish_interval_minutes: int | None = Field(default=None, ge=1)


class JobExecution(CamelModel):
    job_name: JobName
    status: Literal["success", "failure"]
    duration_ms: int
    timestamp_ms: int
    cycle_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class Metric(CamelModel):
    name: str
    value: float
    timestamp_ms: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActivityLogEntry(CamelModel):
    id: str
    timestamp: datetime
    component: str
    level: Literal["info", "warn", "error"]
    message: str
    cycle_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Cron trigger ────────────────────────────────────────────
class CycleSummary(CamelModel):
    success: bool = True
    cycle_id: str
    duration: int  # ms
    tasks_executed: list[JobName] = Field(default_factory=list)
    task_results: dict[str, Any] = Field(default_factory=dict)
    paused: bool = False
    message: str | None = None


class CronHealthResponse(CamelModel):
    status: str = "healthy"
    automation_state: AutomationState
    timestamp: int


# ── Status ──────────────────────────────────────────────────
class RulesPayload(CamelModel):
    approval: ApprovalRules
    publishing: PublishingRules


class StatusResponse(CamelModel):
    state: AutomationState
    config: SchedulerConfig
    rules: RulesPayload
    executions: dict[str, list[JobExecution]] = Field(default_factory=dict)
    store_backend: str
    circuit: dict[str, Any] = Field(default_factory=dict)
    message: str | None = None
    timestamp: int


class StatusUpdateRequest(CamelModel):
    action: Literal["setState"] | None = None
    state: AutomationState | None = None
    config: SchedulerConfigUpdate | None = None
    approval_rules: dict[str, Any] | None = None
    publishing_rules: dict[str, Any] | None = None


# ── Logs / health ───────────────────────────────────────────
class LogsResponse(CamelModel):
    logs: list[ActivityLogEntry]
    total: int
    timestamp: int


class CycleLogsResponse(CamelModel):
    cycle_id: str
    logs: list[ActivityLogEntry]


class MetricsResponse(CamelModel):
    metrics: list[Metric]
    timestamp: int


class SpendWindow(CamelModel):
    spent: float
    limit: float
    percentage: float


class SpendingResponse(CamelModel):
    daily: SpendWindow
    monthly: SpendWindow
    per_item_limit: float
    fail_open: bool
    circuit: dict[str, Any] = Field(default_factory=dict)


class AutomationHealthResponse(CamelModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    last_cycle_run: datetime | None = None
    recent_errors: int = 0
    recent_warnings: int = 0
    circuit: dict[str, Any] = Field(default_factory=dict)
    store_backend: str
    timestamp: datetime


# ── Content lifecycle ───────────────────────────────────────
class SignalStatusUpdate(BaseModel):
    # plain str so illegal values reach the lifecycle guard and come back as 400
    status: str


class SignalResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    source_id: str
    status: SignalStatus
    confidence_score: int
    significance_score: int
    analysis_attempts: int = 0
    updated_at: datetime


class ArticleResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    slug: str
    headline: str
    signal_id: str | None = None
    is_draft: bool
    published_at: datetime | None = None


class SourceCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=2000)
    protocol: Literal["rss"] = "rss"
    reliability_score: int = Field(default=50, ge=0, le=100)


class SourceResponse(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    url: str
    reliability_score: int
    active: bool
    auto_disabled: bool
    consecutive_failures: int
    last_ingested_at: datetime | None = None
    last_successful_ingest_at: datetime | None = None
    last_error: str | None = None


# ── Health check ────────────────────────────────────────────
class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    state_store: str
