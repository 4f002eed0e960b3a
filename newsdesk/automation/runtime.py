"""
Process-wide wiring for the automation control plane.

`build_runtime()` is called once per process (FastAPI lifespan or the cron
script). It owns the single GovernorState, so breaker counters are shared by
every cycle in the process and by nothing else. Collaborators can be swapped
for tests through keyword overrides.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from newsdesk.automation.activity import AutomationLog
from newsdesk.automation.governor import Clock, CostGovernor, GovernorState
from newsdesk.automation.orchestrator import Orchestrator
from newsdesk.automation.scheduler import Scheduler
from newsdesk.automation.store import StateStore, create_state_store
from newsdesk.automation.triage import ApprovalRules, PublishingRules
from newsdesk.core.config import Settings, get_settings
from newsdesk.core.logging import get_logger
from newsdesk.models.database import build_engine, build_session_factory, init_models
from newsdesk.models.models import utc_now
from newsdesk.pipeline.context import StageContext
from newsdesk.pipeline.llm import ContentModel, build_chat_model
from newsdesk.schemas.schemas import JobName
from newsdesk.services.fetcher import Fetcher, RSSFetcher
from newsdesk.services.webhook_service import Deliverer, WebhookDeliverer

logger = get_logger(__name__)


@dataclass
class AutomationRuntime:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: StateStore
    scheduler: Scheduler
    activity: AutomationLog
    governor: CostGovernor
    fetcher: Fetcher
    analyst: ContentModel
    writer: ContentModel
    deliverer: Deliverer
    clock: Clock = utc_now
    governor_state: GovernorState = field(default_factory=GovernorState)

    def stage_context(
        self, cycle_id: str, approval_rules: ApprovalRules, publishing_rules: PublishingRules
    ) -> StageContext:
        return StageContext(
            cycle_id=cycle_id,
            settings=self.settings,
            session_factory=self.session_factory,
            governor=self.governor,
            activity=self.activity,
            fetcher=self.fetcher,
            analyst=self.analyst,
            writer=self.writer,
            deliverer=self.deliverer,
            approval_rules=approval_rules,
            publishing_rules=publishing_rules,
            clock=self.clock,
        )

    def orchestrator(self) -> Orchestrator:
        s = self.settings
        return Orchestrator(
            self.scheduler,
            self.activity,
            self.stage_context,
            timeouts={
                JobName.INGEST: s.ingest_timeout_seconds,
                JobName.SIGNAL_PROCESS: s.signal_process_timeout_seconds,
                JobName.SYNTHESIZE: s.synthesize_timeout_seconds,
                JobName.PUBLISH: s.publish_timeout_seconds,
            },
        )

    async def close(self) -> None:
        await self.store.close()
        await self.engine.dispose()


async def build_runtime(
    settings: Settings | None = None,
    *,
    store: StateStore | None = None,
    fetcher: Fetcher | None = None,
    analyst: ContentModel | None = None,
    writer: ContentModel | None = None,
    deliverer: Deliverer | None = None,
    clock: Clock = utc_now,
    create_tables: bool = True,
) -> AutomationRuntime:
    settings = settings or get_settings()

    engine = build_engine(settings)
    if create_tables:
        await init_models(engine)
    session_factory = build_session_factory(engine)

    store = store or await create_state_store(settings)
    state = GovernorState()

    runtime = AutomationRuntime(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        scheduler=Scheduler.from_settings(settings, store, clock=clock),
        activity=AutomationLog(store, size=settings.activity_log_size, clock=clock),
        governor=CostGovernor.from_settings(settings, session_factory, state, clock=clock),
        fetcher=fetcher or RSSFetcher.from_settings(settings),
        analyst=analyst or build_chat_model(settings, settings.model_analyst),
        writer=writer or build_chat_model(settings, settings.model_writer, temperature=0.3),
        deliverer=deliverer or WebhookDeliverer.from_settings(settings),
        clock=clock,
        governor_state=state,
    )
    logger.info("automation_runtime_ready", state_store=store.backend, environment=settings.app_env)
    return runtime
