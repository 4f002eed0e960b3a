"""
Everything a pipeline stage needs for one cycle, passed explicitly.

A stage is `async (StageContext) -> dict`; the returned dict becomes the
`details` of the stage's JobExecution record, so keep it JSON-serialisable.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.automation.activity import AutomationLog
from newsdesk.automation.governor import Clock, CostGovernor, SpendRecord
from newsdesk.automation.triage import ApprovalRules, PublishingRules
from newsdesk.core.config import Settings
from newsdesk.models.models import utc_now
from newsdesk.pipeline.llm import ContentModel, LLMResponseError, LLMResult
from newsdesk.services.fetcher import Fetcher
from newsdesk.services.webhook_service import Deliverer


@dataclass
class StageContext:
    cycle_id: str
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    governor: CostGovernor
    activity: AutomationLog
    fetcher: Fetcher
    analyst: ContentModel
    writer: ContentModel
    deliverer: Deliverer
    approval_rules: ApprovalRules
    publishing_rules: PublishingRules
    clock: Clock = utc_now

    async def log(self, component: str, level: str, message: str, **metadata: Any) -> None:
        await self.activity.log(component, level, message, cycle_id=self.cycle_id, **metadata)

    async def charge(self, result: LLMResult, *, item_id: str, prompt_name: str) -> float:
        """Write one paid call to the spend ledger and return its cost."""
        cost = self.governor.estimate_cost(result.model, result.input_tokens, result.output_tokens)
        await self.governor.record_usage(
            SpendRecord(
                item_id=item_id,
                model=result.model,
                prompt_name=prompt_name,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost_usd=cost,
                created_at=self.clock(),
            )
        )
        return cost

    async def charge_failed(
        self, error: Exception, result: LLMResult | None, *, item_id: str, prompt_name: str
    ) -> float:
        """Charge a call whose reply was unusable. Calls that raised before replying cost nothing."""
        billed = error.usage if isinstance(error, LLMResponseError) else result
        if billed is None:
            return 0.0
        return await self.charge(billed, item_id=item_id, prompt_name=prompt_name)


Stage = Callable[[StageContext], Awaitable[dict[str, Any]]]
