"""
Cost & failure governor: gates every paid external (AI) call.

Two independent gates:
  - Cost limits: advisory, evaluated *before* spending. Checked in order
    daily → monthly → per-item; the first breach wins.
  - Circuit breaker: reactive, driven by call outcomes. Trips after N
    consecutive failures and auto-closes after a cooldown.

Callers use `gate()` and skip the call (not raise) when it says no:

    decision = await governor.gate(item_id=signal.id)
    if not decision.allowed:
        ...  # leave the item for later/manual handling

Breaker counters live in an explicit GovernorState owned by the process
runtime, never in module globals.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models.models import AIUsageModel, new_id, utc_now

logger = get_logger(__name__)

Clock = Callable[[], datetime]


# ═══════════════════════════════════════════════════════════════
# Circuit breaker
# ═══════════════════════════════════════════════════════════════
@dataclass
class GovernorState:
    consecutive_failures: int = 0
    open: bool = False
    opened_at: datetime | None = None


class CircuitBreaker:
    def __init__(
        self,
        state: GovernorState | None = None,
        *,
        failure_threshold: int = 5,
        reset_after: timedelta = timedelta(minutes=5),
        clock: Clock = utc_now,
    ) -> None:
        self.state = state or GovernorState()
        self.failure_threshold = failure_threshold
        self.reset_after = reset_after
        self._clock = clock

    def record_failure(self) -> bool:
        """Count a failed call. Returns True only on the call that opens the breaker."""
        self.state.consecutive_failures += 1
        if self.state.consecutive_failures >= self.failure_threshold and not self.state.open:
            self.state.open = True
            self.state.opened_at = self._clock()
            logger.error(
                "circuit_breaker_opened",
                consecutive_failures=self.state.consecutive_failures,
            )
            return True
        return False

    def record_success(self) -> None:
        self.state.consecutive_failures = 0
        self.state.open = False
        self.state.opened_at = None

    def is_open(self) -> bool:
        if not self.state.open:
            return False
        opened_at = self.state.opened_at
        if opened_at is not None and self._clock() - opened_at >= self.reset_after:
            self.record_success()
            logger.info("circuit_breaker_reset")
            return False
        return True

    def snapshot(self) -> dict:
        return {
            "open": self.state.open,
            "consecutive_failures": self.state.consecutive_failures,
            "opened_at": self.state.opened_at.isoformat() if self.state.opened_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# Cost limits
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class CostLimits:
    per_item_usd: float = 0.50
    daily_usd: float = 10.0
    monthly_usd: float = 100.0

    @classmethod
    def from_settings(cls, settings: Settings) -> CostLimits:
        return cls(
            per_item_usd=settings.ai_per_item_limit_usd,
            daily_usd=settings.ai_daily_limit_usd,
            monthly_usd=settings.ai_monthly_limit_usd,
        )


class CostCheckResult(BaseModel):
    allowed: bool
    reason: str | None = None
    current_spend: float | None = None
    limit: float | None = None


class SpendRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    item_id: str | None = None
    model: str
    prompt_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    created_at: datetime | None = None


def _day_start(now: datetime) -> datetime:
    """Midnight of the server-local calendar day, as UTC."""
    local = now.astimezone()
    return local.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(UTC)


def _month_start(now: datetime) -> datetime:
    local = now.astimezone()
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0).astimezone(UTC)


class CostGovernor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        breaker: CircuitBreaker,
        limits: CostLimits | None = None,
        *,
        pricing: dict[str, tuple[float, float]] | None = None,
        default_pricing: tuple[float, float] = (1.25, 10.00),
        fail_open: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self.breaker = breaker
        self.limits = limits or CostLimits()
        self._pricing = pricing or {}
        self._default_pricing = default_pricing
        self.fail_open = fail_open
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        state: GovernorState,
        *,
        clock: Clock = utc_now,
    ) -> CostGovernor:
        breaker = CircuitBreaker(
            state,
            failure_threshold=settings.circuit_failure_threshold,
            reset_after=timedelta(minutes=settings.circuit_reset_minutes),
            clock=clock,
        )
        return cls(
            session_factory,
            breaker,
            CostLimits.from_settings(settings),
            pricing=settings.model_pricing,
            default_pricing=settings.default_model_pricing,
            fail_open=settings.cost_check_fail_open,
            clock=clock,
        )

    # ── Breaker passthrough ─────────────────────────────────
    def record_failure(self) -> bool:
        return self.breaker.record_failure()

    def record_success(self) -> None:
        self.breaker.record_success()

    def is_circuit_open(self) -> bool:
        return self.breaker.is_open()

    # ── Spend ledger ────────────────────────────────────────
    async def _sum(self, session: AsyncSession, *conditions) -> float:
        stmt = select(func.coalesce(func.sum(AIUsageModel.cost_usd), 0.0)).where(*conditions)
        return float((await session.execute(stmt)).scalar_one())

    async def check_cost_limits(self, item_id: str | None = None) -> CostCheckResult:
        now = self._clock()
        try:
            async with self._session_factory() as session:
                daily = await self._sum(session, AIUsageModel.created_at >= _day_start(now))
                if daily >= self.limits.daily_usd:
                    return CostCheckResult(
                        allowed=False,
                        reason=f"Daily AI cost limit reached (${self.limits.daily_usd:.2f})",
                        current_spend=daily,
                        limit=self.limits.daily_usd,
                    )

                monthly = await self._sum(session, AIUsageModel.created_at >= _month_start(now))
                if monthly >= self.limits.monthly_usd:
                    return CostCheckResult(
                        allowed=False,
                        reason=f"Monthly AI cost limit reached (${self.limits.monthly_usd:.2f})",
                        current_spend=monthly,
                        limit=self.limits.monthly_usd,
                    )

                if item_id:
                    item = await self._sum(session, AIUsageModel.item_id == item_id)
                    if item >= self.limits.per_item_usd:
                        return CostCheckResult(
                            allowed=False,
                            reason=f"Per-item AI cost limit reached (${self.limits.per_item_usd:.2f})",
                            current_spend=item,
                            limit=self.limits.per_item_usd,
                        )
        except SQLAlchemyError as e:
            logger.error("cost_check_failed", error=str(e), fail_open=self.fail_open, item_id=item_id)
            if self.fail_open:
                return CostCheckResult(allowed=True)
            return CostCheckResult(allowed=False, reason="Cost check unavailable")

        return CostCheckResult(allowed=True)

    async def record_usage(self, record: SpendRecord) -> None:
        """Append to the ledger. Never raises: spend tracking is best-effort."""
        try:
            async with self._session_factory() as session:
                if await session.get(AIUsageModel, record.id) is not None:
                    return
                session.add(
                    AIUsageModel(
                        id=record.id,
                        item_id=record.item_id,
                        model=record.model,
                        prompt_name=record.prompt_name,
                        input_tokens=record.input_tokens,
                        output_tokens=record.output_tokens,
                        cost_usd=record.cost_usd,
                        created_at=record.created_at or self._clock(),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("usage_record_failed", error=str(e), record_id=record.id, model=record.model)

    def estimate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        input_price, output_price = self._pricing.get(model, self._default_pricing)
        return (input_tokens * input_price + output_tokens * output_price) / 1_000_000

    async def spending_status(self) -> dict:
        now = self._clock()
        async with self._session_factory() as session:
            daily = await self._sum(session, AIUsageModel.created_at >= _day_start(now))
            monthly = await self._sum(session, AIUsageModel.created_at >= _month_start(now))

        def _window(spent: float, limit: float) -> dict:
            return {
                "spent": round(spent, 6),
                "limit": limit,
                "percentage": round(spent / limit * 100, 2) if limit else 0.0,
            }

        return {
            "daily": _window(daily, self.limits.daily_usd),
            "monthly": _window(monthly, self.limits.monthly_usd),
        }

    # ── Combined pre-call gate ──────────────────────────────
    async def gate(self, item_id: str | None = None) -> CostCheckResult:
        if self.is_circuit_open():
            return CostCheckResult(allowed=False, reason="Circuit breaker open")
        return await self.check_cost_limits(item_id)
