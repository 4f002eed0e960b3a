"""Unit tests for the circuit breaker and cost governor."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from newsdesk.automation.governor import (
    CircuitBreaker,
    CostGovernor,
    CostLimits,
    GovernorState,
    SpendRecord,
)


class BrokenSessionFactory:
    def __call__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(GovernorState(), clock=clock)


@pytest.fixture
def governor(session_factory, breaker, clock) -> CostGovernor:
    return CostGovernor(
        session_factory,
        breaker,
        CostLimits(),
        pricing={"gemini-2.5-flash": (0.30, 2.50)},
        clock=clock,
    )


def spend(amount: float, *, item_id: str | None = None, created_at=None) -> SpendRecord:
    return SpendRecord(
        item_id=item_id,
        model="gemini-2.5-flash",
        prompt_name="signal_analysis",
        cost_usd=amount,
        created_at=created_at,
    )


# ── Circuit breaker ─────────────────────────────────────────
class TestCircuitBreaker:
    def test_opens_exactly_on_fifth_failure(self, breaker):
        results = [breaker.record_failure() for _ in range(5)]
        assert results == [False, False, False, False, True]
        assert breaker.is_open() is True

    def test_further_failures_do_not_reopen(self, breaker):
        for _ in range(5):
            breaker.record_failure()
        assert breaker.record_failure() is False
        assert breaker.is_open() is True

    def test_stays_open_inside_reset_window(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure()
        clock.advance(minutes=4, seconds=59)
        assert breaker.is_open() is True

    def test_auto_resets_after_window(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure()
        clock.advance(minutes=5)
        assert breaker.is_open() is False
        assert breaker.state.consecutive_failures == 0
        assert breaker.state.opened_at is None

    def test_success_resets_everything(self, breaker):
        for _ in range(5):
            breaker.record_failure()
        breaker.record_success()
        assert breaker.is_open() is False
        assert breaker.state.consecutive_failures == 0

    def test_success_breaks_the_streak(self, breaker):
        for _ in range(4):
            breaker.record_failure()
        breaker.record_success()
        assert [breaker.record_failure() for _ in range(4)] == [False] * 4
        assert breaker.is_open() is False

    def test_state_is_shared_through_the_state_object(self, clock):
        state = GovernorState()
        first = CircuitBreaker(state, clock=clock)
        second = CircuitBreaker(state, clock=clock)
        for _ in range(5):
            first.record_failure()
        assert second.is_open() is True


# ── Cost limits ─────────────────────────────────────────────
class TestCostLimits:
    async def test_allowed_while_strictly_under_daily_limit(self, governor):
        await governor.record_usage(spend(9.99))
        result = await governor.check_cost_limits()
        assert result.allowed is True

    async def test_denied_once_daily_limit_crossed(self, governor):
        await governor.record_usage(spend(9.99))
        await governor.record_usage(spend(0.02))
        result = await governor.check_cost_limits()
        assert result.allowed is False
        assert "Daily" in result.reason
        assert "$10.00" in result.reason
        assert result.current_spend == pytest.approx(10.01)

    async def test_yesterdays_spend_does_not_count_towards_today(self, governor, clock):
        await governor.record_usage(spend(50.0, created_at=clock.now - timedelta(days=1, hours=12)))
        result = await governor.check_cost_limits()
        assert result.allowed is True

    async def test_monthly_limit(self, session_factory, breaker, clock):
        governor = CostGovernor(
            session_factory, breaker, CostLimits(daily_usd=1000, monthly_usd=5), clock=clock
        )
        await governor.record_usage(spend(3.0, created_at=clock.now - timedelta(days=2)))
        await governor.record_usage(spend(2.0))
        result = await governor.check_cost_limits()
        assert result.allowed is False
        assert "Monthly" in result.reason

    async def test_per_item_limit_only_applies_to_that_item(self, governor):
        await governor.record_usage(spend(0.50, item_id="signal-1"))
        blocked = await governor.check_cost_limits("signal-1")
        other = await governor.check_cost_limits("signal-2")
        assert blocked.allowed is False
        assert "Per-item" in blocked.reason
        assert other.allowed is True

    async def test_daily_checked_before_per_item(self, governor):
        await governor.record_usage(spend(10.0, item_id="signal-1"))
        result = await governor.check_cost_limits("signal-1")
        assert "Daily" in result.reason

    async def test_fail_open_when_ledger_unreachable(self, breaker, clock):
        governor = CostGovernor(BrokenSessionFactory(), breaker, fail_open=True, clock=clock)
        result = await governor.check_cost_limits("signal-1")
        assert result.allowed is True

    async def test_fail_closed_when_configured(self, breaker, clock):
        governor = CostGovernor(BrokenSessionFactory(), breaker, fail_open=False, clock=clock)
        result = await governor.check_cost_limits("signal-1")
        assert result.allowed is False
        assert result.reason == "Cost check unavailable"

    async def test_record_usage_is_idempotent(self, governor):
        record = spend(6.0)
        await governor.record_usage(record)
        await governor.record_usage(record)
        status = await governor.spending_status()
        assert status["daily"]["spent"] == pytest.approx(6.0)

    async def test_record_usage_never_raises(self, breaker, clock):
        governor = CostGovernor(BrokenSessionFactory(), breaker, clock=clock)
        await governor.record_usage(spend(1.0))


class TestGate:
    async def test_open_circuit_blocks_before_cost_check(self, governor):
        for _ in range(5):
            governor.record_failure()
        result = await governor.gate("signal-1")
        assert result.allowed is False
        assert result.reason == "Circuit breaker open"

    async def test_closed_circuit_defers_to_cost_limits(self, governor):
        result = await governor.gate("signal-1")
        assert result.allowed is True


class TestSpendAccounting:
    def test_estimate_cost_uses_model_pricing(self, governor):
        # 1M input at $0.30 + 1M output at $2.50
        assert governor.estimate_cost("gemini-2.5-flash", 1_000_000, 1_000_000) == pytest.approx(2.80)

    def test_estimate_cost_falls_back_to_default_pricing(self, governor):
        assert governor.estimate_cost("unknown-model", 1_000_000, 0) == pytest.approx(1.25)

    async def test_spending_status_percentages(self, governor):
        await governor.record_usage(spend(2.5))
        status = await governor.spending_status()
        assert status["daily"] == {"spent": 2.5, "limit": 10.0, "percentage": 25.0}
        assert status["monthly"]["percentage"] == 2.5
