"""
Signal-process stage: analyse pending signals and triage them.

Each analysis is a paid call, so every signal passes through the governor
first. A gating rejection leaves the signal pending for a later cycle. A failed
call is reported to the circuit breaker, charged if the provider billed it, and
counted on the signal; after `signal_max_analysis_attempts` failures the signal
is flagged for manual review. The queue takes least-attempted signals first, so
a failing batch cannot starve newer signals.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from newsdesk.automation.lifecycle import record_analysis_failure, set_signal_status
from newsdesk.automation.triage import triage_signal
from newsdesk.core.logging import get_logger
from newsdesk.models.models import RawItemModel, SignalModel, SignalStatus, SourceModel
from newsdesk.pipeline.context import StageContext
from newsdesk.pipeline.llm import ANALYST_SYSTEM_PROMPT, SignalAnalysis, analysis_prompt

logger = get_logger(__name__)

COMPONENT = "signal-process"


async def _pending_signals(ctx: StageContext) -> list[tuple[SignalModel, RawItemModel, SourceModel]]:
    stmt = (
        select(SignalModel, RawItemModel, SourceModel)
        .join(RawItemModel, SignalModel.raw_item_id == RawItemModel.id)
        .join(SourceModel, SignalModel.source_id == SourceModel.id)
        .where(SignalModel.status == SignalStatus.PENDING, SignalModel.analyzed_at.is_(None))
        .order_by(SignalModel.analysis_attempts, SignalModel.created_at)
        .limit(ctx.settings.signals_per_cycle)
    )
    async with ctx.session_factory() as session:
        return [tuple(row) for row in (await session.execute(stmt)).all()]


async def run_signal_processing(ctx: StageContext) -> dict[str, Any]:
    rows = await _pending_signals(ctx)
    stats = {"candidates": len(rows), "analyzed": 0, "skipped": 0, "failed": 0,
             "approved": 0, "archived": 0, "flagged": 0, "abandoned": 0, "cost_usd": 0.0}

    for signal, raw, source in rows:
        decision = await ctx.governor.gate(item_id=signal.id)
        if not decision.allowed:
            stats["skipped"] += 1
            await ctx.log(COMPONENT, "info", "stage_item_skipped", signal_id=signal.id, reason=decision.reason)
            continue

        result = None
        try:
            result = await ctx.analyst.complete_json(
                ANALYST_SYSTEM_PROMPT, analysis_prompt(raw.title, raw.body, source.name)
            )
            analysis = SignalAnalysis.model_validate(result.data)
        except Exception as e:
            # provider errors and unusable answers both count against the breaker
            stats["failed"] += 1
            stats["cost_usd"] += await ctx.charge_failed(
                e, result, item_id=signal.id, prompt_name="signal_analysis"
            )
            if await _report_failure(ctx, signal.id, e):
                stats["abandoned"] += 1
            continue

        ctx.governor.record_success()
        stats["cost_usd"] += await ctx.charge(result, item_id=signal.id, prompt_name="signal_analysis")

        verdict = triage_signal(analysis.confidence_score, source.reliability_score, ctx.approval_rules)
        now = ctx.clock()
        async with ctx.session_factory() as session:
            row = await session.get(SignalModel, signal.id)
            row.signal_type = analysis.signal_type
            row.confidence_score = analysis.confidence_score
            row.significance_score = analysis.significance_score
            row.ai_notes = analysis.notes
            row.analyzed_at = now
            await set_signal_status(session, signal.id, verdict.target_status, now=now)
            await session.commit()

        stats["analyzed"] += 1
        stats[verdict.target_status.value] += 1
        logger.info(
            "signal_triaged",
            signal_id=signal.id,
            confidence=analysis.confidence_score,
            reliability=source.reliability_score,
            decision=verdict.value,
        )

    stats["cost_usd"] = round(stats["cost_usd"], 6)
    await ctx.log(COMPONENT, "info", "signal_processing_completed", **stats)
    return stats


async def _report_failure(ctx: StageContext, signal_id: str, error: Exception) -> bool:
    """Feed the breaker and count the attempt. Returns True if the signal was given up on."""
    opened = ctx.governor.record_failure()
    await ctx.log(COMPONENT, "warn", "signal_analysis_failed", signal_id=signal_id, error=str(error))
    if opened:
        await ctx.log(COMPONENT, "error", "circuit_breaker_opened", signal_id=signal_id)

    max_attempts = ctx.settings.signal_max_analysis_attempts
    async with ctx.session_factory() as session:
        abandoned = await record_analysis_failure(session, signal_id, max_attempts=max_attempts, now=ctx.clock())
        await session.commit()
    if abandoned:
        await ctx.log(COMPONENT, "warn", "signal_analysis_abandoned", signal_id=signal_id, attempts=max_attempts)
    return abandoned
