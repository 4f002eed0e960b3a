"""Synthesize stage: draft an article for each approved signal that has none."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from newsdesk.automation.lifecycle import create_draft_article
from newsdesk.core.logging import get_logger
from newsdesk.models.models import ArticleModel, RawItemModel, SignalModel, SignalStatus, SourceModel
from newsdesk.pipeline.context import StageContext
from newsdesk.pipeline.llm import WRITER_SYSTEM_PROMPT, ArticleDraft, draft_prompt

logger = get_logger(__name__)

COMPONENT = "synthesize"


async def _approved_without_article(ctx: StageContext) -> list[tuple[SignalModel, RawItemModel, SourceModel]]:
    stmt = (
        select(SignalModel, RawItemModel, SourceModel)
        .join(RawItemModel, SignalModel.raw_item_id == RawItemModel.id)
        .join(SourceModel, SignalModel.source_id == SourceModel.id)
        .outerjoin(ArticleModel, ArticleModel.signal_id == SignalModel.id)
        .where(SignalModel.status == SignalStatus.APPROVED, ArticleModel.id.is_(None))
        .order_by(SignalModel.significance_score.desc(), SignalModel.created_at)
        .limit(ctx.settings.articles_per_cycle)
    )
    async with ctx.session_factory() as session:
        return [tuple(row) for row in (await session.execute(stmt)).all()]


async def run_synthesis(ctx: StageContext) -> dict[str, Any]:
    rows = await _approved_without_article(ctx)
    stats = {"candidates": len(rows), "drafted": 0, "skipped": 0, "failed": 0, "cost_usd": 0.0}

    for signal, raw, source in rows:
        decision = await ctx.governor.gate(item_id=signal.id)
        if not decision.allowed:
            stats["skipped"] += 1
            await ctx.log(COMPONENT, "info", "stage_item_skipped", signal_id=signal.id, reason=decision.reason)
            continue

        result = None
        try:
            result = await ctx.writer.complete_json(
                WRITER_SYSTEM_PROMPT, draft_prompt(raw.title, raw.body, source.name, signal.ai_notes)
            )
            draft = ArticleDraft.model_validate(result.data)
        except Exception as e:
            stats["failed"] += 1
            stats["cost_usd"] += await ctx.charge_failed(e, result, item_id=signal.id, prompt_name="article_draft")
            opened = ctx.governor.record_failure()
            await ctx.log(COMPONENT, "warn", "article_draft_failed", signal_id=signal.id, error=str(e))
            if opened:
                await ctx.log(COMPONENT, "error", "circuit_breaker_opened", signal_id=signal.id)
            continue

        ctx.governor.record_success()
        stats["cost_usd"] += await ctx.charge(result, item_id=signal.id, prompt_name="article_draft")

        async with ctx.session_factory() as session:
            article = await create_draft_article(
                session,
                headline=draft.headline,
                summary=draft.summary,
                content=draft.content,
                signal_id=signal.id,
                now=ctx.clock(),
            )
            await session.commit()

        stats["drafted"] += 1
        logger.info("article_drafted", signal_id=signal.id, article_id=article.id, slug=article.slug)

    stats["cost_usd"] = round(stats["cost_usd"], 6)
    await ctx.log(COMPONENT, "info", "synthesis_completed", **stats)
    return stats
