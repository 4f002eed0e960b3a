"""
Publish stage: promote drafts that satisfy the publishing rules.

Publishing is the state transition; the webhook notification that follows is
fire-and-forget. A failed delivery is counted and logged, never rolled back.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import select

from newsdesk.automation.lifecycle import AlreadyPublishedError, publish_article
from newsdesk.core.logging import get_logger
from newsdesk.models.models import ArticleModel, SignalModel, SignalStatus, as_utc
from newsdesk.pipeline.context import StageContext

logger = get_logger(__name__)

COMPONENT = "publish"


async def _ready_drafts(ctx: StageContext) -> list[ArticleModel]:
    rules = ctx.publishing_rules
    cutoff = ctx.clock() - timedelta(minutes=rules.min_article_age_minutes)
    stmt = select(ArticleModel).where(ArticleModel.is_draft.is_(True), ArticleModel.created_at <= cutoff)
    if rules.require_approved_signal:
        stmt = stmt.join(SignalModel, ArticleModel.signal_id == SignalModel.id).where(
            SignalModel.status == SignalStatus.APPROVED
        )
    stmt = stmt.order_by(ArticleModel.created_at).limit(ctx.settings.publish_per_cycle)
    async with ctx.session_factory() as session:
        return list((await session.execute(stmt)).scalars())


def _payload(article: ArticleModel, timestamp: str) -> dict[str, Any]:
    published_at = as_utc(article.published_at)
    return {
        "event": "article.published",
        "article": {
            "id": article.id,
            "slug": article.slug,
            "headline": article.headline,
            "summary": article.summary,
            "signal_id": article.signal_id,
            "published_at": published_at.isoformat() if published_at else None,
        },
        "timestamp": timestamp,
    }


async def run_publishing(ctx: StageContext) -> dict[str, Any]:
    rules = ctx.publishing_rules
    if not rules.enabled:
        await ctx.log(COMPONENT, "info", "publishing_disabled")
        return {"published": 0, "disabled": True}

    drafts = await _ready_drafts(ctx)
    stats = {"candidates": len(drafts), "published": 0, "already_published": 0,
             "delivered": 0, "delivery_failed": 0}

    for draft in drafts:
        now = ctx.clock()
        async with ctx.session_factory() as session:
            try:
                article = await publish_article(session, draft.id, now=now)
            except AlreadyPublishedError:
                # published by an operator between the query and now
                stats["already_published"] += 1
                continue
            await session.commit()

        stats["published"] += 1
        await ctx.log(COMPONENT, "info", "article_published", article_id=article.id, slug=article.slug)

        if rules.deliver_webhook and ctx.settings.publish_webhook_url:
            if await ctx.deliverer.deliver(_payload(article, now.isoformat())):
                stats["delivered"] += 1
            else:
                stats["delivery_failed"] += 1
                await ctx.log(COMPONENT, "warn", "webhook_delivery_failed", article_id=article.id)

    await ctx.log(COMPONENT, "info", "publishing_completed", **stats)
    return stats
