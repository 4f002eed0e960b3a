"""
Ingest stage: poll every active source once.

For each source: fetch items newer than its checkpoint, store the unseen ones
as RawItems, open one pending Signal per new item, then report the outcome to
the source lifecycle (success resets the failure streak; failure may
auto-disable the source).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from newsdesk.automation.lifecycle import (
    create_signal,
    get_active_sources,
    record_source_failure,
    record_source_success,
)
from newsdesk.core.logging import get_logger
from newsdesk.models.models import RawItemModel, SourceModel, as_utc
from newsdesk.pipeline.context import StageContext
from newsdesk.services.fetcher import FetchedItem

logger = get_logger(__name__)

COMPONENT = "ingest"


async def _store_items(ctx: StageContext, source: SourceModel, items: list[FetchedItem]) -> int:
    now = ctx.clock()
    created = 0
    async with ctx.session_factory() as session:
        urls = {item.url for item in items}
        existing: set[str] = set()
        if urls:
            result = await session.execute(select(RawItemModel.url).where(RawItemModel.url.in_(urls)))
            existing = set(result.scalars())

        checkpoint = as_utc(source.checkpoint_at)
        for item in items:
            if item.published_at and (checkpoint is None or item.published_at > checkpoint):
                checkpoint = item.published_at
            if item.url in existing:
                continue
            existing.add(item.url)

            raw = RawItemModel(
                source_id=source.id,
                url=item.url,
                title=item.title,
                body=item.body,
                published_at=item.published_at,
                created_at=now,
            )
            session.add(raw)
            await session.flush()
            await create_signal(session, source_id=source.id, raw_item_id=raw.id, now=now)
            created += 1

        await record_source_success(session, source.id, checkpoint_at=checkpoint, now=now)
        await session.commit()
    return created


async def run_ingest(ctx: StageContext) -> dict[str, Any]:
    async with ctx.session_factory() as session:
        sources = await get_active_sources(session)

    stats = {"sources": len(sources), "succeeded": 0, "failed": 0, "disabled": 0, "new_items": 0}

    for source in sources:
        try:
            items = await ctx.fetcher.fetch(source.url, as_utc(source.checkpoint_at))
            created = await _store_items(ctx, source, items)
        except Exception as e:
            stats["failed"] += 1
            async with ctx.session_factory() as session:
                disabled = await record_source_failure(
                    session,
                    source.id,
                    str(e),
                    threshold=ctx.settings.source_failure_threshold,
                    now=ctx.clock(),
                )
                await session.commit()
            await ctx.log(COMPONENT, "warn", "source_fetch_failed", source_id=source.id, error=str(e))
            if disabled:
                stats["disabled"] += 1
                await ctx.log(
                    COMPONENT,
                    "error",
                    "source_auto_disabled",
                    source_id=source.id,
                    source_name=source.name,
                )
            continue

        stats["succeeded"] += 1
        stats["new_items"] += created
        logger.info("source_ingested", source_id=source.id, new_items=created)

    await ctx.log(COMPONENT, "info", "ingest_completed", **stats)
    return stats
