"""
Lifecycle state machines for Source, Signal and Article.

Source:   active ──(N consecutive failures)──▶ auto-disabled   (sticky; manual re-enable only)
Signal:   pending ──▶ flagged | approved | archived            (legal-value guard only)
          pending ──(N failed analyses)──▶ flagged
Article:  draft ──publish──▶ published                          (published_at set once)

Every function takes the caller's AsyncSession and leaves committing to it, so
a stage can batch several transitions into one unit of work. Counter and
publish updates are single conditional UPDATE statements, never
read-modify-write in Python.
"""

from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.core.logging import get_logger
from newsdesk.core.security import hash_content
from newsdesk.models.models import (
    ArticleModel,
    SignalModel,
    SignalStatus,
    SourceModel,
    utc_now,
)

logger = get_logger(__name__)

DEFAULT_SOURCE_FAILURE_THRESHOLD = 5


# ── Errors ──────────────────────────────────────────────────
class LifecycleError(Exception):
    """Base class for rejected lifecycle transitions."""


class NotFoundError(LifecycleError):
    pass


class InvalidStatusError(LifecycleError, ValueError):
    pass


class AlreadyPublishedError(LifecycleError):
    pass


# ═══════════════════════════════════════════════════════════════
# Source
# ═══════════════════════════════════════════════════════════════
async def get_active_sources(session: AsyncSession) -> list[SourceModel]:
    stmt = (
        select(SourceModel)
        .where(SourceModel.active.is_(True), SourceModel.auto_disabled.is_(False))
        .order_by(SourceModel.created_at)
    )
    return list((await session.execute(stmt)).scalars())


async def create_source(
    session: AsyncSession,
    *,
    name: str,
    url: str,
    protocol: str = "rss",
    reliability_score: int = 50,
    now: datetime | None = None,
) -> SourceModel:
    source = SourceModel(
        name=name,
        url=url,
        protocol=protocol,
        reliability_score=reliability_score,
        created_at=now or utc_now(),
    )
    session.add(source)
    await session.flush()
    logger.info("source_created", source_id=source.id, url=url)
    return source


async def record_source_success(
    session: AsyncSession,
    source_id: str,
    *,
    checkpoint_at: datetime | None = None,
    now: datetime | None = None,
) -> None:
    now = now or utc_now()
    values: dict = {
        "consecutive_failures": 0,
        "last_ingested_at": now,
        "last_successful_ingest_at": now,
        "last_error": None,
    }
    if checkpoint_at is not None:
        values["checkpoint_at"] = checkpoint_at
    await session.execute(update(SourceModel).where(SourceModel.id == source_id).values(**values))


async def record_source_failure(
    session: AsyncSession,
    source_id: str,
    error: str | None = None,
    *,
    threshold: int = DEFAULT_SOURCE_FAILURE_THRESHOLD,
    now: datetime | None = None,
) -> bool:
    """Bump the failure streak; auto-disable at `threshold`. Returns True if the source is now disabled."""
    now = now or utc_now()
    result = await session.execute(
        update(SourceModel)
        .where(SourceModel.id == source_id)
        .values(
            consecutive_failures=SourceModel.consecutive_failures + 1,
            last_ingested_at=now,
            last_error=error[:2000] if error else None,
        )
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Source {source_id} not found")

    disabled = await session.execute(
        update(SourceModel)
        .where(
            SourceModel.id == source_id,
            SourceModel.consecutive_failures >= threshold,
            SourceModel.auto_disabled.is_(False),
        )
        .values(auto_disabled=True)
    )
    if disabled.rowcount:
        logger.warning("source_auto_disabled", source_id=source_id, threshold=threshold)
        return True

    state = await session.execute(select(SourceModel.auto_disabled).where(SourceModel.id == source_id))
    return bool(state.scalar_one())


async def reenable_source(session: AsyncSession, source_id: str) -> SourceModel:
    """Manual intervention: the only way an auto-disabled source comes back."""
    source = await session.get(SourceModel, source_id)
    if source is None:
        raise NotFoundError(f"Source {source_id} not found")
    source.auto_disabled = False
    source.consecutive_failures = 0
    source.last_error = None
    await session.flush()
    logger.info("source_reenabled", source_id=source_id)
    return source


# ═══════════════════════════════════════════════════════════════
# Signal
# ═══════════════════════════════════════════════════════════════
def parse_signal_status(value: str | SignalStatus) -> SignalStatus:
    try:
        return SignalStatus(value)
    except ValueError:
        legal = ", ".join(s.value for s in SignalStatus)
        raise InvalidStatusError(f"Invalid signal status {value!r}; expected one of: {legal}") from None


async def create_signal(
    session: AsyncSession,
    *,
    source_id: str,
    raw_item_id: str,
    now: datetime | None = None,
) -> SignalModel:
    now = now or utc_now()
    signal = SignalModel(
        source_id=source_id,
        raw_item_id=raw_item_id,
        status=SignalStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
    session.add(signal)
    await session.flush()
    return signal


async def set_signal_status(
    session: AsyncSession,
    signal_id: str,
    status: str | SignalStatus,
    *,
    now: datetime | None = None,
) -> SignalModel:
    new_status = parse_signal_status(status)  # validate before touching the row
    signal = await session.get(SignalModel, signal_id)
    if signal is None:
        raise NotFoundError(f"Signal {signal_id} not found")
    signal.status = new_status
    signal.updated_at = now or utc_now()
    await session.flush()
    return signal


async def record_analysis_failure(
    session: AsyncSession,
    signal_id: str,
    *,
    max_attempts: int,
    now: datetime | None = None,
) -> bool:
    """Count a failed analysis; flag the signal at `max_attempts`. Returns True if it was flagged."""
    now = now or utc_now()
    result = await session.execute(
        update(SignalModel)
        .where(SignalModel.id == signal_id)
        .values(analysis_attempts=SignalModel.analysis_attempts + 1, last_attempt_at=now, updated_at=now)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Signal {signal_id} not found")

    # only a still-pending signal is moved; a concurrent manual decision wins
    flagged = await session.execute(
        update(SignalModel)
        .where(
            SignalModel.id == signal_id,
            SignalModel.analysis_attempts >= max_attempts,
            SignalModel.status == SignalStatus.PENDING,
        )
        .values(status=SignalStatus.FLAGGED)
    )
    if flagged.rowcount:
        logger.warning("signal_analysis_abandoned", signal_id=signal_id, attempts=max_attempts)
        return True
    return False


# ═══════════════════════════════════════════════════════════════
# Article
# ═══════════════════════════════════════════════════════════════
def slugify(headline: str, salt: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", headline.lower()).strip("-")[:80] or "article"
    return f"{base}-{hash_content(salt)[:8]}"


async def create_draft_article(
    session: AsyncSession,
    *,
    headline: str,
    summary: str,
    content: str,
    signal_id: str | None = None,
    now: datetime | None = None,
) -> ArticleModel:
    now = now or utc_now()
    article = ArticleModel(
        signal_id=signal_id,
        slug=slugify(headline, f"{signal_id}:{now.isoformat()}"),
        headline=headline,
        summary=summary,
        content=content,
        is_draft=True,
        created_at=now,
        updated_at=now,
    )
    session.add(article)
    await session.flush()
    return article


async def publish_article(
    session: AsyncSession,
    article_id: str,
    *,
    now: datetime | None = None,
) -> ArticleModel:
    """draft → published. Raises AlreadyPublishedError for a non-draft; published_at is never reset."""
    now = now or utc_now()
    result = await session.execute(
        update(ArticleModel)
        .where(ArticleModel.id == article_id, ArticleModel.is_draft.is_(True))
        .values(
            is_draft=False,
            published_at=func.coalesce(ArticleModel.published_at, now),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        existing = await session.get(ArticleModel, article_id)
        if existing is None:
            raise NotFoundError(f"Article {article_id} not found")
        raise AlreadyPublishedError(f"Article {article_id} is already published")

    article = await session.get(ArticleModel, article_id, populate_existing=True)
    logger.info("article_published", article_id=article_id, slug=article.slug)
    return article


async def unpublish_article(
    session: AsyncSession,
    article_id: str,
    *,
    now: datetime | None = None,
) -> ArticleModel:
    """Back to draft. published_at is kept so a later publish does not reset it."""
    article = await session.get(ArticleModel, article_id)
    if article is None:
        raise NotFoundError(f"Article {article_id} not found")
    article.is_draft = True
    article.updated_at = now or utc_now()
    await session.flush()
    logger.info("article_unpublished", article_id=article_id)
    return article
