"""Unit tests for the Source / Signal / Article state machines."""

from __future__ import annotations

import pytest

from newsdesk.automation.lifecycle import (
    AlreadyPublishedError,
    InvalidStatusError,
    NotFoundError,
    create_draft_article,
    create_signal,
    create_source,
    get_active_sources,
    parse_signal_status,
    publish_article,
    record_analysis_failure,
    record_source_failure,
    record_source_success,
    reenable_source,
    set_signal_status,
    slugify,
    unpublish_article,
)
from newsdesk.models.models import ArticleModel, RawItemModel, SignalModel, SignalStatus, SourceModel, as_utc
from tests.conftest import add_source


async def fail(session_factory, source_id: str, times: int) -> bool:
    disabled = False
    for _ in range(times):
        async with session_factory() as session:
            disabled = await record_source_failure(session, source_id, "timeout")
            await session.commit()
    return disabled


async def succeed(session_factory, source_id: str) -> None:
    async with session_factory() as session:
        await record_source_success(session, source_id)
        await session.commit()


async def fail_analysis(session_factory, signal_id: str, now, max_attempts: int = 3) -> bool:
    async with session_factory() as session:
        flagged = await record_analysis_failure(session, signal_id, max_attempts=max_attempts, now=now)
        await session.commit()
    return flagged


async def load(session_factory, model, id_):
    async with session_factory() as session:
        return await session.get(model, id_)


@pytest.fixture
async def signal(session_factory, clock) -> SignalModel:
    source = await add_source(session_factory)
    async with session_factory() as session:
        raw = RawItemModel(source_id=source.id, url="https://wire.example.com/a", title="A")
        session.add(raw)
        await session.flush()
        sig = await create_signal(session, source_id=source.id, raw_item_id=raw.id, now=clock.now)
        await session.commit()
        return sig


@pytest.fixture
async def draft(session_factory, clock) -> ArticleModel:
    async with session_factory() as session:
        article = await create_draft_article(
            session, headline="Budget passes", summary="s", content="c", now=clock.now
        )
        await session.commit()
        return article


# ── Source ──────────────────────────────────────────────────
class TestSourceAutoDisable:
    async def test_four_failures_keep_source_active(self, session_factory):
        source = await add_source(session_factory)
        assert await fail(session_factory, source.id, 4) is False
        row = await load(session_factory, SourceModel, source.id)
        assert row.auto_disabled is False
        assert row.consecutive_failures == 4

    async def test_fifth_failure_disables(self, session_factory):
        source = await add_source(session_factory)
        assert await fail(session_factory, source.id, 5) is True
        row = await load(session_factory, SourceModel, source.id)
        assert row.auto_disabled is True
        assert row.last_error == "timeout"

    async def test_success_between_failures_resets_streak(self, session_factory):
        source = await add_source(session_factory)
        await fail(session_factory, source.id, 4)
        await succeed(session_factory, source.id)
        assert await fail(session_factory, source.id, 4) is False
        row = await load(session_factory, SourceModel, source.id)
        assert row.auto_disabled is False

    async def test_success_does_not_reenable(self, session_factory):
        source = await add_source(session_factory)
        await fail(session_factory, source.id, 5)
        await succeed(session_factory, source.id)
        row = await load(session_factory, SourceModel, source.id)
        assert row.auto_disabled is True

    async def test_custom_threshold(self, session_factory):
        source = await add_source(session_factory)
        async with session_factory() as session:
            assert await record_source_failure(session, source.id, threshold=1) is True

    async def test_unknown_source(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await record_source_failure(session, "missing")

    async def test_disabled_sources_are_not_active(self, session_factory):
        healthy = await add_source(session_factory, name="Healthy", url="https://a.example.com/rss")
        broken = await add_source(session_factory, name="Broken", url="https://b.example.com/rss")
        await add_source(session_factory, name="Off", url="https://c.example.com/rss", active=False)
        await fail(session_factory, broken.id, 5)
        async with session_factory() as session:
            active = await get_active_sources(session)
        assert [s.id for s in active] == [healthy.id]

    async def test_reenable_clears_disable_and_streak(self, session_factory):
        source = await add_source(session_factory)
        await fail(session_factory, source.id, 5)
        async with session_factory() as session:
            row = await reenable_source(session, source.id)
            await session.commit()
        assert row.auto_disabled is False
        assert row.consecutive_failures == 0
        assert row.last_error is None

    async def test_reenable_unknown(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await reenable_source(session, "missing")

    async def test_create_source_defaults(self, session_factory):
        async with session_factory() as session:
            source = await create_source(session, name="Hansard", url="https://hansard.example.com/rss")
            await session.commit()
        assert source.reliability_score == 50
        assert source.active is True
        assert source.auto_disabled is False


# ── Signal ──────────────────────────────────────────────────
class TestSignalStatus:
    @pytest.mark.parametrize("status", ["pending", "flagged", "approved", "archived"])
    def test_legal_values_parse(self, status):
        assert parse_signal_status(status) == SignalStatus(status)

    async def test_rejects_illegal_value_without_mutation(self, session_factory, signal, clock):
        async with session_factory() as session:
            with pytest.raises(InvalidStatusError, match="published"):
                await set_signal_status(session, signal.id, "published", now=clock.advance(minutes=1))
            await session.commit()
        row = await load(session_factory, SignalModel, signal.id)
        assert row.status == SignalStatus.PENDING
        assert as_utc(row.updated_at) == as_utc(signal.updated_at)

    async def test_invalid_status_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_signal_status("APPROVED ")

    async def test_sets_status_and_timestamp(self, session_factory, signal, clock):
        later = clock.advance(minutes=3)
        async with session_factory() as session:
            await set_signal_status(session, signal.id, "approved", now=later)
            await session.commit()
        row = await load(session_factory, SignalModel, signal.id)
        assert row.status == SignalStatus.APPROVED
        assert as_utc(row.updated_at) == later

    async def test_unknown_signal(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await set_signal_status(session, "missing", "approved")


class TestAnalysisAttempts:
    async def test_failures_are_counted_and_timestamped(self, session_factory, signal, clock):
        later = clock.advance(minutes=10)
        assert await fail_analysis(session_factory, signal.id, later) is False

        row = await load(session_factory, SignalModel, signal.id)
        assert row.analysis_attempts == 1
        assert as_utc(row.last_attempt_at) == later
        assert row.status == SignalStatus.PENDING

    async def test_flagged_at_max_attempts(self, session_factory, signal, clock):
        results = [await fail_analysis(session_factory, signal.id, clock.now) for _ in range(3)]
        assert results == [False, False, True]

        row = await load(session_factory, SignalModel, signal.id)
        assert row.status == SignalStatus.FLAGGED
        assert row.analysis_attempts == 3

    async def test_decided_signal_keeps_its_status(self, session_factory, signal, clock):
        async with session_factory() as session:
            await set_signal_status(session, signal.id, "archived", now=clock.now)
            await session.commit()

        assert await fail_analysis(session_factory, signal.id, clock.now, max_attempts=1) is False
        row = await load(session_factory, SignalModel, signal.id)
        assert row.status == SignalStatus.ARCHIVED

    async def test_unknown_signal(self, session_factory, clock):
        with pytest.raises(NotFoundError):
            await fail_analysis(session_factory, "missing", clock.now)


# ── Article ─────────────────────────────────────────────────
class TestArticlePublishing:
    async def test_publish_draft_sets_published_at_once(self, session_factory, draft, clock):
        async with session_factory() as session:
            article = await publish_article(session, draft.id, now=clock.now)
            await session.commit()
        assert article.is_draft is False
        assert as_utc(article.published_at) == clock.now

    async def test_double_publish_fails_and_keeps_timestamp(self, session_factory, draft, clock):
        first = clock.now
        async with session_factory() as session:
            await publish_article(session, draft.id, now=first)
            await session.commit()

        clock.advance(hours=1)
        async with session_factory() as session:
            with pytest.raises(AlreadyPublishedError):
                await publish_article(session, draft.id, now=clock.now)

        row = await load(session_factory, ArticleModel, draft.id)
        assert as_utc(row.published_at) == first

    async def test_republish_after_unpublish_keeps_original_timestamp(self, session_factory, draft, clock):
        first = clock.now
        async with session_factory() as session:
            await publish_article(session, draft.id, now=first)
            await unpublish_article(session, draft.id, now=clock.advance(minutes=10))
            await session.commit()

        row = await load(session_factory, ArticleModel, draft.id)
        assert row.is_draft is True
        assert as_utc(row.published_at) == first

        async with session_factory() as session:
            article = await publish_article(session, draft.id, now=clock.advance(minutes=10))
            await session.commit()
        assert as_utc(article.published_at) == first

    async def test_publish_unknown_article(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await publish_article(session, "missing")

    async def test_unpublish_unknown_article(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await unpublish_article(session, "missing")


class TestSlugify:
    def test_slug_is_url_safe(self):
        slug = slugify("Budget Bill: Passes 180–140!", "salt")
        assert slug.startswith("budget-bill-passes-180-140-")

    def test_salt_makes_slugs_unique(self):
        assert slugify("Same headline", "a") != slugify("Same headline", "b")

    def test_empty_headline(self):
        assert slugify("!!!", "x").startswith("article-")
