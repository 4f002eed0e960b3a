"""
Source fetchers: "give me new items from this source since the checkpoint".

The ingest stage only knows the `Fetcher` protocol. The default implementation
reads RSS/Atom feeds with httpx + feedparser; tests inject a fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import feedparser
import httpx

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger

logger = get_logger(__name__)


class FetchError(Exception):
    """The source could not be read. Counts against the source's failure streak."""


@dataclass(frozen=True)
class FetchedItem:
    url: str
    title: str
    body: str = ""
    published_at: datetime | None = None


class Fetcher(Protocol):
    async def fetch(self, url: str, since: datetime | None) -> list[FetchedItem]: ...


def _entry_published(entry) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=UTC)


class RSSFetcher:
    def __init__(
        self,
        *,
        timeout: float = 20.0,
        user_agent: str = "Newsdesk/1.0",
        max_items: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_items = max_items
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> RSSFetcher:
        return cls(timeout=settings.fetch_timeout_seconds, user_agent=settings.fetch_user_agent)

    async def fetch(self, url: str, since: datetime | None) -> list[FetchedItem]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            raise FetchError(f"Unparseable feed: {feed.bozo_exception}")
        if feed.bozo:
            logger.warning("feed_parse_warning", url=url, error=str(feed.bozo_exception))

        items: list[FetchedItem] = []
        for entry in feed.entries[: self.max_items]:
            link = entry.get("link", "")
            if not link:
                continue
            published = _entry_published(entry)
            # undated entries are kept; URL uniqueness dedups them downstream
            if since is not None and published is not None and published <= since:
                continue
            items.append(
                FetchedItem(
                    url=link,
                    title=entry.get("title", "Untitled")[:500],
                    body=entry.get("summary", entry.get("description", "")),
                    published_at=published,
                )
            )

        logger.info("feed_fetched", url=url, entries=len(feed.entries), new_items=len(items))
        return items
