"""
Operator-facing activity log for the automation control plane.

Every entry goes two ways: through structlog (stdout / log drain) and onto a
capped list in the state store (`automation:logs`) that the logs endpoint reads.
Writing to the store is best-effort and never fails the caller.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import ValidationError
from redis.exceptions import RedisError

from newsdesk.automation.governor import Clock
from newsdesk.automation.store import StateStore
from newsdesk.core.logging import get_logger
from newsdesk.models.models import utc_now
from newsdesk.schemas.schemas import ActivityLogEntry

logger = get_logger("automation")

LOGS_KEY = "automation:logs"
LogLevel = Literal["info", "warn", "error"]

_STRUCTLOG_METHOD = {"info": "info", "warn": "warning", "error": "error"}


class AutomationLog:
    def __init__(self, store: StateStore, *, size: int = 1000, clock: Clock = utc_now) -> None:
        self.store = store
        self.size = size
        self._clock = clock

    async def log(
        self,
        component: str,
        level: LogLevel,
        message: str,
        *,
        cycle_id: str | None = None,
        **metadata: Any,
    ) -> None:
        getattr(logger, _STRUCTLOG_METHOD[level])(
            message, component=component, cycle_id=cycle_id, **metadata
        )
        entry = ActivityLogEntry(
            id=uuid.uuid4().hex,
            timestamp=self._clock(),
            component=component,
            level=level,
            message=message,
            cycle_id=cycle_id,
            metadata=metadata,
        )
        try:
            await self.store.list_push(LOGS_KEY, entry.model_dump_json())
            await self.store.list_trim(LOGS_KEY, 0, self.size - 1)
        except (RedisError, OSError) as e:
            logger.error("activity_log_write_failed", error=str(e))

    async def info(self, component: str, message: str, **kw: Any) -> None:
        await self.log(component, "info", message, **kw)

    async def warn(self, component: str, message: str, **kw: Any) -> None:
        await self.log(component, "warn", message, **kw)

    async def error(self, component: str, message: str, **kw: Any) -> None:
        await self.log(component, "error", message, **kw)

    async def _entries(self) -> list[ActivityLogEntry]:
        raw = await self.store.list_range(LOGS_KEY, 0, self.size - 1)
        entries: list[ActivityLogEntry] = []
        for item in raw:
            try:
                entries.append(ActivityLogEntry.model_validate_json(item))
            except ValidationError:
                logger.warning("activity_log_entry_unreadable")
        return entries

    async def recent(
        self,
        limit: int = 50,
        component: str | None = None,
        level: LogLevel | None = None,
    ) -> tuple[list[ActivityLogEntry], int]:
        """Newest-first entries matching the filters, plus the total number that matched."""
        entries = await self._entries()
        if component:
            entries = [e for e in entries if e.component == component]
        if level:
            entries = [e for e in entries if e.level == level]
        return entries[:limit], len(entries)

    async def for_cycle(self, cycle_id: str) -> list[ActivityLogEntry]:
        return [e for e in await self._entries() if e.cycle_id == cycle_id]

    async def health(self) -> dict[str, Any]:
        recent = (await self._entries())[:100]
        errors = sum(1 for e in recent if e.level == "error")
        warnings = sum(1 for e in recent if e.level == "warn")

        if errors > 5:
            status = "unhealthy"
        elif errors or warnings:
            status = "degraded"
        else:
            status = "healthy"

        last_cycle = next(
            (e for e in recent if e.component == "orchestrator" and e.message == "automation_cycle_completed"),
            None,
        )
        return {
            "status": status,
            "last_cycle_run": last_cycle.timestamp if last_cycle else None,
            "recent_errors": errors,
            "recent_warnings": warnings,
        }
