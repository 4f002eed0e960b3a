"""
Platform cron job entry point.

Runs as a separate service on a short schedule (e.g. */5 * * * *). Each
invocation runs exactly one automation cycle; stages that are not due yet are
skipped by the scheduler, so the cron cadence only needs to be at least as
frequent as the shortest stage interval.

IMPORTANT: This script must exit cleanly after completion.
Open DB / Redis connections will prevent the platform from marking the job as finished.
"""

from __future__ import annotations

import asyncio
import sys

from newsdesk.automation.runtime import build_runtime
from newsdesk.core.config import get_settings
from newsdesk.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("cron")
settings = get_settings()


async def main() -> int:
    """Run one cycle and report it. Exit code 0 on success, 1 on failure."""
    try:
        runtime = await build_runtime(settings)
    except Exception as e:
        logger.error("cron_startup_failed", error=str(e))
        return 1

    try:
        summary = await runtime.orchestrator().run_cycle()
        logger.info(
            "cron_completed",
            cycle_id=summary.cycle_id,
            paused=summary.paused,
            tasks_executed=[job.value for job in summary.tasks_executed],
            duration_ms=summary.duration,
        )
        return 0

    except Exception as e:
        logger.error("cron_failed", error=str(e))
        return 1

    finally:
        await runtime.close()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
