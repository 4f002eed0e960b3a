"""
Shared FastAPI dependencies for v1 API routes.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.automation.runtime import AutomationRuntime
from newsdesk.core.config import Settings, get_settings
from newsdesk.core.security import verify_api_key, verify_cron_secret
from newsdesk.models.database import get_db


def get_runtime(request: Request) -> AutomationRuntime:
    return request.app.state.runtime


# Re-export for convenience in route files
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
CronCaller = Annotated[str, Depends(verify_cron_secret)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Runtime = Annotated[AutomationRuntime, Depends(get_runtime)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
