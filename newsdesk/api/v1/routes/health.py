"""Health check endpoints: used by the platform healthcheck and monitoring."""

from __future__ import annotations

from fastapi import APIRouter

from newsdesk.api.v1.deps import AppSettings, Runtime
from newsdesk.schemas.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/healthz/", response_model=HealthResponse)
async def health_check(settings: AppSettings, runtime: Runtime) -> HealthResponse:
    store_ok = await runtime.store.ping()
    return HealthResponse(
        status="healthy" if store_ok else "degraded",
        environment=settings.app_env,
        state_store=runtime.store.backend if store_ok else f"{runtime.store.backend} (unreachable)",
    )
