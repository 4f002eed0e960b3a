"""
Operator endpoints for content lifecycle transitions.

PATCH /api/v1/signals/{signal_id}            set signal status
POST  /api/v1/articles/{article_id}/publish   draft → published
POST  /api/v1/articles/{article_id}/unpublish published → draft
GET   /api/v1/sources                         source health
POST  /api/v1/sources                         register a feed
POST  /api/v1/sources/{source_id}/reenable    clear auto-disable
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from sqlalchemy import select

from newsdesk.api.v1.deps import AuthenticatedUser, DbSession, Runtime
from newsdesk.automation.lifecycle import (
    AlreadyPublishedError,
    InvalidStatusError,
    NotFoundError,
    create_source,
    publish_article,
    reenable_source,
    set_signal_status,
    unpublish_article,
)
from newsdesk.core.logging import get_logger
from newsdesk.models.models import SourceModel
from newsdesk.schemas.schemas import (
    ArticleResponse,
    SignalResponse,
    SignalStatusUpdate,
    SourceCreate,
    SourceResponse,
)

router = APIRouter(tags=["content"])
logger = get_logger(__name__)


@router.patch("/signals/{signal_id}", response_model=SignalResponse)
async def update_signal_status(
    signal_id: str,
    body: SignalStatusUpdate,
    db: DbSession,
    runtime: Runtime,
    _api_key: AuthenticatedUser,
) -> SignalResponse:
    try:
        signal = await set_signal_status(db, signal_id, body.status, now=runtime.clock())
    except InvalidStatusError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    await db.commit()
    logger.info("signal_status_set", signal_id=signal_id, status=signal.status.value)
    return SignalResponse.model_validate(signal)


@router.post("/articles/{article_id}/publish", response_model=ArticleResponse)
async def publish(
    article_id: str,
    db: DbSession,
    runtime: Runtime,
    _api_key: AuthenticatedUser,
) -> ArticleResponse:
    try:
        article = await publish_article(db, article_id, now=runtime.clock())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except AlreadyPublishedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    await db.commit()
    return ArticleResponse.model_validate(article)


@router.post("/articles/{article_id}/unpublish", response_model=ArticleResponse)
async def unpublish(
    article_id: str,
    db: DbSession,
    runtime: Runtime,
    _api_key: AuthenticatedUser,
) -> ArticleResponse:
    try:
        article = await unpublish_article(db, article_id, now=runtime.clock())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    await db.commit()
    return ArticleResponse.model_validate(article)


@router.get("/sources", response_model=list[SourceResponse])
async def list_sources(db: DbSession, _api_key: AuthenticatedUser) -> list[SourceResponse]:
    result = await db.execute(select(SourceModel).order_by(SourceModel.name))
    return [SourceResponse.model_validate(source) for source in result.scalars()]


@router.post("/sources", response_model=SourceResponse, status_code=201)
async def add_source(body: SourceCreate, db: DbSession, runtime: Runtime, _api_key: AuthenticatedUser) -> SourceResponse:
    source = await create_source(
        db,
        name=body.name,
        url=body.url,
        protocol=body.protocol,
        reliability_score=body.reliability_score,
        now=runtime.clock(),
    )
    await db.commit()
    return SourceResponse.model_validate(source)


@router.post("/sources/{source_id}/reenable", response_model=SourceResponse)
async def reenable(source_id: str, db: DbSession, runtime: Runtime, _api_key: AuthenticatedUser) -> SourceResponse:
    try:
        source = await reenable_source(db, source_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    await db.commit()
    await runtime.activity.info("api", "source_reenabled", source_id=source_id)
    return SourceResponse.model_validate(source)
