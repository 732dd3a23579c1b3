############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# v1_gateway.py: Gateway endpoints (/api/v1/*)
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Gateway endpoints: check-cache, chat completions, report."""

from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import TenantScope, authenticate_request
from backend.app.core.errors import ErrorKind, GatewayError, LedgerWriteError, TagWriteError
from backend.app.db.session import get_async_db
from backend.app.logging_config import get_logger
from backend.app.services.completions import CompletionService
from backend.app.services.ledger import CallLedger, ReportInput, from_epoch_ms
from backend.app.settings import get_settings

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["gateway"])


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckCacheBody(_WireModel):
    requested_at: float = Field(alias="requestedAt")
    req_payload: Any = Field(default=None, alias="reqPayload")
    tags: Dict[str, str] = Field(default_factory=dict)


class ChatCompletionBody(_WireModel):
    req_payload: Any = Field(default=None, alias="reqPayload")


class ReportBody(_WireModel):
    requested_at: float = Field(alias="requestedAt")
    received_at: float = Field(alias="receivedAt")
    req_payload: Any = Field(default=None, alias="reqPayload")
    resp_payload: Optional[Any] = Field(default=None, alias="respPayload")
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    tags: Dict[str, str] = Field(default_factory=dict)


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The shared upstream HTTP client created in the app lifespan."""
    return request.app.state.http_client


@router.post("/check-cache")
async def check_cache(
    body: CheckCacheBody,
    db: AsyncSession = Depends(get_async_db),
    scope: TenantScope = Depends(authenticate_request),
) -> Dict[str, Any]:
    """
    Serve a request from the response cache.

    On a hit a new call is recorded against the cached response. A miss
    writes nothing; the client calls upstream and reports the result.
    If the hit's tags could not be written the cached payload is still
    returned, alongside ``tagsError``.
    """
    ledger = CallLedger(db)
    lookup = await ledger.cache.lookup(scope.project_id, body.req_payload)
    if not lookup.hit:
        return {"respPayload": None}

    result: Dict[str, Any] = {"respPayload": lookup.response.resp_payload}
    try:
        await ledger.record_cache_hit(
            scope.project_id,
            from_epoch_ms(body.requested_at),
            lookup.response,
            model=lookup.request.model,
            tags=body.tags,
        )
    except TagWriteError as e:
        logger.warning("cache_hit_tags_not_written", call_id=e.call_id)
        result["tagsError"] = f"Tags were not recorded for call {e.call_id}"
    return result


@router.post("/chat/completions")
async def chat_completions(
    body: ChatCompletionBody,
    db: AsyncSession = Depends(get_async_db),
    scope: TenantScope = Depends(authenticate_request),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> Dict[str, Any]:
    """
    Create a chat completion against a fine-tune or the third-party provider.

    The call is not recorded here; clients report it via /report.
    """
    service = CompletionService(db, http_client)
    return await service.create_chat_completion(scope.project_id, body.req_payload)


@router.post("/report")
async def report(
    body: ReportBody,
    db: AsyncSession = Depends(get_async_db),
    scope: TenantScope = Depends(authenticate_request),
) -> Dict[str, str]:
    """
    Record a completed upstream call in the call ledger.

    Always records a call, valid or not, cacheable or not.
    """
    ledger = CallLedger(db)
    report_input = ReportInput(
        requested_at=from_epoch_ms(body.requested_at),
        received_at=from_epoch_ms(body.received_at),
        req_payload=body.req_payload,
        resp_payload=body.resp_payload,
        status_code=body.status_code,
        error_message=body.error_message,
        tags=body.tags,
    )
    try:
        await ledger.record_call(scope.project_id, report_input)
    except LedgerWriteError:
        return {"status": "error"}
    except TagWriteError as e:
        logger.warning("report_tags_not_written", call_id=e.call_id)
        return {"status": "error"}
    return {"status": "ok"}


@router.get("/local-testing-only-get-latest-logged-call")
async def latest_logged_call(
    db: AsyncSession = Depends(get_async_db),
    scope: TenantScope = Depends(authenticate_request),
) -> Optional[Dict[str, Any]]:
    """Most recent call for the caller's project. Disabled in production."""
    if get_settings().is_production:
        raise GatewayError("This endpoint is not available in production", ErrorKind.FORBIDDEN)
    return await CallLedger(db).latest_call(scope.project_id)
