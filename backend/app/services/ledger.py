############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# ledger.py: Call ledger write protocol and cache-hit recording
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Call ledger - durable, append-only record of every gateway call.

Write protocol for a reported call (cache miss):

1. Allocate the call id and the response id up front.
2. In one transaction: INSERT the call (no response id yet), INSERT the
   response (pointing back at the call), then UPDATE the call's response id.
   The UPDATE is the last statement so nobody can observe a call whose
   response is missing.
3. After commit, write tags in their own transaction.

A cache hit writes a single call row pointing at the existing response.
"""

import asyncio
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import LedgerWriteError, TagWriteError
from backend.app.core.fingerprint import fingerprint
from backend.app.core.metrics import CALLS_RECORDED, TAG_WRITE_FAILURES, TOKENS_RECORDED
from backend.app.core.usage import ModelMeta, Usage, compute_usage
from backend.app.core.validators import (
    fine_tune_slug,
    is_fine_tune_model,
    validate_request_payload,
    validate_response_payload,
)
from backend.app.db import crud
from backend.app.db.models import LoggedCall, LoggedCallModelResponse
from backend.app.logging_config import get_logger
from backend.app.services.cache import CacheStore

logger = get_logger(__name__)

_TAG_NAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9_$.]")


def sanitize_tag_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_$.]`` with ``_``."""
    return _TAG_NAME_DISALLOWED.sub("_", name)


def from_epoch_ms(epoch_ms: float) -> datetime:
    """Convert a Unix timestamp in milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)


@dataclass
class ReportInput:
    """A completed upstream call, as reported by a client."""
    requested_at: datetime
    received_at: datetime
    req_payload: Any
    resp_payload: Optional[Any] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return int(round((self.received_at - self.requested_at).total_seconds() * 1000))


@dataclass
class RecordedCall:
    """Identifiers and accounting of a committed ledger entry."""
    call_id: str
    response_id: Optional[str]
    cache_hit: bool
    cache_key: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None


class CallLedger:
    """Records calls, responses and tags."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cache = CacheStore(db)

    async def resolve_model_meta(self, project_id: str, model: str) -> ModelMeta:
        """Describe the target model for usage accounting.

        A fine-tune slug that is unknown, or owned by another project, yields
        self-hosted metadata without a base model, which the accountant treats
        as unbillable.
        """
        if not is_fine_tune_model(model):
            return ModelMeta.third_party(model)
        fine_tune = await crud.get_fine_tune_by_slug(self.db, fine_tune_slug(model))
        if fine_tune is None:
            logger.info("fine_tune_not_found_for_usage", model=model)
            return ModelMeta.self_hosted(model, base_model=None)
        if fine_tune.project_id != project_id:
            logger.warning("fine_tune_owned_by_other_project", model=model, project_id=project_id)
            return ModelMeta.self_hosted(model, base_model=None)
        rules = [rule.text_to_match for rule in fine_tune.dataset.pruning_rules]
        return ModelMeta.self_hosted(model, base_model=fine_tune.base_model, pruning_rules=rules)

    async def record_cache_hit(
        self,
        project_id: str,
        requested_at: datetime,
        response: LoggedCallModelResponse,
        model: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> RecordedCall:
        """Write a call row that reuses an existing response."""
        call_id = str(uuid.uuid4())
        try:
            await asyncio.shield(self._write_hit(call_id, project_id, requested_at, response.id, model))
        except SQLAlchemyError as e:
            CALLS_RECORDED.labels(cache_hit="true", outcome="error").inc()
            logger.error("ledger_write_failed", call_id=call_id, cache_hit=True, error=str(e))
            raise LedgerWriteError(f"Failed to record cached call: {e}") from e

        CALLS_RECORDED.labels(cache_hit="true", outcome="ok").inc()
        logger.info("cache_hit_recorded", call_id=call_id, response_id=response.id)

        await self.attach_tags(project_id, call_id, tags or {})
        return RecordedCall(
            call_id=call_id,
            response_id=response.id,
            cache_hit=True,
            cache_key=response.cache_key,
            model=model,
        )

    async def _write_hit(
        self,
        call_id: str,
        project_id: str,
        requested_at: datetime,
        response_id: str,
        model: Optional[str],
    ) -> None:
        try:
            await crud.insert_logged_call(
                self.db,
                call_id=call_id,
                project_id=project_id,
                requested_at=requested_at,
                cache_hit=True,
                model=model,
                model_response_id=response_id,
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def record_call(self, project_id: str, report: ReportInput) -> RecordedCall:
        """Record a reported (non-cached) call together with its response.

        Raises:
            LedgerWriteError: if the call/response unit of work failed; no
                rows from it are visible.
            TagWriteError: if tags failed after the call was committed.
        """
        call_id = str(uuid.uuid4())
        response_id = str(uuid.uuid4())

        parsed_req = validate_request_payload(report.req_payload)
        parsed_resp = validate_response_payload(report.resp_payload)

        model: Optional[str] = None
        usage: Optional[Usage] = None
        cache_key: Optional[str] = None
        if parsed_req.success:
            model = parsed_req.data.model
            meta = await self.resolve_model_meta(project_id, model)
            usage = compute_usage(report.req_payload, report.resp_payload, meta)
            if parsed_resp.success:
                cache_key = fingerprint(project_id, parsed_req.data)
        else:
            logger.info("report_invalid_request", call_id=call_id, reason=parsed_req.description)

        if report.resp_payload is not None and not parsed_resp.success:
            logger.info("report_response_not_cacheable", call_id=call_id, reason=parsed_resp.description)

        try:
            await asyncio.shield(
                self._write_miss(call_id, response_id, project_id, report, model, usage, cache_key)
            )
        except SQLAlchemyError as e:
            CALLS_RECORDED.labels(cache_hit="false", outcome="error").inc()
            logger.error("ledger_write_failed", call_id=call_id, cache_hit=False, error=str(e))
            raise LedgerWriteError(f"Failed to record call: {e}") from e

        CALLS_RECORDED.labels(cache_hit="false", outcome="ok").inc()
        if usage is not None:
            TOKENS_RECORDED.labels(type="input").inc(usage.input_tokens)
            if usage.output_tokens:
                TOKENS_RECORDED.labels(type="output").inc(usage.output_tokens)
        logger.info(
            "call_recorded",
            call_id=call_id,
            response_id=response_id,
            model=model,
            cacheable=cache_key is not None,
            status_code=report.status_code,
        )

        await self.attach_tags(project_id, call_id, report.tags)
        return RecordedCall(
            call_id=call_id,
            response_id=response_id,
            cache_hit=False,
            cache_key=cache_key,
            model=model,
            usage=usage,
        )

    async def _write_miss(
        self,
        call_id: str,
        response_id: str,
        project_id: str,
        report: ReportInput,
        model: Optional[str],
        usage: Optional[Usage],
        cache_key: Optional[str],
    ) -> None:
        """The call/response unit of work. Commits all three statements or none."""
        try:
            await crud.insert_logged_call(
                self.db,
                call_id=call_id,
                project_id=project_id,
                requested_at=report.requested_at,
                cache_hit=False,
                model=model,
            )
            await crud.insert_model_response(
                self.db,
                response_id,
                original_logged_call_id=call_id,
                requested_at=report.requested_at,
                received_at=report.received_at,
                duration_ms=report.duration_ms,
                req_payload=report.req_payload,
                resp_payload=report.resp_payload,
                status_code=report.status_code,
                error_message=report.error_message,
                input_tokens=usage.input_tokens if usage else None,
                output_tokens=usage.output_tokens if usage else None,
                cost=usage.cost if usage else None,
                cache_key=cache_key,
            )
            # Must stay last: the call only points at a response that exists
            await crud.link_model_response(self.db, call_id, response_id)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def attach_tags(self, project_id: str, call_id: str, tags: Dict[str, str]) -> None:
        """Write sanitized tags for a committed call."""
        if not tags:
            return
        # A list, not a dict: two keys may sanitize to the same name
        sanitized = [(sanitize_tag_name(name), value) for name, value in tags.items()]
        try:
            await crud.insert_tags(self.db, project_id, call_id, sanitized)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            TAG_WRITE_FAILURES.inc()
            logger.error("tag_write_failed", call_id=call_id, error=str(e))
            raise TagWriteError(f"Failed to write tags for call {call_id}: {e}", call_id=call_id) from e

    async def latest_call(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Most recent call for a project, with tags flattened to a name -> value map."""
        call = await crud.get_latest_logged_call(self.db, project_id)
        if call is None:
            return None
        return serialize_logged_call(call)


def serialize_logged_call(call: LoggedCall) -> Dict[str, Any]:
    response = call.model_response
    return {
        "id": call.id,
        "createdAt": crud.ensure_aware(call.created_at).isoformat() if call.created_at else None,
        "requestedAt": crud.ensure_aware(call.requested_at).isoformat(),
        "cacheHit": call.cache_hit,
        "model": call.model,
        # Later tags with the same name win
        "tags": {tag.name: tag.value for tag in call.tags},
        "modelResponse": None
        if response is None
        else {
            "id": response.id,
            "statusCode": response.status_code,
            "errorMessage": response.error_message,
            "reqPayload": response.req_payload,
            "respPayload": response.resp_payload,
            "inputTokens": response.input_tokens,
            "outputTokens": response.output_tokens,
            "cost": response.cost,
        },
    }
