############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# cache.py: Response cache lookups keyed by request fingerprint
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Cache store over the response ledger.

There is no separate cache table: a response row with a non-null
``cache_key`` is a cache entry. Rows are never updated, so several rows can
share a key; the one with the latest ``requested_at`` wins.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.canonical_schemas import ChatCompletionRequest
from backend.app.core.fingerprint import fingerprint
from backend.app.core.metrics import CACHE_LOOKUPS
from backend.app.core.validators import validate_request_payload
from backend.app.db import crud
from backend.app.db.models import LoggedCallModelResponse
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CacheLookup:
    """Outcome of a cache lookup."""
    request: Optional[ChatCompletionRequest]
    cache_key: Optional[str]
    response: Optional[LoggedCallModelResponse]

    @property
    def hit(self) -> bool:
        return self.response is not None


class CacheStore:
    """Point lookups of cached responses. Every lookup reads the database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, project_id: str, req_payload: Any) -> CacheLookup:
        """Find the newest cache-eligible response for a request."""
        parsed = validate_request_payload(req_payload)
        if not parsed.success:
            CACHE_LOOKUPS.labels(result="invalid").inc()
            logger.debug("cache_lookup_invalid_request", reason=parsed.description)
            return CacheLookup(request=None, cache_key=None, response=None)

        cache_key = fingerprint(project_id, parsed.data)
        response = await crud.get_latest_response_by_cache_key(self.db, cache_key)

        CACHE_LOOKUPS.labels(result="hit" if response else "miss").inc()
        logger.debug(
            "cache_lookup",
            cache_key=cache_key,
            hit=response is not None,
            model=parsed.data.model,
        )
        return CacheLookup(request=parsed.data, cache_key=cache_key, response=response)
