############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# auth.py: API key authentication and tenant scoping
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API authentication. Every gateway operation runs under one project."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import ErrorKind, GatewayError
from backend.app.db import crud
from backend.app.db.models import ApiKeyStatus
from backend.app.db.session import get_async_db
from backend.app.logging_config import bind_request_context, get_logger
from backend.app.security.api_keys import verify_api_key

logger = get_logger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantScope:
    """The project an authenticated request acts on."""
    project_id: str
    api_key_id: Optional[int] = None


async def get_api_key_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Extract API key from request.

    Supports:
    - Authorization: Bearer <key>
    - X-API-Key: <key>
    """
    if credentials and credentials.credentials:
        return credentials.credentials

    x_api_key = request.headers.get("X-API-Key")
    if x_api_key:
        return x_api_key

    return None


async def authenticate_request(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    api_key_str: Optional[str] = Depends(get_api_key_from_request),
) -> TenantScope:
    """
    Authenticate a request using a project API key.

    Returns:
        TenantScope for the key's project

    Raises:
        GatewayError: UNAUTHORIZED if the key is missing, unknown or revoked
    """
    if not api_key_str:
        logger.warning("missing_api_key", path=request.url.path)
        raise GatewayError(
            "Missing API key. Provide via 'Authorization: Bearer <key>' or 'X-API-Key: <key>'",
            ErrorKind.UNAUTHORIZED,
        )

    api_key = await verify_api_key(db, api_key_str)

    if not api_key:
        logger.warning(
            "invalid_api_key",
            path=request.url.path,
            key_prefix=api_key_str[:8] if len(api_key_str) >= 8 else "short",
        )
        raise GatewayError("Invalid API key", ErrorKind.UNAUTHORIZED)

    if api_key.status != ApiKeyStatus.ACTIVE:
        logger.warning("inactive_api_key", key_id=api_key.id, status=api_key.status.value)
        raise GatewayError(f"API key is {api_key.status.value}", ErrorKind.UNAUTHORIZED)

    scope = TenantScope(project_id=api_key.project_id, api_key_id=api_key.id)

    try:
        await crud.update_api_key_usage(db, api_key.id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("api_key_usage_update_failed", key_id=api_key.id, error=str(e))

    bind_request_context(project_id=scope.project_id)
    return scope
