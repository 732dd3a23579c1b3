############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# crud.py: Database CRUD operations for all entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database CRUD operations for callgate.

Functions here only stage statements on the session (``flush``); committing
is left to the caller so several statements can share one transaction.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.app.db.models import (
    ApiKey,
    ApiKeyStatus,
    Dataset,
    FineTune,
    LoggedCall,
    LoggedCallModelResponse,
    LoggedCallTag,
    Project,
    PruningRule,
)


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware (SQLite and MariaDB return naive datetimes)."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# Project CRUD
async def create_project(db: AsyncSession, name: str) -> Project:
    """Create a new project."""
    project = Project(name=name)
    db.add(project)
    await db.flush()
    return project


# API Key CRUD
async def get_api_key_by_prefix(db: AsyncSession, key_prefix: str) -> Optional[ApiKey]:
    """Get API key by prefix (for identification)."""
    result = await db.execute(
        select(ApiKey)
        .options(selectinload(ApiKey.project))
        .where(ApiKey.key_prefix == key_prefix)
    )
    return result.scalar_one_or_none()


async def create_api_key(
    db: AsyncSession,
    project_id: str,
    key_hash: str,
    key_prefix: str,
    name: str,
) -> ApiKey:
    """Create a new API key."""
    api_key = ApiKey(
        project_id=project_id,
        key_hash=key_hash,
        key_prefix=key_prefix,
        name=name,
        status=ApiKeyStatus.ACTIVE,
    )
    db.add(api_key)
    await db.flush()
    return api_key


async def update_api_key_usage(db: AsyncSession, api_key_id: int) -> None:
    """Update API key last used timestamp with a single UPDATE."""
    await db.execute(
        update(ApiKey)
        .where(ApiKey.id == api_key_id)
        .values(last_used_at=func.now())
    )


# Fine-tune CRUD
async def create_dataset(
    db: AsyncSession, project_id: str, name: str, pruning_rules: Optional[List[str]] = None
) -> Dataset:
    """Create a dataset together with its pruning rules."""
    dataset = Dataset(project_id=project_id, name=name)
    db.add(dataset)
    await db.flush()
    for text in pruning_rules or []:
        db.add(PruningRule(dataset_id=dataset.id, text_to_match=text))
    await db.flush()
    return dataset


async def create_fine_tune(
    db: AsyncSession,
    project_id: str,
    slug: str,
    base_model: str,
    dataset_id: str,
    inference_url: Optional[str] = None,
) -> FineTune:
    """Register a fine-tuned model."""
    fine_tune = FineTune(
        project_id=project_id,
        slug=slug,
        base_model=base_model,
        dataset_id=dataset_id,
        inference_url=inference_url,
    )
    db.add(fine_tune)
    await db.flush()
    return fine_tune


async def get_fine_tune_by_slug(db: AsyncSession, slug: str) -> Optional[FineTune]:
    """Get a fine-tune by slug with its dataset's pruning rules loaded."""
    result = await db.execute(
        select(FineTune)
        .options(selectinload(FineTune.dataset).selectinload(Dataset.pruning_rules))
        .where(FineTune.slug == slug)
    )
    return result.scalar_one_or_none()


# Call Ledger CRUD
async def get_latest_response_by_cache_key(
    db: AsyncSession, cache_key: str
) -> Optional[LoggedCallModelResponse]:
    """Most recently requested response stored under a cache key."""
    result = await db.execute(
        select(LoggedCallModelResponse)
        .where(LoggedCallModelResponse.cache_key == cache_key)
        .order_by(LoggedCallModelResponse.requested_at.desc(), LoggedCallModelResponse.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def insert_logged_call(
    db: AsyncSession,
    call_id: str,
    project_id: str,
    requested_at: datetime,
    cache_hit: bool,
    model: Optional[str] = None,
    model_response_id: Optional[str] = None,
) -> None:
    """INSERT one logged_calls row."""
    await db.execute(
        insert(LoggedCall).values(
            id=call_id,
            project_id=project_id,
            requested_at=requested_at,
            cache_hit=cache_hit,
            model=model,
            model_response_id=model_response_id,
        )
    )


async def insert_model_response(db: AsyncSession, response_id: str, **values: Any) -> None:
    """INSERT one logged_call_model_responses row."""
    await db.execute(insert(LoggedCallModelResponse).values(id=response_id, **values))


async def link_model_response(db: AsyncSession, call_id: str, response_id: str) -> None:
    """Point a logged call at its response row."""
    await db.execute(
        update(LoggedCall)
        .where(LoggedCall.id == call_id)
        .values(model_response_id=response_id)
    )


async def insert_tags(
    db: AsyncSession, project_id: str, logged_call_id: str, tags: Iterable[Tuple[str, str]]
) -> int:
    """Bulk INSERT tag rows. Names must already be sanitized; duplicates are kept."""
    rows = [
        {"project_id": project_id, "logged_call_id": logged_call_id, "name": name, "value": value}
        for name, value in tags
    ]
    if not rows:
        return 0
    await db.execute(insert(LoggedCallTag), rows)
    return len(rows)


async def get_logged_call(db: AsyncSession, call_id: str) -> Optional[LoggedCall]:
    """Get a logged call with its response and tags loaded."""
    result = await db.execute(
        select(LoggedCall)
        .options(selectinload(LoggedCall.model_response), selectinload(LoggedCall.tags))
        .where(LoggedCall.id == call_id)
    )
    return result.scalar_one_or_none()


async def get_latest_logged_call(db: AsyncSession, project_id: str) -> Optional[LoggedCall]:
    """Most recent logged call for a project, with response and tags loaded."""
    result = await db.execute(
        select(LoggedCall)
        .options(selectinload(LoggedCall.model_response), selectinload(LoggedCall.tags))
        .where(LoggedCall.project_id == project_id)
        .order_by(LoggedCall.requested_at.desc(), LoggedCall.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
