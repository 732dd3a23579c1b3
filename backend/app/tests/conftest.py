############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for callgate tests."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.db import crud
from backend.app.db.models import FineTune, Project
from backend.app.db.session import create_engine_from_url, create_session_factory, init_db

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test, with the full schema created."""
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'callgate-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def project(db_session) -> Project:
    """A tenant project."""
    project = await crud.create_project(db_session, "Acme")
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def other_project(db_session) -> Project:
    """A second tenant, for isolation checks."""
    project = await crud.create_project(db_session, "Globex")
    await db_session.commit()
    return project


@pytest_asyncio.fixture
async def fine_tune(db_session, project) -> FineTune:
    """A deployed fine-tune of ``project`` whose dataset prunes 'REDACTED'."""
    dataset = await crud.create_dataset(
        db_session, project.id, "support-tickets", pruning_rules=["REDACTED"]
    )
    fine_tune = await crud.create_fine_tune(
        db_session,
        project_id=project.id,
        slug="my-ft",
        base_model="OpenPipe/mistral-ft-optimized-1227",
        dataset_id=dataset.id,
        inference_url="http://fine-tunes.test/v1/chat/completions",
    )
    await db_session.commit()
    # Later lookups must load relationships from the database, not the identity map
    db_session.expunge_all()
    return fine_tune


@pytest.fixture
def requested_at() -> datetime:
    return datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def received_at(requested_at) -> datetime:
    return requested_at + timedelta(milliseconds=850)


@pytest.fixture
def sample_openai_request():
    """Sample OpenAI-format request for testing."""
    return {
        "model": "gpt-4",
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Hello!"},
        ],
        "temperature": 0.7,
        "max_tokens": 100,
    }


@pytest.fixture
def sample_openai_response():
    """Sample OpenAI-format completion for testing."""
    return {
        "id": "chatcmpl-abc123",
        "object": "chat.completion",
        "created": 1705320000,
        "model": "gpt-4-0613",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hi there! How can I help?"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 19, "completion_tokens": 8, "total_tokens": 27},
    }


@pytest.fixture
def sample_fine_tune_request():
    """Request addressed to the ``fine_tune`` fixture."""
    return {
        "model": "openpipe:my-ft",
        "messages": [
            {"role": "system", "content": "Classify the ticket."},
            {"role": "user", "content": "Hello REDACTED world"},
        ],
    }
