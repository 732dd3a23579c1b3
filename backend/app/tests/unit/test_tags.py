############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# test_tags.py: Unit tests for call tag sanitization and storage
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for call tags."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from backend.app.core.errors import TagWriteError
from backend.app.db import crud
from backend.app.db.models import LoggedCall, LoggedCallTag
from backend.app.services.ledger import CallLedger, ReportInput, sanitize_tag_name


class TestSanitizeTagName:
    """Tests for tag name sanitization."""

    def test_disallowed_characters_become_underscores(self):
        assert sanitize_tag_name("user id!") == "user_id_"

    def test_allowed_characters_are_kept(self):
        assert sanitize_tag_name("prompt.v2$beta_1") == "prompt.v2$beta_1"

    def test_unicode_is_replaced(self):
        assert sanitize_tag_name("café") == "caf_"


class TestAttachTags:
    """Tests for tag rows written after a call commits."""

    @pytest.mark.asyncio
    async def test_tags_are_sanitized_and_stored(
        self, db_session, project, sample_openai_request, sample_openai_response, requested_at, received_at
    ):
        ledger = CallLedger(db_session)
        report = ReportInput(
            requested_at=requested_at,
            received_at=received_at,
            req_payload=sample_openai_request,
            resp_payload=sample_openai_response,
            status_code=200,
            tags={"user id!": "123", "promptId": "populate-title"},
        )

        recorded = await ledger.record_call(project.id, report)

        result = await db_session.execute(
            select(LoggedCallTag).where(LoggedCallTag.logged_call_id == recorded.call_id)
        )
        tags = {(t.name, t.value) for t in result.scalars()}
        assert tags == {("user_id_", "123"), ("promptId", "populate-title")}

    @pytest.mark.asyncio
    async def test_colliding_names_are_both_kept(
        self, db_session, project, sample_openai_request, requested_at, received_at
    ):
        ledger = CallLedger(db_session)
        report = ReportInput(
            requested_at=requested_at,
            received_at=received_at,
            req_payload=sample_openai_request,
            tags={"a b": "first", "a-b": "second"},
        )

        recorded = await ledger.record_call(project.id, report)

        result = await db_session.execute(
            select(LoggedCallTag.name).where(LoggedCallTag.logged_call_id == recorded.call_id)
        )
        assert sorted(result.scalars()) == ["a_b", "a_b"]

    @pytest.mark.asyncio
    async def test_tag_failure_keeps_the_call(
        self, db_session, project, sample_openai_request, requested_at, received_at, monkeypatch
    ):
        async def failing_insert_tags(*args, **kwargs):
            raise OperationalError("INSERT INTO logged_call_tags", {}, Exception("disk I/O error"))

        monkeypatch.setattr(crud, "insert_tags", failing_insert_tags)
        ledger = CallLedger(db_session)
        report = ReportInput(
            requested_at=requested_at,
            received_at=received_at,
            req_payload=sample_openai_request,
            tags={"userId": "123"},
        )

        with pytest.raises(TagWriteError) as exc_info:
            await ledger.record_call(project.id, report)

        call = await crud.get_logged_call(db_session, exc_info.value.call_id)
        assert call is not None
        assert call.model_response_id is not None
        assert call.tags == []

    @pytest.mark.asyncio
    async def test_no_tags_writes_no_rows(self, db_session, project, sample_openai_request, requested_at, received_at):
        ledger = CallLedger(db_session)
        report = ReportInput(requested_at=requested_at, received_at=received_at, req_payload=sample_openai_request)

        await ledger.record_call(project.id, report)

        calls = (await db_session.execute(select(LoggedCall))).scalars().all()
        tags = (await db_session.execute(select(LoggedCallTag))).scalars().all()
        assert len(calls) == 1
        assert tags == []
