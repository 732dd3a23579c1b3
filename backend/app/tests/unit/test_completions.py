############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# test_completions.py: Unit tests for the upstream completion service
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Completion service tests.

Upstream servers are replaced with ``httpx.MockTransport`` handlers.
"""

import json

import httpx
import pytest
from sqlalchemy import func, select

from backend.app.core.errors import ErrorKind, GatewayError, UpstreamError
from backend.app.db import crud
from backend.app.db.models import LoggedCall, LoggedCallModelResponse
from backend.app.services import completions as completions_module
from backend.app.services.completions import CompletionService
from backend.app.settings import Settings


def _completion(model="my-ft", content="Category: billing"):
    return {
        "id": "chatcmpl-ft-1",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


class _Upstream:
    """Records requests and answers with a canned response."""

    def __init__(self, status_code=200, body=None, error=None):
        self.status_code = status_code
        self.body = body if body is not None else _completion()
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


@pytest.fixture
def use_settings(monkeypatch):
    """Install explicit settings for the completion service."""
    def install(**overrides):
        settings = Settings(_env_file=None, **overrides)
        monkeypatch.setattr(completions_module, "get_settings", lambda: settings)
        return settings
    return install


@pytest.fixture
def no_provider(use_settings):
    return use_settings(openai_api_key=None)


async def _ledger_rows(db) -> int:
    calls = (await db.execute(select(func.count()).select_from(LoggedCall))).scalar_one()
    responses = (await db.execute(select(func.count()).select_from(LoggedCallModelResponse))).scalar_one()
    return calls + responses


class TestRequestValidation:
    """Tests for payload validation at the completion boundary."""

    @pytest.mark.asyncio
    async def test_invalid_payload_is_bad_request(self, db_session, project, no_provider):
        upstream = _Upstream()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(GatewayError) as exc_info:
                await service.create_chat_completion(project.id, {"model": "openpipe:my-ft"})

        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert exc_info.value.message == "The request payload must contain a valid model and messages"
        assert upstream.requests == []


class TestFineTuneResolution:
    """Tests for fine-tune lookup and ownership."""

    @pytest.mark.asyncio
    async def test_unknown_slug_is_not_found(self, db_session, project, no_provider):
        upstream = _Upstream()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(GatewayError) as exc_info:
                await service.create_chat_completion(
                    project.id, {"model": "openpipe:nope", "messages": []}
                )

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_other_projects_fine_tune_is_forbidden(
        self, db_session, fine_tune, other_project, sample_fine_tune_request, no_provider
    ):
        upstream = _Upstream()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(GatewayError) as exc_info:
                await service.create_chat_completion(other_project.id, sample_fine_tune_request)

        assert exc_info.value.kind == ErrorKind.FORBIDDEN
        assert exc_info.value.message == "The model does not belong to this project"
        assert upstream.requests == []
        assert await _ledger_rows(db_session) == 0

    @pytest.mark.asyncio
    async def test_fine_tune_without_inference_url(self, db_session, project, no_provider):
        dataset = await crud.create_dataset(db_session, project.id, "drafts")
        await crud.create_fine_tune(
            db_session, project.id, slug="not-deployed", base_model="mistralai/Mistral-7B-v0.1",
            dataset_id=dataset.id,
        )
        await db_session.commit()

        async with httpx.AsyncClient(transport=httpx.MockTransport(_Upstream())) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(GatewayError) as exc_info:
                await service.create_chat_completion(
                    project.id,
                    {"model": "openpipe:not-deployed", "messages": [{"role": "user", "content": "hi"}]},
                )

        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert exc_info.value.message == "The model is not set up for inference"

    @pytest.mark.asyncio
    async def test_plain_model_without_provider_is_looked_up_as_slug(self, db_session, project, no_provider):
        async with httpx.AsyncClient(transport=httpx.MockTransport(_Upstream())) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(GatewayError) as exc_info:
                await service.create_chat_completion(
                    project.id, {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}
                )

        assert exc_info.value.kind == ErrorKind.NOT_FOUND


class TestFineTuneCompletion:
    """Tests for forwarding to a self-hosted fine-tune."""

    @pytest.mark.asyncio
    async def test_forwards_pruned_messages(
        self, db_session, project, fine_tune, sample_fine_tune_request, no_provider
    ):
        upstream = _Upstream()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)
            completion = await service.create_chat_completion(project.id, sample_fine_tune_request)

        assert str(upstream.requests[0].url) == "http://fine-tunes.test/v1/chat/completions"
        sent = upstream.last_json
        assert sent["model"] == "my-ft"
        assert sent["stream"] is False
        assert sent["messages"][1]["content"] == "Hello  world"
        # The caller's payload is untouched
        assert sample_fine_tune_request["messages"][1]["content"] == "Hello REDACTED world"

        assert completion["model"] == "openpipe:my-ft"
        assert completion["choices"][0]["message"]["content"] == "Category: billing"

    @pytest.mark.asyncio
    async def test_does_not_write_the_ledger(
        self, db_session, project, fine_tune, sample_fine_tune_request, no_provider
    ):
        async with httpx.AsyncClient(transport=httpx.MockTransport(_Upstream())) as client:
            await CompletionService(db_session, client).create_chat_completion(
                project.id, sample_fine_tune_request
            )

        assert await _ledger_rows(db_session) == 0

    @pytest.mark.asyncio
    async def test_upstream_error_status(
        self, db_session, project, fine_tune, sample_fine_tune_request, no_provider
    ):
        upstream = _Upstream(status_code=503, body={"error": {"message": "model is loading"}})
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(UpstreamError) as exc_info:
                await service.create_chat_completion(project.id, sample_fine_tune_request)

        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "Failed to get completion: model is loading"

    @pytest.mark.asyncio
    async def test_upstream_transport_error(
        self, db_session, project, fine_tune, sample_fine_tune_request, no_provider
    ):
        upstream = _Upstream(error=httpx.ConnectError("connection refused"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)

            with pytest.raises(UpstreamError) as exc_info:
                await service.create_chat_completion(project.id, sample_fine_tune_request)

        assert exc_info.value.kind == ErrorKind.BAD_REQUEST
        assert "connection refused" in exc_info.value.message


class TestThirdPartyCompletion:
    """Tests for forwarding to the configured provider."""

    @pytest.mark.asyncio
    async def test_forwards_with_bearer_key(
        self, db_session, project, sample_openai_request, sample_openai_response, use_settings
    ):
        use_settings(openai_api_key="sk-test", openai_base_url="https://llm.example.test/v1/")
        upstream = _Upstream(body=sample_openai_response)
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            service = CompletionService(db_session, client)
            completion = await service.create_chat_completion(project.id, sample_openai_request)

        request = upstream.requests[0]
        assert str(request.url) == "https://llm.example.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert upstream.last_json["temperature"] == 0.7
        assert completion == sample_openai_response

    @pytest.mark.asyncio
    async def test_fine_tune_prefix_still_routes_to_fine_tune(
        self, db_session, project, fine_tune, sample_fine_tune_request, use_settings
    ):
        use_settings(openai_api_key="sk-test")
        upstream = _Upstream()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            await CompletionService(db_session, client).create_chat_completion(
                project.id, sample_fine_tune_request
            )

        assert upstream.requests[0].url.host == "fine-tunes.test"
        assert "Authorization" not in upstream.requests[0].headers
