############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# test_validators.py: Unit tests for payload validation
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for request/response payload validators."""

import pytest

from backend.app.core.validators import (
    ValidationError,
    fine_tune_slug,
    is_fine_tune_model,
    validate_request_payload,
    validate_response_payload,
)


class TestValidationError:
    """Tests for ValidationError class."""

    def test_error_to_dict(self):
        """Test converting error to dictionary."""
        error = ValidationError(path="$.messages", message="Field required")

        assert error.to_dict() == {"path": "$.messages", "message": "Field required"}


class TestValidateRequestPayload:
    """Tests for the minimal request shape."""

    def test_valid_request(self, sample_openai_request):
        result = validate_request_payload(sample_openai_request)

        assert result.success
        assert result.data.model == "gpt-4"
        assert len(result.data.messages) == 2
        assert result.description == ""

    def test_extra_fields_are_kept(self, sample_openai_request):
        """Pass-through parameters must survive into the canonical form."""
        result = validate_request_payload(sample_openai_request)

        canonical = result.data.canonical()
        assert canonical["temperature"] == 0.7
        assert canonical["max_tokens"] == 100

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            "not an object",
            [1, 2, 3],
            {},
            {"model": "gpt-4"},
            {"messages": []},
            {"model": 42, "messages": []},
            {"model": "gpt-4", "messages": "hello"},
        ],
    )
    def test_invalid_requests_fail_without_raising(self, payload):
        result = validate_request_payload(payload)

        assert not result.success
        assert result.data is None
        assert result.errors
        assert result.description

    def test_error_path_names_the_field(self):
        result = validate_request_payload({"model": "gpt-4"})

        assert any(e.path == "$.messages" for e in result.errors)


class TestValidateResponsePayload:
    """Tests for the cache-eligible response shape."""

    def test_valid_response(self, sample_openai_response):
        result = validate_response_payload(sample_openai_response)

        assert result.success
        assert result.data.choices[0].finish_reason == "stop"

    def test_missing_payload(self):
        result = validate_response_payload(None)

        assert not result.success
        assert "No response payload" in result.description

    def test_error_body_is_not_a_completion(self):
        result = validate_response_payload({"error": {"message": "Rate limit reached"}})

        assert not result.success

    def test_choice_without_finish_reason(self, sample_openai_response):
        sample_openai_response["choices"] = [{"index": 0}]

        result = validate_response_payload(sample_openai_response)

        assert not result.success
        assert any(e.path.startswith("$.choices[0]") for e in result.errors)


class TestFineTuneModelNames:
    """Tests for the fine-tune model-name convention."""

    def test_prefixed_model_is_fine_tune(self):
        assert is_fine_tune_model("openpipe:my-model")
        assert fine_tune_slug("openpipe:my-model") == "my-model"

    def test_plain_model_is_not_fine_tune(self):
        assert not is_fine_tune_model("gpt-4")
        assert fine_tune_slug("gpt-4") == "gpt-4"
