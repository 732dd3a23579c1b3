############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# validators.py: Non-throwing payload validation and model naming
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Payload validation for callgate.

Malformed payloads still have to be logged, so validation never raises: it
returns a ``ParseResult`` that is either a success carrying the typed payload
or a failure carrying a description of what was wrong.
"""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from backend.app.core.canonical_schemas import ChatCompletionRequest, ChatCompletionResponse
from backend.app.settings import get_settings

T = TypeVar("T", bound=BaseModel)


class ValidationError:
    """Represents a validation error."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message

    def __repr__(self) -> str:
        return f"ValidationError(path={self.path!r}, message={self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"path": self.path, "message": self.message}


class ParseResult(Generic[T]):
    """Tagged outcome of validating an opaque JSON payload."""

    __slots__ = ("data", "errors")

    def __init__(self, data: Optional[T] = None, errors: Optional[List[ValidationError]] = None):
        self.data = data
        self.errors = errors or []

    @property
    def success(self) -> bool:
        return self.data is not None

    @property
    def description(self) -> str:
        """Human-readable summary of the failure (empty on success)."""
        return "; ".join(f"{e.path}: {e.message}" for e in self.errors)

    def __repr__(self) -> str:
        if self.success:
            return f"ParseResult(success, {type(self.data).__name__})"
        return f"ParseResult(failure, {self.description!r})"


def _format_loc(loc) -> str:
    path = "$"
    for part in loc:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def _validate(schema: Type[T], payload: Any) -> ParseResult[T]:
    if not isinstance(payload, dict):
        return ParseResult(errors=[ValidationError("$", "Expected a JSON object")])
    try:
        return ParseResult(data=schema.model_validate(payload))
    except PydanticValidationError as e:
        return ParseResult(
            errors=[ValidationError(_format_loc(err["loc"]), err["msg"]) for err in e.errors()]
        )


def validate_request_payload(payload: Any) -> ParseResult[ChatCompletionRequest]:
    """Check the minimal request shape ``{model: str, messages: list}``."""
    return _validate(ChatCompletionRequest, payload)


def validate_response_payload(payload: Any) -> ParseResult[ChatCompletionResponse]:
    """Check the cache-eligible response shape."""
    if payload is None:
        return ParseResult(errors=[ValidationError("$", "No response payload")])
    return _validate(ChatCompletionResponse, payload)


def is_fine_tune_model(model: str) -> bool:
    """True when the model name addresses a self-hosted fine-tune."""
    return model.startswith(get_settings().fine_tune_model_prefix)


def fine_tune_slug(model: str) -> str:
    """Strip the fine-tune prefix from a model name."""
    prefix = get_settings().fine_tune_model_prefix
    if model.startswith(prefix):
        return model[len(prefix):]
    return model
