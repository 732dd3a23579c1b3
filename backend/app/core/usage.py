############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# usage.py: Token and cost accounting across provider kinds
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Usage accounting.

``compute_usage`` is the single entry point. It validates the payloads,
then dispatches on ``ModelMeta.kind``:

- THIRD_PARTY: provider-declared ``usage`` fields win; otherwise tokens are
  estimated with tiktoken. Cost comes from the exact-model rate table.
- SELF_HOSTED: input tokens are always counted on pruned message text, since
  the fine-tune was trained on pruned text. Cost comes from the base model's
  rate, not from the fine-tune's name.

A response that fails validation still yields input-side usage; output
tokens are then left as ``None``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.canonical_schemas import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    UsageInfo,
)
from backend.app.core.pricing import ModelRate, get_fine_tune_rate, get_openai_rate
from backend.app.core.pruning import prune_text
from backend.app.core.tokens import count_completion_tokens, count_message_tokens
from backend.app.core.validators import validate_request_payload, validate_response_payload


class ProviderKind(str, Enum):
    """Where a model is served from."""
    THIRD_PARTY = "third_party"
    SELF_HOSTED = "self_hosted"


@dataclass(frozen=True)
class ModelMeta:
    """What the accountant needs to know about the target model."""
    kind: ProviderKind
    model: str
    base_model: Optional[str] = None
    pruning_rules: List[str] = field(default_factory=list)

    @classmethod
    def third_party(cls, model: str) -> "ModelMeta":
        return cls(kind=ProviderKind.THIRD_PARTY, model=model)

    @classmethod
    def self_hosted(
        cls, model: str, base_model: Optional[str], pruning_rules: Optional[List[str]] = None
    ) -> "ModelMeta":
        return cls(
            kind=ProviderKind.SELF_HOSTED,
            model=model,
            base_model=base_model,
            pruning_rules=list(pruning_rules or []),
        )


@dataclass(frozen=True)
class Usage:
    input_tokens: int
    output_tokens: Optional[int]
    cost: Optional[float]


def _declared_usage(response: Optional[ChatCompletionResponse]) -> UsageInfo:
    if response is None:
        return UsageInfo()
    raw = (response.model_extra or {}).get("usage")
    if not isinstance(raw, dict):
        return UsageInfo()
    try:
        return UsageInfo.model_validate(raw)
    except ValueError:
        return UsageInfo()


def _output_tokens(
    response: Optional[ChatCompletionResponse], declared: UsageInfo, count_model: Optional[str]
) -> Optional[int]:
    if response is None:
        return None
    if declared.completion_tokens is not None:
        return declared.completion_tokens
    raw_choices = response.model_dump(mode="json").get("choices", [])
    return count_completion_tokens(raw_choices, count_model)


def _cost(rate: Optional[ModelRate], input_tokens: int, output_tokens: Optional[int]) -> Optional[float]:
    if rate is None:
        return None
    return rate.cost(input_tokens, output_tokens)


def _third_party_usage(
    request: ChatCompletionRequest,
    response: Optional[ChatCompletionResponse],
    meta: ModelMeta,
) -> Optional[Usage]:
    declared = _declared_usage(response)
    if declared.prompt_tokens is not None:
        input_tokens = declared.prompt_tokens
    else:
        input_tokens = count_message_tokens(request.messages, meta.model)
    output_tokens = _output_tokens(response, declared, meta.model)
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost=_cost(get_openai_rate(meta.model), input_tokens, output_tokens),
    )


def _self_hosted_usage(
    request: ChatCompletionRequest,
    response: Optional[ChatCompletionResponse],
    meta: ModelMeta,
) -> Optional[Usage]:
    if meta.base_model is None:
        # Fine-tune could not be resolved; nothing to bill against
        return None
    pruned_texts = [prune_text(t, meta.pruning_rules) for t in request.message_texts()]
    input_tokens = count_message_tokens(request.messages, meta.base_model, texts=pruned_texts)
    output_tokens = _output_tokens(response, _declared_usage(response), meta.base_model)
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost=_cost(get_fine_tune_rate(meta.base_model), input_tokens, output_tokens),
    )


_USAGE_BY_KIND: Dict[ProviderKind, Callable[..., Optional[Usage]]] = {
    ProviderKind.THIRD_PARTY: _third_party_usage,
    ProviderKind.SELF_HOSTED: _self_hosted_usage,
}


def compute_usage(
    req_payload: Any,
    resp_payload: Optional[Any],
    model_meta: ModelMeta,
) -> Optional[Usage]:
    """Compute token counts and cost for one call.

    Returns None when the request fails validation or when a self-hosted
    model's metadata is unknown.
    """
    request = validate_request_payload(req_payload)
    if not request.success:
        return None
    response = validate_response_payload(resp_payload)
    return _USAGE_BY_KIND[model_meta.kind](
        request.data,
        response.data if response.success else None,
        model_meta,
    )
