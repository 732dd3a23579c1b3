############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# pricing.py: Per-model token rate tables
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Per-model pricing, in USD per 1K tokens."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

_ONE_K = Decimal("1000")


@dataclass(frozen=True)
class ModelRate:
    """Input/output price per 1K tokens."""
    input_per_1k: Decimal
    output_per_1k: Decimal

    def cost(self, input_tokens: int, output_tokens: Optional[int]) -> float:
        """Cost of a call. Missing output tokens are billed as zero."""
        total = Decimal(input_tokens) / _ONE_K * self.input_per_1k
        if output_tokens:
            total += Decimal(output_tokens) / _ONE_K * self.output_per_1k
        return float(total)


def _rate(input_per_1k: str, output_per_1k: str) -> ModelRate:
    return ModelRate(Decimal(input_per_1k), Decimal(output_per_1k))


# Third-party provider rates, keyed by exact model name
OPENAI_RATES: Dict[str, ModelRate] = {
    "gpt-4": _rate("0.03", "0.06"),
    "gpt-4-0314": _rate("0.03", "0.06"),
    "gpt-4-0613": _rate("0.03", "0.06"),
    "gpt-4-32k": _rate("0.06", "0.12"),
    "gpt-4-32k-0314": _rate("0.06", "0.12"),
    "gpt-4-32k-0613": _rate("0.06", "0.12"),
    "gpt-4-1106-preview": _rate("0.01", "0.03"),
    "gpt-3.5-turbo": _rate("0.0015", "0.002"),
    "gpt-3.5-turbo-0301": _rate("0.0015", "0.002"),
    "gpt-3.5-turbo-0613": _rate("0.0015", "0.002"),
    "gpt-3.5-turbo-1106": _rate("0.001", "0.002"),
    "gpt-3.5-turbo-16k": _rate("0.003", "0.004"),
    "gpt-3.5-turbo-16k-0613": _rate("0.003", "0.004"),
}

# Serving cost of self-hosted fine-tunes, keyed by base model
FINE_TUNE_BASE_RATES: Dict[str, ModelRate] = {
    "meta-llama/Llama-2-7b-hf": _rate("0.0012", "0.0016"),
    "meta-llama/Llama-2-13b-hf": _rate("0.0024", "0.0032"),
    "mistralai/Mistral-7B-v0.1": _rate("0.0012", "0.0016"),
    "OpenPipe/mistral-ft-optimized-1227": _rate("0.0012", "0.0016"),
    "gpt-3.5-turbo": _rate("0.003", "0.006"),
    "gpt-3.5-turbo-1106": _rate("0.003", "0.006"),
}


def get_openai_rate(model: str) -> Optional[ModelRate]:
    return OPENAI_RATES.get(model)


def get_fine_tune_rate(base_model: Optional[str]) -> Optional[ModelRate]:
    if not base_model:
        return None
    return FINE_TUNE_BASE_RATES.get(base_model)
