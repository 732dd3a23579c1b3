############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# tokens.py: tiktoken-based token counting for chat payloads
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Token counting for chat messages and completions."""

from functools import lru_cache
from typing import Any, Iterable, List, Optional

import tiktoken

from backend.app.core.canonical_schemas import message_text
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)

# OpenAI chat accounting: every message is wrapped in control tokens and
# every reply is primed with <|start|>assistant<|message|>
TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1
REPLY_PRIMING_TOKENS = 3


@lru_cache(maxsize=32)
def _get_encoding(model: Optional[str]):
    """Encoding for a model, falling back to the configured default."""
    if model:
        try:
            return tiktoken.encoding_for_model(model)
        except KeyError:
            pass
    try:
        return tiktoken.get_encoding(get_settings().default_tokenizer)
    except Exception:
        # Fallback to cl100k_base if configured tokenizer not found
        return tiktoken.get_encoding("cl100k_base")


def count_text_tokens(text: str, model: Optional[str] = None) -> int:
    """Count tokens in a piece of text."""
    if not text:
        return 0
    try:
        return len(_get_encoding(model).encode(text, disallowed_special=()))
    except Exception as e:
        logger.warning("token_count_fallback", error=str(e))
        # Rough estimate: ~4 chars per token
        return len(text) // 4


def count_message_tokens(
    messages: Iterable[Any],
    model: Optional[str] = None,
    texts: Optional[List[str]] = None,
) -> int:
    """Count prompt tokens for a list of chat messages.

    ``texts`` may override each message's text content (used when pruning
    rules have rewritten the content); it must align with ``messages``.
    """
    messages = list(messages)
    if texts is None:
        texts = [message_text(m) for m in messages]

    total = 0
    for message, text in zip(messages, texts):
        total += TOKENS_PER_MESSAGE
        total += count_text_tokens(text, model)
        if isinstance(message, dict):
            role = message.get("role")
            if isinstance(role, str):
                total += count_text_tokens(role, model)
            name = message.get("name")
            if isinstance(name, str):
                total += TOKENS_PER_NAME + count_text_tokens(name, model)
            function_call = message.get("function_call")
            if isinstance(function_call, dict):
                total += count_text_tokens(str(function_call.get("name", "")), model)
                total += count_text_tokens(str(function_call.get("arguments", "")), model)
    return total + REPLY_PRIMING_TOKENS


def count_completion_tokens(choices: Iterable[Any], model: Optional[str] = None) -> int:
    """Count tokens the model generated across all returned choices."""
    total = 0
    for choice in choices:
        if not isinstance(choice, dict):
            continue
        message = choice.get("message")
        if not isinstance(message, dict):
            continue
        total += count_text_tokens(message_text(message), model)
        calls = [tc.get("function") for tc in message.get("tool_calls") or [] if isinstance(tc, dict)]
        calls.append(message.get("function_call"))
        for function in calls:
            if isinstance(function, dict):
                total += count_text_tokens(str(function.get("name", "")), model)
                total += count_text_tokens(str(function.get("arguments", "")), model)
    return total
