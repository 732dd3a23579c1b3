############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# canonical_schemas.py: Minimal chat-completion payload schemas
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Minimal schemas for chat-completion payloads.

Payloads are stored and forwarded as opaque JSON. These models only pin down
the fields the gateway relies on; everything else passes through untouched
(``extra="allow"``) so that the canonical form used for fingerprinting still
covers every parameter the client sent.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ChatCompletionRequest(BaseModel):
    """Request shape: ``{model: str, messages: list}``."""

    model_config = ConfigDict(extra="allow", strict=True)

    model: str
    messages: List[Any]

    def canonical(self) -> Dict[str, Any]:
        """JSON-compatible dict of every field, including pass-through extras."""
        return self.model_dump(mode="json")

    def message_texts(self) -> List[str]:
        """Text content of every message, one entry per message."""
        return [message_text(m) for m in self.messages]


class ChoiceSummary(BaseModel):
    model_config = ConfigDict(extra="allow", strict=True)

    finish_reason: str


class ChatCompletionResponse(BaseModel):
    """Response shape: ``{id: str, model: str, choices: [{finish_reason: str}]}``."""

    model_config = ConfigDict(extra="allow", strict=True)

    id: str
    model: str
    choices: List[ChoiceSummary]


class UsageInfo(BaseModel):
    """Provider-declared usage block, when present."""

    model_config = ConfigDict(extra="allow")

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


def message_text(message: Any) -> str:
    """Extract text from an OpenAI-style message (string or content blocks)."""
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        text_parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text_parts.append(str(block.get("text", "")))
        return " ".join(text_parts)
    return ""
