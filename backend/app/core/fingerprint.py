############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# fingerprint.py: Tenant-scoped request hashing for cache keys
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Request fingerprinting.

A fingerprint is the SHA-256 of the canonical JSON encoding of the pair
``[project_id, request]``. Encoding the pair as a JSON array keeps the
boundary between tenant and request explicit, so no (tenant, request)
combination can serialize to the same bytes as a different one.
"""

import hashlib
import json
from typing import Any, Mapping

from backend.app.core.canonical_schemas import ChatCompletionRequest

FINGERPRINT_LENGTH = 64


def canonical_json(value: Any) -> str:
    """Stable serialization: sorted keys, no insignificant whitespace."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def fingerprint(project_id: str, request: ChatCompletionRequest | Mapping[str, Any]) -> str:
    """Return the 64-char hex cache key for a validated request in a project."""
    if isinstance(request, ChatCompletionRequest):
        body = request.canonical()
    else:
        body = dict(request)
    encoded = canonical_json([project_id, body])
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
