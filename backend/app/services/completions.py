############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# completions.py: Upstream chat completions for fine-tunes and providers
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Completion service - resolves the target model and proxies the request.

Does not write the call ledger; clients report finished calls separately.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.canonical_schemas import ChatCompletionRequest
from backend.app.core.errors import ErrorKind, GatewayError, UpstreamError
from backend.app.core.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS
from backend.app.core.pruning import prune_messages
from backend.app.core.usage import ProviderKind
from backend.app.core.validators import fine_tune_slug, is_fine_tune_model, validate_request_payload
from backend.app.db import crud
from backend.app.db.models import FineTune
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)


def _upstream_error_message(response: httpx.Response) -> str:
    """Best-effort human-readable message from an upstream error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("detail"):
            return str(body["detail"])
    return f"HTTP {response.status_code}"


class CompletionService:
    """
    Handles chat completion requests.

    Responsibilities:
    - Validate the request payload
    - Resolve fine-tunes and enforce project ownership
    - Apply the fine-tune dataset's pruning rules before forwarding
    - Forward non-fine-tune models to the third-party provider, if configured
    """

    def __init__(self, db: AsyncSession, http_client: httpx.AsyncClient):
        self.db = db
        self._http_client = http_client
        self._settings = get_settings()

    async def create_chat_completion(self, project_id: str, req_payload: Any) -> Dict[str, Any]:
        """
        Produce a completion for a raw request payload.

        Args:
            project_id: Tenant the request is made under
            req_payload: Opaque JSON request body

        Returns:
            The raw completion object from upstream

        Raises:
            GatewayError: BAD_REQUEST, NOT_FOUND or FORBIDDEN
            UpstreamError: the upstream call failed
        """
        parsed = validate_request_payload(req_payload)
        if not parsed.success:
            raise GatewayError(
                "The request payload must contain a valid model and messages",
                ErrorKind.BAD_REQUEST,
            )
        request = parsed.data

        if not is_fine_tune_model(request.model) and self._settings.openai_api_key:
            return await self._third_party_completion(request)

        fine_tune = await self._resolve_fine_tune(project_id, request.model)
        rules = [rule.text_to_match for rule in fine_tune.dataset.pruning_rules]
        return await self._fine_tune_completion(request, fine_tune, rules)

    async def _resolve_fine_tune(self, project_id: str, model: str) -> FineTune:
        fine_tune = await crud.get_fine_tune_by_slug(self.db, fine_tune_slug(model))
        if fine_tune is None:
            raise GatewayError("The model does not exist", ErrorKind.NOT_FOUND)
        if fine_tune.project_id != project_id:
            logger.warning(
                "fine_tune_project_mismatch",
                slug=fine_tune.slug,
                project_id=project_id,
            )
            raise GatewayError("The model does not belong to this project", ErrorKind.FORBIDDEN)
        if not fine_tune.inference_url:
            raise GatewayError("The model is not set up for inference", ErrorKind.BAD_REQUEST)
        return fine_tune

    async def _fine_tune_completion(
        self,
        request: ChatCompletionRequest,
        fine_tune: FineTune,
        pruning_rules: List[str],
    ) -> Dict[str, Any]:
        body = request.canonical()
        body["model"] = fine_tune.slug
        body["messages"] = prune_messages(request.messages, pruning_rules)
        body["stream"] = False

        completion = await self._post(
            fine_tune.inference_url,
            body,
            headers={"Content-Type": "application/json"},
            provider=ProviderKind.SELF_HOSTED,
        )
        # Clients address the model by its prefixed name; echo that back
        completion["model"] = request.model
        return completion

    async def _third_party_completion(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        body = request.canonical()
        body["stream"] = False
        url = self._settings.openai_base_url.rstrip("/") + "/chat/completions"
        return await self._post(
            url,
            body,
            headers={
                "Authorization": f"Bearer {self._settings.openai_api_key}",
                "Content-Type": "application/json",
            },
            provider=ProviderKind.THIRD_PARTY,
        )

    async def _post(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
        provider: ProviderKind,
    ) -> Dict[str, Any]:
        """POST to an OpenAI-compatible endpoint and return the parsed completion."""
        timeout: Any = httpx.USE_CLIENT_DEFAULT
        if self._settings.upstream_request_timeout is not None:
            timeout = self._settings.upstream_request_timeout

        logger.info("upstream_request", provider=provider.value, url=url, model=body.get("model"))
        start_time = time.monotonic()
        try:
            response = await self._http_client.post(url, json=body, headers=headers, timeout=timeout)
        except httpx.HTTPError as e:
            UPSTREAM_REQUESTS.labels(provider=provider.value, status="transport_error").inc()
            logger.warning("upstream_transport_error", provider=provider.value, error=str(e))
            raise UpstreamError(str(e) or type(e).__name__) from e
        finally:
            UPSTREAM_LATENCY.labels(provider=provider.value).observe(time.monotonic() - start_time)

        UPSTREAM_REQUESTS.labels(provider=provider.value, status=str(response.status_code)).inc()

        if response.status_code >= 400:
            message = _upstream_error_message(response)
            logger.warning(
                "upstream_error_response",
                provider=provider.value,
                status_code=response.status_code,
                error=message,
            )
            raise UpstreamError(message, status_code=response.status_code)

        try:
            completion: Optional[Any] = response.json()
        except ValueError as e:
            raise UpstreamError("Upstream returned a non-JSON body") from e
        if not isinstance(completion, dict):
            raise UpstreamError("Upstream returned an unexpected completion shape")
        return completion
