# fhirrag_sdk/llm/bedrock.py
# SPDX-License-Identifier: Apache-2.0
"""
Bedrock LLM facade: text generation and embeddings over ``bedrock-runtime``.

Purpose
-------
A tenant-scoped, retry-governed wrapper around ``InvokeModel``:

- Payload shape selected by model family (see ``model_families``)
- Uniform retry with exponential backoff for throttling / 5xx / network
- A model's own error field becomes a failed :class:`LlmResponse`, not an
  exception, so callers can tell "the model declined" from "the call failed"
- Metrics and telemetry steps emitted with hashed tenant ids only

Usage
-----
    svc = BedrockLlmService(bedrock_runtime_client, BedrockLlmConfig())
    resp = await svc.generate_response(LlmRequest(prompt="Summarize ..."), ctx=ctx)
    if not resp.is_success:
        ...
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from fhirrag_sdk.config import BedrockLlmConfig
from fhirrag_sdk.core.context import OperationContext, system_context
from fhirrag_sdk.core.errors import ApplicationDeclinedError, InvalidArgument
from fhirrag_sdk.core.facade import BaseRemoteFacade, require_text
from fhirrag_sdk.core.metrics import MetricsSink
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext
from fhirrag_sdk.llm.model_families import CompletionParams, codec_for

__all__ = ["LlmRequest", "LlmResponse", "EmbeddingResponse", "BedrockLlmService"]

LOG = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# Request / response models
# =============================================================================

@dataclass(frozen=True)
class LlmRequest:
    """
    One text-generation request. Unset fields fall back to the service config.
    """
    prompt: str
    system_prompt: Optional[str] = None
    model_id: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop_sequences: Sequence[str] = ()


@dataclass
class LlmResponse:
    content: str = ""
    model_id: str = ""
    tokens_used: int = 0
    finish_reason: str = ""
    is_success: bool = True
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def raise_for_error(self) -> "LlmResponse":
        if not self.is_success:
            raise ApplicationDeclinedError(
                self.error_message or "model declined the request",
                details={"model_id": self.model_id},
            )
        return self


@dataclass
class EmbeddingResponse:
    """Outcome of one embedding call. A model-declared failure has no vector."""
    embedding: List[float] = field(default_factory=list)
    model_id: str = ""
    dimensions: int = 0
    is_success: bool = True
    error_message: Optional[str] = None

    def raise_for_error(self) -> "EmbeddingResponse":
        if not self.is_success:
            raise ApplicationDeclinedError(
                self.error_message or "model returned no embedding",
                details={"model_id": self.model_id},
            )
        return self


# =============================================================================
# Service
# =============================================================================

class BedrockLlmService(BaseRemoteFacade):
    """Bedrock ``InvokeModel`` facade for completions and embeddings."""

    _component = "bedrock_llm"
    _service = "bedrock-runtime"

    def __init__(
        self,
        client: Any,
        config: Optional[BedrockLlmConfig] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._config = config or BedrockLlmConfig()
        super().__init__(
            retry_policy=retry_policy
            or RetryPolicy(
                max_retries=self._config.max_retries,
                base_delay_s=self._config.retry_delay_s,
                name=self._component,
            ),
            metrics=metrics,
        )
        self._client = client

    @property
    def config(self) -> BedrockLlmConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def _invoke_json(self, model_id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        """Blocking ``InvokeModel`` + body read; runs in the executor."""
        response = self._client.invoke_model(
            modelId=model_id,
            body=json.dumps(body).encode("utf-8"),
            contentType="application/json",
            accept="application/json",
        )
        raw = response["body"].read()
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            return {"text": raw}
        return payload if isinstance(payload, dict) else {"text": raw}

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def _resolve_params(self, request: LlmRequest) -> CompletionParams:
        require_text("prompt", request.prompt)
        cfg = self._config
        max_tokens = cfg.max_tokens if request.max_tokens is None else request.max_tokens
        temperature = cfg.temperature if request.temperature is None else request.temperature
        top_p = cfg.top_p if request.top_p is None else request.top_p

        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
            raise InvalidArgument("max_tokens must be a positive integer", field="max_tokens")
        for name, value in (("temperature", temperature), ("top_p", top_p)):
            if not _is_number(value) or not 0.0 <= float(value) <= 1.0:
                raise InvalidArgument(f"{name} must be a number within [0.0, 1.0]", field=name)

        return CompletionParams(
            prompt=request.prompt,
            system_prompt=request.system_prompt or cfg.system_prompt,
            max_tokens=max_tokens,
            temperature=float(temperature),
            top_p=float(top_p),
            stop_sequences=tuple(request.stop_sequences or ()),
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def generate_response(self, request: LlmRequest, *, ctx: OperationContext) -> LlmResponse:
        """
        Generate a completion.

        Raises:
            Unauthorized: missing / expired security context.
            InvalidArgument: empty prompt, non-positive max_tokens, temperature
                outside [0, 1].
            TransientTransport: retries exhausted.

        A model-declared error is returned as ``LlmResponse(is_success=False)``.
        """
        model_id = request.model_id or self._config.default_model_id

        async def _call(security: SecurityContext) -> LlmResponse:
            params = self._resolve_params(request)
            codec = codec_for(model_id)
            body = codec.build_request(params)
            payload = await self._retrying(self._invoke_json, model_id, body, ctx=ctx)
            parsed = codec.parse_response(payload)

            metadata = {
                "input_tokens": parsed.input_tokens,
                "output_tokens": parsed.output_tokens,
                "model_id": model_id,
                "model_family": codec.family.value,
                "tenant": security.tenant_hash(),
                "temperature": params.temperature,
            }
            if not parsed.is_success:
                LOG.warning(
                    "model %s declined request: %s",
                    model_id,
                    parsed.error_message,
                    extra={"tenant": security.tenant_hash()},
                )
                return LlmResponse(
                    model_id=model_id,
                    finish_reason="error",
                    is_success=False,
                    error_message=parsed.error_message,
                    metadata=metadata,
                )
            return LlmResponse(
                content=parsed.content,
                model_id=model_id,
                tokens_used=parsed.input_tokens + parsed.output_tokens,
                finish_reason=parsed.finish_reason,
                metadata=metadata,
            )

        return await self._run_operation(
            "generate_response",
            ctx,
            _call,
            metric_extra={"model": model_id},
        )

    async def generate_embedding(
        self,
        text: str,
        *,
        ctx: OperationContext,
        model_id: Optional[str] = None,
        dimensions: Optional[int] = None,
    ) -> EmbeddingResponse:
        """
        Embed ``text`` with the configured Titan embedding model.

        A body without an ``embedding`` array is returned as a failed
        :class:`EmbeddingResponse`; transport failures raise.
        """
        model = model_id or self._config.embedding_model_id
        dims = dimensions or self._config.embedding_dimensions

        async def _call(security: SecurityContext) -> EmbeddingResponse:
            require_text("text", text)
            body = {"inputText": text, "dimensions": dims, "normalize": True}
            payload = await self._retrying(self._invoke_json, model, body, ctx=ctx)
            vector = payload.get("embedding")
            if not isinstance(vector, list):
                message = str(payload.get("message") or "embedding missing from model response")
                LOG.warning(
                    "model %s returned no embedding: %s",
                    model,
                    message,
                    extra={"tenant": security.tenant_hash()},
                )
                return EmbeddingResponse(model_id=model, is_success=False, error_message=message)
            floats = [float(x) for x in vector]
            return EmbeddingResponse(embedding=floats, model_id=model, dimensions=len(floats))

        return await self._run_operation(
            "generate_embedding",
            ctx,
            _call,
            metric_extra={"model": model},
        )

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        """Check the default model with a tiny completion."""
        ctx = ctx if ctx is not None and ctx.security is not None else system_context()
        t0 = time.monotonic()
        try:
            resp = await self.generate_response(LlmRequest(prompt="Hello", max_tokens=10), ctx=ctx)
        except Exception as e:
            return {
                "ok": False,
                "server": "bedrock",
                "model_id": self._config.default_model_id,
                "response_time_ms": int((time.monotonic() - t0) * 1000),
                "error": getattr(e, "code", None) or type(e).__name__,
            }
        out = {
            "ok": resp.is_success,
            "server": "bedrock",
            "model_id": resp.model_id,
            "response_time_ms": int((time.monotonic() - t0) * 1000),
        }
        if not resp.is_success:
            out["error"] = resp.error_message
        return out

    async def is_healthy(self, *, ctx: Optional[OperationContext] = None) -> bool:
        report = await self.health(ctx=ctx)
        return bool(report["ok"])
