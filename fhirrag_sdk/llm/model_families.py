# fhirrag_sdk/llm/model_families.py
# SPDX-License-Identifier: Apache-2.0
"""
Request/response codecs per Bedrock model family.

The set of families is closed: :class:`ModelFamily` enumerates them,
``_PREFIXES`` maps a model-id prefix to a family and ``_CODECS`` maps a
family to its codec. Adding a family means adding one enum member, one
prefix entry and one codec class here; callers never branch on model ids.

Codecs never raise for an application-level error in the model's body.
They return a :class:`ParsedCompletion` with ``error_message`` set, and the
facade turns that into a failed ``LlmResponse``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

__all__ = [
    "ModelFamily",
    "CompletionParams",
    "ParsedCompletion",
    "ModelCodec",
    "family_for",
    "codec_for",
]


class ModelFamily(str, Enum):
    ANTHROPIC_CLAUDE = "anthropic_claude"
    AMAZON_TITAN = "amazon_titan"
    GENERIC = "generic"


@dataclass(frozen=True)
class CompletionParams:
    """Fully-resolved generation parameters (defaults already applied)."""
    prompt: str
    system_prompt: str
    max_tokens: int
    temperature: float
    top_p: float
    stop_sequences: Tuple[str, ...] = ()


@dataclass
class ParsedCompletion:
    content: str = ""
    finish_reason: str = "completed"
    input_tokens: int = 0
    output_tokens: int = 0
    error_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.error_message is None


class ModelCodec(Protocol):
    family: ModelFamily

    def build_request(self, params: CompletionParams) -> Dict[str, Any]: ...

    def parse_response(self, payload: Mapping[str, Any]) -> ParsedCompletion: ...


def _error_text(payload: Mapping[str, Any]) -> Optional[str]:
    err = payload.get("error")
    if isinstance(err, Mapping):
        return str(err.get("message") or err.get("type") or "model returned an error")
    if err:
        return str(err)
    msg = payload.get("errorMessage")
    return str(msg) if msg else None


class AnthropicClaudeCodec:
    """Anthropic messages API as served by Bedrock."""

    family = ModelFamily.ANTHROPIC_CLAUDE
    anthropic_version = "bedrock-2023-05-31"

    def build_request(self, params: CompletionParams) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": self.anthropic_version,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "messages": [{"role": "user", "content": params.prompt}],
            "system": params.system_prompt,
        }
        if params.stop_sequences:
            body["stop_sequences"] = list(params.stop_sequences)
        return body

    def parse_response(self, payload: Mapping[str, Any]) -> ParsedCompletion:
        if payload.get("type") == "error" or payload.get("error"):
            return ParsedCompletion(error_message=_error_text(payload) or "model returned an error", raw=dict(payload))

        parts: List[Mapping[str, Any]] = payload.get("content") or []
        text = ""
        if parts and isinstance(parts[0], Mapping):
            text = str(parts[0].get("text") or "")
        usage = payload.get("usage") or {}
        return ParsedCompletion(
            content=text,
            finish_reason=str(payload.get("stop_reason") or "completed"),
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            raw=dict(payload),
        )


class AmazonTitanCodec:
    """Titan text-generation models."""

    family = ModelFamily.AMAZON_TITAN

    def build_request(self, params: CompletionParams) -> Dict[str, Any]:
        return {
            "inputText": params.prompt,
            "textGenerationConfig": {
                "maxTokenCount": params.max_tokens,
                "temperature": params.temperature,
                "topP": params.top_p,
                "stopSequences": list(params.stop_sequences),
            },
        }

    def parse_response(self, payload: Mapping[str, Any]) -> ParsedCompletion:
        err = _error_text(payload)
        if err:
            return ParsedCompletion(error_message=err, raw=dict(payload))

        results = payload.get("results") or []
        first: Mapping[str, Any] = results[0] if results and isinstance(results[0], Mapping) else {}
        return ParsedCompletion(
            content=str(first.get("outputText") or ""),
            finish_reason=str(first.get("completionReason") or "completed"),
            input_tokens=int(payload.get("inputTextTokenCount") or 0),
            output_tokens=int(first.get("tokenCount") or 0),
            raw=dict(payload),
        )


class GenericCodec:
    """Fallback shape for model families without a dedicated codec."""

    family = ModelFamily.GENERIC

    def build_request(self, params: CompletionParams) -> Dict[str, Any]:
        return {
            "prompt": params.prompt,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
        }

    def parse_response(self, payload: Mapping[str, Any]) -> ParsedCompletion:
        err = _error_text(payload)
        if err:
            return ParsedCompletion(error_message=err, raw=dict(payload))
        text = payload.get("text")
        if text is None:
            text = json.dumps(payload)
        return ParsedCompletion(content=str(text), raw=dict(payload))


# Longest prefix first; matched case-insensitively. Cross-region inference
# profiles ("us.anthropic.claude-...") match after stripping the geo prefix.
_PREFIXES: Tuple[Tuple[str, ModelFamily], ...] = (
    ("anthropic.claude", ModelFamily.ANTHROPIC_CLAUDE),
    ("amazon.titan-text", ModelFamily.AMAZON_TITAN),
    ("amazon.titan", ModelFamily.AMAZON_TITAN),
)

_GEO_PREFIXES = ("us.", "eu.", "apac.", "global.")

_CODECS: Dict[ModelFamily, ModelCodec] = {
    ModelFamily.ANTHROPIC_CLAUDE: AnthropicClaudeCodec(),
    ModelFamily.AMAZON_TITAN: AmazonTitanCodec(),
    ModelFamily.GENERIC: GenericCodec(),
}


def family_for(model_id: str) -> ModelFamily:
    mid = (model_id or "").lower()
    for geo in _GEO_PREFIXES:
        if mid.startswith(geo):
            mid = mid[len(geo):]
            break
    for prefix, family in _PREFIXES:
        if mid.startswith(prefix):
            return family
    return ModelFamily.GENERIC


def codec_for(model_id: str) -> ModelCodec:
    return _CODECS[family_for(model_id)]
