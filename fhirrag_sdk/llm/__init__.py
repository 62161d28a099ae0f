# fhirrag_sdk/llm/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""Bedrock LLM facade - public API."""

from fhirrag_sdk.llm.bedrock import BedrockLlmService, EmbeddingResponse, LlmRequest, LlmResponse
from fhirrag_sdk.llm.model_families import ModelFamily, codec_for, family_for

__all__ = [
    "BedrockLlmService",
    "EmbeddingResponse",
    "LlmRequest",
    "LlmResponse",
    "ModelFamily",
    "codec_for",
    "family_for",
]
