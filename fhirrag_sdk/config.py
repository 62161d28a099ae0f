# fhirrag_sdk/config.py
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the infrastructure facades.

Each facade has a dataclass with production defaults and a ``from_env``
classmethod. Configuration is read once at startup and never mutated.

Environment variables (all optional):

    FHIRRAG_AWS_REGION                       shared region (default us-east-1)
    FHIRRAG_AWS_ENDPOINT_URL                 endpoint override (localstack)
    FHIRRAG_BEDROCK_DEFAULT_MODEL_ID         text generation model
    FHIRRAG_BEDROCK_EMBEDDING_MODEL_ID       embedding model
    FHIRRAG_BEDROCK_MAX_TOKENS / _TEMPERATURE / _TOP_P / _MAX_RETRIES
    FHIRRAG_STORAGE_S3_BUCKET                object bucket
    FHIRRAG_STORAGE_DYNAMODB_TABLE           metadata table
    FHIRRAG_STORAGE_SSE / _SSE_METHOD        server-side encryption
    FHIRRAG_LAMBDA_PROCESSING_QUEUE_URL      step and cancellation queue
    FHIRRAG_LAMBDA_WORKFLOW_TABLE            durable workflow state table
    FHIRRAG_EMBEDDING_MODEL / _DIMENSIONS / _BATCH_SIZE / _BATCH_TIMEOUT_S
    FHIRRAG_EMBEDDING_MAX_TEXT_LENGTH / _TRUNCATION
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

__all__ = [
    "DEFAULT_REGION",
    "DEFAULT_SYSTEM_PROMPT",
    "BedrockLlmConfig",
    "AwsStorageConfig",
    "LambdaOrchestrationConfig",
    "VectorEmbeddingConfig",
    "InfrastructureConfig",
]

DEFAULT_REGION = "us-east-1"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant specialized in healthcare and FHIR data analysis."
)

_PREFIX = "FHIRRAG_"


def _env(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(_PREFIX + name)
    return value if value not in (None, "") else default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from e


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _env(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from e


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _env(env, name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BedrockLlmConfig:
    """Bedrock runtime settings for text generation and embeddings."""
    region: str = DEFAULT_REGION
    default_model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    embedding_model_id: str = "amazon.titan-embed-text-v2:0"
    max_tokens: int = 4000
    temperature: float = 0.1
    top_p: float = 0.9
    embedding_dimensions: int = 1024
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_retries: int = 3
    retry_delay_s: float = 2.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BedrockLlmConfig":
        env = os.environ if env is None else env
        return cls(
            region=_env(env, "BEDROCK_REGION") or _env(env, "AWS_REGION", DEFAULT_REGION),
            default_model_id=_env(env, "BEDROCK_DEFAULT_MODEL_ID", cls.default_model_id),
            embedding_model_id=_env(env, "BEDROCK_EMBEDDING_MODEL_ID", cls.embedding_model_id),
            max_tokens=_env_int(env, "BEDROCK_MAX_TOKENS", cls.max_tokens),
            temperature=_env_float(env, "BEDROCK_TEMPERATURE", cls.temperature),
            top_p=_env_float(env, "BEDROCK_TOP_P", cls.top_p),
            embedding_dimensions=_env_int(env, "EMBEDDING_DIMENSIONS", cls.embedding_dimensions),
            max_retries=_env_int(env, "BEDROCK_MAX_RETRIES", cls.max_retries),
            retry_delay_s=_env_float(env, "BEDROCK_RETRY_DELAY_S", cls.retry_delay_s),
        )


@dataclass(frozen=True)
class AwsStorageConfig:
    """S3 object bucket plus DynamoDB metadata table."""
    region: str = DEFAULT_REGION
    s3_bucket_name: str = "fhir-rag-storage"
    dynamodb_table_name: str = "fhir-rag-metadata"
    use_server_side_encryption: bool = True
    server_side_encryption_method: str = "AES256"
    max_retries: int = 3
    retry_delay_s: float = 1.0

    def __post_init__(self) -> None:
        if self.server_side_encryption_method not in ("AES256", "aws:kms"):
            raise ValueError("server_side_encryption_method must be 'AES256' or 'aws:kms'")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AwsStorageConfig":
        env = os.environ if env is None else env
        return cls(
            region=_env(env, "STORAGE_REGION") or _env(env, "AWS_REGION", DEFAULT_REGION),
            s3_bucket_name=_env(env, "STORAGE_S3_BUCKET", cls.s3_bucket_name),
            dynamodb_table_name=_env(env, "STORAGE_DYNAMODB_TABLE", cls.dynamodb_table_name),
            use_server_side_encryption=_env_bool(env, "STORAGE_SSE", cls.use_server_side_encryption),
            server_side_encryption_method=_env(env, "STORAGE_SSE_METHOD", cls.server_side_encryption_method),
            max_retries=_env_int(env, "STORAGE_MAX_RETRIES", cls.max_retries),
            retry_delay_s=_env_float(env, "STORAGE_RETRY_DELAY_S", cls.retry_delay_s),
        )


@dataclass(frozen=True)
class LambdaOrchestrationConfig:
    """SQS queue and Lambda settings for workflow steps."""
    region: str = DEFAULT_REGION
    processing_queue_url: str = ""
    workflow_table_name: str = ""
    max_retries: int = 3
    retry_delay_s: float = 5.0
    lambda_timeout_s: float = 15 * 60.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LambdaOrchestrationConfig":
        env = os.environ if env is None else env
        return cls(
            region=_env(env, "LAMBDA_REGION") or _env(env, "AWS_REGION", DEFAULT_REGION),
            processing_queue_url=_env(env, "LAMBDA_PROCESSING_QUEUE_URL", ""),
            workflow_table_name=_env(env, "LAMBDA_WORKFLOW_TABLE", ""),
            max_retries=_env_int(env, "LAMBDA_MAX_RETRIES", cls.max_retries),
            retry_delay_s=_env_float(env, "LAMBDA_RETRY_DELAY_S", cls.retry_delay_s),
            lambda_timeout_s=_env_float(env, "LAMBDA_TIMEOUT_S", cls.lambda_timeout_s),
        )


@dataclass(frozen=True)
class VectorEmbeddingConfig:
    """Preprocessing and batching for embedding generation."""
    embedding_model: str = "amazon.titan-embed-text-v2:0"
    dimensions: int = 1024
    normalize_vectors: bool = True
    batch_size: int = 100
    batch_pacing_s: float = 0.1
    batch_timeout_s: float = 30.0
    max_text_length: int = 8192
    text_truncation_strategy: str = "end"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_text_length < 1:
            raise ValueError("max_text_length must be >= 1")
        if self.batch_pacing_s < 0:
            raise ValueError("batch_pacing_s must be >= 0")
        if self.batch_timeout_s <= 0:
            raise ValueError("batch_timeout_s must be > 0")
        if self.dimensions < 1:
            raise ValueError("dimensions must be >= 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "VectorEmbeddingConfig":
        env = os.environ if env is None else env
        return cls(
            embedding_model=_env(env, "EMBEDDING_MODEL", cls.embedding_model),
            dimensions=_env_int(env, "EMBEDDING_DIMENSIONS", cls.dimensions),
            normalize_vectors=_env_bool(env, "EMBEDDING_NORMALIZE", cls.normalize_vectors),
            batch_size=_env_int(env, "EMBEDDING_BATCH_SIZE", cls.batch_size),
            batch_pacing_s=_env_float(env, "EMBEDDING_BATCH_PACING_S", cls.batch_pacing_s),
            batch_timeout_s=_env_float(env, "EMBEDDING_BATCH_TIMEOUT_S", cls.batch_timeout_s),
            max_text_length=_env_int(env, "EMBEDDING_MAX_TEXT_LENGTH", cls.max_text_length),
            text_truncation_strategy=_env(env, "EMBEDDING_TRUNCATION", cls.text_truncation_strategy),
        )


@dataclass(frozen=True)
class InfrastructureConfig:
    """All facade settings, grouped."""
    region: str = DEFAULT_REGION
    endpoint_url: Optional[str] = None
    bedrock: BedrockLlmConfig = field(default_factory=BedrockLlmConfig)
    storage: AwsStorageConfig = field(default_factory=AwsStorageConfig)
    orchestration: LambdaOrchestrationConfig = field(default_factory=LambdaOrchestrationConfig)
    embedding: VectorEmbeddingConfig = field(default_factory=VectorEmbeddingConfig)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "InfrastructureConfig":
        env = os.environ if env is None else env
        return cls(
            region=_env(env, "AWS_REGION", DEFAULT_REGION),
            endpoint_url=_env(env, "AWS_ENDPOINT_URL"),
            bedrock=BedrockLlmConfig.from_env(env),
            storage=AwsStorageConfig.from_env(env),
            orchestration=LambdaOrchestrationConfig.from_env(env),
            embedding=VectorEmbeddingConfig.from_env(env),
        )
