# fhirrag_sdk/services.py
# SPDX-License-Identifier: Apache-2.0
"""
Wiring: build boto3 clients and the facades from an :class:`InfrastructureConfig`.

botocore's own retry layer is limited to a single attempt; retries are
governed by each facade's :class:`RetryPolicy` so backoff, logging and
cancellation behave identically across services.

Usage:
    from fhirrag_sdk.services import build_services

    services = build_services(InfrastructureConfig.from_env())
    resp = await services.llm.generate_response(LlmRequest(prompt="..."), ctx=ctx)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig

from fhirrag_sdk.config import InfrastructureConfig
from fhirrag_sdk.core.metrics import MetricsSink, NoopMetrics
from fhirrag_sdk.embedding.vector_embedding import VectorEmbeddingService
from fhirrag_sdk.embedding.vector_index import InMemoryVectorIndex, VectorIndex
from fhirrag_sdk.llm.bedrock import BedrockLlmService
from fhirrag_sdk.orchestration.lambda_invoker import LambdaFunctionInvoker
from fhirrag_sdk.orchestration.lambda_orchestration import LambdaOrchestrationService
from fhirrag_sdk.orchestration.workflow import (
    DynamoDbWorkflowStateStore,
    InMemoryWorkflowStateStore,
    WorkflowStateStore,
)
from fhirrag_sdk.storage.aws_storage import AwsStorageService

__all__ = ["InfrastructureServices", "build_services"]

LOG = logging.getLogger(__name__)


@dataclass
class InfrastructureServices:
    config: InfrastructureConfig
    llm: BedrockLlmService
    storage: AwsStorageService
    orchestration: LambdaOrchestrationService
    lambda_invoker: LambdaFunctionInvoker
    embeddings: VectorEmbeddingService

    async def close(self) -> None:
        for svc in (self.embeddings, self.orchestration, self.lambda_invoker, self.storage, self.llm):
            await svc.close()

    async def __aenter__(self) -> "InfrastructureServices":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def _boto_config(region: str, *, read_timeout: Optional[float] = None) -> BotoConfig:
    kwargs: dict = {
        "region_name": region,
        "retries": {"max_attempts": 1, "mode": "standard"},
    }
    if read_timeout is not None:
        kwargs["read_timeout"] = read_timeout
    return BotoConfig(**kwargs)


def build_services(
    config: Optional[InfrastructureConfig] = None,
    *,
    session: Optional[Any] = None,
    metrics: Optional[MetricsSink] = None,
    vector_index: Optional[VectorIndex] = None,
    state_store: Optional[WorkflowStateStore] = None,
) -> InfrastructureServices:
    """
    Construct every facade with real boto3 clients.

    Args:
        config: defaults to ``InfrastructureConfig.from_env()``.
        session: a ``boto3.session.Session``; the default session otherwise.
        metrics: shared metrics sink.
        vector_index: similarity index; in-memory when omitted.
        state_store: workflow store; DynamoDB when ``workflow_table_name``
            is configured, in-memory otherwise.
    """
    config = config or InfrastructureConfig.from_env()
    session = session or boto3.session.Session()
    metrics = metrics or NoopMetrics()
    endpoint = config.endpoint_url

    def client(name: str, region: str, **cfg: Any) -> Any:
        return session.client(name, endpoint_url=endpoint, config=_boto_config(region, **cfg))

    bedrock_runtime = client("bedrock-runtime", config.bedrock.region, read_timeout=120)
    s3 = client("s3", config.storage.region)
    sqs = client("sqs", config.orchestration.region)
    lambda_client = client(
        "lambda",
        config.orchestration.region,
        read_timeout=config.orchestration.lambda_timeout_s,
    )
    dynamodb = session.resource(
        "dynamodb",
        endpoint_url=endpoint,
        config=_boto_config(config.storage.region),
    )

    if state_store is None:
        table_name = config.orchestration.workflow_table_name
        if table_name:
            state_store = DynamoDbWorkflowStateStore(dynamodb.Table(table_name))
        else:
            LOG.warning("no workflow table configured; workflow state is process-local")
            state_store = InMemoryWorkflowStateStore()

    llm = BedrockLlmService(bedrock_runtime, config.bedrock, metrics=metrics)
    storage = AwsStorageService(
        s3,
        dynamodb.Table(config.storage.dynamodb_table_name),
        config.storage,
        metrics=metrics,
    )
    orchestration = LambdaOrchestrationService(
        sqs,
        config.orchestration,
        state_store=state_store,
        metrics=metrics,
    )
    invoker = LambdaFunctionInvoker(lambda_client, metrics=metrics)
    embeddings = VectorEmbeddingService(
        llm,
        storage,
        config.embedding,
        index=vector_index or InMemoryVectorIndex(),
        metrics=metrics,
    )
    return InfrastructureServices(
        config=config,
        llm=llm,
        storage=storage,
        orchestration=orchestration,
        lambda_invoker=invoker,
        embeddings=embeddings,
    )
