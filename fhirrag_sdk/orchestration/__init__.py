# fhirrag_sdk/orchestration/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""Workflow orchestration over SQS and Lambda - public API."""

from fhirrag_sdk.orchestration.lambda_invoker import LambdaFunctionInvoker, LambdaInvocationResult
from fhirrag_sdk.orchestration.lambda_orchestration import LambdaOrchestrationService
from fhirrag_sdk.orchestration.workflow import (
    DynamoDbWorkflowStateStore,
    InMemoryWorkflowStateStore,
    OrchestrationContext,
    OrchestrationResult,
    StepStatus,
    WorkflowRequest,
    WorkflowStateStore,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = [
    "LambdaFunctionInvoker",
    "LambdaInvocationResult",
    "LambdaOrchestrationService",
    "DynamoDbWorkflowStateStore",
    "InMemoryWorkflowStateStore",
    "OrchestrationContext",
    "OrchestrationResult",
    "StepStatus",
    "WorkflowRequest",
    "WorkflowStateStore",
    "WorkflowStatus",
    "WorkflowStep",
]
