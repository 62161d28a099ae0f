# fhirrag_sdk/orchestration/lambda_invoker.py
# SPDX-License-Identifier: Apache-2.0
"""Direct Lambda invocation (synchronous ``RequestResponse`` or async ``Event``)."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fhirrag_sdk.core.context import OperationContext
from fhirrag_sdk.core.errors import ApplicationDeclinedError
from fhirrag_sdk.core.facade import BaseRemoteFacade, require_text
from fhirrag_sdk.core.metrics import MetricsSink
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext

__all__ = ["LambdaInvocationResult", "LambdaFunctionInvoker"]

LOG = logging.getLogger(__name__)


@dataclass
class LambdaInvocationResult:
    function_name: str = ""
    status_code: int = 0
    is_success: bool = False
    executed_version: str = ""
    log_result: str = ""
    payload: str = ""
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.payload) if self.payload else None

    def raise_for_error(self) -> "LambdaInvocationResult":
        if not self.is_success:
            raise ApplicationDeclinedError(
                self.error_message or f"lambda returned status {self.status_code}",
                details={"function_name": self.function_name, "status_code": self.status_code},
            )
        return self


class LambdaFunctionInvoker(BaseRemoteFacade):
    """
    Invoke a Lambda function with the caller's tenant in the client context.

    A function error (``FunctionError`` in the response) is returned as a
    failed result, not raised.
    """

    _component = "lambda_invoker"
    _service = "lambda"

    def __init__(
        self,
        client: Any,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__(
            retry_policy=retry_policy or RetryPolicy(max_retries=3, base_delay_s=0.0, name=self._component),
            metrics=metrics,
        )
        self._client = client

    def _invoke(self, **kwargs: Any) -> Dict[str, Any]:
        response = dict(self._client.invoke(**kwargs))
        body = response.get("Payload")
        if body is not None and hasattr(body, "read"):
            raw = body.read()
            response["Payload"] = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        return response

    async def invoke(
        self,
        function_name: str,
        payload: Any,
        *,
        ctx: OperationContext,
        is_async: bool = False,
    ) -> LambdaInvocationResult:
        async def _call(security: SecurityContext) -> LambdaInvocationResult:
            require_text("function_name", function_name)
            client_context = {"custom": {"tenant_id": security.tenant_id, "user_id": security.user_id}}
            response = await self._retrying(
                self._invoke,
                ctx=ctx,
                FunctionName=function_name,
                InvocationType="Event" if is_async else "RequestResponse",
                Payload=json.dumps(payload, default=str).encode("utf-8"),
                ClientContext=base64.b64encode(json.dumps(client_context).encode("utf-8")).decode("ascii"),
            )
            status = int(response.get("StatusCode") or 0)
            expected = 202 if is_async else 200
            result = LambdaInvocationResult(
                function_name=function_name,
                status_code=status,
                is_success=status == expected,
                executed_version=str(response.get("ExecutedVersion") or ""),
                log_result=str(response.get("LogResult") or ""),
                payload=str(response.get("Payload") or ""),
                metadata={"invocation_type": "Event" if is_async else "RequestResponse"},
            )
            function_error = response.get("FunctionError")
            if function_error:
                result.is_success = False
                result.error_message = str(function_error)
                LOG.warning(
                    "lambda %s returned function error %s",
                    function_name,
                    function_error,
                    extra={"tenant": security.tenant_hash()},
                )
            return result

        return await self._run_operation(
            "invoke",
            ctx,
            _call,
            metric_extra={"function": function_name, "async": is_async},
        )
