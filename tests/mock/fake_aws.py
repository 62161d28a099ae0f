# SPDX-License-Identifier: Apache-2.0
"""
In-process fakes for the boto3 clients used by the facades.

The fakes mirror the boto3 call signatures the facades use and raise real
``botocore.exceptions.ClientError`` objects, so error translation and retry
classification are exercised exactly as against AWS.

Failure injection: every fake has a ``failures`` list; each call pops the
first entry and raises it when it is an exception.
"""

from __future__ import annotations

import io
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from botocore.exceptions import ClientError, EndpointConnectionError


def client_error(code: str, status: int = 400, operation: str = "Operation", message: str = "") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status, "HTTPHeaders": {}},
        },
        operation,
    )


def throttled(operation: str = "Operation") -> ClientError:
    return client_error("ThrottlingException", 400, operation, "Rate exceeded")


def connection_error() -> EndpointConnectionError:
    return EndpointConnectionError(endpoint_url="https://example.invalid")


class _FailureQueue:
    def __init__(self) -> None:
        self.failures: List[BaseException] = []
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def _enter(self, op: str, kwargs: Mapping[str, Any]) -> None:
        self.calls.append((op, dict(kwargs)))
        if self.failures:
            exc = self.failures.pop(0)
            if exc is not None:
                raise exc

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)


# --------------------------------------------------------------------------- #
# Bedrock runtime
# --------------------------------------------------------------------------- #

Handler = Callable[[str, Dict[str, Any]], Any]


def _default_handler(model_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    if "inputText" in body and "dimensions" in body:
        dims = int(body["dimensions"])
        seed = sum(ord(c) for c in body["inputText"]) or 1
        return {"embedding": [float((seed * (i + 1)) % 7 + 1) for i in range(dims)], "inputTextTokenCount": 3}
    if model_id.startswith("anthropic.claude"):
        return {
            "content": [{"type": "text", "text": "mock claude answer"}],
            "usage": {"input_tokens": 12, "output_tokens": 5},
            "stop_reason": "end_turn",
        }
    if model_id.startswith("amazon.titan"):
        return {
            "inputTextTokenCount": 7,
            "results": [{"outputText": "mock titan answer", "completionReason": "FINISH", "tokenCount": 4}],
        }
    return {"text": "mock generic answer"}


class FakeBedrockRuntime(_FailureQueue):
    def __init__(self, handler: Optional[Handler] = None) -> None:
        super().__init__()
        self.handler = handler or _default_handler

    def invoke_model(self, *, modelId: str, body: bytes, contentType: str = "", accept: str = "") -> Dict[str, Any]:
        payload = json.loads(body)
        self._enter("invoke_model", {"modelId": modelId, "body": payload})
        result = self.handler(modelId, payload)
        if isinstance(result, BaseException):
            raise result
        raw = result if isinstance(result, bytes) else json.dumps(result).encode("utf-8")
        return {"body": io.BytesIO(raw), "contentType": "application/json"}

    def bodies(self) -> List[Dict[str, Any]]:
        return [kwargs["body"] for op, kwargs in self.calls if op == "invoke_model"]


# --------------------------------------------------------------------------- #
# S3
# --------------------------------------------------------------------------- #

class FakeS3(_FailureQueue):
    def __init__(self, bucket: str = "fhir-rag-storage") -> None:
        super().__init__()
        self.bucket = bucket
        self.objects: Dict[str, Dict[str, Any]] = {}

    def _check_bucket(self, bucket: str, op: str) -> None:
        if bucket != self.bucket:
            raise client_error("NoSuchBucket", 404, op)

    def put_object(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("put_object", kwargs)
        self._check_bucket(kwargs["Bucket"], "PutObject")
        self.objects[kwargs["Key"]] = dict(kwargs)
        return {"ETag": '"etag"'}

    def get_object(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("get_object", kwargs)
        self._check_bucket(kwargs["Bucket"], "GetObject")
        obj = self.objects.get(kwargs["Key"])
        if obj is None:
            raise client_error("NoSuchKey", 404, "GetObject", "The specified key does not exist.")
        return {"Body": io.BytesIO(obj["Body"]), "ContentType": obj.get("ContentType")}

    def delete_object(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("delete_object", kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}

    def head_bucket(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("head_bucket", kwargs)
        self._check_bucket(kwargs["Bucket"], "HeadBucket")
        return {}


# --------------------------------------------------------------------------- #
# DynamoDB Table resource
# --------------------------------------------------------------------------- #

class FakeTable(_FailureQueue):
    """
    ``boto3.resource("dynamodb").Table`` stand-in.

    ``scan`` ignores ``FilterExpression`` (callers must post-filter) and
    paginates with ``page_size`` to exercise ``LastEvaluatedKey``.
    """

    def __init__(self, key_name: str = "Key", page_size: int = 2) -> None:
        super().__init__()
        self.key_name = key_name
        self.page_size = page_size
        self.items: Dict[str, Dict[str, Any]] = {}

    def put_item(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("put_item", kwargs)
        item = dict(kwargs["Item"])
        self.items[item[self.key_name]] = item
        return {}

    def get_item(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("get_item", kwargs)
        item = self.items.get(kwargs["Key"][self.key_name])
        return {"Item": dict(item)} if item is not None else {}

    def delete_item(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("delete_item", kwargs)
        self.items.pop(kwargs["Key"][self.key_name], None)
        return {}

    def scan(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("scan", kwargs)
        keys = list(self.items)
        start = 0
        if "ExclusiveStartKey" in kwargs:
            start = keys.index(kwargs["ExclusiveStartKey"][self.key_name]) + 1
        page = keys[start:start + self.page_size]
        out: Dict[str, Any] = {"Items": [dict(self.items[k]) for k in page]}
        if start + self.page_size < len(keys):
            out["LastEvaluatedKey"] = {self.key_name: page[-1]}
        return out

    def load(self) -> None:
        self._enter("load", {})


# --------------------------------------------------------------------------- #
# SQS / Lambda
# --------------------------------------------------------------------------- #

class FakeSqs(_FailureQueue):
    def __init__(self) -> None:
        super().__init__()
        self.messages: List[Dict[str, Any]] = []

    def send_message(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("send_message", kwargs)
        self.messages.append(dict(kwargs))
        return {"MessageId": f"msg-{len(self.messages)}"}

    def get_queue_attributes(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("get_queue_attributes", kwargs)
        return {"Attributes": {"ApproximateNumberOfMessages": str(len(self.messages))}}

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(m["MessageBody"]) for m in self.messages]


class FakeLambda(_FailureQueue):
    def __init__(self, *, function_error: Optional[str] = None, payload: Any = None) -> None:
        super().__init__()
        self.function_error = function_error
        self.payload = {"ok": True} if payload is None else payload

    def invoke(self, **kwargs: Any) -> Dict[str, Any]:
        self._enter("invoke", kwargs)
        is_event = kwargs.get("InvocationType") == "Event"
        response: Dict[str, Any] = {
            "StatusCode": 202 if is_event else 200,
            "ExecutedVersion": "$LATEST",
            "Payload": io.BytesIO(b"" if is_event else self._encoded_payload()),
        }
        if self.function_error:
            response["FunctionError"] = self.function_error
        return response

    def _encoded_payload(self) -> bytes:
        if isinstance(self.payload, bytes):
            return self.payload
        return json.dumps(self.payload).encode("utf-8")
