# fhirrag_sdk/storage/aws_storage.py
# SPDX-License-Identifier: Apache-2.0
"""
Tenant-scoped object storage: S3 for payloads, DynamoDB for metadata.

Tenant scoping
--------------
Every caller key is rewritten before any read, write, delete, exists or list:

    metadata key   tenant:{tenant_id}:{key}     (DynamoDB partition key "Key")
    object key     {tenant_id}/{key}            (S3)

A caller can never reach another tenant's record, even with an identical
unscoped key. ``list_keys`` strips the tenant prefix before returning.

"Not found" from either store becomes ``None`` on read paths and ``False``
on delete / exists; it is never raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from boto3.dynamodb.conditions import Attr

from fhirrag_sdk.config import AwsStorageConfig
from fhirrag_sdk.core.context import OperationContext, system_context
from fhirrag_sdk.core.errors import InvalidArgument, NotFound
from fhirrag_sdk.core.facade import BaseRemoteFacade, require_text
from fhirrag_sdk.core.metrics import MetricsSink
from fhirrag_sdk.core.retry import RetryPolicy
from fhirrag_sdk.core.security import SecurityContext

__all__ = ["StorageMetadata", "AwsStorageService", "tenant_key", "object_key"]

LOG = logging.getLogger(__name__)


def tenant_key(tenant_id: str, key: str) -> str:
    return f"tenant:{tenant_id}:{key}"


def object_key(tenant_id: str, key: str) -> str:
    return f"{tenant_id}/{key}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return _utcnow()


@dataclass
class StorageMetadata:
    """Metadata record for one stored object (one DynamoDB item)."""

    key: str = ""
    s3_key: str = ""
    tenant_id: str = ""
    data_type: str = "bytes"
    content_type: str = "application/octet-stream"
    size_bytes: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    created_by: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    def to_item(self) -> Dict[str, Any]:
        return {
            "Key": self.key,
            "S3Key": self.s3_key,
            "TenantId": self.tenant_id,
            "DataType": self.data_type,
            "ContentType": self.content_type,
            "SizeBytes": self.size_bytes,
            "CreatedAt": self.created_at.isoformat(),
            "UpdatedAt": self.updated_at.isoformat(),
            "CreatedBy": self.created_by,
            "Tags": json.dumps(self.tags, sort_keys=True),
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "StorageMetadata":
        tags: Dict[str, str] = {}
        raw_tags = item.get("Tags")
        if raw_tags:
            try:
                decoded = json.loads(raw_tags)
                if isinstance(decoded, dict):
                    tags = {str(k): str(v) for k, v in decoded.items()}
            except (TypeError, ValueError):
                LOG.debug("ignoring malformed tags on %s", item.get("S3Key"))
        return cls(
            key=str(item.get("Key", "")),
            s3_key=str(item.get("S3Key", "")),
            tenant_id=str(item.get("TenantId", "")),
            data_type=str(item.get("DataType", "bytes")),
            content_type=str(item.get("ContentType", "application/octet-stream")),
            size_bytes=int(item.get("SizeBytes", 0) or 0),
            created_at=_parse_dt(item.get("CreatedAt")),
            updated_at=_parse_dt(item.get("UpdatedAt")),
            created_by=str(item.get("CreatedBy", "")),
            tags=tags,
        )


class AwsStorageService(BaseRemoteFacade):
    """
    S3 + DynamoDB storage facade.

    Args:
        s3_client: ``boto3.client("s3")``
        table: ``boto3.resource("dynamodb").Table(name)``
    """

    _component = "storage"
    _service = "s3/dynamodb"

    def __init__(
        self,
        s3_client: Any,
        table: Any,
        config: Optional[AwsStorageConfig] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._config = config or AwsStorageConfig()
        super().__init__(
            retry_policy=retry_policy
            or RetryPolicy(
                max_retries=self._config.max_retries,
                base_delay_s=self._config.retry_delay_s,
                name=self._component,
            ),
            metrics=metrics,
        )
        self._s3 = s3_client
        self._table = table

    @property
    def config(self) -> AwsStorageConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Store primitives (all retried, all raise translated errors)
    # ------------------------------------------------------------------ #

    async def _put_object(self, s3_key: str, data: bytes, content_type: str, ctx: OperationContext) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self._config.s3_bucket_name,
            "Key": s3_key,
            "Body": data,
            "ContentType": content_type,
        }
        if self._config.use_server_side_encryption:
            kwargs["ServerSideEncryption"] = self._config.server_side_encryption_method
        await self._retrying(self._s3.put_object, ctx=ctx, **kwargs)

    def _read_object(self, s3_key: str) -> bytes:
        response = self._s3.get_object(Bucket=self._config.s3_bucket_name, Key=s3_key)
        return response["Body"].read()

    async def _get_object(self, s3_key: str, ctx: OperationContext) -> Optional[bytes]:
        try:
            return await self._retrying(self._read_object, s3_key, ctx=ctx)
        except NotFound:
            return None

    async def _delete_object(self, s3_key: str, ctx: OperationContext) -> None:
        await self._retrying(
            self._s3.delete_object,
            ctx=ctx,
            Bucket=self._config.s3_bucket_name,
            Key=s3_key,
        )

    async def _get_metadata(self, scoped_key: str, ctx: OperationContext) -> Optional[StorageMetadata]:
        try:
            response = await self._retrying(self._table.get_item, ctx=ctx, Key={"Key": scoped_key})
        except NotFound:
            return None
        item = response.get("Item")
        return StorageMetadata.from_item(item) if item else None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def store(
        self,
        key: str,
        data: bytes,
        *,
        ctx: OperationContext,
        metadata: Optional[Mapping[str, str]] = None,
        content_type: str = "application/octet-stream",
    ) -> bool:
        """
        Write ``data`` to S3 then its metadata to DynamoDB.

        Raises:
            InvalidArgument: empty key or empty data.
        """

        async def _call(security: SecurityContext) -> bool:
            require_text("key", key)
            if not data:
                raise InvalidArgument("data must be non-empty bytes", field="data")
            if not isinstance(data, (bytes, bytearray)):
                raise InvalidArgument("data must be bytes", field="data")

            tenant = security.tenant_id
            record = StorageMetadata(
                key=tenant_key(tenant, key),
                s3_key=object_key(tenant, key),
                tenant_id=tenant,
                content_type=content_type,
                size_bytes=len(data),
                created_by=security.user_id,
                tags=dict(metadata or {}),
            )
            await self._put_object(record.s3_key, bytes(data), content_type, ctx)
            await self._retrying(self._table.put_item, ctx=ctx, Item=record.to_item())
            LOG.debug(
                "stored %d bytes",
                record.size_bytes,
                extra={"tenant": security.tenant_hash()},
            )
            return True

        return await self._run_operation("store", ctx, _call)

    async def retrieve(self, key: str, *, ctx: OperationContext) -> Optional[bytes]:
        """Return the stored bytes, or ``None`` if the key is absent for this tenant."""

        async def _call(security: SecurityContext) -> Optional[bytes]:
            require_text("key", key)
            record = await self._get_metadata(tenant_key(security.tenant_id, key), ctx)
            if record is None or record.tenant_id != security.tenant_id:
                return None
            data = await self._get_object(record.s3_key, ctx)
            if data is None:
                LOG.warning(
                    "metadata present but object missing",
                    extra={"tenant": security.tenant_hash()},
                )
            return data

        return await self._run_operation("retrieve", ctx, _call)

    async def get_metadata(self, key: str, *, ctx: OperationContext) -> Optional[StorageMetadata]:
        async def _call(security: SecurityContext) -> Optional[StorageMetadata]:
            require_text("key", key)
            record = await self._get_metadata(tenant_key(security.tenant_id, key), ctx)
            if record is None or record.tenant_id != security.tenant_id:
                return None
            return record

        return await self._run_operation("get_metadata", ctx, _call)

    async def delete(self, key: str, *, ctx: OperationContext) -> bool:
        """Delete object and metadata. Returns ``False`` when the key is absent."""

        async def _call(security: SecurityContext) -> bool:
            require_text("key", key)
            scoped = tenant_key(security.tenant_id, key)
            record = await self._get_metadata(scoped, ctx)
            if record is None or record.tenant_id != security.tenant_id:
                return False
            try:
                await self._delete_object(record.s3_key, ctx)
            except NotFound:
                LOG.debug("object already gone", extra={"tenant": security.tenant_hash()})
            try:
                await self._retrying(self._table.delete_item, ctx=ctx, Key={"Key": scoped})
            except NotFound:
                return False
            return True

        return await self._run_operation("delete", ctx, _call)

    async def exists(self, key: str, *, ctx: OperationContext) -> bool:
        async def _call(security: SecurityContext) -> bool:
            require_text("key", key)
            record = await self._get_metadata(tenant_key(security.tenant_id, key), ctx)
            return record is not None and record.tenant_id == security.tenant_id

        return await self._run_operation("exists", ctx, _call)

    async def list_keys(self, prefix: Optional[str] = None, *, ctx: OperationContext) -> List[str]:
        """
        List caller-visible keys for the caller's tenant, optionally by prefix.

        Order is the store's scan order; it is not stable across calls.
        """

        async def _call(security: SecurityContext) -> List[str]:
            tenant = security.tenant_id
            strip = tenant_key(tenant, "")
            wanted = tenant_key(tenant, prefix or "")
            condition = Attr("TenantId").eq(tenant)
            if prefix:
                condition = condition & Attr("Key").begins_with(wanted)

            keys: List[str] = []
            scan_kwargs: Dict[str, Any] = {"FilterExpression": condition}
            while True:
                if ctx.cancellation is not None:
                    ctx.cancellation.raise_if_cancelled()
                try:
                    page = await self._retrying(self._table.scan, ctx=ctx, **scan_kwargs)
                except NotFound:
                    return keys
                for item in page.get("Items", []):
                    record = StorageMetadata.from_item(item)
                    if record.tenant_id != tenant or not record.key.startswith(wanted):
                        continue
                    keys.append(record.key[len(strip):])
                last = page.get("LastEvaluatedKey")
                if not last:
                    break
                scan_kwargs["ExclusiveStartKey"] = last
            return keys

        return await self._run_operation("list_keys", ctx, _call)

    # ------------------------------------------------------------------ #
    # JSON helpers
    # ------------------------------------------------------------------ #

    async def store_json(
        self,
        key: str,
        value: Any,
        *,
        ctx: OperationContext,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> bool:
        data = json.dumps(value, default=str).encode("utf-8")
        return await self.store(key, data, ctx=ctx, metadata=metadata, content_type="application/json")

    async def retrieve_json(self, key: str, *, ctx: OperationContext) -> Optional[Any]:
        data = await self.retrieve(key, ctx=ctx)
        if data is None:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidArgument(f"stored value for {key!r} is not JSON", field="key") from e

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        """Check the bucket (``HeadBucket``) and the table (``DescribeTable`` via ``load``)."""
        ctx = ctx if ctx is not None and ctx.security is not None else system_context()
        report: Dict[str, Any] = {"ok": True, "server": "aws-storage", "checks": {}}

        checks = (
            ("s3", lambda: self._call_remote(self._s3.head_bucket, Bucket=self._config.s3_bucket_name, ctx=ctx)),
            ("dynamodb", lambda: self._call_remote(self._table.load, ctx=ctx)),
        )
        for name, check in checks:
            try:
                await check()
                report["checks"][name] = {"ok": True}
            except Exception as e:
                report["ok"] = False
                report["checks"][name] = {"ok": False, "error": getattr(e, "code", None) or type(e).__name__}
        return report
