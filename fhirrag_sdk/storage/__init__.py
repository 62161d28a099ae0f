# fhirrag_sdk/storage/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""Tenant-scoped S3 + DynamoDB storage facade."""

from fhirrag_sdk.storage.aws_storage import AwsStorageService, StorageMetadata

__all__ = ["AwsStorageService", "StorageMetadata"]
