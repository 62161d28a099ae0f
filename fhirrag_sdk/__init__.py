# fhirrag_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0
"""FhirRag infrastructure SDK: resilient, tenant-scoped AWS facades."""

__version__ = "0.1.0"
