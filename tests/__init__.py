# SPDX-License-Identifier: Apache-2.0
"""
FhirRag SDK tests.

Component suites for the core pipeline, Bedrock LLM, storage,
orchestration, telemetry and embedding facades, run against in-process
boto3 fakes.
"""
