# fhirrag_sdk/telemetry/__init__.py
# SPDX-License-Identifier: Apache-2.0

from fhirrag_sdk.telemetry.models import (
    TelemetryContext,
    TelemetryMetrics,
    TelemetryStep,
    TelemetryStepStatus,
)

__all__ = ["TelemetryContext", "TelemetryMetrics", "TelemetryStep", "TelemetryStepStatus"]
