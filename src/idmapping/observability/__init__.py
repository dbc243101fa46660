"""
Observability utilities for idmapping.

Tracing is composition-based: components accept an optional ``Tracer`` and
otherwise build one with ``create_tracer(__name__, enable_tracing)``.

Spans are named ``idmapping.<component>.<operation>`` and use the
attribute keys from :mod:`idmapping.observability.attributes`. Without
OpenTelemetry installed every component falls back to ``NullTracer``.
"""

from idmapping.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_FAMILY,
    ATTR_MAPPING_KIND,
    ATTR_PAGE_NUMBER,
    ATTR_PAGE_SIZE,
    ATTR_RECORD_COUNT,
    ATTR_REMOVED_SUBJECT_ID,
    ATTR_RETAINED_SUBJECT_ID,
    ATTR_RUN_LABEL,
    ATTR_SOURCE_ID,
    ATTR_SUBJECT_ID,
    ATTR_TARGET_ID,
)
from idmapping.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
    should_trace,
    span_attributes,
)

__all__ = [
    "OTEL_AVAILABLE",
    "should_trace",
    "span_attributes",
    # Tracer (composition-based API)
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_MAPPING_KIND",
    "ATTR_SOURCE_ID",
    "ATTR_TARGET_ID",
    "ATTR_RUN_LABEL",
    "ATTR_SUBJECT_ID",
    "ATTR_RECORD_COUNT",
    "ATTR_FAMILY",
    "ATTR_RETAINED_SUBJECT_ID",
    "ATTR_REMOVED_SUBJECT_ID",
    "ATTR_PAGE_NUMBER",
    "ATTR_PAGE_SIZE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_TABLE",
]
