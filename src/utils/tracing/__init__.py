"""
Distributed tracing using OpenTelemetry.

Instruments the masking run, each table, each column and each batch
UPDATE so a slow run can be broken down per statement.
"""

from .context import add_span_attributes, add_span_event, trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "add_span_attributes",
    "add_span_event",
]
