"""Delivery journal primitives.

This package provides a minimal foundation for:
- Recording collector pipeline events (delivered, buffered, rotated, drained) as
  durable records.
- Capturing both "occurred at" and "logged at" timestamps.
- Persisting records to a sink (DuckDB by default) without blocking the event loop.
"""

from .models import ObservabilityRecord
from .recorder import ObservabilityRecorder
from .sinks import DuckDBObservabilitySink, InMemoryObservabilitySink, ObservabilitySink

__all__ = [
    "DuckDBObservabilitySink",
    "InMemoryObservabilitySink",
    "ObservabilityRecord",
    "ObservabilityRecorder",
    "ObservabilitySink",
]
