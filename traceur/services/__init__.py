"""Services layer for Traceur application logic."""

from .trace_service import TraceService

__all__ = [
    "TraceService",
]
