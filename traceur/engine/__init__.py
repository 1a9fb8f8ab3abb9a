"""Trace engines and the configuration they hand to the tracing daemon."""

from .base import AbstractTraceEngine, PerfettoProtocolError
from .categories import CategoryCatalogFetcher
from .perfetto import PerfettoEngine

__all__ = [
    "AbstractTraceEngine",
    "PerfettoProtocolError",
    "CategoryCatalogFetcher",
    "PerfettoEngine",
]
