"""Data models for the Traceur application."""

from .session import SessionRequest, RecordingKind
from .trace_config import TraceConfig, TraceBuffer, DataSourceSpec, ProtoEnum, RING_BUFFER
from .events import ProcessOutputEvent

__all__ = [
    "SessionRequest",
    "RecordingKind",
    "TraceConfig",
    "TraceBuffer",
    "DataSourceSpec",
    "ProtoEnum",
    "RING_BUFFER",
    "ProcessOutputEvent",
]
