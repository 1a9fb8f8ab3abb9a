"""Session-related data models."""

from enum import Enum
from typing import FrozenSet

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordingKind(Enum):
    """What the most recent recording captured."""
    UNKNOWN = "recording"
    TRACE = "trace"
    STACK_SAMPLES = "stack-samples"

    @property
    def prefix(self) -> str:
        """Filename prefix for artifacts of this kind."""
        return self.value


class SessionRequest(BaseModel):
    """A declarative request to record a trace.

    Immutable once created; tags are deduplicated.
    """
    model_config = ConfigDict(frozen=True)

    tags: FrozenSet[str] = frozenset()
    buffer_size_kb: int = Field(default=16384, gt=0)  # per CPU
    apps: bool = True
    attach_to_bugreport: bool = True
    long_trace: bool = False
    max_long_trace_size_mb: int = Field(default=10240, ge=0)  # 0 = unlimited
    max_long_trace_duration_minutes: int = Field(default=30, ge=0)  # 0 = unlimited

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value):
        if isinstance(value, str):
            raise ValueError("tags must be a collection of strings, not a single string")
        return frozenset(value)
