"""Event models for the pub/sub process output channels."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ProcessOutputEvent:
    """One line of output read from a spawned process."""
    stream: str  # "stdout" | "stderr"
    line: str
    command: str
    pid: int
    timestamp: datetime = field(default_factory=datetime.now)
