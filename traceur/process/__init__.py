"""Subprocess spawning and supervision."""

from .deadline import Deadline
from .runner import ProcessRunner, ProcessHandle
from .output_pub import OutputPublisher, ProcessLogSink

__all__ = [
    'Deadline',
    'ProcessRunner',
    'ProcessHandle',
    'OutputPublisher',
    'ProcessLogSink',
]
