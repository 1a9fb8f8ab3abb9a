"""Abstract base class for trace engines."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict
import logging

from ..models.session import SessionRequest

logger = logging.getLogger(__name__)


class PerfettoProtocolError(RuntimeError):
    """The daemon answered in a way its session semantics do not allow.

    Raised for an unexpected exit status from the activity probe and for a
    configuration that would terminate its inline heredoc early.
    """


class AbstractTraceEngine(ABC):
    """Capability set shared by every tracing backend.

    Callers hold a reference to an engine instance rather than a global, so
    tests can substitute their own.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine name, e.g. "PERFETTO"."""

    @property
    @abstractmethod
    def output_extension(self) -> str:
        """Extension (without dot) of the artifacts this engine produces."""

    @abstractmethod
    def trace_start(self, request: SessionRequest) -> bool:
        """Start a trace described by ``request``.

        Returns:
            True if the daemon is now recording, False otherwise
        """

    @abstractmethod
    def stack_sample_start(self, attach_to_bugreport: bool) -> bool:
        """Start CPU stack sampling."""

    @abstractmethod
    def trace_stop(self) -> None:
        """Stop the active recording, if any."""

    @abstractmethod
    def trace_dump(self, out_file: Path) -> bool:
        """Stop the recording and move its artifact to ``out_file``."""

    @abstractmethod
    def is_tracing_on(self) -> bool:
        """Whether a recording session is currently active."""

    @abstractmethod
    def list_categories(self) -> Dict[str, str]:
        """Available trace categories, name -> description, sorted by name."""
