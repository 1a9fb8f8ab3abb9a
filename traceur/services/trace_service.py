"""Trace service: request-level start/stop handling on top of a trace engine."""

import logging
from pathlib import Path
from threading import Thread
from typing import Dict, Optional

import yaml

from ..engine.base import AbstractTraceEngine
from ..models.session import RecordingKind, SessionRequest
from ..storage.file_manager import FileManager

logger = logging.getLogger(__name__)

STATE_FILE = ".traceur-state.yaml"
MIN_KEEP_COUNT = 3
MIN_KEEP_AGE_S = 4 * 7 * 24 * 60 * 60


class TraceService:
    """Starts and stops recordings and decides where finished ones are saved."""

    def __init__(self, engine: AbstractTraceEngine, file_manager: FileManager,
                 min_keep_count: int = MIN_KEEP_COUNT,
                 min_keep_age_s: float = MIN_KEEP_AGE_S):
        """Initialize trace service.

        Args:
            engine: Trace engine doing the actual work
            file_manager: Artifact naming and retention
            min_keep_count: Newest artifacts always kept by retention
            min_keep_age_s: Artifacts younger than this are always kept
        """
        self.engine = engine
        self.file_manager = file_manager
        self.min_keep_count = min_keep_count
        self.min_keep_age_s = min_keep_age_s
        self.retention_thread: Optional[Thread] = None

    def current_engine_name(self) -> str:
        return self.engine.name

    def is_tracing_on(self) -> bool:
        return self.engine.is_tracing_on()

    def list_categories(self) -> Dict[str, str]:
        return self.engine.list_categories()

    def start_tracing(self, request: SessionRequest) -> bool:
        """Start a trace. On failure make sure nothing is left running."""
        logger.info(f"Starting trace with tags: {sorted(request.tags)}")
        started = self.engine.trace_start(request)
        if not started:
            logger.error("Starting the trace was unsuccessful, stopping any leftover session")
            self.engine.trace_stop()
        self._save_recording_kind(RecordingKind.TRACE)
        return started

    def start_stack_sampling(self, attach_to_bugreport: bool = True) -> bool:
        """Start stack sampling. On failure make sure nothing is left running."""
        logger.info("Starting stack sampling")
        started = self.engine.stack_sample_start(attach_to_bugreport)
        if not started:
            logger.error("Starting stack sampling was unsuccessful, stopping any leftover session")
            self.engine.trace_stop()
        self._save_recording_kind(RecordingKind.STACK_SAMPLES)
        return started

    def stop_tracing(self, session_stolen: bool = False) -> Optional[Path]:
        """Stop the recording and save it.

        Args:
            session_stolen: The session was attached to a bug report; the
                            daemon is stopped but nothing is saved

        Returns:
            Path of the saved artifact, or None if nothing was saved
        """
        saved: Optional[Path] = None
        if session_stolen:
            logger.info("Session was attached to a bug report, not saving it")
            self.engine.trace_stop()
        else:
            kind = self.last_recording_kind()
            out_file = self.file_manager.get_unique_output_file(
                self.file_manager.get_output_filename(kind))
            if self.engine.trace_dump(out_file):
                saved = out_file
                logger.info(f"✅ Recording saved: {out_file}")

        self.retention_thread = self.file_manager.cleanup_older_files(
            self.min_keep_count, self.min_keep_age_s)
        return saved

    def stop_tracing_without_saving(self) -> None:
        """Stop the daemon without saving; the next start recovers the in-progress trace."""
        self.engine.trace_stop()

    def wait_for_retention(self, timeout: float = 10.0) -> None:
        """Block until the last retention pass finishes (for short-lived callers like the CLI)."""
        if self.retention_thread is not None:
            self.retention_thread.join(timeout)

    def clear_saved_traces(self) -> int:
        return self.file_manager.clear_saved_traces()

    def last_recording_kind(self) -> RecordingKind:
        """Kind of the most recently started recording (TRACE if never recorded)."""
        content = self.file_manager.read_state(STATE_FILE)
        if content is None:
            return RecordingKind.TRACE
        try:
            state = yaml.safe_load(content) or {}
            return RecordingKind[state.get("recording_kind", "TRACE")]
        except (yaml.YAMLError, KeyError, AttributeError) as e:
            logger.warning(f"Unreadable state file, assuming a trace: {e}")
            return RecordingKind.TRACE

    def _save_recording_kind(self, kind: RecordingKind) -> None:
        self.file_manager.write_state(STATE_FILE, yaml.safe_dump({"recording_kind": kind.name}))
