"""File management for trace artifacts: naming, locations and retention."""

import os
import time
import logging
from pathlib import Path
from datetime import datetime
from threading import Thread
from typing import Callable, List, Optional

from ..models.session import RecordingKind

logger = logging.getLogger(__name__)

TEMP_TRACE_NAME = ".trace-in-progress.trace"
RECOVERED_PREFIX = "recovered-"
TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"

ARTIFACT_PREFIXES = tuple(kind.prefix + "-" for kind in RecordingKind) + (RECOVERED_PREFIX,)


class FileManager:
    """Owns the trace directory layout and the lifetime of saved artifacts."""

    def __init__(self, trace_dir: str, board: str, build_id: str, extension: str,
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize file manager.

        Args:
            trace_dir: Directory holding the in-progress trace and saved artifacts
            board: Board name embedded in artifact names
            build_id: Build identifier embedded in artifact names
            extension: Artifact extension, without the dot
            clock: Source of the timestamp embedded in artifact names
        """
        self.trace_dir = Path(trace_dir)
        self.board = board
        self.build_id = build_id
        self.extension = extension
        self.clock = clock

    @property
    def temp_trace_path(self) -> Path:
        """Where the daemon writes the recording while it is in progress."""
        return self.trace_dir / TEMP_TRACE_NAME

    def ensure_directory(self) -> None:
        self.trace_dir.mkdir(parents=True, exist_ok=True)

    def get_output_filename(self, kind: RecordingKind) -> str:
        """Build ``<prefix>-<board>-<buildId>-<timestamp>.<ext>`` for ``kind``."""
        now = self.clock().strftime(TIMESTAMP_FORMAT)
        return f"{kind.prefix}-{self.board}-{self.build_id}-{now}.{self.extension}"

    def get_recovered_filename(self) -> str:
        # The kind of an interrupted recording is not known, hence UNKNOWN.
        return RECOVERED_PREFIX + self.get_output_filename(RecordingKind.UNKNOWN)

    def get_output_file(self, filename: str) -> Path:
        return self.trace_dir / filename

    def get_unique_output_file(self, filename: str) -> Path:
        """Like `get_output_file`, but appends ``-1``, ``-2``... before the
        extension while the name is already taken."""
        path = self.get_output_file(filename)
        suffix = f".{self.extension}"
        stem = filename[:-len(suffix)] if filename.endswith(suffix) else filename
        counter = 1
        while path.exists():
            path = self.get_output_file(f"{stem}-{counter}{suffix}")
            counter += 1
        return path

    def list_artifacts(self) -> List[Path]:
        """Saved artifacts in the trace directory, newest first."""
        if not self.trace_dir.is_dir():
            return []
        artifacts = [
            path for path in self.trace_dir.iterdir()
            if path.is_file() and path.name.startswith(ARTIFACT_PREFIXES)
        ]
        artifacts.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return artifacts

    def delete_older_files(self, min_count: int, min_age_seconds: float) -> int:
        """Delete artifacts beyond the newest ``min_count`` that are older than ``min_age_seconds``.

        Returns:
            Number of files deleted
        """
        now = time.time()
        deleted = 0
        for path in self.list_artifacts()[min_count:]:
            # One bad file must not stop the rest of the pass.
            try:
                age = now - path.stat().st_mtime
                if age <= min_age_seconds:
                    continue
                path.unlink()
            except OSError as e:
                logger.error(f"Failed to delete old trace {path.name}: {e}")
                continue
            deleted += 1
            logger.info(f"Deleted old trace: {path.name}")

        logger.debug(f"Retention pass deleted {deleted} files")
        return deleted

    def cleanup_older_files(self, min_count: int, min_age_seconds: float) -> Thread:
        """Run `delete_older_files` in the background.

        Fire-and-forget: failures are logged, never raised to the caller.

        Returns:
            The background thread (callers need not join it)
        """
        def _cleanup() -> None:
            try:
                self.delete_older_files(min_count, min_age_seconds)
            except OSError as e:
                logger.error(f"Failed to delete older traces: {e}")

        thread = Thread(target=_cleanup, daemon=True)
        thread.name = "TraceRetentionThread"
        thread.start()
        return thread

    def clear_saved_traces(self) -> int:
        """Delete every saved artifact. The in-progress trace is left alone.

        Returns:
            Number of files deleted
        """
        logger.info(f"Clearing trace directory: {self.trace_dir}")
        deleted = 0
        for path in self.list_artifacts():
            try:
                path.unlink()
                deleted += 1
            except FileNotFoundError:
                logger.debug(f"Already gone: {path}")
        return deleted

    def read_state(self, state_file: str) -> Optional[str]:
        path = self.trace_dir / state_file
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write_state(self, state_file: str, content: str) -> None:
        self.ensure_directory()
        path = self.trace_dir / state_file
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
