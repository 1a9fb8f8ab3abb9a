"""Perfetto trace engine: starts, stops and recovers detached Perfetto sessions."""

import os
import stat
import logging
import subprocess
from pathlib import Path
from typing import Callable, Dict, Optional

from ..models.session import SessionRequest
from ..models.trace_config import TraceConfig
from ..process.deadline import Deadline
from ..process.runner import ProcessRunner
from ..storage.file_manager import FileManager
from .base import AbstractTraceEngine, PerfettoProtocolError
from .categories import CategoryCatalogFetcher, LIST_TIMEOUT_S
from .config_generator import build_stack_sampling_config, build_trace_config

logger = logging.getLogger(__name__)

NAME = "PERFETTO"
OUTPUT_EXTENSION = "perfetto-trace"

SESSION_TAG = "traceur"
MARKER = "PERFETTO_ARGUMENTS"
STARTUP_TIMEOUT_S = 10.0
STOP_TIMEOUT_S = 30.0

# Exit statuses of `perfetto --is_detached`.
DETACHED_SESSION_EXISTS = 0
NO_DETACHED_SESSION = 2


def _default_cpu_count() -> int:
    return os.cpu_count() or 1


class PerfettoEngine(AbstractTraceEngine):
    """Drives the ``perfetto`` command line client.

    At most one session runs at a time. That is checked by asking the
    daemon before each start, not by a lock, so callers must serialize
    start/stop requests themselves.
    """

    def __init__(self,
                 runner: ProcessRunner,
                 file_manager: FileManager,
                 binary: str = "perfetto",
                 session_tag: str = SESSION_TAG,
                 cpu_count: Callable[[], int] = _default_cpu_count,
                 catalog: Optional[CategoryCatalogFetcher] = None):
        """Initialize the engine.

        Args:
            runner: Process port used for every daemon command
            file_manager: Owner of the trace directory and artifact names
            binary: Perfetto client executable
            session_tag: Name of the detached session
            cpu_count: Returns the number of CPUs buffer sizes are scaled by
            catalog: Category fetcher; one using ``runner`` is created if None
        """
        self.runner = runner
        self.file_manager = file_manager
        self.binary = binary
        self.session_tag = session_tag
        self.cpu_count = cpu_count
        self.catalog = catalog or CategoryCatalogFetcher(runner, binary)

    @property
    def name(self) -> str:
        return NAME

    @property
    def output_extension(self) -> str:
        return OUTPUT_EXTENSION

    def trace_start(self, request: SessionRequest) -> bool:
        if self.is_tracing_on():
            logger.error("Attempting to start perfetto trace but trace is already in progress")
            return False
        self.recover_existing_recording()

        config = build_trace_config(request, self.cpu_count())
        return self._start_with_config(config)

    def stack_sample_start(self, attach_to_bugreport: bool) -> bool:
        if self.is_tracing_on():
            logger.error("Attempting to start stack sampling but perfetto is already active")
            return False
        self.recover_existing_recording()

        config = build_stack_sampling_config(attach_to_bugreport, self.cpu_count())
        return self._start_with_config(config)

    def trace_stop(self) -> None:
        logger.info("Stopping perfetto trace.")

        if not self.is_tracing_on():
            logger.warning("No trace appears to be in progress. Stopping perfetto trace may not work.")

        cmd = f"{self.binary} --stop --attach={self.session_tag}"
        process = self.runner.run_with_deadline(cmd, Deadline.after(STOP_TIMEOUT_S))
        if process is None:
            # The daemon may already have exited on its own.
            logger.error(f"perfetto traceStop timed out after {STOP_TIMEOUT_S}s")
        elif process.returncode != 0:
            logger.error(f"perfetto traceStop failed with: {process.returncode}")

    def trace_dump(self, out_file: Path) -> bool:
        self.trace_stop()

        if self.is_tracing_on():
            logger.error("Trace was not stopped successfully, aborting trace dump.")
            return False

        temp_trace = self.file_manager.temp_trace_path
        if not temp_trace.exists():
            logger.error("In-progress trace file doesn't exist, aborting trace dump.")
            return False

        out_file = Path(out_file)
        logger.info(f"Saving perfetto trace to {out_file}")

        # Rename failures propagate: the artifact location can't be trusted anymore.
        os.rename(temp_trace, out_file.resolve())
        mode = (stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP
                | stat.S_IROTH | stat.S_IWOTH)
        os.chmod(out_file, mode)
        return True

    def is_tracing_on(self) -> bool:
        cmd = f"{self.binary} --is_detached={self.session_tag}"
        process = self.runner.run(cmd)
        try:
            result = process.wait(Deadline.after(LIST_TIMEOUT_S))
        except subprocess.TimeoutExpired:
            process.kill()
            raise PerfettoProtocolError(f"Perfetto activity probe timed out after {LIST_TIMEOUT_S}s")

        if result == DETACHED_SESSION_EXISTS:
            return True
        if result == NO_DETACHED_SESSION:
            return False
        raise PerfettoProtocolError(f"Perfetto error: {result}")

    def list_categories(self) -> Dict[str, str]:
        return self.catalog.fetch()

    def recover_existing_recording(self) -> None:
        """Save a recording left behind by an earlier, interrupted session."""
        # Names have one-second resolution; never overwrite an earlier recovery.
        recovered_file = self.file_manager.get_unique_output_file(
            self.file_manager.get_recovered_filename())
        if not self.trace_dump(recovered_file):
            logger.warning("Failed to recover in-progress trace.")

    def _start_with_config(self, config: TraceConfig) -> bool:
        rendered = config.render()

        # A marker inside the config would end the here-doc early.
        if MARKER in rendered:
            raise PerfettoProtocolError("The arguments to the Perfetto command are malformed.")

        self.file_manager.ensure_directory()
        cmd = (f"{self.binary} --detach={self.session_tag}"
               f" -o {self.file_manager.temp_trace_path}"
               f" -c - --txt"
               f" <<{MARKER}\n{rendered}\n{MARKER}")

        logger.info("Starting perfetto trace.")
        logger.debug(f"Perfetto config:\n{rendered}")
        process = self.runner.run_with_deadline(
            cmd, Deadline.after(STARTUP_TIMEOUT_S),
            env={"TMPDIR": str(self.file_manager.trace_dir)})
        if process is None:
            return False
        if process.returncode != 0:
            logger.error(f"perfetto trace start failed with: {process.returncode}")
            return False

        logger.info("perfetto traceStart succeeded!")
        return True
