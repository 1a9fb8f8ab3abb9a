"""Pytest configuration and fixtures for Traceur tests."""

import pytest
import tempfile
import subprocess
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from traceur.storage.file_manager import FileManager


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without real subprocesses")
    config.addinivalue_line("markers", "integration: tests that spawn real processes")


class FakeHandle:
    """Stands in for ProcessHandle: a process that already finished (or hangs)."""

    def __init__(self, command: str, returncode: int = 0, stdout: bytes = b"",
                 hangs: bool = False):
        self.command = command
        self._returncode = returncode
        self._stdout = stdout
        self.hangs = hangs
        self.killed = False
        self.pid = 4242

    @property
    def returncode(self) -> Optional[int]:
        if self.hangs and not self.killed:
            return None
        return self._returncode

    def wait(self, deadline=None) -> int:
        if self.hangs:
            raise subprocess.TimeoutExpired(self.command, 0)
        return self._returncode

    def kill(self) -> None:
        self.killed = True

    def stdout_bytes(self) -> bytes:
        return self._stdout


class FakePerfetto:
    """Fake process port that behaves like the perfetto client and daemon.

    Starting a session creates the in-progress trace file; stopping ends the
    session. Knobs let tests inject timeouts and failures.
    """

    def __init__(self, temp_trace: Path):
        self.temp_trace = temp_trace
        self.active = False
        self.commands: List[str] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.handles: List[FakeHandle] = []

        self.probe_code: Optional[int] = None  # overrides the 0/2 answer
        self.start_exit = 0
        self.start_hangs = False
        self.stop_exit = 0
        self.stop_hangs = False
        self.stop_works = True
        self.query_stdout = b""
        self.query_hangs = False
        self.query_exit = 0

    def run(self, command: str, env=None, log_stdout: bool = True) -> FakeHandle:
        self.commands.append(command)
        self.envs.append(env)
        handle = self._handle(command)
        self.handles.append(handle)
        return handle

    def run_with_deadline(self, command: str, deadline, env=None) -> Optional[FakeHandle]:
        handle = self.run(command, env=env)
        if handle.hangs:
            handle.kill()
            return None
        return handle

    def _handle(self, command: str) -> FakeHandle:
        if "--is_detached=" in command:
            code = self.probe_code if self.probe_code is not None else (0 if self.active else 2)
            return FakeHandle(command, code)
        if "--detach=" in command:
            if self.start_hangs:
                return FakeHandle(command, hangs=True)
            if self.start_exit == 0:
                self.active = True
                self.temp_trace.parent.mkdir(parents=True, exist_ok=True)
                self.temp_trace.write_bytes(b"new trace")
            return FakeHandle(command, self.start_exit)
        if "--stop" in command:
            if self.stop_hangs:
                return FakeHandle(command, hangs=True)
            if self.stop_works:
                self.active = False
            return FakeHandle(command, self.stop_exit)
        if "--query-raw" in command:
            return FakeHandle(command, self.query_exit, stdout=self.query_stdout,
                              hangs=self.query_hangs)
        return FakeHandle(command, 127)

    def commands_with(self, fragment: str) -> List[str]:
        return [cmd for cmd in self.commands if fragment in cmd]


FIXED_NOW = datetime(2024, 5, 17, 13, 45, 9)


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def file_manager(temp_data_dir):
    """FileManager over a temporary trace directory with a fixed clock."""
    return FileManager(
        str(Path(temp_data_dir) / "traces"),
        board="oriole",
        build_id="UQ1A.240105.004",
        extension="perfetto-trace",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def fake_perfetto(file_manager):
    """Fake process port wired to the file manager's in-progress trace path."""
    return FakePerfetto(file_manager.temp_trace_path)


@pytest.fixture
def engine(fake_perfetto, file_manager):
    """PerfettoEngine on a fake daemon with 4 CPUs."""
    from traceur.engine.perfetto import PerfettoEngine
    return PerfettoEngine(fake_perfetto, file_manager, cpu_count=lambda: 4)
