"""Process port: spawns shell commands and drains their output in the background."""

import os
import subprocess
import logging
from threading import Thread
from typing import Dict, List, Optional

from ..models.events import ProcessOutputEvent
from .deadline import Deadline
from .output_pub import OutputPublisher

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 2 << 10
READER_JOIN_TIMEOUT_S = 2.0


class ProcessHandle:
    """A spawned process together with the threads draining its output.

    Callers never touch the underlying ``Popen``; the handle owns it and its
    reader threads for their entire lifetime.
    """

    def __init__(self, command: str, process: subprocess.Popen,
                 publisher: OutputPublisher, log_stdout: bool = True):
        self.command = command
        self._process = process
        self._publisher = publisher
        self._captured = bytearray()
        self._readers: List[Thread] = []

        self._start_reader("stderr", process.stderr, self._publish_lines)
        if log_stdout:
            self._start_reader("stdout", process.stdout, self._publish_lines)
        else:
            self._start_reader("stdout", process.stdout, self._capture)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    def _start_reader(self, stream_name: str, stream, target) -> None:
        thread = Thread(target=target, args=(stream_name, stream), daemon=True)
        thread.name = f"traceur-{stream_name}-{self._process.pid}"
        thread.start()
        self._readers.append(thread)

    def _publish_lines(self, stream_name: str, stream) -> None:
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                self._publisher.publish(ProcessOutputEvent(
                    stream=stream_name,
                    line=line,
                    command=self.command,
                    pid=self._process.pid,
                ))
        except (OSError, ValueError) as e:
            logger.error(f"Error while streaming {stream_name} of pid {self._process.pid}: {e}")
        finally:
            stream.close()

    def _capture(self, stream_name: str, stream) -> None:
        try:
            for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b""):
                self._captured.extend(chunk)
        except (OSError, ValueError) as e:
            logger.error(f"Error while capturing {stream_name} of pid {self._process.pid}: {e}")
        finally:
            stream.close()

    def wait(self, deadline: Optional[Deadline] = None) -> int:
        """Wait for the process to exit.

        Args:
            deadline: Optional deadline; None waits indefinitely

        Returns:
            The exit status

        Raises:
            subprocess.TimeoutExpired: if the deadline expires first
        """
        timeout = deadline.remaining() if deadline is not None else None
        return self._process.wait(timeout=timeout)

    def kill(self) -> None:
        """Force-terminate the process and reap it."""
        self._process.kill()
        self._process.wait()

    def join_readers(self, timeout: float = READER_JOIN_TIMEOUT_S) -> None:
        for thread in self._readers:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Reader thread {thread.name} did not finish within {timeout}s")

    def stdout_bytes(self) -> bytes:
        """Captured stdout; only populated when the process ran without stdout logging.

        Waits for the stdout reader to reach end of stream first.
        """
        self.join_readers()
        return bytes(self._captured)


class ProcessRunner:
    """Runs commands through ``sh -c``."""

    def __init__(self, publisher: Optional[OutputPublisher] = None, shell: str = "sh"):
        self.publisher = publisher or OutputPublisher()
        self.shell = shell

    def run(self, command: str, env: Optional[Dict[str, str]] = None,
            log_stdout: bool = True) -> ProcessHandle:
        """Spawn ``command`` and start draining its output.

        Args:
            command: Shell command line
            env: Variables overriding the inherited environment
            log_stdout: Publish stdout lines to the output channel; when
                        False stdout is captured for ``stdout_bytes()``

        Returns:
            Handle of the running process
        """
        child_env = None
        if env is not None:
            child_env = dict(os.environ)
            child_env.update(env)

        logger.debug(f"exec: env={env} cmd={[self.shell, '-c', command]}")
        process = subprocess.Popen(
            [self.shell, "-c", command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=child_env,
        )
        return ProcessHandle(command, process, self.publisher, log_stdout=log_stdout)

    def run_with_deadline(self, command: str, deadline: Deadline,
                          env: Optional[Dict[str, str]] = None) -> Optional[ProcessHandle]:
        """Run ``command`` and wait for it until ``deadline``.

        Returns:
            The finished process, or None if the deadline expired. In that
            case the process has been force-killed.
        """
        handle = self.run(command, env=env)
        try:
            handle.wait(deadline)
        except subprocess.TimeoutExpired:
            logger.error(f"Command '{command}' has timed out, killing pid {handle.pid}")
            handle.kill()
            return None
        return handle
