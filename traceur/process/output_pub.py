"""Pub/sub output channels for spawned processes.

Reader threads publish every line they drain from a child's stdout/stderr
as a `ProcessOutputEvent`; `ProcessLogSink` subscribes to those topics and
forwards the lines to the diagnostic log.
"""

import logging
from pubsub import pub
from ..models.events import ProcessOutputEvent

logger = logging.getLogger(__name__)

STDOUT_TOPIC = "process_stdout"
STDERR_TOPIC = "process_stderr"


class OutputPublisher:
    """Publishes process output lines using pubsub.pub."""

    def __init__(self, stdout_topic: str = STDOUT_TOPIC, stderr_topic: str = STDERR_TOPIC):
        """Initialize output publisher.

        Args:
            stdout_topic: Topic for lines read from stdout
            stderr_topic: Topic for lines read from stderr
        """
        self.topics = {"stdout": stdout_topic, "stderr": stderr_topic}

    def publish(self, event: ProcessOutputEvent) -> None:
        """Publish an output line on the topic for its stream."""
        pub.sendMessage(self.topics[event.stream], event=event)


class ProcessLogSink:
    """Drains the output channels into the log."""

    def __init__(self, stdout_topic: str = STDOUT_TOPIC, stderr_topic: str = STDERR_TOPIC):
        self.stdout_topic = stdout_topic
        self.stderr_topic = stderr_topic
        self.subscribed = False

    def subscribe(self) -> None:
        if self.subscribed:
            return
        pub.subscribe(self._on_stdout, self.stdout_topic)
        pub.subscribe(self._on_stderr, self.stderr_topic)
        self.subscribed = True
        logger.debug(f"ProcessLogSink subscribed to {self.stdout_topic}, {self.stderr_topic}")

    def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        pub.unsubscribe(self._on_stdout, self.stdout_topic)
        pub.unsubscribe(self._on_stderr, self.stderr_topic)
        self.subscribed = False

    def _on_stdout(self, event: ProcessOutputEvent) -> None:
        logger.info(f"[{event.pid}] stdout: {event.line}")

    def _on_stderr(self, event: ProcessOutputEvent) -> None:
        logger.warning(f"[{event.pid}] stderr: {event.line}")
