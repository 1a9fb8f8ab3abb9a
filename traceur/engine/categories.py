"""Category catalog: asks the daemon which atrace categories it supports."""

import subprocess
import logging
from functools import lru_cache
from typing import Dict

from google.protobuf import descriptor_pb2
from google.protobuf import descriptor_pool
from google.protobuf import message_factory
from google.protobuf.message import DecodeError

from ..process.deadline import Deadline
from ..process.runner import ProcessRunner

logger = logging.getLogger(__name__)

LIST_TIMEOUT_S = 10.0
FTRACE_DATA_SOURCE = "linux.ftrace"

# Categories Traceur adds on top of what the daemon reports.
SYNTHETIC_CATEGORIES: Dict[str, str] = {
    "sys_stats": "meminfo and vmstats",
    "logs": "android logcat",
    "cpu": "callstack samples",
}

_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL
_REPEATED = descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED
_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_MESSAGE = descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE


def _add_field(msg: descriptor_pb2.DescriptorProto, name: str, number: int,
               label: int, field_type: int, type_name: str = "") -> None:
    field = msg.field.add()
    field.name = name
    field.number = number
    field.label = label
    field.type = field_type
    if type_name:
        field.type_name = type_name


@lru_cache(maxsize=1)
def tracing_service_state_class() -> type:
    """Message class for the subset of perfetto.protos.TracingServiceState we read.

    Field numbers match Perfetto's tracing_service_state.proto,
    data_source_descriptor.proto and ftrace_descriptor.proto; everything
    else in the response is kept as unknown fields.
    """
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = "traceur_tracing_service_state.proto"
    fdp.package = "traceur.perfetto"
    fdp.syntax = "proto2"

    category = fdp.message_type.add()
    category.name = "AtraceCategory"
    _add_field(category, "name", 1, _OPTIONAL, _STRING)
    _add_field(category, "description", 2, _OPTIONAL, _STRING)

    ftrace = fdp.message_type.add()
    ftrace.name = "FtraceDescriptor"
    _add_field(ftrace, "atrace_categories", 1, _REPEATED, _MESSAGE,
               ".traceur.perfetto.AtraceCategory")

    descriptor = fdp.message_type.add()
    descriptor.name = "DataSourceDescriptor"
    _add_field(descriptor, "name", 1, _OPTIONAL, _STRING)
    _add_field(descriptor, "ftrace_descriptor", 8, _OPTIONAL, _MESSAGE,
               ".traceur.perfetto.FtraceDescriptor")

    data_source = fdp.message_type.add()
    data_source.name = "DataSource"
    _add_field(data_source, "ds_descriptor", 1, _OPTIONAL, _MESSAGE,
               ".traceur.perfetto.DataSourceDescriptor")

    state = fdp.message_type.add()
    state.name = "TracingServiceState"
    _add_field(state, "data_sources", 2, _REPEATED, _MESSAGE,
               ".traceur.perfetto.DataSource")

    pool = descriptor_pool.DescriptorPool()
    pool.Add(fdp)
    state_desc = pool.FindMessageTypeByName("traceur.perfetto.TracingServiceState")
    if hasattr(message_factory, "GetMessageClass"):
        return message_factory.GetMessageClass(state_desc)
    return message_factory.MessageFactory(pool).GetPrototype(state_desc)


def _text(value) -> str:
    # proto2 string fields come back as bytes when they are not valid UTF-8.
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def parse_atrace_categories(payload: bytes) -> Dict[str, str]:
    """Extract name -> description pairs from a serialized TracingServiceState.

    Raises:
        google.protobuf.message.DecodeError: if ``payload`` is not a valid message
        UnicodeDecodeError: from protobuf runtimes that reject invalid UTF-8 strings
    """
    state = tracing_service_state_class()()
    state.ParseFromString(payload)

    result: Dict[str, str] = {}
    for data_source in state.data_sources:
        descriptor = data_source.ds_descriptor
        if _text(descriptor.name) == FTRACE_DATA_SOURCE:
            for category in descriptor.ftrace_descriptor.atrace_categories:
                result[_text(category.name)] = _text(category.description)
            break
    return dict(sorted(result.items()))


class CategoryCatalogFetcher:
    """Queries the daemon for supported categories."""

    def __init__(self, runner: ProcessRunner, binary: str = "perfetto",
                 timeout_s: float = LIST_TIMEOUT_S):
        self.runner = runner
        self.binary = binary
        self.timeout_s = timeout_s

    def fetch_daemon_categories(self) -> Dict[str, str]:
        """Categories the daemon reports, or an empty dict if it timed out."""
        cmd = f"{self.binary} --query-raw"
        logger.info(f"Listing tags: {cmd}")

        # stdout is captured, not logged: it carries the binary response.
        process = self.runner.run(cmd, log_stdout=False)
        try:
            process.wait(Deadline.after(self.timeout_s))
        except subprocess.TimeoutExpired:
            logger.error(f"Listing categories timed out after {self.timeout_s}s")
            process.kill()
            return {}

        if process.returncode != 0:
            logger.error(f"Listing categories failed with: {process.returncode}")

        try:
            return parse_atrace_categories(process.stdout_bytes())
        except (DecodeError, UnicodeDecodeError) as e:
            logger.error(f"Could not decode tracing service state: {e}")
            return {}

    def fetch(self) -> Dict[str, str]:
        """Full catalog: daemon categories plus the synthetic ones, sorted by name."""
        categories = self.fetch_daemon_categories()
        categories.update(SYNTHETIC_CATEGORIES)
        return dict(sorted(categories.items()))

