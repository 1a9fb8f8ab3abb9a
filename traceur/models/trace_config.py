"""Perfetto trace configuration models and their text-format rendering."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class ProtoEnum(str):
    """A string rendered as a bare enum identifier rather than a quoted string."""


RING_BUFFER = ProtoEnum("RING_BUFFER")


@dataclass
class TraceBuffer:
    """One trace buffer. Data sources refer to buffers by their position."""
    size_kb: int
    fill_policy: ProtoEnum = RING_BUFFER


@dataclass
class DataSourceSpec:
    """A data source entry routed to one of the declared buffers.

    ``params`` is rendered inside a nested block named ``config_key``
    (e.g. ``ftrace_config``). Lists render as repeated fields and nested
    dicts as nested blocks, in insertion order.
    """
    name: str
    target_buffer: int
    config_key: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TraceConfig:
    """Structured Perfetto configuration: base options, buffers and data sources."""
    file_write_period_ms: int
    write_into_file: bool = True
    flush_period_ms: int = 30000
    bugreport_score: Optional[int] = None
    notify_traceur: bool = True
    incremental_state_clear_period_ms: int = 15000
    max_file_size_bytes: Optional[int] = None
    duration_ms: Optional[int] = None
    buffers: List[TraceBuffer] = field(default_factory=list)
    data_sources: List[DataSourceSpec] = field(default_factory=list)

    def render(self) -> str:
        """Render the configuration in Perfetto's text proto format."""
        top: Dict[str, Any] = {
            "write_into_file": self.write_into_file,
            "flush_period_ms": self.flush_period_ms,
        }
        if self.bugreport_score is not None:
            top["bugreport_score"] = self.bugreport_score
        top["notify_traceur"] = self.notify_traceur
        top["incremental_state_config"] = {
            "clear_period_ms": self.incremental_state_clear_period_ms,
        }
        if self.max_file_size_bytes is not None:
            top["max_file_size_bytes"] = self.max_file_size_bytes
        if self.duration_ms is not None:
            top["duration_ms"] = self.duration_ms
        top["file_write_period_ms"] = self.file_write_period_ms
        top["buffers"] = [
            {"size_kb": buffer.size_kb, "fill_policy": buffer.fill_policy}
            for buffer in self.buffers
        ]
        top["data_sources"] = [
            {"config": _data_source_fields(source)} for source in self.data_sources
        ]

        lines: List[str] = []
        _render_fields(lines, top, 0)
        return "\n".join(lines) + "\n"


def _data_source_fields(source: DataSourceSpec) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "name": source.name,
        "target_buffer": source.target_buffer,
    }
    if source.config_key:
        fields[source.config_key] = source.params
    return fields


def _render_fields(lines: List[str], fields: Dict[str, Any], depth: int) -> None:
    pad = "  " * depth
    for key, value in fields.items():
        values = value if isinstance(value, list) else [value]
        for item in values:
            if isinstance(item, dict):
                lines.append(f"{pad}{key} {{")
                _render_fields(lines, item, depth + 1)
                lines.append(f"{pad}}}")
            else:
                lines.append(f"{pad}{key}: {_render_scalar(item)}")


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, ProtoEnum):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)
