"""Builds Perfetto trace configurations from session requests.

Everything here is a pure function of its inputs: the same request and CPU
count always produce the same configuration.
"""

import json
import re
import logging
from typing import Iterable, List, Optional, Set

from ..models.session import SessionRequest
from ..models.trace_config import DataSourceSpec, ProtoEnum, TraceBuffer, TraceConfig

logger = logging.getLogger(__name__)

MEGABYTES_TO_BYTES = 1024 * 1024
MINUTES_TO_MILLISECONDS = 60 * 1000

# Total memory is split between the two buffers in a ratio of (BUFFER_SIZE_RATIO - 1) to 1.
BUFFER_SIZE_RATIO = 32
STACK_SAMPLING_BUFFER_KB_PER_CPU = 16 * 1024
FTRACE_KERNEL_BUFFER_KB = 8192

BUGREPORT_SCORE = 500
LONG_TRACE_FILE_WRITE_PERIOD_MS = 1000
SHORT_TRACE_FILE_WRITE_PERIOD_MS = 7 * 24 * 60 * 60 * 1000

# atrace categories that add data sources to the config.
CAMERA_TAG = "camera"
GFX_TAG = "gfx"
MEMORY_TAG = "memory"
NETWORK_TAG = "network"
POWER_TAG = "power"
SCHED_TAG = "sched"
WEBVIEW_TAG = "webview"

# Categories that exist only in Traceur, not in atrace.
SYS_STATS_TAG = "sys_stats"
LOG_TAG = "logs"
CPU_TAG = "cpu"

_INVALID_TAG_CHARS = re.compile(r"[^a-zA-Z0-9_]")

CHROME_TRACE_CONFIG = json.dumps(
    {"record_mode": "record-continuously", "included_categories": ["*"]},
    separators=(",", ":"),
)


def sanitize_tags(tags: Iterable[str]) -> List[str]:
    """Strip characters outside ``[A-Za-z0-9_]`` from each tag.

    Tags that change are logged; tags that end up empty are dropped.

    Returns:
        The distinct sanitized tags, sorted
    """
    clean: Set[str] = set()
    for tag in tags:
        clean_tag = _INVALID_TAG_CHARS.sub("", tag)
        if clean_tag != tag:
            logger.warning(f"Attempting to use an invalid tag: {tag!r}")
        if not clean_tag:
            logger.warning(f"Dropping tag {tag!r}: nothing left after sanitization")
            continue
        clean.add(clean_tag)
    return sorted(clean)


def split_buffer_sizes(buffer_size_kb: int, num_cpus: int) -> List[int]:
    """Split ``num_cpus * buffer_size_kb`` into the two target buffers.

    Buffer 1 gets 1/BUFFER_SIZE_RATIO (rounded down), buffer 0 the rest.
    """
    total_kb = num_cpus * buffer_size_kb
    buffer1_kb = total_kb // BUFFER_SIZE_RATIO
    return [total_kb - buffer1_kb, buffer1_kb]


def build_trace_config(request: SessionRequest, num_cpus: int) -> TraceConfig:
    """Build the configuration for a regular trace.

    Args:
        request: What to record
        num_cpus: Number of CPUs; the requested buffer size is per CPU

    Returns:
        The structured configuration
    """
    tags = sanitize_tags(request.tags)
    tag_set = set(tags)

    config = _base_config(request.attach_to_bugreport, request.long_trace,
                          request.max_long_trace_size_mb,
                          request.max_long_trace_duration_minutes)

    # target_buffer 0 takes ftrace and ftrace-derived sources, 1 the rest.
    for size_kb in split_buffer_sizes(request.buffer_size_kb, num_cpus):
        config.buffers.append(TraceBuffer(size_kb=size_kb))

    config.data_sources.extend(_ftrace_sources(tags, request.apps))
    config.data_sources.append(_process_stats_source(tag_set, target_buffer=1))
    config.data_sources.extend(_additional_sources(tag_set, request.long_trace, target_buffer=1))
    return config


def build_stack_sampling_config(attach_to_bugreport: bool, num_cpus: int) -> TraceConfig:
    """Build the configuration for CPU stack sampling (one buffer)."""
    config = _base_config(attach_to_bugreport, long_trace=False,
                          max_size_mb=0, max_duration_minutes=0)
    config.buffers.append(TraceBuffer(size_kb=num_cpus * STACK_SAMPLING_BUFFER_KB_PER_CPU))
    config.data_sources.append(_linux_perf_source(target_buffer=0))
    config.data_sources.append(_process_stats_source(set(), target_buffer=0))
    return config


def _base_config(attach_to_bugreport: bool, long_trace: bool,
                 max_size_mb: int, max_duration_minutes: int) -> TraceConfig:
    bugreport_score: Optional[int] = BUGREPORT_SCORE if attach_to_bugreport else None

    if not long_trace:
        # Short traces are only written out when stopped.
        return TraceConfig(file_write_period_ms=SHORT_TRACE_FILE_WRITE_PERIOD_MS,
                           bugreport_score=bugreport_score)

    return TraceConfig(
        file_write_period_ms=LONG_TRACE_FILE_WRITE_PERIOD_MS,
        bugreport_score=bugreport_score,
        max_file_size_bytes=max_size_mb * MEGABYTES_TO_BYTES if max_size_mb else None,
        duration_ms=max_duration_minutes * MINUTES_TO_MILLISECONDS if max_duration_minutes else None,
    )


def _ftrace_sources(tags: List[str], apps: bool) -> List[DataSourceSpec]:
    params = {"symbolize_ksyms": True, "atrace_categories": list(tags)}
    if apps:
        params["atrace_apps"] = "*"
    if SCHED_TAG in tags:
        params["compact_sched"] = {"enabled": True}
    # Only affects the kernel buffer and how often it is drained into buffer 0.
    params["buffer_size_kb"] = FTRACE_KERNEL_BUFFER_KB

    sources = [DataSourceSpec("linux.ftrace", 0, "ftrace_config", params)]

    # Initial counter values; updates arrive through ftrace.
    if MEMORY_TAG in tags or GFX_TAG in tags:
        sources.append(DataSourceSpec("android.gpu.memory", 0))
    return sources


def _process_stats_source(tags: Set[str], target_buffer: int) -> DataSourceSpec:
    if MEMORY_TAG in tags:
        params = {"proc_stats_poll_ms": 60000}
    else:
        params = {"scan_all_processes_on_start": True}
    return DataSourceSpec("linux.process_stats", target_buffer, "process_stats_config", params)


def _linux_perf_source(target_buffer: int) -> DataSourceSpec:
    return DataSourceSpec("linux.perf", target_buffer, "perf_event_config",
                          {"all_cpus": True, "sampling_frequency": 100})


def _additional_sources(tags: Set[str], long_trace: bool,
                        target_buffer: int) -> List[DataSourceSpec]:
    sources: List[DataSourceSpec] = []

    if POWER_TAG in tags:
        sources.append(DataSourceSpec("android.power", target_buffer, "android_power_config", {
            "battery_poll_ms": 5000 if long_trace else 1000,
            "collect_power_rails": True,
            "battery_counters": [
                ProtoEnum("BATTERY_COUNTER_CAPACITY_PERCENT"),
                ProtoEnum("BATTERY_COUNTER_CHARGE"),
                ProtoEnum("BATTERY_COUNTER_CURRENT"),
            ],
        }))

    if SYS_STATS_TAG in tags:
        sources.append(DataSourceSpec("linux.sys_stats", target_buffer, "sys_stats_config", {
            "meminfo_period_ms": 1000,
            "vmstat_period_ms": 1000,
        }))

    if LOG_TAG in tags:
        sources.append(DataSourceSpec("android.log", target_buffer))

    if CPU_TAG in tags:
        sources.append(_linux_perf_source(target_buffer))

    if GFX_TAG in tags:
        sources.append(DataSourceSpec("android.surfaceflinger.frametimeline", target_buffer))

    if CAMERA_TAG in tags:
        sources.append(DataSourceSpec("android.hardware.camera", target_buffer))

    if NETWORK_TAG in tags:
        sources.append(DataSourceSpec("android.network_packets", target_buffer,
                                      "network_packet_trace_config", {"poll_ms": 250}))
        # Maps UIDs in network packets to package names.
        sources.append(DataSourceSpec("android.packages_list", target_buffer))

    if WEBVIEW_TAG in tags:
        for name in ("org.chromium.trace_event", "org.chromium.trace_metadata"):
            sources.append(DataSourceSpec(name, target_buffer, "chrome_config",
                                          {"trace_config": CHROME_TRACE_CONFIG}))

    return sources
