"""Daemon configuration text and command lines.

Everything here is pure: options in, text out. Nothing talks to the daemon.
The text is the daemon's protobuf text format, handed over on stdin through a
heredoc framed by MARKER.
"""

import re
import shlex
from collections.abc import Iterable

import structlog

from trace_warden.trace_config import HeapDumpConfig, StackSampleConfig, TraceConfig

log = structlog.get_logger()

MARKER = "PERFETTO_ARGUMENTS"

# Buffer 1 gets 1/BUFFER_SIZE_RATIO of the total, buffer 0 the rest.
BUFFER_SIZE_RATIO = 64

FLUSH_PERIOD_MS = 30_000
LONG_TRACE_WRITE_PERIOD_MS = 1000
# Short traces are read in full at stop time, so the write period is 7 days.
SHORT_TRACE_WRITE_PERIOD_MS = 7 * 24 * 60 * 60 * 1000
BUGREPORT_SCORE = 500
MEGABYTES_TO_BYTES = 1024 * 1024
MINUTES_TO_MILLISECONDS = 60 * 1000

CAMERA_TAG = "camera"
GFX_TAG = "gfx"
MEMORY_TAG = "memory"
POWER_TAG = "power"
SCHED_TAG = "sched"
WEBVIEW_TAG = "webview"

# Embedded in a quoted text-format string, so the inner quotes are escaped.
CHROME_TRACE_CONFIG = (
    '{\\"record_mode\\":\\"record-continuously\\",' '\\"included_categories\\":[\\"*\\"]}'
)

_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_]")
_INVALID_PROCESS_CHARS = re.compile(r"[^A-Za-z0-9_.:@/-]")


class ConfigBuildError(RuntimeError):
    """The generated configuration cannot be framed safely.

    This signals a defect in the builder, not a runtime condition.
    """


def sanitize_tag(tag: str) -> str:
    """Strip every character outside [A-Za-z0-9_], warning if any were removed."""
    clean = _INVALID_TAG_CHARS.sub("", tag)
    if clean != tag:
        log.warning("invalid_tag", cleaned=clean)
    return clean


def sanitize_tags(tags: Iterable[str]) -> list[str]:
    """Sanitize, de-duplicate and sort tags. Tags that end up empty are dropped."""
    return sorted({clean for clean in (sanitize_tag(t) for t in tags) if clean})


def _sanitize_process(name: str) -> str:
    clean = _INVALID_PROCESS_CHARS.sub("", name)
    if clean != name:
        log.warning("invalid_process_name", cleaned=clean)
    return clean


def partition_buffers(per_cpu_buffer_kb: int, cpu_count: int) -> tuple[int, int]:
    """Split the total buffer into (buffer0_kb, buffer1_kb).

    The user picks a per-CPU size, so the total scales with the CPU count.
    """
    total_kb = per_cpu_buffer_kb * cpu_count
    buffer1_kb = total_kb // BUFFER_SIZE_RATIO
    return total_kb - buffer1_kb, buffer1_kb


def _session_header(
    attach_to_bugreport: bool,
    long_trace: bool,
    max_size_mb: int = 0,
    max_duration_minutes: int = 0,
) -> list[str]:
    lines = [
        "write_into_file: true",
        # Flush ftrace data periodically even if CPUs are idle.
        f"flush_period_ms: {FLUSH_PERIOD_MS}",
    ]
    if attach_to_bugreport:
        lines.append(f"bugreport_score: {BUGREPORT_SCORE}")
    # Ask the daemon to notify us when the session's status changes.
    lines.append("notify_traceur: true")

    if long_trace:
        if max_size_mb != 0:
            lines.append(f"max_file_size_bytes: {max_size_mb * MEGABYTES_TO_BYTES}")
        if max_duration_minutes != 0:
            lines.append(f"duration_ms: {max_duration_minutes * MINUTES_TO_MILLISECONDS}")
        lines.append(f"file_write_period_ms: {LONG_TRACE_WRITE_PERIOD_MS}")
    else:
        lines.append(f"file_write_period_ms: {SHORT_TRACE_WRITE_PERIOD_MS}")
    return lines


def _buffer(size_kb: int, fill_policy: str = "RING_BUFFER") -> list[str]:
    return [
        "buffers {",
        f"  size_kb: {size_kb}",
        f"  fill_policy: {fill_policy}",
        "}",
    ]


def _data_source(name: str, target_buffer: int | None, body: list[str] | None = None) -> list[str]:
    lines = ["data_sources {", "  config {", f'    name: "{name}"']
    if target_buffer is not None:
        lines.append(f"    target_buffer: {target_buffer}")
    for line in body or []:
        lines.append(f"    {line}")
    lines += ["  }", "}"]
    return lines


def _finish(lines: list[str]) -> str:
    text = "\n".join(lines) + "\n"
    # The heredoc would end early if the marker appeared inside the config.
    if MARKER in text:
        raise ConfigBuildError("The arguments to the daemon command are malformed.")
    return text


def build_trace_config(config: TraceConfig, cpu_count: int) -> str:
    """Build the configuration text for a full event trace.

    Args:
        config: Trace options
        cpu_count: Number of CPUs the per-CPU buffer size is multiplied by

    Returns:
        Newline-delimited configuration text

    Raises:
        ConfigBuildError: If the text would break the command framing
    """
    tags = sanitize_tags(config.tags)
    tag_set = set(tags)
    buffer0_kb, buffer1_kb = partition_buffers(config.buffer_size_kb, cpu_count)

    lines = _session_header(
        config.attach_to_bugreport,
        config.long_trace,
        config.max_long_trace_size_mb,
        config.max_long_trace_duration_minutes,
    )
    lines += ["incremental_state_config {", "  clear_period_ms: 15000", "}"]
    # Buffer 0 holds ftrace and ftrace-derived counters, buffer 1 everything else.
    lines += _buffer(buffer0_kb)
    lines += _buffer(buffer1_kb)

    ftrace = ["ftrace_config {", "  symbolize_ksyms: true"]
    ftrace += [f'  atrace_categories: "{tag}"' for tag in tags]
    if config.apps:
        ftrace.append('  atrace_apps: "*"')
    if SCHED_TAG in tag_set:
        # Dense encoding of sched_switch and sched_waking.
        ftrace += ["  compact_sched {", "    enabled: true", "  }"]
    # Kernel-side buffer size and how often it is drained into buffer 0.
    ftrace += ["  buffer_size_kb: 8192", "  drain_period_ms: 1000", "}"]
    lines += _data_source("linux.ftrace", 0, ftrace)

    if MEMORY_TAG in tag_set or GFX_TAG in tag_set:
        # Initial counter values; updates arrive through ftrace.
        lines += _data_source("android.gpu.memory", 0)

    process_stats = None
    if MEMORY_TAG in tag_set:
        process_stats = ["process_stats_config {", "  proc_stats_poll_ms: 60000", "}"]
    lines += _data_source("linux.process_stats", 1, process_stats)

    if POWER_TAG in tag_set:
        battery_poll_ms = 5000 if config.long_trace else 1000
        lines += _data_source(
            "android.power",
            1,
            [
                "android_power_config {",
                f"  battery_poll_ms: {battery_poll_ms}",
                "  collect_power_rails: true",
                "  battery_counters: BATTERY_COUNTER_CAPACITY_PERCENT",
                "  battery_counters: BATTERY_COUNTER_CHARGE",
                "  battery_counters: BATTERY_COUNTER_CURRENT",
                "}",
            ],
        )

    if MEMORY_TAG in tag_set:
        lines += _data_source(
            "android.sys_stats",
            1,
            ["sys_stats_config {", "  vmstat_period_ms: 1000", "}"],
        )

    if GFX_TAG in tag_set:
        lines += _data_source("android.surfaceflinger.frametimeline", None)

    if CAMERA_TAG in tag_set:
        lines += _data_source("android.hardware.camera", 1)

    if WEBVIEW_TAG in tag_set:
        chrome = ["chrome_config {", f'  trace_config: "{CHROME_TRACE_CONFIG}"', "}"]
        lines += _data_source("org.chromium.trace_event", None, chrome)
        lines += _data_source("org.chromium.trace_metadata", None, chrome)

    return _finish(lines)


def build_stack_sample_config(config: StackSampleConfig) -> str:
    """Build the configuration text for callstack sampling."""
    lines = _session_header(
        config.attach_to_bugreport,
        long_trace=config.max_duration_minutes != 0,
        max_duration_minutes=config.max_duration_minutes,
    )
    lines += _buffer(config.buffer_size_kb)
    lines += _data_source(
        "linux.process_stats",
        0,
        ["process_stats_config {", "  scan_all_processes_on_start: true", "}"],
    )
    lines += _data_source(
        "linux.perf",
        0,
        [
            "perf_event_config {",
            "  timebase {",
            f"    frequency: {config.frequency_hz}",
            "  }",
            "  callstack_sampling {",
            "    kernel_frames: true",
            "  }",
            "}",
        ],
    )
    return _finish(lines)


def build_heap_dump_config(config: HeapDumpConfig) -> str:
    """Build the configuration text for Java heap dumps.

    Raises:
        ValueError: If no usable process name remains after sanitizing
        ConfigBuildError: If the text would break the command framing
    """
    processes = sorted({p for p in (_sanitize_process(n) for n in config.processes) if p})
    if not processes:
        raise ValueError("Heap dump requires at least one process")

    lines = _session_header(config.attach_to_bugreport, long_trace=False)
    lines += _buffer(config.buffer_size_kb, fill_policy="DISCARD")

    hprof = ["java_hprof_config {"]
    hprof += [f'  process_cmdline: "{name}"' for name in processes]
    if config.continuous:
        interval_ms = config.dump_interval_seconds * 1000
        hprof += [
            "  continuous_dump_config {",
            f"    dump_phase_ms: {interval_ms}",
            f"    dump_interval_ms: {interval_ms}",
            "  }",
        ]
    hprof.append("}")
    lines += _data_source("android.java_hprof", 0, hprof)
    lines += _data_source("android.packages_list", 0)
    return _finish(lines)


def start_command(binary: str, session_name: str, output_path: str, config_text: str) -> str:
    """Command that starts a detached session fed by a heredoc."""
    if MARKER in config_text:
        raise ConfigBuildError("The arguments to the daemon command are malformed.")
    return (
        f"{shlex.quote(binary)} --detach={shlex.quote(session_name)}"
        f" -o {shlex.quote(output_path)} -c - --txt"
        f" <<{MARKER}\n{config_text}\n{MARKER}"
    )


def stop_command(binary: str, session_name: str) -> str:
    """Command that stops the named detached session."""
    return f"{shlex.quote(binary)} --stop --attach={shlex.quote(session_name)}"


def status_command(binary: str, session_name: str) -> str:
    """Command whose exit code tells whether the named session exists."""
    return f"{shlex.quote(binary)} --is_detached={shlex.quote(session_name)}"


def query_command(binary: str) -> str:
    """Command that dumps the raw service state."""
    return f"{shlex.quote(binary)} --query-raw"
