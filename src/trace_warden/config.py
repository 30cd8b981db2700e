"""Configuration system for trace-warden."""

import re
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import timedelta
from pathlib import Path

import tomlkit

from trace_warden.presets import PRESETS


@dataclass
class DaemonConfig:
    """How to reach the tracing daemon and where it writes."""

    binary: str = "perfetto"
    session_name: str = "traceur"  # Name of the detached session
    temp_trace_path: str = "/data/local/traces/.trace-in-progress.trace"
    trace_dir: str = "/data/local/traces"
    output_extension: str = "perfetto-trace"
    # Timeouts in seconds
    start_timeout: float = 10.0
    stop_timeout: float = 30.0
    list_timeout: float = 10.0  # Status and category queries
    # Auxiliary artifacts collected next to UI traces
    auxiliary_files: list[str] = field(default_factory=list)


@dataclass
class TraceSection:
    """Options for full event traces."""

    preset: str = "default"
    buffer_size_kb: int = 16384  # Per CPU
    apps: bool = True
    long_trace: bool = False
    max_long_trace_size_mb: int = 10240  # 0 = unlimited
    max_long_trace_duration_minutes: int = 30  # 0 = unlimited
    attach_to_bugreport: bool = True
    auxiliary: bool = False


@dataclass
class StackSamplesSection:
    """Options for callstack sampling."""

    frequency_hz: int = 100
    buffer_size_kb: int = 65536
    max_duration_minutes: int = 0  # 0 = unlimited
    attach_to_bugreport: bool = True


@dataclass
class HeapDumpSection:
    """Options for Java heap dumps."""

    continuous: bool = False
    dump_interval_seconds: int = 300
    buffer_size_kb: int = 262144
    attach_to_bugreport: bool = True


@dataclass
class RetentionConfig:
    """Saved recording retention."""

    min_keep_count: int = 3  # Newest files always kept
    min_age_days: int = 28  # Older files beyond the kept ones are deleted

    @property
    def min_age(self) -> timedelta:
        return timedelta(days=self.min_age_days)


@dataclass
class SystemConfig:
    """Log file rotation."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


_SECTIONS = ["daemon", "trace", "stack_samples", "heap_dump", "retention", "system"]


@dataclass
class Config:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    trace: TraceSection = field(default_factory=TraceSection)
    stack_samples: StackSamplesSection = field(default_factory=StackSamplesSection)
    heap_dump: HeapDumpSection = field(default_factory=HeapDumpSection)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "trace-warden"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and the session record."""
        return Path.home() / ".local" / "state" / "trace-warden"

    @property
    def log_path(self) -> Path:
        """Log file path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "daemon.log"

    @property
    def state_path(self) -> Path:
        """Session record path."""
        return self.state_dir / "session.toml"

    @property
    def trace_dir(self) -> Path:
        return Path(self.daemon.trace_dir)

    @property
    def temp_trace_path(self) -> Path:
        return Path(self.daemon.temp_trace_path)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in _SECTIONS:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            daemon=_load_daemon_config(data.get("daemon", {})),
            trace=_load_trace_section(data.get("trace", {})),
            stack_samples=_load_stack_samples_section(data.get("stack_samples", {})),
            heap_dump=_load_heap_dump_section(data.get("heap_dump", {})),
            retention=_load_retention_config(data.get("retention", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _load_daemon_config(data: dict) -> DaemonConfig:
    """Load daemon config from TOML data, using dataclass defaults for missing fields."""
    d = DaemonConfig()
    config = DaemonConfig(
        binary=data.get("binary", d.binary),
        session_name=data.get("session_name", d.session_name),
        temp_trace_path=data.get("temp_trace_path", d.temp_trace_path),
        trace_dir=data.get("trace_dir", d.trace_dir),
        output_extension=data.get("output_extension", d.output_extension),
        start_timeout=float(data.get("start_timeout", d.start_timeout)),
        stop_timeout=float(data.get("stop_timeout", d.stop_timeout)),
        list_timeout=float(data.get("list_timeout", d.list_timeout)),
        auxiliary_files=[str(p) for p in data.get("auxiliary_files", d.auxiliary_files)],
    )
    for name in ("start_timeout", "stop_timeout", "list_timeout"):
        value = getattr(config, name)
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    if not re.fullmatch(r"[A-Za-z0-9_]+", config.session_name):
        raise ValueError(f"session_name must match [A-Za-z0-9_]+, got {config.session_name!r}")
    return config


def _load_trace_section(data: dict) -> TraceSection:
    """Load trace options from TOML data."""
    d = TraceSection()
    preset = data.get("preset", d.preset)
    if preset not in PRESETS:
        raise ValueError(f"Invalid preset: {preset!r}. Must be one of {list(PRESETS.keys())}")

    buffer_size_kb = data.get("buffer_size_kb", d.buffer_size_kb)
    max_size = data.get("max_long_trace_size_mb", d.max_long_trace_size_mb)
    max_duration = data.get("max_long_trace_duration_minutes", d.max_long_trace_duration_minutes)
    if buffer_size_kb <= 0:
        raise ValueError(f"buffer_size_kb must be > 0, got {buffer_size_kb}")
    if max_size < 0:
        raise ValueError(f"max_long_trace_size_mb must be >= 0, got {max_size}")
    if max_duration < 0:
        raise ValueError(f"max_long_trace_duration_minutes must be >= 0, got {max_duration}")

    return TraceSection(
        preset=preset,
        buffer_size_kb=buffer_size_kb,
        apps=data.get("apps", d.apps),
        long_trace=data.get("long_trace", d.long_trace),
        max_long_trace_size_mb=max_size,
        max_long_trace_duration_minutes=max_duration,
        attach_to_bugreport=data.get("attach_to_bugreport", d.attach_to_bugreport),
        auxiliary=data.get("auxiliary", d.auxiliary),
    )


def _load_stack_samples_section(data: dict) -> StackSamplesSection:
    """Load stack sampling options from TOML data."""
    d = StackSamplesSection()
    frequency_hz = data.get("frequency_hz", d.frequency_hz)
    if frequency_hz <= 0:
        raise ValueError(f"frequency_hz must be > 0, got {frequency_hz}")
    return StackSamplesSection(
        frequency_hz=frequency_hz,
        buffer_size_kb=data.get("buffer_size_kb", d.buffer_size_kb),
        max_duration_minutes=data.get("max_duration_minutes", d.max_duration_minutes),
        attach_to_bugreport=data.get("attach_to_bugreport", d.attach_to_bugreport),
    )


def _load_heap_dump_section(data: dict) -> HeapDumpSection:
    """Load heap dump options from TOML data."""
    d = HeapDumpSection()
    return HeapDumpSection(
        continuous=data.get("continuous", d.continuous),
        dump_interval_seconds=data.get("dump_interval_seconds", d.dump_interval_seconds),
        buffer_size_kb=data.get("buffer_size_kb", d.buffer_size_kb),
        attach_to_bugreport=data.get("attach_to_bugreport", d.attach_to_bugreport),
    )


def _load_retention_config(data: dict) -> RetentionConfig:
    """Load retention config from TOML data."""
    d = RetentionConfig()
    min_keep_count = data.get("min_keep_count", d.min_keep_count)
    min_age_days = data.get("min_age_days", d.min_age_days)
    if min_keep_count < 0:
        raise ValueError(f"min_keep_count must be >= 0, got {min_keep_count}")
    if min_age_days < 0:
        raise ValueError(f"min_age_days must be >= 0, got {min_age_days}")
    return RetentionConfig(min_keep_count=min_keep_count, min_age_days=min_age_days)


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
