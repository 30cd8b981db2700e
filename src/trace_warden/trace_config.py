"""Immutable option sets for each recording type.

TraceConfig travels between processes (CLI, state file, callers embedding the
engine), so it has an explicit JSON encoding with ordered primitive fields and
a sorted tag list.
"""

import dataclasses
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

ENCODING_VERSION = 1


@dataclass(frozen=True)
class TraceConfig:
    """Options for a full event trace.

    Limits of 0 mean unlimited and only apply in long-trace mode.
    """

    buffer_size_kb: int
    tags: frozenset[str] = field(default_factory=frozenset)
    apps: bool = True
    long_trace: bool = False
    attach_to_bugreport: bool = True
    max_long_trace_size_mb: int = 0
    max_long_trace_duration_minutes: int = 0
    auxiliary: bool = False

    def __post_init__(self) -> None:
        # Accept any iterable of tags but always store a frozenset.
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))
        if self.buffer_size_kb <= 0:
            raise ValueError(f"buffer_size_kb must be > 0, got {self.buffer_size_kb}")
        if self.max_long_trace_size_mb < 0:
            raise ValueError(
                f"max_long_trace_size_mb must be >= 0, got {self.max_long_trace_size_mb}"
            )
        if self.max_long_trace_duration_minutes < 0:
            raise ValueError(
                "max_long_trace_duration_minutes must be >= 0, "
                f"got {self.max_long_trace_duration_minutes}"
            )

    def replace(self, **changes: Any) -> "TraceConfig":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)

    def with_tags(self, tags: Iterable[str]) -> "TraceConfig":
        """Return a copy using a different tag set."""
        return self.replace(tags=frozenset(tags))

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dict with a sorted tag list."""
        data = asdict(self)
        data["tags"] = sorted(self.tags)
        return data

    def encode(self) -> str:
        """Serialize to a JSON document."""
        return json.dumps({"version": ENCODING_VERSION, **self.to_dict()})

    @classmethod
    def decode(cls, data: str | bytes) -> "TraceConfig":
        """Deserialize a document produced by encode().

        Raises:
            ValueError: If the document is malformed or from another version.
        """
        try:
            obj = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid trace config document: {e}") from e
        if not isinstance(obj, dict):
            raise ValueError("Trace config document must be a JSON object")

        version = obj.pop("version", None)
        if version != ENCODING_VERSION:
            raise ValueError(f"Unsupported trace config version: {version!r}")

        try:
            return cls(
                buffer_size_kb=int(obj["buffer_size_kb"]),
                tags=frozenset(str(t) for t in obj.get("tags", [])),
                apps=bool(obj["apps"]),
                long_trace=bool(obj["long_trace"]),
                attach_to_bugreport=bool(obj["attach_to_bugreport"]),
                max_long_trace_size_mb=int(obj["max_long_trace_size_mb"]),
                max_long_trace_duration_minutes=int(obj["max_long_trace_duration_minutes"]),
                auxiliary=bool(obj.get("auxiliary", False)),
            )
        except KeyError as e:
            raise ValueError(f"Trace config document missing field: {e.args[0]}") from e


@dataclass(frozen=True)
class StackSampleConfig:
    """Options for periodic callstack sampling."""

    attach_to_bugreport: bool = True
    frequency_hz: int = 100
    buffer_size_kb: int = 65536
    max_duration_minutes: int = 0

    def __post_init__(self) -> None:
        if self.frequency_hz <= 0:
            raise ValueError(f"frequency_hz must be > 0, got {self.frequency_hz}")
        if self.buffer_size_kb <= 0:
            raise ValueError(f"buffer_size_kb must be > 0, got {self.buffer_size_kb}")


@dataclass(frozen=True)
class HeapDumpConfig:
    """Options for Java heap dumps of selected processes."""

    processes: frozenset[str] = field(default_factory=frozenset)
    continuous: bool = False
    dump_interval_seconds: int = 300
    attach_to_bugreport: bool = True
    buffer_size_kb: int = 262144

    def __post_init__(self) -> None:
        if not isinstance(self.processes, frozenset):
            object.__setattr__(self, "processes", frozenset(self.processes))
        if self.continuous and self.dump_interval_seconds <= 0:
            raise ValueError(
                f"dump_interval_seconds must be > 0, got {self.dump_interval_seconds}"
            )


RecordingOptions = TraceConfig | StackSampleConfig | HeapDumpConfig
