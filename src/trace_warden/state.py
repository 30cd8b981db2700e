"""Durable session record.

The record survives process restarts: which recording type the user asked
for, which type was started last (to name the file when it is saved later)
and the user's category selection.
"""

from dataclasses import dataclass, field
from pathlib import Path

import structlog
import tomlkit

from trace_warden.recording import ACTIVE_TYPES, RecordingType, kind_for

log = structlog.get_logger()


class SessionStateError(ValueError):
    """The session record exists but cannot be used."""


@dataclass
class SessionState:
    tracing_on: bool = False
    stack_sampling_on: bool = False
    heap_dump_on: bool = False
    recent_type: RecordingType = RecordingType.TRACE
    tags: list[str] | None = None  # None selects the preset's tags
    processes: list[str] = field(default_factory=list)  # Heap dump targets

    def is_on(self, recording_type: RecordingType) -> bool:
        flag = kind_for(recording_type).flag
        return flag is not None and getattr(self, flag)

    def set_on(self, recording_type: RecordingType, value: bool) -> None:
        flag = kind_for(recording_type).flag
        if flag is None:
            raise ValueError(f"{recording_type.name} has no on flag")
        setattr(self, flag, value)

    def active_types(self) -> list[RecordingType]:
        """Types whose flag is on, in priority order."""
        return [t for t in ACTIVE_TYPES if self.is_on(t)]

    def clear_flags(self) -> None:
        for recording_type in ACTIVE_TYPES:
            self.set_on(recording_type, False)

    def request(self, recording_type: RecordingType) -> None:
        """Turn one type on and every other type off."""
        for t in ACTIVE_TYPES:
            self.set_on(t, t is recording_type)


class StateStore:
    """Loads and saves SessionState as TOML."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> SessionState:
        """Read the record, returning defaults if it is missing.

        Raises:
            SessionStateError: If the file exists but cannot be parsed
        """
        defaults = SessionState()
        if not self.path.exists():
            return defaults

        try:
            with open(self.path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise SessionStateError(f"Failed to parse session state {self.path}: {e}") from e

        # A missing recent type means the last recording predates this field.
        recent = data.get("recent_type")
        tags = data.get("tags")
        flags = {}
        for name in ("tracing_on", "stack_sampling_on", "heap_dump_on"):
            value = data.get(name, getattr(defaults, name))
            if not isinstance(value, bool):
                raise SessionStateError(f"{name} must be true or false, got {value!r}")
            flags[name] = value
        return SessionState(
            **flags,
            recent_type=RecordingType.parse(recent) if recent else defaults.recent_type,
            tags=[str(t) for t in tags] if tags is not None else None,
            processes=[str(p) for p in data.get("processes", [])],
        )

    def save(self, state: SessionState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = tomlkit.document()
        doc.add("tracing_on", state.tracing_on)
        doc.add("stack_sampling_on", state.stack_sampling_on)
        doc.add("heap_dump_on", state.heap_dump_on)
        doc.add("recent_type", state.recent_type.value)
        if state.tags is not None:
            doc.add("tags", sorted(state.tags))
        if state.processes:
            doc.add("processes", sorted(state.processes))
        self.path.write_text(tomlkit.dumps(doc))
        log.debug("session_state_saved", path=str(self.path))
