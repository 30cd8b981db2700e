"""Recording types and their per-type metadata.

Every place that needs to branch on the kind of recording (filename prefix,
console wording, which persisted flag belongs to it) looks it up in
RECORDING_KINDS instead of switching on the enum.
"""

from dataclasses import dataclass
from enum import Enum


class RecordingType(Enum):
    """The three mutually exclusive capture modes, plus NONE.

    NONE doubles as the fallback for an unknown or recovered recording.
    """

    NONE = "none"
    TRACE = "trace"
    STACK_SAMPLES = "stack_samples"
    HEAP_DUMP = "heap_dump"

    @classmethod
    def parse(cls, value: str | None) -> "RecordingType":
        """Parse a persisted or user-supplied value, falling back to NONE."""
        if value is None:
            return cls.NONE
        normalized = value.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        return cls.NONE


@dataclass(frozen=True)
class RecordingKind:
    """Static description of a recording type."""

    prefix: str
    label: str
    saving_message: str
    saved_message: str
    flag: str | None  # SessionState attribute holding the "on" flag


RECORDING_KINDS: dict[RecordingType, RecordingKind] = {
    RecordingType.TRACE: RecordingKind(
        prefix="trace",
        label="trace",
        saving_message="Saving trace",
        saved_message="Trace saved",
        flag="tracing_on",
    ),
    RecordingType.STACK_SAMPLES: RecordingKind(
        prefix="stack-samples",
        label="stack samples",
        saving_message="Saving stack samples",
        saved_message="Stack samples saved",
        flag="stack_sampling_on",
    ),
    RecordingType.HEAP_DUMP: RecordingKind(
        prefix="heap-dump",
        label="heap dump",
        saving_message="Saving heap dump",
        saved_message="Heap dump saved",
        flag="heap_dump_on",
    ),
    RecordingType.NONE: RecordingKind(
        prefix="recording",
        label="recording",
        saving_message="Saving trace",
        saved_message="Trace saved",
        flag=None,
    ),
}

# Types that own a persisted "on" flag, in reconciliation priority order.
ACTIVE_TYPES = (RecordingType.STACK_SAMPLES, RecordingType.HEAP_DUMP, RecordingType.TRACE)


def kind_for(recording_type: RecordingType) -> RecordingKind:
    """Return the table row for a recording type."""
    return RECORDING_KINDS[recording_type]
