"""Named trace presets.

Each preset pairs a category set with default options. On "user" builds a few
categories are unavailable and are dropped from every preset.
"""

from dataclasses import dataclass

from trace_warden.trace_config import TraceConfig

DEFAULT_TAGS = (
    "aidl", "am", "binder_driver", "camera", "dalvik", "disk", "freq",
    "gfx", "hal", "idle", "input", "memory", "memreclaim", "network", "power",
    "res", "sched", "ss", "sync", "thermal", "view", "webview", "wm", "workq",
)  # fmt: skip

THERMAL_TAGS = (
    "aidl", "am", "binder_driver", "camera", "dalvik", "disk", "freq",
    "gfx", "hal", "idle", "input", "memory", "memreclaim", "network", "power",
    "res", "sched", "ss", "sync", "thermal", "thermal_tj", "view", "webview",
    "wm", "workq",
)  # fmt: skip

BATTERY_TAGS = (
    "aidl", "am", "binder_driver", "network", "nnapi",
    "pm", "power", "ss", "thermal", "wm",
)  # fmt: skip

USER_BUILD_DISABLED_TAGS = frozenset({"workq", "sync"})

DEFAULT_BUFFER_SIZE_KB = 16384
DEFAULT_MAX_LONG_TRACE_SIZE_MB = 10240
DEFAULT_MAX_LONG_TRACE_DURATION_MINUTES = 30


@dataclass(frozen=True)
class Preset:
    """Tags plus the option defaults that go with them."""

    tags: tuple[str, ...]
    apps: bool
    long_trace: bool
    auxiliary: bool = False
    attach_to_bugreport: bool = True
    buffer_size_kb: int = DEFAULT_BUFFER_SIZE_KB
    max_long_trace_size_mb: int = DEFAULT_MAX_LONG_TRACE_SIZE_MB
    max_long_trace_duration_minutes: int = DEFAULT_MAX_LONG_TRACE_DURATION_MINUTES


PRESETS: dict[str, Preset] = {
    "default": Preset(tags=DEFAULT_TAGS, apps=True, long_trace=False),
    "performance": Preset(tags=DEFAULT_TAGS, apps=True, long_trace=False),
    "battery": Preset(tags=BATTERY_TAGS, apps=False, long_trace=True),
    "thermal": Preset(tags=THERMAL_TAGS, apps=True, long_trace=True),
    "ui": Preset(tags=DEFAULT_TAGS, apps=True, long_trace=True, auxiliary=True),
}


def preset_tags(name: str, build_type: str = "userdebug") -> frozenset[str]:
    """Return the tag set of a preset, filtered for the build type.

    Raises:
        ValueError: If the preset name is unknown.
    """
    tags = frozenset(get_preset(name).tags)
    if build_type == "user":
        tags -= USER_BUILD_DISABLED_TAGS
    return tags


def get_preset(name: str) -> Preset:
    """Look up a preset by name.

    Raises:
        ValueError: If the preset name is unknown.
    """
    if name not in PRESETS:
        raise ValueError(f"Unknown preset: {name!r}. Valid presets: {list(PRESETS.keys())}")
    return PRESETS[name]


def preset_config(name: str, build_type: str = "userdebug") -> TraceConfig:
    """Build a TraceConfig from a named preset."""
    preset = get_preset(name)
    return TraceConfig(
        buffer_size_kb=preset.buffer_size_kb,
        tags=preset_tags(name, build_type),
        apps=preset.apps,
        long_trace=preset.long_trace,
        attach_to_bugreport=preset.attach_to_bugreport,
        max_long_trace_size_mb=preset.max_long_trace_size_mb,
        max_long_trace_duration_minutes=preset.max_long_trace_duration_minutes,
        auxiliary=preset.auxiliary,
    )
