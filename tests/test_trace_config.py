"""Tests for recording options, presets and recording types."""

import json

import pytest

from trace_warden.presets import (
    PRESETS,
    USER_BUILD_DISABLED_TAGS,
    get_preset,
    preset_config,
    preset_tags,
)
from trace_warden.recording import ACTIVE_TYPES, RECORDING_KINDS, RecordingType, kind_for
from trace_warden.trace_config import HeapDumpConfig, StackSampleConfig, TraceConfig


def test_trace_config_defaults():
    """TraceConfig only requires a buffer size."""
    config = TraceConfig(buffer_size_kb=4096)
    assert config.tags == frozenset()
    assert config.apps is True
    assert config.long_trace is False
    assert config.attach_to_bugreport is True
    assert config.max_long_trace_size_mb == 0
    assert config.max_long_trace_duration_minutes == 0
    assert config.auxiliary is False


def test_trace_config_stores_tags_as_frozenset():
    """Any iterable of tags is accepted."""
    config = TraceConfig(buffer_size_kb=1, tags=["am", "gfx", "am"])
    assert config.tags == frozenset({"am", "gfx"})


def test_trace_config_rejects_bad_sizes():
    with pytest.raises(ValueError, match="buffer_size_kb"):
        TraceConfig(buffer_size_kb=0)
    with pytest.raises(ValueError, match="max_long_trace_size_mb"):
        TraceConfig(buffer_size_kb=1, max_long_trace_size_mb=-1)
    with pytest.raises(ValueError, match="max_long_trace_duration_minutes"):
        TraceConfig(buffer_size_kb=1, max_long_trace_duration_minutes=-1)


def test_trace_config_with_tags():
    """with_tags returns a copy and leaves the original untouched."""
    original = TraceConfig(buffer_size_kb=1, tags={"am"}, long_trace=True)
    changed = original.with_tags(["gfx"])
    assert changed.tags == frozenset({"gfx"})
    assert changed.long_trace is True
    assert original.tags == frozenset({"am"})


def test_trace_config_replace_validates():
    config = TraceConfig(buffer_size_kb=1)
    assert config.replace(long_trace=True, apps=False).long_trace is True
    with pytest.raises(ValueError):
        config.replace(buffer_size_kb=0)


def test_trace_config_encoding():
    """The JSON document has a version and a sorted tag list."""
    config = TraceConfig(buffer_size_kb=8, tags={"wm", "am"}, max_long_trace_size_mb=5)
    doc = json.loads(config.encode())
    assert doc["version"] == 1
    assert doc["tags"] == ["am", "wm"]
    assert doc["buffer_size_kb"] == 8
    assert TraceConfig.decode(config.encode()) == config


def test_trace_config_decode_rejects_malformed():
    with pytest.raises(ValueError, match="Invalid"):
        TraceConfig.decode("{not json")
    with pytest.raises(ValueError, match="object"):
        TraceConfig.decode("[1, 2]")
    with pytest.raises(ValueError, match="version"):
        TraceConfig.decode(json.dumps({"version": 99, "buffer_size_kb": 1}))
    with pytest.raises(ValueError, match="missing field"):
        TraceConfig.decode(json.dumps({"version": 1, "buffer_size_kb": 1}))


def test_stack_sample_config_validation():
    assert StackSampleConfig().frequency_hz == 100
    with pytest.raises(ValueError):
        StackSampleConfig(frequency_hz=0)
    with pytest.raises(ValueError):
        StackSampleConfig(buffer_size_kb=-1)


def test_heap_dump_config_validation():
    config = HeapDumpConfig(processes=["system_server"])
    assert config.processes == frozenset({"system_server"})
    with pytest.raises(ValueError):
        HeapDumpConfig(continuous=True, dump_interval_seconds=0)
    # The interval is ignored for one-shot dumps.
    assert HeapDumpConfig(dump_interval_seconds=0).continuous is False


class TestPresets:
    """Tests for named trace presets."""

    def test_all_presets_present(self):
        assert set(PRESETS) == {"default", "performance", "battery", "thermal", "ui"}

    def test_thermal_adds_thermal_tj(self):
        assert "thermal_tj" in preset_tags("thermal")
        assert "thermal_tj" not in preset_tags("default")

    def test_battery_preset_options(self):
        config = preset_config("battery")
        assert config.apps is False
        assert config.long_trace is True
        assert "nnapi" in config.tags
        assert "gfx" not in config.tags

    def test_ui_preset_enables_auxiliary(self):
        assert preset_config("ui").auxiliary is True
        assert preset_config("default").auxiliary is False

    def test_user_build_drops_disabled_tags(self):
        """workq and sync are unavailable on user builds."""
        tags = preset_tags("default", build_type="user")
        assert not tags & USER_BUILD_DISABLED_TAGS
        assert "sched" in tags
        assert USER_BUILD_DISABLED_TAGS <= preset_tags("default", build_type="userdebug")

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown preset"):
            get_preset("nope")

    def test_preset_config_defaults(self):
        config = preset_config("default")
        assert config.buffer_size_kb == 16384
        assert config.max_long_trace_size_mb == 10240
        assert config.max_long_trace_duration_minutes == 30


class TestRecordingType:
    """Tests for recording type parsing and metadata."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("trace", RecordingType.TRACE),
            ("stack-samples", RecordingType.STACK_SAMPLES),
            ("STACK_SAMPLES", RecordingType.STACK_SAMPLES),
            (" heap_dump ", RecordingType.HEAP_DUMP),
            ("bogus", RecordingType.NONE),
            (None, RecordingType.NONE),
        ],
    )
    def test_parse(self, value, expected):
        assert RecordingType.parse(value) is expected

    def test_every_type_has_a_kind(self):
        assert set(RECORDING_KINDS) == set(RecordingType)

    def test_prefixes(self):
        assert kind_for(RecordingType.TRACE).prefix == "trace"
        assert kind_for(RecordingType.STACK_SAMPLES).prefix == "stack-samples"
        assert kind_for(RecordingType.HEAP_DUMP).prefix == "heap-dump"
        assert kind_for(RecordingType.NONE).prefix == "recording"

    def test_none_has_no_flag(self):
        assert kind_for(RecordingType.NONE).flag is None
        assert RecordingType.NONE not in ACTIVE_TYPES
