"""Tests for the auxiliary capture channel."""

from pathlib import Path

import pytest

from trace_warden.auxiliary import ArtifactChannel, NullChannel


@pytest.fixture
def temp_files(tmp_path: Path) -> list[Path]:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return [scratch / "wm_trace.winscope", scratch / "ime_trace.winscope"]


@pytest.fixture
def channel(temp_files: list[Path], trace_dir: Path) -> ArtifactChannel:
    return ArtifactChannel(temp_files, trace_dir)


def test_null_channel_collects_nothing():
    channel = NullChannel()
    channel.start(True)
    channel.stop()
    assert channel.dump("trace.perfetto-trace") == []


def test_start_removes_stale_files(channel: ArtifactChannel, temp_files: list[Path]):
    """Leftovers from an earlier session never end up in a new dump."""
    temp_files[0].write_text("stale")
    channel.start(True)
    assert channel.enabled
    assert not temp_files[0].exists()


def test_start_disabled(channel: ArtifactChannel):
    channel.start(False)
    assert not channel.enabled


def test_stop_disables(channel: ArtifactChannel):
    channel.start(True)
    channel.stop()
    assert not channel.enabled


def test_dump_copies_next_to_trace(
    channel: ArtifactChannel, temp_files: list[Path], trace_dir: Path
):
    channel.start(True)
    temp_files[0].write_text("wm")
    temp_files[1].write_text("ime")

    collected = channel.dump("trace-oriole-UQ1A-2024.perfetto-trace")

    assert collected == [
        trace_dir / "trace-oriole-UQ1A-2024-wm_trace.winscope",
        trace_dir / "trace-oriole-UQ1A-2024-ime_trace.winscope",
    ]
    assert collected[0].read_text() == "wm"
    assert collected[0].stat().st_mode & 0o666 == 0o666
    assert not any(p.exists() for p in temp_files)
    assert not channel.enabled


def test_dump_skips_missing_files(
    channel: ArtifactChannel, temp_files: list[Path], trace_dir: Path
):
    temp_files[1].write_text("ime")
    assert channel.dump("t.perfetto-trace") == [trace_dir / "t-ime_trace.winscope"]


def test_dump_with_nothing_written(channel: ArtifactChannel):
    assert channel.dump("t.perfetto-trace") == []
