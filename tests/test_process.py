"""Tests for subprocess control."""

import io
import time

import pytest

from trace_warden.process import (
    STATUS_NOT_RUNNING,
    STATUS_RUNNING,
    CommandResult,
    DaemonError,
    ProcessController,
    StreamDrain,
)


@pytest.fixture
def controller() -> ProcessController:
    return ProcessController()


class TestStreamDrain:
    """Tests for pipe draining threads."""

    def test_collects_everything(self):
        payload = b"x" * 10000
        drain = StreamDrain("test", io.BytesIO(payload), collect=True)
        assert drain.wait_for_done(timeout=5)
        assert drain.is_done()
        assert drain.data() == payload

    def test_logging_mode_keeps_nothing(self):
        drain = StreamDrain("test", io.BytesIO(b"one\ntwo\n"))
        assert drain.wait_for_done(timeout=5)
        assert drain.data() == b""

    def test_closed_stream_still_finishes(self):
        stream = io.BytesIO(b"data")
        stream.close()
        drain = StreamDrain("test", stream, collect=True)
        assert drain.wait_for_done(timeout=5)


class TestRunWithTimeout:
    """Tests for ProcessController.run_with_timeout()."""

    def test_success(self, controller: ProcessController):
        result = controller.run_with_timeout("true", timeout=5)
        assert result == CommandResult(command="true", returncode=0)
        assert result.succeeded

    def test_nonzero_exit(self, controller: ProcessController):
        result = controller.run_with_timeout("exit 3", timeout=5)
        assert result.returncode == 3
        assert not result.succeeded

    def test_timeout_kills_process(self, controller: ProcessController):
        """A command that outlives the timeout is killed promptly."""
        start = time.monotonic()
        result = controller.run_with_timeout("exec sleep 5", timeout=0.2)
        assert result.timed_out
        assert result.returncode is None
        assert not result.succeeded
        assert time.monotonic() - start < 4

    def test_tmpdir_sets_environment(self, controller: ProcessController, tmp_path):
        out = tmp_path / "env.txt"
        result = controller.run_with_timeout(
            f'printf "%s" "$TMPDIR" > {out}', timeout=5, tmpdir=str(tmp_path)
        )
        assert result.succeeded
        assert out.read_text() == str(tmp_path)

    def test_heredoc_reaches_stdin(self, controller: ProcessController, tmp_path):
        """The start command's config travels through a heredoc."""
        out = tmp_path / "stdin.txt"
        result = controller.run_with_timeout(f"cat > {out} <<EOF\nhello\nEOF", timeout=5)
        assert result.succeeded
        assert out.read_text() == "hello\n"

    def test_chatty_command_does_not_block(self, controller: ProcessController):
        """Large output on both pipes is drained while we wait."""
        blank_lines = "head -c 200000 /dev/zero | tr '\\0' '\\n'"
        cmd = f"{blank_lines}; {blank_lines} >&2"
        result = controller.run_with_timeout(cmd, timeout=10)
        assert result.succeeded


class TestRunAndCapture:
    """Tests for ProcessController.run_and_capture()."""

    def test_captures_stdout(self, controller: ProcessController):
        output = controller.run_and_capture("printf 'abc'", timeout=5)
        assert output.stdout == b"abc"
        assert output.returncode == 0
        assert not output.timed_out

    def test_captures_large_binary_output(self, controller: ProcessController):
        output = controller.run_and_capture("head -c 300000 /dev/zero", timeout=10)
        assert len(output.stdout) == 300000

    def test_timeout_returns_partial(self, controller: ProcessController):
        output = controller.run_and_capture("printf 'part'; exec sleep 5", timeout=0.5)
        assert output.timed_out
        assert output.returncode is None


class FixedResultController(ProcessController):
    """Returns a canned result instead of spawning anything."""

    def __init__(self, result: CommandResult):
        self.result = result

    def run_with_timeout(self, cmd, timeout, tmpdir=None):
        return self.result


class TestSessionStatus:
    """Tests for mapping status query exit codes."""

    def test_running(self):
        controller = FixedResultController(CommandResult("q", STATUS_RUNNING))
        assert controller.session_status("q", 1) is True

    def test_not_running(self):
        controller = FixedResultController(CommandResult("q", STATUS_NOT_RUNNING))
        assert controller.session_status("q", 1) is False

    def test_unexpected_code(self):
        controller = FixedResultController(CommandResult("q", 1))
        with pytest.raises(DaemonError, match="exit code 1"):
            controller.session_status("q", 1)

    def test_timeout(self):
        controller = FixedResultController(CommandResult("q", None, timed_out=True))
        with pytest.raises(DaemonError, match="timed out"):
            controller.session_status("q", 1)

    def test_real_shell_exit_codes(self, controller: ProcessController):
        assert controller.session_status("exit 0", 5) is True
        assert controller.session_status("exit 2", 5) is False
