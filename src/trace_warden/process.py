"""Subprocess control for the tracing daemon.

Commands run through `sh -c` so the start command can feed its configuration
on stdin through a heredoc. Every child gets drain threads for its pipes so a
chatty daemon can never block on a full pipe buffer.
"""

import os
import subprocess
import threading
from dataclasses import dataclass
from typing import IO

import structlog

log = structlog.get_logger()

# Exit codes of the daemon's status query.
STATUS_RUNNING = 0
STATUS_NOT_RUNNING = 2

_CHUNK_SIZE = 2 << 10


class DaemonError(RuntimeError):
    """The daemon gave an answer (or no answer) that cannot be interpreted."""


@dataclass
class CommandResult:
    """Outcome of a command waited on with a timeout.

    returncode is None when the command timed out and was killed.
    """

    command: str
    returncode: int | None
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0


@dataclass
class CapturedOutput:
    """Stdout collected from a command, plus how it ended."""

    stdout: bytes
    returncode: int | None
    timed_out: bool = False


class StreamDrain:
    """Reads a pipe to EOF on a daemon thread.

    When collecting, everything read is kept and available via data().
    Otherwise each line is written to the log under the drain's name.
    """

    def __init__(self, name: str, stream: IO[bytes], collect: bool = False):
        self.name = name
        self._stream = stream
        self._collect = collect
        self._chunks: list[bytes] = []
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            if self._collect:
                while chunk := self._stream.read(_CHUNK_SIZE):
                    self._chunks.append(chunk)
            else:
                for raw in self._stream:
                    line = raw.decode("utf-8", errors="replace").rstrip()
                    if line:
                        log.info("daemon_output", stream=self.name, line=line)
        except (OSError, ValueError) as e:
            # ValueError: the pipe was closed under us after a kill.
            log.error("stream_drain_failed", stream=self.name, error=str(e))
        finally:
            self._done.set()

    def is_done(self) -> bool:
        """Return True once the stream has reached EOF or failed."""
        return self._done.is_set()

    def wait_for_done(self, timeout: float | None = None) -> bool:
        """Block until the stream is drained. Returns False on timeout."""
        return self._done.wait(timeout)

    def data(self) -> bytes:
        """Everything read so far (only populated when collecting)."""
        return b"".join(self._chunks)


class ProcessController:
    """Spawns shell commands with drained pipes and bounded waits."""

    def run(
        self,
        cmd: str,
        tmpdir: str | None = None,
        log_output: bool = True,
    ) -> subprocess.Popen:
        """Spawn `sh -c cmd`.

        Args:
            cmd: Shell command line
            tmpdir: Value for TMPDIR in the child's environment, if any
            log_output: Drain stdout to the log. When False the caller owns stdout.

        Raises:
            OSError: If the shell cannot be spawned
        """
        env = None
        if tmpdir is not None:
            env = dict(os.environ)
            env["TMPDIR"] = tmpdir

        log.debug("exec", cmd=cmd, tmpdir=tmpdir)
        process = subprocess.Popen(
            ["sh", "-c", cmd],
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        StreamDrain("daemon:stderr", process.stderr)
        if log_output:
            StreamDrain("daemon:stdout", process.stdout)
        return process

    def run_with_timeout(
        self,
        cmd: str,
        timeout: float,
        tmpdir: str | None = None,
    ) -> CommandResult:
        """Run a command and wait up to timeout seconds.

        On expiry the process is killed and the result is marked timed_out.
        """
        process = self.run(cmd, tmpdir=tmpdir)
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.error("command_timed_out", cmd=cmd, timeout=timeout)
            process.kill()
            process.wait()
            return CommandResult(command=cmd, returncode=None, timed_out=True)
        return CommandResult(command=cmd, returncode=returncode)

    def run_and_capture(self, cmd: str, timeout: float) -> CapturedOutput:
        """Run a command, collecting all of stdout in memory.

        The output is drained on its own thread so the child never blocks on
        a full pipe. On timeout the process is killed and whatever was read
        is returned.
        """
        process = self.run(cmd, log_output=False)
        drain = StreamDrain("daemon:capture", process.stdout, collect=True)
        try:
            returncode = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.error("command_timed_out", cmd=cmd, timeout=timeout)
            process.kill()
            process.wait()
            drain.wait_for_done(timeout)
            return CapturedOutput(stdout=drain.data(), returncode=None, timed_out=True)

        drain.wait_for_done()
        return CapturedOutput(stdout=drain.data(), returncode=returncode)

    def session_status(self, cmd: str, timeout: float) -> bool:
        """Run a status query and map its exit code.

        Returns:
            True if the session exists, False if it does not

        Raises:
            DaemonError: On a timeout or an unexpected exit code
        """
        result = self.run_with_timeout(cmd, timeout)
        if result.timed_out:
            raise DaemonError("Session status query timed out")
        if result.returncode == STATUS_RUNNING:
            return True
        if result.returncode == STATUS_NOT_RUNNING:
            return False
        raise DaemonError(f"Session status query failed with exit code {result.returncode}")
