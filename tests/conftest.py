"""Shared test fixtures for trace-warden."""

from pathlib import Path

import pytest

from trace_warden.categories import message_classes
from trace_warden.config import Config, DaemonConfig
from trace_warden.device import DeviceInfo
from trace_warden.output import RetentionWorker
from trace_warden.process import CapturedOutput, CommandResult, ProcessController
from trace_warden.protocol import MARKER
from trace_warden.session import SessionManager, TraceEngine
from trace_warden.state import StateStore


def service_state_payload(categories: dict[str, str]) -> bytes:
    """Serialize a TracingServiceState advertising the given atrace categories."""
    state = message_classes().TracingServiceState()

    ftrace = state.data_sources.add()
    ftrace.producer_id = 1
    ftrace.ds_descriptor.name = "linux.ftrace"
    for name, description in categories.items():
        category = ftrace.ds_descriptor.ftrace_descriptor.atrace_categories.add()
        category.name = name
        category.description = description

    other = state.data_sources.add()
    other.producer_id = 2
    other.ds_descriptor.name = "linux.process_stats"
    return state.SerializeToString()


class FakeDaemonController(ProcessController):
    """Answers daemon command lines from an in-memory session.

    A successful start writes the in-progress file the way the daemon would.
    The knobs (start_returncode, stop_ends_session, status_returncode, ...)
    script failure modes.
    """

    def __init__(self, temp_path: Path, categories: dict[str, str] | None = None):
        self.temp_path = temp_path
        self.categories = categories if categories is not None else {}
        self.running = False
        self.commands: list[str] = []
        self.trace_bytes = b"trace-data"
        self.last_config: str | None = None
        self.last_tmpdir: str | None = None
        self.start_returncode = 0
        self.start_timed_out = False
        self.stop_returncode = 0
        self.stop_ends_session = True
        self.status_returncode: int | None = None
        self.status_timed_out = False

    @property
    def start_count(self) -> int:
        return sum("--detach=" in cmd for cmd in self.commands)

    @property
    def stop_count(self) -> int:
        return sum("--stop" in cmd for cmd in self.commands)

    def run_with_timeout(self, cmd: str, timeout: float, tmpdir: str | None = None) -> CommandResult:
        self.commands.append(cmd)
        if "--detach=" in cmd:
            self.last_tmpdir = tmpdir
            self.last_config = cmd.split(f"<<{MARKER}\n", 1)[1].rsplit(f"\n{MARKER}", 1)[0]
            if self.start_timed_out:
                return CommandResult(command=cmd, returncode=None, timed_out=True)
            if self.start_returncode != 0:
                return CommandResult(command=cmd, returncode=self.start_returncode)
            self.running = True
            self.temp_path.write_bytes(self.trace_bytes)
            return CommandResult(command=cmd, returncode=0)
        if "--stop" in cmd:
            if self.stop_ends_session:
                self.running = False
            return CommandResult(command=cmd, returncode=self.stop_returncode)
        if "--is_detached=" in cmd:
            if self.status_timed_out:
                return CommandResult(command=cmd, returncode=None, timed_out=True)
            if self.status_returncode is not None:
                return CommandResult(command=cmd, returncode=self.status_returncode)
            return CommandResult(command=cmd, returncode=0 if self.running else 2)
        raise AssertionError(f"Unexpected command: {cmd}")

    def run_and_capture(self, cmd: str, timeout: float) -> CapturedOutput:
        self.commands.append(cmd)
        return CapturedOutput(stdout=service_state_payload(self.categories), returncode=0)


@pytest.fixture
def trace_dir(tmp_path: Path) -> Path:
    path = tmp_path / "traces"
    path.mkdir()
    return path


@pytest.fixture
def config(trace_dir: Path) -> Config:
    """Config pointing the daemon at a temporary trace directory."""
    return Config(
        daemon=DaemonConfig(
            trace_dir=str(trace_dir),
            temp_trace_path=str(trace_dir / ".trace-in-progress.trace"),
        )
    )


@pytest.fixture
def device() -> DeviceInfo:
    return DeviceInfo(board="oriole", build_id="UQ1A", build_type="userdebug", cpu_count=4)


@pytest.fixture
def fake_daemon(config: Config) -> FakeDaemonController:
    return FakeDaemonController(
        config.temp_trace_path,
        categories={
            "am": "Activity Manager",
            "gfx": "Graphics",
            "sched": "CPU Scheduling",
            "view": "View System",
        },
    )


@pytest.fixture
def engine(config: Config, fake_daemon: FakeDaemonController, device: DeviceInfo) -> TraceEngine:
    return TraceEngine(config, controller=fake_daemon, device=device)


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state" / "session.toml")


@pytest.fixture
def retention(config: Config):
    worker = RetentionWorker(
        config.trace_dir, config.retention.min_keep_count, config.retention.min_age
    )
    yield worker
    worker.shutdown()


@pytest.fixture
def manager(
    engine: TraceEngine,
    store: StateStore,
    retention: RetentionWorker,
    config: Config,
) -> SessionManager:
    return SessionManager(engine, store, retention, config)


@pytest.fixture
def make_service_state():
    """Builder for serialized service-state payloads."""
    return service_state_payload
