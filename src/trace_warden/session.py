"""Recording session lifecycle.

TraceEngine is a thin, stateless wrapper over the daemon: every answer about
whether a session exists comes from the daemon itself. SessionManager layers
the durable record on top: what the user asked for, what was started last,
and reconciliation of the two when they disagree.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from trace_warden import categories, protocol
from trace_warden.auxiliary import AuxiliaryChannel, NullChannel
from trace_warden.config import Config
from trace_warden.device import DeviceInfo, detect
from trace_warden.output import (
    RetentionWorker,
    bundle_files,
    output_filename,
    recovered_filename,
    relocate,
)
from trace_warden.presets import preset_tags
from trace_warden.process import DaemonError, ProcessController
from trace_warden.recording import RecordingType, kind_for
from trace_warden.state import SessionState, SessionStateError, StateStore
from trace_warden.trace_config import (
    HeapDumpConfig,
    RecordingOptions,
    StackSampleConfig,
    TraceConfig,
)

log = structlog.get_logger()

AUXILIARY_BUNDLE_SUFFIX = "_auxiliary_traces.zip"


class TraceEngine:
    """Starts, stops and collects recordings through the daemon."""

    def __init__(
        self,
        config: Config,
        controller: ProcessController | None = None,
        device: DeviceInfo | None = None,
        aux: AuxiliaryChannel | None = None,
    ):
        self.config = config
        self.controller = controller or ProcessController()
        self.device = device or detect()
        self.aux = aux or NullChannel()

    @property
    def _daemon(self):
        return self.config.daemon

    def build_config(self, recording_type: RecordingType, options: RecordingOptions) -> str:
        """Configuration text for a recording type.

        Raises:
            TypeError: If options do not belong to the recording type
            ValueError: If the type cannot be recorded or the options are unusable
            ConfigBuildError: If the text would break the command framing
        """
        if recording_type is RecordingType.TRACE:
            if not isinstance(options, TraceConfig):
                raise TypeError(f"Trace needs TraceConfig, got {type(options).__name__}")
            return protocol.build_trace_config(options, self.device.cpu_count)
        if recording_type is RecordingType.STACK_SAMPLES:
            if not isinstance(options, StackSampleConfig):
                raise TypeError(
                    f"Stack samples need StackSampleConfig, got {type(options).__name__}"
                )
            return protocol.build_stack_sample_config(options)
        if recording_type is RecordingType.HEAP_DUMP:
            if not isinstance(options, HeapDumpConfig):
                raise TypeError(f"Heap dump needs HeapDumpConfig, got {type(options).__name__}")
            return protocol.build_heap_dump_config(options)
        raise ValueError(f"Cannot record {recording_type.name}")

    def start(self, recording_type: RecordingType, options: RecordingOptions) -> bool:
        """Start a detached session.

        Returns:
            True if the daemon accepted the session

        Raises:
            ConfigBuildError: Before any daemon call, if the text is malformed
            DaemonError: If the status query fails
        """
        config_text = self.build_config(recording_type, options)
        command = protocol.start_command(
            self._daemon.binary,
            self._daemon.session_name,
            self._daemon.temp_trace_path,
            config_text,
        )

        if self.is_running():
            log.error("start_refused", reason="session_in_progress", type=recording_type.value)
            return False

        self.config.temp_trace_path.unlink(missing_ok=True)

        result = self.controller.run_with_timeout(
            command, self._daemon.start_timeout, tmpdir=self._daemon.trace_dir
        )
        if not result.succeeded:
            log.error(
                "start_failed",
                type=recording_type.value,
                returncode=result.returncode,
                timed_out=result.timed_out,
            )
            return False

        if recording_type is RecordingType.TRACE:
            self.aux.start(options.auxiliary)
        log.info("recording_started", type=recording_type.value)
        return True

    def stop(self) -> None:
        """Ask the daemon to end the session. Failures are logged only."""
        try:
            if not self.is_running():
                log.warning("stop_without_session")
        except DaemonError as e:
            log.warning("stop_status_unknown", error=str(e))

        result = self.controller.run_with_timeout(
            protocol.stop_command(self._daemon.binary, self._daemon.session_name),
            self._daemon.stop_timeout,
        )
        if not result.succeeded:
            log.error("stop_failed", returncode=result.returncode, timed_out=result.timed_out)
        self.aux.stop()

    def dump(self, filename: str) -> list[Path] | None:
        """Stop the session and move its output to trace_dir/filename.

        Returns:
            The primary file followed by auxiliary files, or None if nothing
            was saved

        Raises:
            DaemonError: If the status query fails
        """
        self.stop()

        if self.is_running():
            log.error("dump_aborted", reason="session_still_running")
            return None

        temp_path = self.config.temp_trace_path
        if not temp_path.exists():
            log.error("dump_aborted", reason="no_in_progress_file", path=str(temp_path))
            return None

        dest = relocate(temp_path, self.config.trace_dir / filename)
        if dest is None:
            return None

        files = [dest]
        files.extend(self.aux.dump(filename))
        log.info("recording_dumped", path=str(dest), auxiliary=len(files) - 1)
        return files

    def is_running(self) -> bool:
        """Whether the named session exists.

        Raises:
            DaemonError: If the daemon's answer cannot be interpreted
        """
        return self.controller.session_status(
            protocol.status_command(self._daemon.binary, self._daemon.session_name),
            self._daemon.list_timeout,
        )

    def list_categories(self) -> dict[str, str]:
        return categories.list_categories(
            self.controller,
            protocol.query_command(self._daemon.binary),
            self._daemon.list_timeout,
        )


class Reconciliation(Enum):
    """What reconcile() did."""

    REFUSED = "refused"
    RESET = "reset"
    STARTED = "started"
    START_FAILED = "start_failed"
    STOPPED = "stopped"
    UNCHANGED = "unchanged"


@dataclass
class SharedArtifacts:
    primary: Path
    auxiliary: list[Path]
    bundle: Path | None = None


class SessionManager:
    """Keeps the durable record and the daemon in agreement."""

    def __init__(
        self,
        engine: TraceEngine,
        store: StateStore,
        retention: RetentionWorker,
        config: Config,
    ):
        self.engine = engine
        self.store = store
        self.retention = retention
        self.config = config

    def _filename(self, recording_type: RecordingType) -> str:
        return output_filename(
            recording_type, self.engine.device, self.config.daemon.output_extension
        )

    def options_for(
        self,
        recording_type: RecordingType,
        state: SessionState | None = None,
    ) -> RecordingOptions:
        """Build options for a type from the config and the saved selection.

        Raises:
            ValueError: If the type cannot be recorded
        """
        state = state or self.store.load()
        if recording_type is RecordingType.TRACE:
            trace = self.config.trace
            if state.tags is not None:
                tags = frozenset(state.tags)
            else:
                tags = preset_tags(trace.preset, self.engine.device.build_type)
            return TraceConfig(
                buffer_size_kb=trace.buffer_size_kb,
                tags=tags,
                apps=trace.apps,
                long_trace=trace.long_trace,
                attach_to_bugreport=trace.attach_to_bugreport,
                max_long_trace_size_mb=trace.max_long_trace_size_mb,
                max_long_trace_duration_minutes=trace.max_long_trace_duration_minutes,
                auxiliary=trace.auxiliary,
            )
        if recording_type is RecordingType.STACK_SAMPLES:
            section = self.config.stack_samples
            return StackSampleConfig(
                attach_to_bugreport=section.attach_to_bugreport,
                frequency_hz=section.frequency_hz,
                buffer_size_kb=section.buffer_size_kb,
                max_duration_minutes=section.max_duration_minutes,
            )
        if recording_type is RecordingType.HEAP_DUMP:
            section = self.config.heap_dump
            return HeapDumpConfig(
                processes=frozenset(state.processes),
                continuous=section.continuous,
                dump_interval_seconds=section.dump_interval_seconds,
                attach_to_bugreport=section.attach_to_bugreport,
                buffer_size_kb=section.buffer_size_kb,
            )
        raise ValueError(f"Cannot record {recording_type.name}")

    def update_selection(
        self,
        tags: list[str] | None = None,
        processes: list[str] | None = None,
    ) -> SessionState:
        """Persist a new category selection and/or heap dump target list."""
        state = self.store.load()
        if tags is not None:
            state.tags = sorted(set(tags))
        if processes is not None:
            state.processes = sorted(set(processes))
        self.store.save(state)
        return state

    def available_trace_options(self, options: TraceConfig) -> TraceConfig:
        """Drop tags the daemon does not know about, logging what was dropped."""
        available = self.engine.list_categories()
        active = options.tags & available.keys()
        unavailable = sorted(options.tags - active)
        if unavailable:
            log.warning("unavailable_tags", tags=unavailable)
        return options.with_tags(active)

    def start_recording(
        self,
        recording_type: RecordingType,
        options: RecordingOptions | None = None,
    ) -> bool:
        """Start a recording and persist the outcome.

        On success the type becomes the only one flagged on and the most
        recent type. On failure the daemon is stopped and the type's flag is
        turned off.
        """
        state = self.store.load()
        if options is None:
            options = self.options_for(recording_type, state)

        try:
            started = self.engine.start(recording_type, options)
        except (protocol.ConfigBuildError, ValueError, TypeError):
            state.set_on(recording_type, False)
            self.store.save(state)
            raise

        if started:
            state.request(recording_type)
            state.recent_type = recording_type
        else:
            self.engine.stop()
            state.set_on(recording_type, False)
        self.store.save(state)
        return started

    def load_state(self) -> SessionState:
        """Load the record, falling back to defaults if it is unreadable.

        Used on the paths that stop or save a session, so a damaged record
        never keeps a recording from being saved.
        """
        try:
            return self.store.load()
        except SessionStateError as e:
            log.warning("session_state_unreadable", error=str(e))
            return SessionState(recent_type=RecordingType.NONE)

    def stop_recording(self) -> list[Path] | None:
        """Stop the session and save its output, named by the most recent type."""
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)

        kind = kind_for(state.recent_type)
        log.info("recording_saving", type=state.recent_type.value, label=kind.label)
        files = self.engine.dump(self._filename(state.recent_type))
        self.retention.schedule()
        return files

    def handle_session_stopped(self) -> list[Path] | None:
        """The daemon ended the session on its own (a size or time limit)."""
        log.info("session_stopped_by_daemon")
        return self.stop_recording()

    def handle_session_stolen(self) -> None:
        """The session was taken over by a bug report. There is nothing to save."""
        log.info("session_stolen")
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)
        self.retention.schedule()

    def stop_without_saving(self) -> None:
        """Stop the session and leave no file behind."""
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)
        self.engine.stop()
        log.info("recording_discarded")

    def share(self) -> SharedArtifacts | None:
        """Save the session as a trace, bundling auxiliary files into one zip."""
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)

        filename = self._filename(RecordingType.TRACE)
        files = self.engine.dump(filename)
        self.retention.schedule()
        if not files:
            return None

        primary, auxiliary = files[0], files[1:]
        bundle = None
        if auxiliary:
            bundle_path = self.config.trace_dir / f"{Path(filename).stem}{AUXILIARY_BUNDLE_SUFFIX}"
            bundle = bundle_files(auxiliary, bundle_path)
        return SharedArtifacts(primary=primary, auxiliary=auxiliary, bundle=bundle)

    def recover(self) -> list[Path] | None:
        """Save a session of unknown type under a recovered- name.

        Works even when the session record cannot be read; the record is
        rewritten with every flag off.
        """
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)

        filename = recovered_filename(self.engine.device, self.config.daemon.output_extension)
        files = self.engine.dump(filename)
        self.retention.schedule()
        return files

    def request(
        self,
        recording_type: RecordingType,
        options: RecordingOptions | None = None,
    ) -> Reconciliation:
        """Flag one type on (clearing the others) and reconcile.

        Refused, with nothing saved, while a session of another type runs.
        """
        state = self.store.load()
        if self.engine.is_running() and state.recent_type is not recording_type:
            log.warning(
                "request_refused",
                requested=recording_type.value,
                running=state.recent_type.value,
            )
            return Reconciliation.REFUSED
        state.request(recording_type)
        self.store.save(state)
        return self.reconcile(options=options)

    def request_stop(self) -> Reconciliation:
        """Clear every flag and reconcile, which saves a running session."""
        state = self.load_state()
        state.clear_flags()
        self.store.save(state)
        return self.reconcile()

    def reconcile(
        self,
        assume_off: bool = False,
        options: RecordingOptions | None = None,
    ) -> Reconciliation:
        """Bring the daemon in line with the persisted flags.

        Safe to call repeatedly: once the two agree nothing happens.

        Args:
            assume_off: Treat the daemon as idle without asking it (after boot)
            options: Options to start with instead of the configured ones

        Raises:
            DaemonError: If the daemon's status cannot be determined
        """
        state = self.store.load()
        active = state.active_types()

        if len(active) > 1:
            log.error("inconsistent_session_state", active=[t.value for t in active])
            state.clear_flags()
            self.store.save(state)
            if self.engine.is_running():
                self.stop_recording()
            return Reconciliation.RESET

        running = False if assume_off else self.engine.is_running()
        if bool(active) == running:
            return Reconciliation.UNCHANGED

        if active:
            recording_type = active[0]
            if options is None:
                options = self.options_for(recording_type, state)
            if isinstance(options, TraceConfig):
                options = self.available_trace_options(options)
            if self.start_recording(recording_type, options):
                return Reconciliation.STARTED
            return Reconciliation.START_FAILED

        self.stop_recording()
        return Reconciliation.STOPPED
