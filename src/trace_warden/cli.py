"""CLI commands for trace-warden."""

import functools

import click

RECORDING_TYPE_CHOICES = ["trace", "stack-samples", "heap-dump"]


def _load_config():
    """Load the config and route structured logs to the log file."""
    from trace_warden.config import Config
    from trace_warden.logging import configure

    config = Config.load()
    configure(config)
    return config


def _build_manager(config):
    """Wire the engine, state store and retention worker from config."""
    from pathlib import Path

    from trace_warden.auxiliary import ArtifactChannel, NullChannel
    from trace_warden.output import RetentionWorker
    from trace_warden.session import SessionManager, TraceEngine
    from trace_warden.state import StateStore

    if config.daemon.auxiliary_files:
        aux = ArtifactChannel([Path(p) for p in config.daemon.auxiliary_files], config.trace_dir)
    else:
        aux = NullChannel()
    engine = TraceEngine(config, aux=aux)
    retention = RetentionWorker(
        config.trace_dir, config.retention.min_keep_count, config.retention.min_age
    )
    return SessionManager(engine, StateStore(config.state_path), retention, config)


def command_errors(func):
    """Report daemon failures and unreadable session records, then exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from trace_warden import logging as console
        from trace_warden.process import DaemonError
        from trace_warden.state import SessionStateError

        try:
            return func(*args, **kwargs)
        except DaemonError as e:
            console.daemon_unreachable(str(e))
            raise click.exceptions.Exit(1) from e
        except SessionStateError as e:
            console.session_state_unreadable(str(e))
            raise click.exceptions.Exit(1) from e

    return wrapper


@click.group()
@click.version_option(package_name="trace-warden")
def main() -> None:
    """Control on-device performance tracing sessions."""
    pass


@main.command()
@click.option(
    "--type",
    "recording_type",
    type=click.Choice(RECORDING_TYPE_CHOICES),
    default="trace",
    help="What to record",
)
@click.option("--preset", default=None, help="Record a trace with a named preset's options")
@click.option("--tag", "-t", "tags", multiple=True, help="Trace category (repeatable)")
@click.option("--process", "-p", "processes", multiple=True, help="Heap dump target (repeatable)")
@command_errors
def start(
    recording_type: str,
    preset: str | None,
    tags: tuple[str, ...],
    processes: tuple[str, ...],
) -> None:
    """Start recording."""
    from trace_warden import logging as console
    from trace_warden.presets import PRESETS, preset_config
    from trace_warden.protocol import ConfigBuildError
    from trace_warden.recording import RecordingType, kind_for
    from trace_warden.session import Reconciliation
    from trace_warden.state import SessionStateError

    rtype = RecordingType.parse(recording_type)
    if preset is not None and preset not in PRESETS:
        raise click.BadParameter(
            f"must be one of {', '.join(PRESETS)}", param_hint="'--preset'"
        )

    config = _load_config()
    manager = _build_manager(config)
    if tags or processes:
        manager.update_selection(
            tags=list(tags) if tags else None,
            processes=list(processes) if processes else None,
        )

    options = None
    if preset is not None and rtype is RecordingType.TRACE:
        options = preset_config(preset, manager.engine.device.build_type)
        if tags:
            options = options.with_tags(tags)

    label = kind_for(rtype).label
    try:
        result = manager.request(rtype, options)
    except SessionStateError:
        raise
    except (ConfigBuildError, ValueError) as e:
        console.recording_start_failed(label)
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if result is Reconciliation.STARTED:
        console.recording_started(label)
    elif result is Reconciliation.UNCHANGED:
        console.warn("A recording is already in progress")
    elif result is Reconciliation.REFUSED:
        running = kind_for(manager.store.load().recent_type).label
        console.warn(f"A {running} is already in progress; stop it first")
    elif result is Reconciliation.RESET:
        console.state_reset()
    else:
        console.recording_start_failed(label)
        raise SystemExit(1)


@main.command()
@command_errors
def stop() -> None:
    """Stop recording and save the result."""
    from trace_warden import logging as console
    from trace_warden.recording import kind_for

    config = _load_config()
    manager = _build_manager(config)

    if not manager.engine.is_running():
        manager.request_stop()
        console.info("No recording in progress")
        return

    kind = kind_for(manager.load_state().recent_type)
    console.recording_saving(kind.saving_message)
    files = manager.stop_recording()
    if not files:
        console.recording_save_failed()
        raise SystemExit(1)
    console.recording_saved(kind.saved_message, files)


@main.command()
@command_errors
def discard() -> None:
    """Stop recording without saving anything."""
    from trace_warden import logging as console

    config = _load_config()
    manager = _build_manager(config)
    manager.stop_without_saving()
    console.recording_discarded()


@main.command()
@command_errors
def status() -> None:
    """Show whether a session is running."""
    from trace_warden import logging as console

    config = _load_config()
    manager = _build_manager(config)

    running = manager.engine.is_running()
    state = manager.store.load()
    console.session_status(running, [t.value for t in state.active_types()])
    click.echo(f"Most recent: {state.recent_type.value}")
    if state.tags is not None:
        click.echo(f"Selected categories: {', '.join(state.tags)}")


@main.command()
def categories() -> None:
    """List the categories the daemon can record."""
    config = _load_config()
    manager = _build_manager(config)

    for name, description in manager.engine.list_categories().items():
        click.echo(f"{name:20}  {description}")


@main.command()
@command_errors
def share() -> None:
    """Save the session as a trace, bundling auxiliary files."""
    from trace_warden import logging as console

    config = _load_config()
    manager = _build_manager(config)

    artifacts = manager.share()
    if artifacts is None:
        console.recording_save_failed()
        raise SystemExit(1)
    console.artifacts_shared(artifacts.primary, artifacts.bundle)


@main.command()
@command_errors
def recover() -> None:
    """Save whatever the daemon recorded, without knowing its type."""
    from trace_warden import logging as console

    config = _load_config()
    manager = _build_manager(config)

    files = manager.recover()
    if not files:
        console.recording_save_failed()
        raise SystemExit(1)
    console.recording_saved("Recording recovered", files)


@main.group()
def notify() -> None:
    """Handle notifications from the tracing daemon."""
    pass


@notify.command("stopped")
@command_errors
def notify_stopped() -> None:
    """The daemon ended the session (size or time limit reached)."""
    from trace_warden import logging as console
    from trace_warden.recording import kind_for

    config = _load_config()
    manager = _build_manager(config)

    kind = kind_for(manager.load_state().recent_type)
    files = manager.handle_session_stopped()
    if files:
        console.recording_saved(kind.saved_message, files)
    else:
        console.recording_save_failed()


@notify.command("stolen")
def notify_stolen() -> None:
    """The session was attached to a bug report."""
    from trace_warden import logging as console

    config = _load_config()
    manager = _build_manager(config)
    manager.handle_session_stolen()
    console.info("Recording attached to bug report")


@main.command()
@click.option("--assume-off", is_flag=True, help="Treat the daemon as idle (e.g. after boot)")
@command_errors
def reconcile(assume_off: bool) -> None:
    """Bring the daemon in line with the saved session state."""
    from trace_warden import logging as console
    from trace_warden.session import Reconciliation

    config = _load_config()
    manager = _build_manager(config)

    result = manager.reconcile(assume_off=assume_off)
    if result is Reconciliation.RESET:
        console.state_reset()
    click.echo(result.value)
    if result is Reconciliation.START_FAILED:
        raise SystemExit(1)


@main.command()
@click.confirmation_option(prompt="Delete all saved recordings?")
def clear() -> None:
    """Delete every saved recording."""
    from trace_warden import logging as console
    from trace_warden.output import clear_saved_recordings

    config = _load_config()
    count = clear_saved_recordings(config.trace_dir)
    console.recordings_cleared(count)


@main.command()
@click.option("--keep", default=None, type=int, help="Override number of newest files kept")
@click.option("--days", default=None, type=int, help="Override minimum age in days")
def cleanup(keep: int | None, days: int | None) -> None:
    """Delete old recordings, keeping the newest ones."""
    from datetime import timedelta

    from trace_warden import logging as console
    from trace_warden.output import delete_older_files

    config = _load_config()
    keep = keep if keep is not None else config.retention.min_keep_count
    min_age = timedelta(days=days) if days is not None else config.retention.min_age

    count = delete_older_files(config.trace_dir, keep, min_age)
    console.retention_complete(count)


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from trace_warden.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[daemon]")
    click.echo(f"  binary = {cfg.daemon.binary}")
    click.echo(f"  session_name = {cfg.daemon.session_name}")
    click.echo(f"  trace_dir = {cfg.daemon.trace_dir}")
    click.echo(f"  start_timeout = {cfg.daemon.start_timeout}")
    click.echo(f"  stop_timeout = {cfg.daemon.stop_timeout}")
    click.echo()
    click.echo("[trace]")
    click.echo(f"  preset = {cfg.trace.preset}")
    click.echo(f"  buffer_size_kb = {cfg.trace.buffer_size_kb}")
    click.echo(f"  long_trace = {cfg.trace.long_trace}")
    click.echo()
    click.echo("[retention]")
    click.echo(f"  min_keep_count = {cfg.retention.min_keep_count}")
    click.echo(f"  min_age_days = {cfg.retention.min_age_days}")


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from trace_warden.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
