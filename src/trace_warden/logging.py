"""Console output with Rich formatting, plus structlog configuration.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Core console functions (log, info, warn, error)
3. Domain helpers (recording_started, recording_saved, etc.)
4. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from trace_warden.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    RECORD = "[red]⬤[/]"
    IDLE = "[dim]⬤[/]"
    SAVE = "💾"
    PRUNE = "🧹"
    SHARE = "📦"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def recording_started(label: str) -> None:
    info(f"Recording [cyan]{label}[/]", Icon.RECORD)


def recording_start_failed(label: str) -> None:
    error(f"Failed to start {label}", Icon.FAIL)


def recording_saving(message: str) -> None:
    info(f"{message}...", Icon.WAIT)


def recording_saved(message: str, files: list[Path]) -> None:
    """Log saved artifacts, primary file first."""
    info(message, Icon.SAVE)
    for path in files:
        info(f"  [cyan]{path}[/]")


def recording_save_failed() -> None:
    error("No recording was saved", Icon.FAIL)


def recording_discarded() -> None:
    info("Recording stopped without saving", Icon.OK)


def session_status(running: bool, active: list[str]) -> None:
    if running:
        wanted = f" [dim]({', '.join(active)})[/]" if active else ""
        info(f"Session [green]running[/]{wanted}", Icon.RECORD)
    else:
        info("Session [dim]idle[/]", Icon.IDLE)


def state_reset() -> None:
    warn("More than one recording type was on; all have been turned off")


def recordings_cleared(count: int) -> None:
    suffix = "s" if count != 1 else ""
    info(f"Deleted [cyan]{count}[/] saved recording{suffix}", Icon.PRUNE)


def retention_complete(count: int) -> None:
    info(f"[dim]Pruned {count} old recordings[/]", Icon.PRUNE)


def artifacts_shared(primary: Path, bundle: Path | None) -> None:
    info(f"Ready to share [cyan]{primary}[/]", Icon.SHARE)
    if bundle is not None:
        info(f"  with auxiliary bundle [cyan]{bundle}[/]")


def daemon_unreachable(error_msg: str) -> None:
    error(f"Tracing daemon error: {error_msg}", Icon.FAIL)


def session_state_unreadable(error_msg: str) -> None:
    error(f"Session record unreadable: {escape(error_msg)}", Icon.FAIL)
    info("Run [cyan]trace-warden recover[/] to save any running session and reset it")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "cli") -> None:
    """Route structlog to a rotating JSON Lines file.

    Console output stays with the Rich helpers above; the file is for
    machine parsing.

    Args:
        config: Application config with paths and rotation limits
        source: Value of the "source" field on every record
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
