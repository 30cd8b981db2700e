"""Device identity used in output filenames and preset filtering."""

import platform
import shutil
import subprocess
from dataclasses import dataclass

import psutil
import structlog

log = structlog.get_logger()

GETPROP_TIMEOUT = 5.0


@dataclass(frozen=True)
class DeviceInfo:
    board: str
    build_id: str
    build_type: str
    cpu_count: int

    @property
    def is_user_build(self) -> bool:
        return self.build_type == "user"


def _getprop(name: str) -> str | None:
    """Read a system property. Returns None if unavailable or empty."""
    try:
        completed = subprocess.run(
            ["getprop", name],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=GETPROP_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning("getprop_failed", prop=name, error=str(e))
        return None
    value = completed.stdout.strip()
    return value or None


def cpu_count() -> int:
    """Number of CPUs, including offline ones the daemon still allocates for."""
    return psutil.cpu_count(logical=True) or 1


def detect() -> DeviceInfo:
    """Identify the current device.

    On a device with getprop the build properties are used. Elsewhere the
    host's machine and release strings stand in.
    """
    board = build_id = build_type = None
    if shutil.which("getprop"):
        board = _getprop("ro.product.board")
        build_id = _getprop("ro.build.id")
        build_type = _getprop("ro.build.type")

    info = DeviceInfo(
        board=board or platform.machine() or "unknown",
        build_id=build_id or platform.release() or "unknown",
        build_type=build_type or "userdebug",
        cpu_count=cpu_count(),
    )
    log.debug(
        "device_detected",
        board=info.board,
        build_id=info.build_id,
        build_type=info.build_type,
        cpu_count=info.cpu_count,
    )
    return info
