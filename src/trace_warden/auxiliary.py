"""Auxiliary capture channel.

Some platform traces (window manager, input method) are toggled outside the
daemon and written to their own temporary files. The engine only needs three
calls from such a channel: start, stop and dump.
"""

import shutil
from pathlib import Path
from typing import Protocol

import structlog

from trace_warden.output import normalize_permissions

log = structlog.get_logger()


class AuxiliaryChannel(Protocol):
    def start(self, enabled: bool) -> None: ...

    def stop(self) -> None: ...

    def dump(self, filename: str) -> list[Path]: ...


class NullChannel:
    """A channel with nothing to capture."""

    def start(self, enabled: bool) -> None:
        pass

    def stop(self) -> None:
        pass

    def dump(self, filename: str) -> list[Path]:
        return []


class ArtifactChannel:
    """Collects a fixed set of temporary artifact files on dump.

    Each existing artifact is copied next to the primary trace as
    "{trace name without extension}-{artifact name}" and made world readable.
    The temporary files are removed at start and after every dump so a later
    dump never picks up stale data.
    """

    def __init__(self, temp_files: list[Path], trace_dir: Path):
        self.temp_files = list(temp_files)
        self.trace_dir = trace_dir
        self.enabled = False

    def start(self, enabled: bool) -> None:
        self.stop()
        self._delete_temp_files()
        self.enabled = enabled
        log.debug("auxiliary_started", enabled=enabled)

    def stop(self) -> None:
        if self.enabled:
            log.debug("auxiliary_stopped")
        self.enabled = False

    def dump(self, filename: str) -> list[Path]:
        self.stop()
        stem = Path(filename).stem
        collected: list[Path] = []
        for temp_file in self.temp_files:
            if not temp_file.exists():
                continue
            dest = self.trace_dir / f"{stem}-{temp_file.name}"
            try:
                shutil.copyfile(temp_file, dest)
            except OSError as e:
                log.error("auxiliary_copy_failed", src=str(temp_file), error=str(e))
                continue
            normalize_permissions(dest)
            collected.append(dest)
            log.debug("auxiliary_copied", path=str(dest))

        self._delete_temp_files()
        return collected

    def _delete_temp_files(self) -> None:
        for temp_file in self.temp_files:
            try:
                temp_file.unlink(missing_ok=True)
            except OSError as e:
                log.error("auxiliary_delete_failed", path=str(temp_file), error=str(e))
