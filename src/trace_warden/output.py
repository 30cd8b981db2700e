"""Trace artifact naming, relocation and retention."""

import errno
import os
import shutil
import stat
import zipfile
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path

import structlog

from trace_warden.device import DeviceInfo
from trace_warden.recording import RecordingType, kind_for

log = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"
RECOVERED_PREFIX = "recovered-"

# Matches every artifact this tool ever saves; nothing else is cleared.
SAVED_RECORDING_PATTERNS = (
    "trace-*.*trace",
    "recovered-*.*trace",
    "stack-samples*.*trace",
    "heap-dump*.*trace",
)

_WORLD_READ_WRITE = (
    stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH
)


def output_filename(
    recording_type: RecordingType,
    device: DeviceInfo,
    extension: str,
    now: datetime | None = None,
) -> str:
    """Name for a saved recording: {prefix}-{board}-{build}-{timestamp}.{extension}."""
    now = now or datetime.now()
    prefix = kind_for(recording_type).prefix
    return f"{prefix}-{device.board}-{device.build_id}-{now.strftime(TIMESTAMP_FORMAT)}.{extension}"


def recovered_filename(device: DeviceInfo, extension: str, now: datetime | None = None) -> str:
    """Name for a recording recovered without knowing what it was."""
    return RECOVERED_PREFIX + output_filename(RecordingType.NONE, device, extension, now)


def normalize_permissions(path: Path) -> bool:
    """Make a file world readable and writable. Returns False on failure."""
    try:
        mode = path.stat().st_mode
        path.chmod(stat.S_IMODE(mode) | _WORLD_READ_WRITE)
    except OSError as e:
        log.error("chmod_failed", path=str(path), error=str(e))
        return False
    return True


def relocate(src: Path, dest: Path) -> Path | None:
    """Move a file into place and open up its permissions.

    Returns:
        The destination path, or None if the move failed
    """
    try:
        os.replace(src, dest)
    except OSError as e:
        if e.errno != errno.EXDEV:
            log.error("relocate_failed", src=str(src), dest=str(dest), error=str(e))
            return None
        try:
            shutil.move(str(src), str(dest))
        except OSError as move_error:
            log.error("relocate_failed", src=str(src), dest=str(dest), error=str(move_error))
            return None
    normalize_permissions(dest)
    return dest


def delete_older_files(directory: Path, min_count: int, min_age: timedelta | float) -> int:
    """Delete old files, always keeping the newest min_count.

    Files beyond the newest min_count are deleted only when older than
    min_age. Hidden files are never considered.

    Args:
        directory: Directory to prune (not recursive)
        min_count: Number of newest files kept regardless of age
        min_age: Minimum age to delete, as a timedelta or seconds

    Returns:
        Number of files deleted
    """
    if min_count < 0:
        raise ValueError(f"min_count must be >= 0, got {min_count}")
    max_age = min_age.total_seconds() if isinstance(min_age, timedelta) else float(min_age)

    try:
        entries = [p for p in directory.iterdir() if not p.name.startswith(".") and p.is_file()]
    except OSError as e:
        log.error("retention_list_failed", path=str(directory), error=str(e))
        return 0

    dated: list[tuple[float, Path]] = []
    for path in entries:
        try:
            dated.append((path.stat().st_mtime, path))
        except OSError:
            continue  # Removed since listing
    dated.sort(key=lambda item: item[0], reverse=True)

    now = datetime.now().timestamp()
    deleted = 0
    for mtime, path in dated[min_count:]:
        if now - mtime <= max_age:
            continue
        try:
            path.unlink()
        except OSError as e:
            log.warning("retention_delete_failed", path=str(path), error=str(e))
            continue
        deleted += 1
        log.debug("retention_deleted", path=str(path))
    if deleted:
        log.info("retention_complete", deleted=deleted, path=str(directory))
    return deleted


class RetentionWorker:
    """Runs retention passes one at a time on a background thread."""

    def __init__(self, directory: Path, min_count: int, min_age: timedelta):
        self.directory = directory
        self.min_count = min_count
        self.min_age = min_age
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="retention")

    def _run(self) -> int:
        try:
            return delete_older_files(self.directory, self.min_count, self.min_age)
        except Exception:
            log.exception("retention_failed", path=str(self.directory))
            return 0

    def schedule(self) -> Future:
        """Queue a retention pass. Callers do not need to wait on the result."""
        return self._executor.submit(self._run)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def clear_saved_recordings(directory: Path) -> int:
    """Delete every saved recording in directory. Returns the count removed."""
    removed = 0
    for pattern in SAVED_RECORDING_PATTERNS:
        for path in directory.glob(pattern):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                log.error("clear_failed", path=str(path), error=str(e))
                continue
            removed += 1
    log.info("recordings_cleared", path=str(directory), removed=removed)
    return removed


def bundle_files(files: list[Path], dest: Path) -> Path | None:
    """Zip files into dest, flattened by name.

    Returns:
        dest, or None if the archive could not be written
    """
    try:
        with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in files:
                archive.write(path, arcname=path.name)
    except OSError as e:
        log.error("bundle_failed", dest=str(dest), error=str(e))
        dest.unlink(missing_ok=True)
        return None
    normalize_permissions(dest)
    return dest
