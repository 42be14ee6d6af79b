"""Durable single-file writes with one-generation backup.

Every file the manager owns (``state.json``, ``openclaw.generated.json``)
goes through :func:`durable_write_sync`.  The write protocol:

* **Unique temp names** in the target directory, carrying the process id
  and a nanosecond timestamp on top of ``tempfile.mkstemp`` randomness.
* **``os.fsync``** of the temp file before anything is renamed.
* **One backup generation**: the previous file is moved to ``<path>.bak``
  before the new one is moved into place.
* **Rollback**: if either rename fails and the target is gone, the target is
  restored from the backup.  The original error is always re-raised.
* **Symlink rejection** and ``0o600`` permissions, since the state file holds
  bot tokens and OAuth material.

This is a best-effort, single-rollback scheme, not a journal.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
import tempfile
import time
from pathlib import Path
from typing import Union

logger = logging.getLogger("openclaw_desktop.utils.safe_io")

BACKUP_SUFFIX = ".bak"


class SecurityError(Exception):
    """Raised when a file I/O operation would be unsafe."""


def backup_path_for(target_path: Union[str, Path]) -> Path:
    """Return the single backup location for *target_path*."""
    target = Path(target_path)
    return target.with_name(target.name + BACKUP_SUFFIX)


def _reject_symlink(target: Path) -> None:
    if target.is_symlink():
        link_target = os.readlink(str(target))
        raise SecurityError(
            f"Refusing to write to symlink: {target} -> {link_target}"
        )


def _write_temp_file(target: Path, raw: bytes, mode: int) -> str:
    """Write *raw* to a new temp file beside *target* and fsync it.

    Returns the temp path.  The temp file is removed if writing fails.
    """
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.{os.getpid()}.{time.time_ns()}.",
        suffix=".tmp",
    )
    try:
        # os.write() may produce short writes for large payloads
        total = 0
        while total < len(raw):
            written = os.write(fd, raw[total:])
            if written == 0:
                raise OSError("os.write returned 0 bytes")
            total += written
        os.fsync(fd)
    except BaseException:
        os.close(fd)
        _remove_quietly(tmp_path)
        raise
    os.close(fd)

    if sys.platform != "win32":
        os.chmod(tmp_path, mode)
    return tmp_path


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass


def _fsync_dir(directory: Path) -> None:
    # Best-effort: not all platforms support O_DIRECTORY
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError):
        pass


def durable_write_sync(
    target_path: Union[str, Path],
    data: Union[bytes, str],
    mode: int = 0o600,
) -> None:
    """Replace *target_path* with *data*, keeping the old file as ``.bak``.

    The target path never holds a partially written document: it is either
    the previous file, the new file, or (after a failed rename) the previous
    file restored from its backup.

    Args:
        target_path: Destination path (created or replaced).
        data: Content to write; ``str`` is encoded to UTF-8.
        mode: POSIX permission bits for the new file (default ``0o600``).

    Raises:
        SecurityError: If *target_path* is a symlink.
        OSError: Any write, sync or rename failure, after rollback.
    """
    target = Path(target_path)
    _reject_symlink(target)

    raw = data.encode("utf-8") if isinstance(data, str) else data
    backup = backup_path_for(target)

    tmp_path: str | None = _write_temp_file(target, raw, mode)
    try:
        if target.exists():
            os.replace(str(target), str(backup))
        os.replace(tmp_path, str(target))
        tmp_path = None
    except OSError:
        if not target.exists() and backup.exists():
            try:
                _copy_into_place(backup, target, mode)
                logger.warning(
                    "Durable write to %s failed; restored previous generation",
                    target,
                )
            except OSError as restore_err:
                logger.error(
                    "Durable write to %s failed and rollback from %s also "
                    "failed: %s", target, backup, restore_err,
                )
        raise
    finally:
        if tmp_path is not None:
            _remove_quietly(tmp_path)

    _fsync_dir(target.parent)


def _copy_into_place(source: Path, target: Path, mode: int) -> None:
    """Copy *source* over *target* through a temp file so both survive."""
    tmp_path = _write_temp_file(target, source.read_bytes(), mode)
    try:
        os.replace(tmp_path, str(target))
    except OSError:
        _remove_quietly(tmp_path)
        raise


def restore_from_backup_sync(target_path: Union[str, Path]) -> bool:
    """Roll *target_path* back to its retained backup generation.

    Returns ``False`` when there is no backup to restore.  The backup file
    itself is left in place.
    """
    target = Path(target_path)
    _reject_symlink(target)
    backup = backup_path_for(target)
    if not backup.exists():
        return False
    _copy_into_place(backup, target, 0o600)
    _fsync_dir(target.parent)
    return True


def read_bytes_or_none(target_path: Union[str, Path]) -> bytes | None:
    """Read *target_path* as raw bytes, or ``None`` when it does not exist.

    Absence is the "no data yet" outcome.  Every other ``OSError``
    (permissions, is-a-directory, I/O errors) propagates.  Decoding is left
    to the parser so undecodable content counts as a corrupt document.
    """
    try:
        return Path(target_path).read_bytes()
    except FileNotFoundError:
        return None


def quarantine_file_sync(
    target_path: Union[str, Path],
    label: str,
) -> Path | None:
    """Rename *target_path* aside to ``<name>.<label>`` and return the new path.

    Returns ``None`` when the file is already gone.
    """
    target = Path(target_path)
    aside = target.with_name(f"{target.name}.{label}")
    try:
        os.replace(str(target), str(aside))
    except FileNotFoundError:
        return None
    return aside


def ensure_secure_dir(
    dir_path: Union[str, Path],
    mode: int = 0o700,
) -> None:
    """Create or validate a directory with restricted permissions.

    Raises:
        SecurityError: If *dir_path* is a symlink.
    """
    d = Path(dir_path)

    if d.is_symlink():
        link_target = os.readlink(str(d))
        raise SecurityError(
            f"Refusing to use symlink directory: {d} -> {link_target}"
        )

    os.makedirs(str(d), mode=mode, exist_ok=True)

    # Fix permissions through an fd to close the gap between is_symlink()
    # and chmod().
    if sys.platform != "win32":
        try:
            dir_fd = os.open(str(d), os.O_RDONLY | os.O_DIRECTORY | os.O_NOFOLLOW)
            try:
                os.fchmod(dir_fd, mode)
            finally:
                os.close(dir_fd)
        except (OSError, AttributeError):
            if d.is_symlink():
                raise SecurityError(
                    f"Refusing to use symlink directory: {d}"
                )
            os.chmod(str(d), mode)
