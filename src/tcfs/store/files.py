"""
File primitives for the capsule store.

Design Principles:
    - Durable: data is fsynced before it is renamed into place
    - Atomic: readers see either the old file or the complete new one,
      never a partial write
    - Explicit failures: every function returns a Result; PermissionError
      maps to FILE_ACCESS_DENIED, a missing file to FILE_NOT_FOUND, and any
      other OSError to FILE_WRITE_FAILED (or FILE_ACCESS_DENIED on read)

Secure delete is best-effort. On copy-on-write or journaling filesystems
and on SSDs, overwritten blocks may survive.
"""

import logging
import os
import tempfile
from pathlib import Path

from tcfs.errors import ErrorCode, Result

logger = logging.getLogger(__name__)

_SHRED_CHUNK = 64 * 1024


def read_bytes(path: Path) -> Result[bytes]:
    """Read a whole file."""
    try:
        return Result.ok(path.read_bytes())
    except FileNotFoundError:
        return Result.fail(ErrorCode.FILE_NOT_FOUND, f"File not found: {path}")
    except IsADirectoryError:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Is a directory: {path}")
    except PermissionError:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Permission denied: {path}")
    except OSError as e:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Error reading {path}: {e}")


def write_atomic(path: Path, data: bytes, overwrite: bool = False) -> Result[None]:
    """
    Durably write data to path.

    The bytes go to a temporary sibling and are flushed and fsynced. With
    overwrite the sibling is renamed over path; without it the sibling is
    hard-linked to path, which fails if path exists, and then removed. The
    directory entry is fsynced afterwards where the platform allows it.

    Args:
        path: Destination file
        data: Bytes to write
        overwrite: Replace an existing file instead of failing

    Returns:
        Result[None], or FILE_ACCESS_DENIED / FILE_WRITE_FAILED
    """
    if path.exists() and not overwrite:
        return Result.fail(
            ErrorCode.FILE_ACCESS_DENIED,
            f"Refusing to overwrite existing file: {path}",
        )

    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if overwrite:
            os.replace(tmp_name, path)
            tmp_name = None
        else:
            # link fails if path appeared after the exists() check
            os.link(tmp_name, path)
        _fsync_dir(path.parent)
    except FileExistsError:
        return Result.fail(
            ErrorCode.FILE_ACCESS_DENIED,
            f"Refusing to overwrite existing file: {path}",
        )
    except PermissionError:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Permission denied: {path}")
    except OSError as e:
        return Result.fail(ErrorCode.FILE_WRITE_FAILED, f"Error writing {path}: {e}")
    finally:
        if tmp_name is not None:
            remove_quietly(Path(tmp_name))

    return Result.ok()


def remove_quietly(path: Path) -> bool:
    """Unlink path if possible; return whether it is gone."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        return False
    return True


def secure_delete(path: Path, passes: int = 1) -> Result[None]:
    """
    Overwrite a file with random bytes, truncate it, then unlink it.

    Args:
        path: File to destroy
        passes: Number of random overwrite passes

    Returns:
        Result[None], or FILE_NOT_FOUND / FILE_ACCESS_DENIED / FILE_WRITE_FAILED
    """
    try:
        size = path.stat().st_size
        with path.open("r+b") as f:
            for _ in range(max(passes, 1)):
                f.seek(0)
                remaining = size
                while remaining > 0:
                    chunk = min(remaining, _SHRED_CHUNK)
                    f.write(os.urandom(chunk))
                    remaining -= chunk
                f.flush()
                os.fsync(f.fileno())
            f.truncate(0)
            f.flush()
            os.fsync(f.fileno())
        path.unlink()
    except FileNotFoundError:
        return Result.fail(ErrorCode.FILE_NOT_FOUND, f"File not found: {path}")
    except PermissionError:
        return Result.fail(ErrorCode.FILE_ACCESS_DENIED, f"Permission denied: {path}")
    except OSError as e:
        return Result.fail(ErrorCode.FILE_WRITE_FAILED, f"Error deleting {path}: {e}")

    logger.debug("Securely deleted %s (%d bytes)", path, size)
    return Result.ok()


def _fsync_dir(directory: Path) -> None:
    """fsync a directory entry; a no-op where directories cannot be opened."""
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
