"""File helpers for rusty-tags."""

import logging
import os
import stat
import tempfile
from pathlib import Path

from rusty_tags.errors import OutputWriteError

logger = logging.getLogger(__name__)


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# Read once at import, os.umask can only be queried by setting it.
_DEFAULT_MODE = 0o666 & ~_current_umask()


def _target_mode(filepath: Path) -> int:
    """Mode for a rewrite of ``filepath``: its current one, else what the umask allows."""
    try:
        return stat.S_IMODE(os.stat(filepath).st_mode)
    except FileNotFoundError:
        return _DEFAULT_MODE


def _atomic_write(filepath: Path, text: str) -> None:
    """Write text atomically using tempfile + rename.

    Writes to a temporary file in the same directory, then renames
    to avoid partial reads from concurrent processes. The file gets the
    mode of the one it replaces, a new file the umask default.
    """
    parent = filepath.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=str(parent), prefix=f".{filepath.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.chmod(tmp_path, _target_mode(filepath))
        os.replace(tmp_path, str(filepath))
    except BaseException:
        # Clean up temp file on failure
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_text(filepath: Path, text: str) -> None:
    """Atomically replace ``filepath`` with ``text``, retrying once.

    Raises:
        OutputWriteError: Both attempts failed.
    """
    try:
        _atomic_write(filepath, text)
        return
    except OSError as e:
        logger.debug("Writing %s failed (%s), retrying once", filepath, e)

    try:
        _atomic_write(filepath, text)
    except OSError as e:
        raise OutputWriteError(f"Couldn't write '{filepath}': {e}") from e
