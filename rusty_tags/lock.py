"""
Per-project exclusivity lock for rusty-tags.

Two runs on the same project must never interleave their writes, so a
run holds an exclusive ``flock`` on a lock file derived from the project
directory. Runs on different projects use different lock files.
"""

import fcntl
import hashlib
import logging
from pathlib import Path
from typing import IO, Optional

from rusty_tags.errors import LockContentionError

logger = logging.getLogger(__name__)


def lock_file_for(locks_dir: Path, project_dir: Path) -> Path:
    digest = hashlib.md5(str(project_dir.resolve()).encode("utf-8")).hexdigest()
    return locks_dir / f"{project_dir.name}-{digest[:16]}.lock"


class ProjectLock:
    """Exclusive lock on one project, usable as a context manager.

    With ``blocking=False`` (the default) a held lock raises
    LockContentionError immediately instead of waiting.
    """

    def __init__(self, project_dir: Path, locks_dir: Path, blocking: bool = False):
        self.project_dir = project_dir
        self.lock_file = lock_file_for(locks_dir, project_dir)
        self.blocking = blocking
        self._handle: Optional[IO[str]] = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self.locked:
            return
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_file, "a+")
        flags = fcntl.LOCK_EX if self.blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(handle.fileno(), flags)
        except BlockingIOError:
            handle.close()
            raise LockContentionError(str(self.project_dir), str(self.lock_file)) from None
        except BaseException:
            handle.close()
            raise

        handle.seek(0)
        handle.truncate()
        handle.write(f"{self.project_dir}\n")
        handle.flush()
        self._handle = handle
        logger.debug("Locked %s (%s)", self.project_dir, self.lock_file)

    def release(self) -> None:
        if not self.locked:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
            logger.debug("Unlocked %s", self.project_dir)

    def __enter__(self) -> "ProjectLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
