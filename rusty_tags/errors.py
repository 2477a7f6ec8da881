"""
Exceptions raised by rusty-tags.

Project-scoped errors (config, manifest, lock) stop a run before any
work is scheduled. Package-scoped errors (resolution, indexer, output)
are collected per package and reported at the end.
"""

from typing import Optional


class RustyTagsError(RuntimeError):
    """Base class for all rusty-tags errors."""


class ConfigError(RustyTagsError):
    """Raised when the configuration file holds an invalid value."""


class ManifestError(RustyTagsError):
    """Raised when the project manifest can't be found or read."""


class LockContentionError(RustyTagsError):
    """Raised when another run holds the lock of the same project."""

    def __init__(self, project_dir: str, lock_file: str):
        super().__init__(
            f"Project '{project_dir}' is locked by another rusty-tags run ({lock_file})"
        )
        self.project_dir = project_dir
        self.lock_file = lock_file


class ResolutionError(RustyTagsError):
    """Raised when the sources of a package can't be resolved."""


class MissingSourceError(ResolutionError):
    def __init__(self, package: str, searched: Optional[str] = None):
        msg = f"Missing source of '{package}'"
        if searched:
            msg += f" (searched {searched})"
        super().__init__(msg)
        self.package = package


class AmbiguousSourceError(ResolutionError):
    def __init__(self, package: str, candidates):
        listed = ", ".join(str(c) for c in candidates)
        super().__init__(f"Ambiguous source of '{package}': {listed}")
        self.package = package
        self.candidates = list(candidates)


class IndexerError(RustyTagsError):
    """Raised when the external indexer fails for a package."""


class IndexerTimeoutError(IndexerError):
    def __init__(self, timeout: float):
        super().__init__(f"ctags timed out after {timeout:g}s")
        self.timeout = timeout


class OutputWriteError(RustyTagsError):
    """Raised when a tags or cache file can't be written."""
