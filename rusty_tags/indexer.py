"""
ctags adapter for rusty-tags.

Runs the external ctags executable over an explicit list of source files
and writes its records to an output file. The symbol extraction itself
is entirely ctags' job.

I don't read your Rust. ctags does. I just hand it the right files
and complain loudly when it falls over.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from rusty_tags.errors import IndexerError
from rusty_tags.manifest import MANIFEST_FILE
from rusty_tags.types import TagsKind

logger = logging.getLogger(__name__)

UNIVERSAL = "universal"
EXUBERANT = "exuberant"

_CTAGS_CANDIDATES = ("ctags", "exuberant-ctags", "exctags", "universal-ctags", "uctags")

_SKIP_DIRS = {"target", ".git"}

# Exuberant ctags has no built-in Rust support
_EXUBERANT_RUST_OPTIONS = [
    "--langdef=Rust",
    "--langmap=Rust:.rs",
    "--regex-Rust=/^[ \\t]*(#\\[[^\\]]\\][ \\t]*)*(pub[ \\t]+)?(extern[ \\t]+)?(\"[^\"]+\"[ \\t]+)?(unsafe[ \\t]+)?fn[ \\t]+([a-zA-Z0-9_]+)/\\6/f,functions,function definitions/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?type[ \\t]+([a-zA-Z0-9_]+)/\\2/T,types,type definitions/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?enum[ \\t]+([a-zA-Z0-9_]+)/\\2/g,enum,enumeration names/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?struct[ \\t]+([a-zA-Z0-9_]+)/\\2/s,structure names/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?mod[ \\t]+([a-zA-Z0-9_]+)\\s*\\{/\\2/m,modules,module names/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?(static|const)[ \\t]+([a-zA-Z0-9_]+)/\\3/c,consts,static constants/",
    "--regex-Rust=/^[ \\t]*(pub[ \\t]+)?trait[ \\t]+([a-zA-Z0-9_]+)/\\2/t,traits,traits/",
    "--regex-Rust=/^[ \\t]*macro_rules![ \\t]+([a-zA-Z0-9_]+)/\\1/d,macros,macro definitions/",
]


def _run_ctags(cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a ctags command line and capture its output."""
    logger.debug("Running: %s", " ".join(cmd))

    return subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        timeout=timeout,
    )


def detect_flavor(exe: str, timeout: float = 10) -> Optional[str]:
    """Return the ctags flavour of ``exe``, or None if it isn't a usable ctags."""
    try:
        result = _run_ctags([exe, "--version"], timeout=timeout)
    except (OSError, subprocess.TimeoutExpired):
        return None

    if result.returncode != 0:
        return None
    if "Universal Ctags" in result.stdout:
        return UNIVERSAL
    if "Exuberant Ctags" in result.stdout:
        return EXUBERANT
    return None


def find_ctags(exe: Optional[str] = None) -> "CtagsExecutable":
    """Find a usable ctags executable.

    Args:
        exe: Configured executable. When None the usual names are tried.

    Raises:
        IndexerError: No supported ctags was found.
    """
    candidates = [exe] if exe else list(_CTAGS_CANDIDATES)
    for candidate in candidates:
        if shutil.which(candidate) is None and not Path(candidate).is_file():
            continue
        flavor = detect_flavor(candidate)
        if flavor is not None:
            logger.debug("Using %s ctags: %s", flavor, candidate)
            return CtagsExecutable(exe=candidate, flavor=flavor)

    raise IndexerError(
        f"Couldn't find a supported ctags executable (tried: {', '.join(candidates)}). "
        "Install universal-ctags or configure [ctags] exe."
    )


@dataclass(frozen=True)
class CtagsExecutable:
    exe: str
    flavor: str


@dataclass(frozen=True)
class IndexerResult:
    """Outcome of one indexer invocation. ``stderr`` is the tool's output verbatim."""

    success: bool
    stderr: str = ""
    timed_out: bool = False
    timeout: Optional[float] = None


def collect_source_files(source_dir: Path, skip_nested_packages: bool = True) -> List[Path]:
    """Return the Rust source files of the package rooted at ``source_dir``.

    Build output, VCS metadata, hidden directories and (optionally)
    nested packages with their own manifest are not part of a package.
    """
    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(source_dir):
        current = Path(dirpath)
        kept = []
        for name in sorted(dirnames):
            if name in _SKIP_DIRS or name.startswith("."):
                continue
            if skip_nested_packages and (current / name / MANIFEST_FILE).is_file():
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            if name.endswith(".rs"):
                files.append(current / name)
    return files


class CtagsIndexer:
    """Invokes ctags for an explicit list of source files."""

    def __init__(
        self,
        ctags: CtagsExecutable,
        tags_kind: TagsKind,
        options: Sequence[str] = (),
        timeout: Optional[float] = 300,
    ):
        self.ctags = ctags
        self.tags_kind = tags_kind
        self.options = list(options)
        self.timeout = timeout

    def command(self, file_list: Path, output_path: Path, options: Sequence[str] = ()) -> List[str]:
        cmd = [self.ctags.exe]
        if self.tags_kind.ctags_option:
            cmd.append(self.tags_kind.ctags_option)
        if self.ctags.flavor == EXUBERANT:
            cmd.extend(_EXUBERANT_RUST_OPTIONS)
        cmd.append("--languages=Rust")
        cmd.extend(self.options)
        cmd.extend(options)
        cmd.extend(["-L", str(file_list), "-f", str(output_path)])
        return cmd

    def invoke(self, source_files: Sequence[Path], output_path: Path, options: Sequence[str] = ()) -> IndexerResult:
        """Index ``source_files`` into ``output_path``.

        Returns:
            IndexerResult; a non-zero exit, a timeout or a missing output
            file are failures.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if not source_files:
            output_path.write_text("")
            return IndexerResult(success=True)

        fd, list_path = tempfile.mkstemp(prefix="rusty-tags-files-", suffix=".txt")
        try:
            with os.fdopen(fd, "w") as f:
                for path in source_files:
                    f.write(f"{path}\n")

            cmd = self.command(Path(list_path), output_path, options)
            try:
                result = _run_ctags(cmd, timeout=self.timeout)
            except subprocess.TimeoutExpired:
                return IndexerResult(
                    success=False,
                    stderr=f"ctags timed out after {self.timeout}s",
                    timed_out=True,
                    timeout=self.timeout,
                )
            except OSError as e:
                return IndexerResult(success=False, stderr=f"ctags execution failed: {e}")
        finally:
            try:
                os.unlink(list_path)
            except OSError:
                pass

        if result.returncode != 0:
            msg = result.stderr or result.stdout
            if not msg:
                msg = "ctags execution failed without any stderr or stdout output"
            return IndexerResult(success=False, stderr=msg)

        if not output_path.is_file():
            return IndexerResult(success=False, stderr=result.stderr or f"ctags didn't write '{output_path}'")

        return IndexerResult(success=True, stderr=result.stderr)
