"""
Configuration management for rusty-tags.

Reads the INI configuration file from the rusty-tags home directory and
provides type-safe accessors, plus the per-run options coming from the
command line.

I remember where cargo hides your crates so you don't have to dig
through ~/.cargo/registry/src yourself.
"""

import configparser
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from rusty_tags.errors import ConfigError
from rusty_tags.types import TagsKind

logger = logging.getLogger(__name__)


def _find_base_path() -> Path:
    """Find the rusty-tags base path.

    Resolution order:
    1. RUSTY_TAGS_HOME environment variable
    2. ~/.rusty-tags (user home directory)
    """
    env_path = os.environ.get("RUSTY_TAGS_HOME")
    if env_path:
        return Path(env_path).resolve()

    return Path.home() / ".rusty-tags"


def _find_cargo_home() -> Path:
    env_path = os.environ.get("CARGO_HOME")
    if env_path:
        return Path(env_path).resolve()

    return Path.home() / ".cargo"


class RustyTagsConfig:
    """Configuration manager for rusty-tags.

    Reads configuration from ``config.ini`` and provides type-safe
    accessors with default value fallbacks.
    """

    # Default configuration values
    DEFAULTS = {
        "tags": {
            "vi_tags": "rusty-tags.vi",
            "emacs_tags": "rusty-tags.emacs",
        },
        "ctags": {
            "exe": "",
            "options": "",
            "timeout_seconds": "300",
        },
        "build": {
            "num_threads": "",
        },
        "sources": {
            "cargo_home": "",
            "std_src": "",
        },
        "metadata": {
            "cargo_exe": "cargo",
            "timeout_seconds": "120",
        },
    }

    def __init__(self, base_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            base_path: Root path for rusty-tags. If None, auto-detected.
        """
        self.base_path = Path(base_path).resolve() if base_path else _find_base_path()

        self.config_file = self.base_path / "config.ini"
        self.cache_dir = self.base_path / "cache"
        self.locks_dir = self.base_path / "locks"

        self._config = configparser.ConfigParser()
        self._load_defaults()
        self._load_user_config()

    def _load_defaults(self) -> None:
        for section, values in self.DEFAULTS.items():
            if not self._config.has_section(section):
                self._config.add_section(section)
            for key, value in values.items():
                self._config.set(section, key, value)

    def _load_user_config(self) -> None:
        if self.config_file.exists():
            try:
                self._config.read(str(self.config_file))
            except configparser.Error as e:
                raise ConfigError(f"Couldn't parse '{self.config_file}': {e}") from e

    def ensure_directories(self) -> None:
        for d in (self.base_path, self.cache_dir, self.locks_dir):
            d.mkdir(parents=True, exist_ok=True)

    def _getint(self, section: str, key: str, fallback: int) -> int:
        raw = self._config.get(section, key, fallback="").strip()
        if not raw:
            return fallback
        try:
            value = int(raw)
        except ValueError as e:
            raise ConfigError(f"[{section}] {key} must be an integer, got '{raw}'") from e
        if value <= 0:
            raise ConfigError(f"[{section}] {key} must be positive, got {value}")
        return value

    # --- Type-safe property accessors ---

    @property
    def vi_tags(self) -> str:
        return self._config.get("tags", "vi_tags", fallback="rusty-tags.vi")

    @property
    def emacs_tags(self) -> str:
        return self._config.get("tags", "emacs_tags", fallback="rusty-tags.emacs")

    def tags_file_name(self, tags_kind: TagsKind) -> str:
        name = self.vi_tags if tags_kind is TagsKind.VI else self.emacs_tags
        return name or tags_kind.default_file_name

    @property
    def ctags_exe(self) -> Optional[str]:
        return self._config.get("ctags", "exe", fallback="").strip() or None

    @property
    def ctags_options(self) -> List[str]:
        return shlex.split(self._config.get("ctags", "options", fallback=""))

    @property
    def ctags_timeout(self) -> int:
        return self._getint("ctags", "timeout_seconds", 300)

    @property
    def num_threads(self) -> int:
        return self._getint("build", "num_threads", os.cpu_count() or 4)

    @property
    def cargo_home(self) -> Path:
        raw = self._config.get("sources", "cargo_home", fallback="").strip()
        return Path(raw).expanduser() if raw else _find_cargo_home()

    @property
    def cargo_git_checkouts_dir(self) -> Path:
        return self.cargo_home / "git" / "checkouts"

    @property
    def cargo_registry_src_dir(self) -> Path:
        return self.cargo_home / "registry" / "src"

    @property
    def std_src_dir(self) -> Optional[Path]:
        raw = self._config.get("sources", "std_src", fallback="").strip()
        if not raw:
            raw = os.environ.get("RUST_SRC_PATH", "").strip()
        return Path(raw).expanduser() if raw else None

    @property
    def cargo_exe(self) -> str:
        return self._config.get("metadata", "cargo_exe", fallback="cargo") or "cargo"

    @property
    def metadata_timeout(self) -> int:
        return self._getint("metadata", "timeout_seconds", 120)

    def std_lib_tags_file(self, tags_kind: TagsKind) -> Path:
        """The tags file of the standard library, kept outside the toolchain."""
        return self.base_path / f"rust-std-lib.{tags_kind.extension}"

    def get(self, section: str, key: str, fallback: str = "") -> str:
        return self._config.get(section, key, fallback=fallback)

    def set(self, section: str, key: str, value: str) -> None:
        if not self._config.has_section(section):
            self._config.add_section(section)
        self._config.set(section, key, value)

    def get_status(self) -> Dict[str, Any]:
        std_src = self.std_src_dir
        return {
            "base_path": str(self.base_path),
            "config_exists": self.config_file.exists(),
            "cache_dir": str(self.cache_dir),
            "cargo_home": str(self.cargo_home),
            "std_src": str(std_src) if std_src else None,
            "ctags_exe": self.ctags_exe or "(auto)",
        }


@dataclass
class RunOptions:
    """Options of a single invocation, usually built from the command line."""

    tags_kind: TagsKind = TagsKind.VI
    start_dir: Optional[Path] = None
    force_recreate: bool = False
    omit_deps: bool = False
    num_threads: Optional[int] = None
    output: Optional[str] = None
    quiet: bool = False
    verbose: bool = False

    def tags_file_name(self, config: RustyTagsConfig) -> str:
        return self.output or config.tags_file_name(self.tags_kind)

    def worker_count(self, config: RustyTagsConfig) -> int:
        if self.num_threads is not None:
            if self.num_threads <= 0:
                raise ConfigError(f"Number of threads must be positive, got {self.num_threads}")
            return self.num_threads
        return config.num_threads
