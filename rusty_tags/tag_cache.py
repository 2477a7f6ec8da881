"""
Persistent tag cache for rusty-tags.

Keeps the raw ctags records of every package keyed by package identity
and a fingerprint of its sources, so unchanged dependencies are never
indexed twice. Entries are replaced atomically, readers in other
processes never see a half-written entry.
"""

import hashlib
import json
import logging
import tempfile
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rusty_tags.errors import IndexerError, IndexerTimeoutError
from rusty_tags.fileutils import atomic_write_text
from rusty_tags.indexer import collect_source_files
from rusty_tags.records import parse_etags_sections, parse_vi_lines
from rusty_tags.types import PackageId, PackageKind, PackageNode, SourceKind, TagsKind

logger = logging.getLogger(__name__)

_CACHE_VERSION = 1


def fingerprint_files(files: Sequence[Path], root: Path) -> str:
    """Summarise path, size and modification time of ``files``."""
    digest = hashlib.md5()
    for path in sorted(files):
        try:
            stat = path.stat()
        except OSError:
            continue
        try:
            rel = path.relative_to(root)
        except ValueError:
            rel = path
        digest.update(f"{rel}\0{stat.st_size}\0{stat.st_mtime_ns}\n".encode("utf-8", errors="replace"))
    return digest.hexdigest()


def cache_key(package: PackageId, tags_kind: TagsKind) -> str:
    """File name of a package's cache entry.

    Distinct versions and source kinds of one name never share a key.
    """
    identity = f"{package.name}\0{package.version}\0{package.source_kind.value}"
    digest = hashlib.md5(identity.encode("utf-8")).hexdigest()[:12]
    version = package.version or package.source_kind.value
    return f"{package.name}-{version}-{digest}.{tags_kind.extension}.json"


@dataclass(frozen=True)
class CacheEntry:
    package: PackageId
    fingerprint: str
    records: Tuple[str, ...]
    built_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": _CACHE_VERSION,
            "package": {
                "name": self.package.name,
                "version": self.package.version,
                "source_kind": self.package.source_kind.value,
                "location": self.package.location,
            },
            "fingerprint": self.fingerprint,
            "records": list(self.records),
            "built_at": self.built_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry"]:
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return None
        package = data.get("package")
        records = data.get("records")
        fingerprint = data.get("fingerprint")
        if not isinstance(package, dict) or not isinstance(records, list) or not isinstance(fingerprint, str):
            return None
        try:
            package_id = PackageId(
                name=package["name"],
                version=package["version"],
                source_kind=SourceKind(package["source_kind"]),
                location=package.get("location", ""),
            )
        except (KeyError, ValueError):
            return None
        return cls(
            package=package_id,
            fingerprint=fingerprint,
            records=tuple(r for r in records if isinstance(r, str)),
            built_at=str(data.get("built_at", "")),
        )


def empty_entry(package: PackageId) -> CacheEntry:
    return CacheEntry(package=package, fingerprint="", records=(), built_at=_now())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CacheStore(ABC):
    """Where cache entries persist between runs."""

    @abstractmethod
    def load(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    def save(self, key: str, entry: CacheEntry) -> None:
        ...


class DiskCacheStore(CacheStore):
    """One JSON file per entry below ``cache_dir``."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir

    def path_for(self, key: str) -> Path:
        return self.cache_dir / key

    def load(self, key: str) -> Optional[CacheEntry]:
        path = self.path_for(key)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug("Ignoring unreadable cache entry %s: %s", path, e)
            return None
        return CacheEntry.from_dict(data)

    def save(self, key: str, entry: CacheEntry) -> None:
        atomic_write_text(self.path_for(key), json.dumps(entry.to_dict(), indent=1))


class TagCache:
    """Returns the records of a package, indexing it only when stale.

    Each package is built at most once per TagCache instance, however
    many dependents ask for it, and concurrent callers wait for the
    first one.
    """

    def __init__(
        self,
        store: CacheStore,
        indexer,
        tags_kind: TagsKind,
        force_recreate: bool = False,
    ):
        self.store = store
        self.indexer = indexer
        self.tags_kind = tags_kind
        self.force_recreate = force_recreate
        self._lock = threading.Lock()
        self._memo: Dict[PackageId, "Future[CacheEntry]"] = {}
        self.rebuilt: List[PackageId] = []
        self.reused: List[PackageId] = []

    def get_or_build(self, node: PackageNode) -> CacheEntry:
        with self._lock:
            future = self._memo.get(node.package)
            owner = future is None
            if owner:
                future = Future()
                self._memo[node.package] = future

        if not owner:
            return future.result()

        try:
            entry = self._get_or_build(node)
        except BaseException as e:
            future.set_exception(e)
            raise
        future.set_result(entry)
        return entry

    def peek(self, package: PackageId) -> Optional[CacheEntry]:
        """The entry built in this run, else whatever was stored last."""
        with self._lock:
            future = self._memo.get(package)
        if future is not None and future.done() and future.exception() is None:
            return future.result()
        return self.store.load(cache_key(package, self.tags_kind))

    def _get_or_build(self, node: PackageNode) -> CacheEntry:
        if node.source_dir is None:
            return empty_entry(node.package)

        key = cache_key(node.package, self.tags_kind)
        files = collect_source_files(node.source_dir, skip_nested_packages=node.kind is not PackageKind.STD_LIB)
        fingerprint = fingerprint_files(files, node.source_dir)

        if not self.force_recreate:
            cached = self.store.load(key)
            if cached is not None and cached.fingerprint == fingerprint:
                logger.debug("%s: cache hit", node.package)
                with self._lock:
                    self.reused.append(node.package)
                return cached

        logger.info("Creating tags for '%s' ...", node.package)
        with tempfile.TemporaryDirectory(prefix="rusty-tags-") as tmp_dir:
            output = Path(tmp_dir) / f"tags.{self.tags_kind.extension}"
            result = self.indexer.invoke(files, output)
            if not result.success:
                if result.timed_out:
                    raise IndexerTimeoutError(result.timeout or 0)
                raise IndexerError(result.stderr.strip() or "ctags failed")
            text = output.read_text(encoding="utf-8", errors="replace")

        if self.tags_kind is TagsKind.VI:
            records = parse_vi_lines(text)
        else:
            records = parse_etags_sections(text)

        entry = CacheEntry(
            package=node.package,
            fingerprint=fingerprint,
            records=tuple(records),
            built_at=_now(),
        )
        self.store.save(key, entry)
        with self._lock:
            self.rebuilt.append(node.package)
        return entry
