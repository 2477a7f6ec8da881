"""Shared fixtures and test doubles for rusty_tags tests."""

import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from rusty_tags.config import RustyTagsConfig
from rusty_tags.errors import LockContentionError
from rusty_tags.indexer import IndexerResult
from rusty_tags.manifest import ManifestMetadata
from rusty_tags.tag_cache import CacheEntry, CacheStore
from rusty_tags.types import TagsKind

CRATES_IO = "registry+https://github.com/rust-lang/crates.io-index"

_SYMBOL = re.compile(r"^\s*(?:pub\s+)?(struct|enum|fn|trait|mod)\s+([A-Za-z_][A-Za-z0-9_]*)")
_KIND_LETTERS = {"struct": "s", "enum": "g", "fn": "f", "trait": "t", "mod": "m"}


class MemoryCacheStore(CacheStore):
    """CacheStore keeping entries in a dict."""

    def __init__(self):
        self.entries: Dict[str, CacheEntry] = {}
        self.saves: List[str] = []

    def load(self, key: str) -> Optional[CacheEntry]:
        return self.entries.get(key)

    def save(self, key: str, entry: CacheEntry) -> None:
        self.entries[key] = entry
        self.saves.append(key)


class RecordingLock:
    """Project lock double; a second holder of the same project fails."""

    held: Dict[Path, "RecordingLock"] = {}

    def __init__(self, project_dir: Path, locks_dir: Path):
        self.project_dir = project_dir
        self.locks_dir = locks_dir
        self.acquired = False
        self.released = False

    def __enter__(self) -> "RecordingLock":
        if self.project_dir in RecordingLock.held:
            raise LockContentionError(str(self.project_dir), "memory")
        RecordingLock.held[self.project_dir] = self
        self.acquired = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        RecordingLock.held.pop(self.project_dir, None)
        self.released = True


class FakeIndexer:
    """Writes one record per struct/enum/fn/trait/mod line of every file.

    Packages whose directory name is in ``fail_for`` fail, the ones in
    ``timeout_for`` time out.
    """

    def __init__(self, tags_kind: TagsKind = TagsKind.VI, fail_for: Sequence[str] = (), timeout_for: Sequence[str] = ()):
        self.tags_kind = tags_kind
        self.fail_for = set(fail_for)
        self.timeout_for = set(timeout_for)
        self.calls: List[List[Path]] = []
        self._lock = threading.Lock()

    def calls_for(self, dir_name: str) -> int:
        return sum(1 for files in self.calls if any(dir_name in f.parts for f in files))

    def invoke(self, source_files: Sequence[Path], output_path: Path, options: Sequence[str] = ()) -> IndexerResult:
        with self._lock:
            self.calls.append(list(source_files))

        parts = {part for f in source_files for part in f.parts}
        if parts & self.timeout_for:
            return IndexerResult(success=False, stderr="timed out", timed_out=True, timeout=5)
        if parts & self.fail_for:
            return IndexerResult(success=False, stderr="ctags: boom")

        if self.tags_kind is TagsKind.VI:
            text = self._vi(source_files)
        else:
            text = self._etags(source_files)
        output_path.write_text(text)
        return IndexerResult(success=True)

    @staticmethod
    def _symbols(path: Path):
        for lineno, line in enumerate(path.read_text().splitlines(), start=1):
            match = _SYMBOL.match(line)
            if match:
                yield lineno, line, match.group(1), match.group(2)

    def _vi(self, source_files: Sequence[Path]) -> str:
        lines = ["!_TAG_FILE_FORMAT\t2\t/extended format/"]
        for path in source_files:
            for _, line, kind, name in self._symbols(path):
                lines.append(f'{name}\t{path}\t/^{line}$/;"\t{_KIND_LETTERS[kind]}')
        return "".join(f"{line}\n" for line in lines)

    def _etags(self, source_files: Sequence[Path]) -> str:
        sections = []
        for path in source_files:
            body = "".join(
                f"{line}\x7f{name}\x01{lineno},0\n" for lineno, line, _, name in self._symbols(path)
            )
            sections.append(f"\x0c\n{path},{len(body)}\n{body}")
        return "".join(sections)


class CargoWorld:
    """A cargo project plus a cargo home on disk, and the matching metadata.

    Workspace packages live below ``project/``, registry packages below
    ``cargo/registry/src/<index>/<name>-<version>``.
    """

    def __init__(self, root: Path):
        self.root = root
        self.project_dir = root / "project"
        self.cargo_home = root / "cargo"
        self.registry_dir = self.cargo_home / "registry" / "src" / "index.crates.io-6f17d22bba15001f"
        self.project_dir.mkdir(parents=True)
        self.registry_dir.mkdir(parents=True)
        (self.project_dir / "Cargo.toml").write_text("[workspace]\n")

        self.packages: Dict[str, dict] = {}
        self.resolve: Dict[str, List[dict]] = {}
        self.members: List[str] = []

    def _add(self, package_id: str, name: str, version: str, source: Optional[str],
             pkg_dir: Path, lib_rs: str, kinds: Sequence[str], on_disk: bool) -> str:
        if on_disk:
            (pkg_dir / "src").mkdir(parents=True, exist_ok=True)
            (pkg_dir / "Cargo.toml").write_text(f'[package]\nname = "{name}"\nversion = "{version}"\n')
            (pkg_dir / "src" / "lib.rs").write_text(lib_rs)
        self.packages[package_id] = {
            "id": package_id,
            "name": name,
            "version": version,
            "source": source,
            "manifest_path": str(pkg_dir / "Cargo.toml"),
            "targets": [{"kind": list(kinds), "src_path": str(pkg_dir / "src" / "lib.rs")}],
            "dependencies": [],
        }
        self.resolve[package_id] = []
        return package_id

    def workspace_package(self, name: str, version: str = "0.1.0", lib_rs: Optional[str] = None,
                          kinds: Sequence[str] = ("lib",), member: bool = True) -> str:
        pkg_dir = self.project_dir / name
        package_id = f"path+file://{pkg_dir}#{name}@{version}"
        self._add(package_id, name, version, None, pkg_dir, lib_rs or f"pub struct {name.title()};\n", kinds, True)
        if member:
            self.members.append(package_id)
        return package_id

    def registry_package(self, name: str, version: str = "1.0.0", lib_rs: Optional[str] = None,
                         kinds: Sequence[str] = ("lib",), on_disk: bool = True) -> str:
        pkg_dir = self.registry_dir / f"{name}-{version}"
        package_id = f"{CRATES_IO}#{name}@{version}"
        crate = name.replace("-", "_")
        default = f"pub struct {crate.title()}Thing;\npub fn {crate}_fn() {{}}\n"
        return self._add(package_id, name, version, CRATES_IO, pkg_dir, lib_rs or default, kinds, on_disk)

    def depend(self, parent: str, child: str, kind: Optional[str] = None,
               optional: bool = False, target: Optional[str] = None, crate_name: Optional[str] = None) -> None:
        child_name = self.packages[child]["name"]
        self.packages[parent]["dependencies"].append(
            {"name": child_name, "rename": None, "kind": kind, "optional": optional, "target": target}
        )
        self.resolve[parent].append({
            "name": crate_name or child_name.replace("-", "_"),
            "pkg": child,
            "dep_kinds": [{"kind": kind, "target": target}],
        })

    def source_dir(self, package_id: str) -> Path:
        return Path(self.packages[package_id]["manifest_path"]).parent

    def metadata_dict(self) -> dict:
        return {
            "packages": list(self.packages.values()),
            "resolve": {"nodes": [{"id": pid, "deps": deps} for pid, deps in self.resolve.items()]},
            "workspace_members": list(self.members),
            "workspace_root": str(self.project_dir),
        }

    def metadata(self, project_dir: Optional[Path] = None) -> ManifestMetadata:
        return ManifestMetadata.from_dict(self.metadata_dict())


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("RUSTY_TAGS_HOME", "RUST_SRC_PATH", "CARGO_HOME"):
        monkeypatch.delenv(var, raising=False)
    RecordingLock.held.clear()


@pytest.fixture
def world(tmp_path):
    return CargoWorld(tmp_path / "world")


@pytest.fixture
def config(tmp_path, world):
    """Config with temp base path pointing at the world's cargo home."""
    cfg = RustyTagsConfig(base_path=tmp_path / "rusty_tags_home")
    cfg.set("sources", "cargo_home", str(world.cargo_home))
    return cfg
