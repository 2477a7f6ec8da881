"""
Project manifest metadata for rusty-tags.

Locates the ``Cargo.toml`` of the project and reads the fully resolved
package graph from ``cargo metadata``. Everything in here is read-only:
the manifest is cargo's business, we only look at it.
"""

import json
import logging
import subprocess
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from rusty_tags.errors import ManifestError
from rusty_tags.types import DepKind

logger = logging.getLogger(__name__)

MANIFEST_FILE = "Cargo.toml"


def find_manifest_dir(start_dir: Path) -> Path:
    """Find the closest directory containing a ``Cargo.toml``.

    The search starts at ``start_dir`` and walks up the directory tree.
    """
    start_dir = Path(start_dir).resolve()
    for directory in (start_dir, *start_dir.parents):
        if (directory / MANIFEST_FILE).is_file():
            return directory

    raise ManifestError(f"Couldn't find '{MANIFEST_FILE}' starting at directory '{start_dir}'!")


def read_manifest(manifest: Path) -> Dict[str, Any]:
    """Parse a ``Cargo.toml``, an unreadable one reads as empty."""
    try:
        return tomllib.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        logger.debug("Couldn't read manifest '%s': %s", manifest, e)
        return {}


def find_workspace_root(manifest_dir: Path) -> Path:
    """Find the root directory of the workspace ``manifest_dir`` belongs to.

    A package manifest may name its workspace root explicitly
    (``package.workspace``), otherwise the root is the closest directory,
    ``manifest_dir`` included, whose manifest has a ``[workspace]`` table.
    A package outside of any workspace is its own root.
    """
    manifest_dir = Path(manifest_dir).resolve()
    package = read_manifest(manifest_dir / MANIFEST_FILE).get("package")
    if isinstance(package, dict) and isinstance(package.get("workspace"), str):
        return (manifest_dir / package["workspace"]).resolve()

    for directory in (manifest_dir, *manifest_dir.parents):
        manifest = directory / MANIFEST_FILE
        if manifest.is_file() and "workspace" in read_manifest(manifest):
            return directory
    return manifest_dir


def _run_cargo(args: List[str], cwd: Path, exe: str = "cargo", timeout: int = 120) -> subprocess.CompletedProcess:
    """Run a cargo command.

    Args:
        args: Cargo command arguments (without the executable).
        cwd: Working directory.
        exe: Cargo executable.
        timeout: Command timeout in seconds.

    Returns:
        CompletedProcess result.
    """
    cmd = [exe] + args
    logger.debug("Running: %s (cwd=%s)", " ".join(cmd), cwd)

    return subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
    )


@dataclass(frozen=True)
class DeclaredDependency:
    """A dependency as written in a package's manifest."""

    name: str
    rename: Optional[str] = None
    kind: DepKind = DepKind.NORMAL
    optional: bool = False
    target: Optional[str] = None


@dataclass(frozen=True)
class ResolvedDependency:
    """An edge of cargo's resolved graph."""

    crate_name: str
    package_id: str
    kinds: FrozenSet[DepKind]
    platform_specific: bool = False


@dataclass
class ManifestPackage:
    id: str
    name: str
    version: str
    source: Optional[str]
    manifest_path: Path
    target_kinds: FrozenSet[str] = frozenset()
    lib_src_path: Optional[Path] = None
    declared: List[DeclaredDependency] = field(default_factory=list)

    @property
    def manifest_dir(self) -> Path:
        return self.manifest_path.parent

    def declared_dependencies(self, package_name: str) -> List[DeclaredDependency]:
        return [dep for dep in self.declared if dep.name == package_name]


@dataclass
class ManifestMetadata:
    """The parts of ``cargo metadata`` output rusty-tags cares about."""

    packages: Dict[str, ManifestPackage]
    resolve: Dict[str, List[ResolvedDependency]]
    workspace_members: List[str]
    workspace_root: Path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestMetadata":
        try:
            packages = {}
            for raw in data.get("packages", []):
                package = _package_from_dict(raw)
                packages[package.id] = package

            resolve: Dict[str, List[ResolvedDependency]] = {}
            for node in (data.get("resolve") or {}).get("nodes", []):
                resolve[node["id"]] = [_resolved_dep_from_dict(d) for d in node.get("deps", [])]

            members = list(data.get("workspace_members", []))
            root = Path(data.get("workspace_root", "."))
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestError(f"Unexpected cargo metadata format: {e}") from e

        for member in members:
            if member not in packages:
                raise ManifestError(f"Workspace member '{member}' missing from metadata packages")

        return cls(packages=packages, resolve=resolve, workspace_members=members, workspace_root=root)

    def is_optional_edge(self, parent_id: str, dep: ResolvedDependency) -> bool:
        """Whether a missing source for ``dep`` is excusable.

        True for platform-specific dependencies and for ones the parent
        only declares as optional or for some target. Declarations are
        matched by package name, the crate name of the edge may differ.
        """
        if dep.platform_specific:
            return True
        parent = self.packages.get(parent_id)
        target = self.packages.get(dep.package_id)
        if parent is None or target is None:
            return False
        declared = parent.declared_dependencies(target.name)
        return bool(declared) and all(d.optional or d.target for d in declared)


def _package_from_dict(raw: Dict[str, Any]) -> ManifestPackage:
    target_kinds = set()
    lib_src_path = None
    for target in raw.get("targets", []):
        kinds = set(target.get("kind", []))
        target_kinds |= kinds
        if lib_src_path is None and kinds & {"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"}:
            lib_src_path = Path(target["src_path"])

    declared = []
    for dep in raw.get("dependencies", []):
        declared.append(
            DeclaredDependency(
                name=dep["name"],
                rename=dep.get("rename"),
                kind=DepKind(dep.get("kind") or "normal"),
                optional=bool(dep.get("optional", False)),
                target=dep.get("target"),
            )
        )

    return ManifestPackage(
        id=raw["id"],
        name=raw["name"],
        version=raw["version"],
        source=raw.get("source"),
        manifest_path=Path(raw["manifest_path"]),
        target_kinds=frozenset(target_kinds),
        lib_src_path=lib_src_path,
        declared=declared,
    )


def _resolved_dep_from_dict(raw: Dict[str, Any]) -> ResolvedDependency:
    dep_kinds = raw.get("dep_kinds") or [{"kind": None, "target": None}]
    kinds = frozenset(DepKind(k.get("kind") or "normal") for k in dep_kinds)
    platform_specific = all(k.get("target") for k in dep_kinds)
    return ResolvedDependency(
        crate_name=raw["name"],
        package_id=raw["pkg"],
        kinds=kinds,
        platform_specific=platform_specific,
    )


def load_metadata(manifest_dir: Path, cargo_exe: str = "cargo", timeout: int = 120) -> ManifestMetadata:
    """Run ``cargo metadata`` in ``manifest_dir`` and parse its output."""
    args = ["metadata", "--format-version", "1", "--manifest-path", str(manifest_dir / MANIFEST_FILE)]
    try:
        result = _run_cargo(args, cwd=manifest_dir, exe=cargo_exe, timeout=timeout)
    except FileNotFoundError as e:
        raise ManifestError(f"Couldn't execute '{cargo_exe}': {e}") from e
    except subprocess.TimeoutExpired as e:
        raise ManifestError(f"'{cargo_exe} metadata' timed out after {timeout}s") from e

    if result.returncode != 0:
        raise ManifestError(f"'{cargo_exe} metadata' failed: {result.stderr.strip()}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Couldn't parse cargo metadata output: {e}") from e

    return ManifestMetadata.from_dict(data)
