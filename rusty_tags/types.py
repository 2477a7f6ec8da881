"""
Core value types for rusty-tags.

Packages, the edges between them and the kinds of tags files we can
write. Everything here is immutable once the dependency graph is built.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Iterator, Optional, Tuple


class SourceKind(str, Enum):
    """Where the source code of a package comes from."""

    WORKSPACE = "workspace"
    GIT = "git"
    REGISTRY = "registry"
    STD_LIB = "std-lib"

    @classmethod
    def from_source_string(cls, source: Optional[str]) -> "SourceKind":
        """Map a manifest ``source`` string (``registry+...``, ``git+...``) to a kind.

        Packages without a source string are local path packages.
        """
        if not source:
            return cls.WORKSPACE
        prefix = source.split("+", 1)[0]
        if prefix == "git":
            return cls.GIT
        if prefix in ("registry", "sparse"):
            return cls.REGISTRY
        if prefix == "path":
            return cls.WORKSPACE
        raise ValueError(f"Unexpected source type '{prefix}' in '{source}'")


class PackageKind(str, Enum):
    """What a package builds, derived from its targets."""

    LIBRARY = "lib"
    PROC_MACRO = "proc-macro"
    BINARY = "bin"
    STD_LIB = "std-lib"
    OTHER = "other"

    @property
    def contributes_tags(self) -> bool:
        return self is not PackageKind.OTHER

    @property
    def is_library(self) -> bool:
        """Whether dependents can link against this package."""
        return self in (PackageKind.LIBRARY, PackageKind.PROC_MACRO, PackageKind.STD_LIB)

    @classmethod
    def from_target_kinds(cls, kinds: FrozenSet[str]) -> "PackageKind":
        if "proc-macro" in kinds:
            return cls.PROC_MACRO
        if kinds & {"lib", "rlib", "dylib", "cdylib", "staticlib"}:
            return cls.LIBRARY
        if "bin" in kinds:
            return cls.BINARY
        return cls.OTHER


@dataclass(frozen=True)
class PackageId:
    """Identity of a package: name, version and where it comes from.

    ``location`` (registry URL, ``git-url#commit``, local path) is carried
    along for locating the sources but is not part of the identity.
    """

    name: str
    version: str
    source_kind: SourceKind
    location: str = field(default="", compare=False)

    @property
    def commit(self) -> Optional[str]:
        if self.source_kind is not SourceKind.GIT or "#" not in self.location:
            return None
        return self.location.rsplit("#", 1)[1]

    @property
    def crate_name(self) -> str:
        """The name used for the package in ``extern crate``/``use`` paths."""
        return self.name.replace("-", "_")

    def __str__(self) -> str:
        if self.source_kind is SourceKind.GIT and self.commit:
            return f"{self.name}-{self.commit[:7]}"
        return f"{self.name}-{self.version}"


class DepKind(str, Enum):
    NORMAL = "normal"
    DEV = "dev"
    BUILD = "build"


@dataclass(frozen=True)
class DependencyEdge:
    """A direct dependency of a package, with the kinds it is declared as."""

    target: PackageId
    kinds: FrozenSet[DepKind]
    crate_name: str = ""
    reexport: bool = False

    @property
    def is_normal(self) -> bool:
        return DepKind.NORMAL in self.kinds


@dataclass(frozen=True)
class PackageNode:
    """A package in the dependency graph.

    ``source_dir`` is None when the sources couldn't be found; such a
    node stays in the graph but contributes no tags. ``error`` holds the
    reason when the missing sources aren't excusable (non-optional dep).
    """

    package: PackageId
    kind: PackageKind
    source_dir: Optional[Path] = None
    edges: Tuple[DependencyEdge, ...] = ()
    is_root: bool = False
    optional: bool = False
    lib_src_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def dependencies(self) -> FrozenSet[PackageId]:
        return frozenset(edge.target for edge in self.edges)

    def iter_edges(self, normal_only: bool = False) -> Iterator[DependencyEdge]:
        for edge in self.edges:
            if normal_only and not edge.is_normal:
                continue
            yield edge


class TagsKind(str, Enum):
    """Which kind of tags file is written: vi (ctags) or emacs (etags)."""

    VI = "vi"
    EMACS = "emacs"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def default_file_name(self) -> str:
        return f"rusty-tags.{self.value}"

    @property
    def ctags_option(self) -> Optional[str]:
        return "-e" if self is TagsKind.EMACS else None
