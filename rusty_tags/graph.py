"""
Dependency graph construction for rusty-tags.

Builds one node per distinct package (name, version, source kind) from
the manifest metadata, resolves where each package's sources live and
which dependencies it re-exports. The graph is an arena: nodes refer to
each other only by PackageId, so cycles are just more lookups.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterator, List, Mapping, Optional, Set, Tuple

from rusty_tags.errors import ManifestError, ResolutionError
from rusty_tags.locator import PackageLocator
from rusty_tags.manifest import ManifestMetadata, ManifestPackage
from rusty_tags.reexports import find_reexported_crates
from rusty_tags.types import (
    DependencyEdge,
    DepKind,
    PackageId,
    PackageKind,
    PackageNode,
    SourceKind,
)

logger = logging.getLogger(__name__)

Edge = Tuple[PackageId, PackageId]


class DependencyGraph:
    """Immutable mapping from PackageId to PackageNode plus the roots."""

    def __init__(self, nodes: Mapping[PackageId, PackageNode], roots: List[PackageId]):
        for node in nodes.values():
            for dep in node.dependencies:
                if dep not in nodes:
                    raise ManifestError(f"Dependency '{dep}' of '{node.package}' is missing from the graph")
        for root in roots:
            if root not in nodes:
                raise ManifestError(f"Root package '{root}' is missing from the graph")

        self._nodes = MappingProxyType(dict(nodes))
        self.roots: Tuple[PackageId, ...] = tuple(roots)
        self.back_edges: FrozenSet[Edge] = self._find_back_edges()

    @property
    def root(self) -> Optional[PackageId]:
        return self.roots[0] if self.roots else None

    def __getitem__(self, package: PackageId) -> PackageNode:
        return self._nodes[package]

    def __contains__(self, package: object) -> bool:
        return package in self._nodes

    def __iter__(self) -> Iterator[PackageId]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def nodes(self) -> List[PackageNode]:
        return list(self._nodes.values())

    def library_edges(self, package: PackageId, include_back_edges: bool = False) -> List[DependencyEdge]:
        """Edges to the libraries ``package`` links against.

        Dev and build dependencies, dependencies on non-library packages
        and (unless asked for) edges closing a cycle are left out.
        """
        edges = []
        for edge in self._nodes[package].iter_edges(normal_only=True):
            if not self._nodes[edge.target].kind.is_library:
                continue
            if not include_back_edges and (package, edge.target) in self.back_edges:
                continue
            edges.append(edge)
        return sorted(edges, key=lambda e: _sort_key(e.target))

    def library_dependencies(self, package: PackageId) -> List[PackageId]:
        return [edge.target for edge in self.library_edges(package)]

    def reexport_targets(self, package: PackageId) -> List[PackageId]:
        return [edge.target for edge in self.library_edges(package) if edge.reexport]

    def _find_back_edges(self) -> FrozenSet[Edge]:
        """Library edges that close a cycle, found by depth-first search."""
        white, grey, black = 0, 1, 2
        color: Dict[PackageId, int] = {pid: white for pid in self._nodes}
        back: Set[Edge] = set()

        starts = list(self.roots) + sorted(self._nodes, key=_sort_key)
        for start in starts:
            if color[start] != white:
                continue
            color[start] = grey
            stack = [(start, iter(self._lib_targets(start)))]
            while stack:
                current, children = stack[-1]
                child = next(children, None)
                if child is None:
                    color[current] = black
                    stack.pop()
                    continue
                if color[child] == grey:
                    back.add((current, child))
                elif color[child] == white:
                    color[child] = grey
                    stack.append((child, iter(self._lib_targets(child))))

        for src, dst in sorted(back, key=lambda e: (_sort_key(e[0]), _sort_key(e[1]))):
            logger.warning("Dependency cycle: '%s' -> '%s' ignored for build ordering", src, dst)
        return frozenset(back)

    def _lib_targets(self, package: PackageId) -> List[PackageId]:
        return sorted(
            (
                edge.target
                for edge in self._nodes[package].iter_edges(normal_only=True)
                if self._nodes[edge.target].kind.is_library
            ),
            key=_sort_key,
        )


def _sort_key(package: PackageId) -> Tuple[str, str, str]:
    return (package.name, package.version, package.source_kind.value)


def package_id_of(package: ManifestPackage) -> PackageId:
    try:
        source_kind = SourceKind.from_source_string(package.source)
    except ValueError as e:
        raise ManifestError(str(e)) from e
    return PackageId(
        name=package.name,
        version=package.version,
        source_kind=source_kind,
        location=package.source or str(package.manifest_dir),
    )


def std_lib_package_id(std_src: Path) -> PackageId:
    return PackageId(name="std", version="", source_kind=SourceKind.STD_LIB, location=str(std_src))


@dataclass
class _PendingNode:
    package: PackageId
    kind: PackageKind
    source_dir: Optional[Path]
    lib_src_path: Optional[Path]
    error: Optional[str]
    is_root: bool
    edges: Dict[PackageId, DependencyEdge] = field(default_factory=dict)


class GraphBuilder:
    """Builds a DependencyGraph from manifest metadata.

    Breadth-first from the workspace members. A package already seen
    under the same identity is linked, never processed twice.
    """

    def __init__(
        self,
        locator: PackageLocator,
        reexport_finder: Callable[[Optional[Path]], Set[str]] = find_reexported_crates,
    ):
        self.locator = locator
        self.reexport_finder = reexport_finder

    def build(self, metadata: ManifestMetadata) -> DependencyGraph:
        pending: Dict[PackageId, _PendingNode] = {}
        # False once any dependent needs the package unconditionally
        optional: Dict[PackageId, bool] = {}
        roots: List[PackageId] = []

        std_id = None
        std_src = self.locator.roots.std_src
        if std_src is not None:
            std_id = std_lib_package_id(std_src)

        queue = deque(metadata.workspace_members)
        queued = set(queue)
        while queue:
            manifest_id = queue.popleft()
            package = metadata.packages.get(manifest_id)
            if package is None:
                raise ManifestError(f"Package '{manifest_id}' missing from metadata")

            package_id = package_id_of(package)
            is_root = manifest_id in metadata.workspace_members
            if is_root and package_id not in roots:
                roots.append(package_id)
            if package_id in pending:
                logger.debug("%s: already in graph, linking", package_id)
                continue

            node = self._new_node(package, package_id, is_root)
            pending[package_id] = node

            for dep in metadata.resolve.get(manifest_id, []):
                target = metadata.packages.get(dep.package_id)
                if target is None:
                    raise ManifestError(f"Dependency '{dep.package_id}' of '{package_id}' missing from metadata")
                target_id = package_id_of(target)
                _add_edge(node, DependencyEdge(target=target_id, kinds=dep.kinds, crate_name=dep.crate_name))
                optional[target_id] = optional.get(target_id, True) and metadata.is_optional_edge(manifest_id, dep)
                if dep.package_id not in queued:
                    queued.add(dep.package_id)
                    queue.append(dep.package_id)

            if is_root and std_id is not None:
                _add_edge(node, DependencyEdge(target=std_id, kinds=frozenset({DepKind.NORMAL}), crate_name="std"))
                optional[std_id] = True

        if std_id is not None:
            pending[std_id] = self._std_node(std_id)

        nodes = {pid: self._finish(pnode, optional.get(pid, False)) for pid, pnode in pending.items()}
        graph = DependencyGraph(nodes, roots)
        logger.debug("Dependency graph: %d packages, %d roots", len(graph), len(roots))
        return graph

    def _new_node(self, package: ManifestPackage, package_id: PackageId, is_root: bool) -> _PendingNode:
        kind = PackageKind.from_target_kinds(package.target_kinds)
        source_dir = None
        error = None
        try:
            source_dir = self.locator.locate(package_id, package.manifest_dir)
        except ResolutionError as e:
            error = str(e)

        lib_src_path = None
        if kind.is_library and source_dir is not None:
            lib_src_path = _relocate(package.lib_src_path, package.manifest_dir, source_dir)

        return _PendingNode(
            package=package_id,
            kind=kind,
            source_dir=source_dir,
            lib_src_path=lib_src_path,
            error=error,
            is_root=is_root,
        )

    def _std_node(self, std_id: PackageId) -> _PendingNode:
        source_dir = None
        error = None
        try:
            source_dir = self.locator.locate(std_id)
        except ResolutionError as e:
            error = str(e)
        return _PendingNode(
            package=std_id,
            kind=PackageKind.STD_LIB,
            source_dir=source_dir,
            lib_src_path=None,
            error=error,
            is_root=False,
        )

    def _finish(self, pnode: _PendingNode, optional: bool) -> PackageNode:
        reexported = self.reexport_finder(pnode.lib_src_path) if pnode.lib_src_path else set()
        edges = []
        for target in sorted(pnode.edges, key=_sort_key):
            edge = pnode.edges[target]
            if edge.is_normal and edge.crate_name in reexported:
                edge = DependencyEdge(target=edge.target, kinds=edge.kinds, crate_name=edge.crate_name, reexport=True)
                logger.debug("%s: re-exports %s", pnode.package, edge.target)
            edges.append(edge)

        optional = optional and not pnode.is_root
        error = pnode.error
        if error is not None and optional:
            logger.warning("%s (optional or platform specific, skipped)", error)
            error = None

        return PackageNode(
            package=pnode.package,
            kind=pnode.kind,
            source_dir=pnode.source_dir,
            edges=tuple(edges),
            is_root=pnode.is_root,
            optional=optional,
            lib_src_path=pnode.lib_src_path,
            error=error,
        )


def _add_edge(node: _PendingNode, edge: DependencyEdge) -> None:
    existing = node.edges.get(edge.target)
    if existing is None:
        node.edges[edge.target] = edge
        return
    node.edges[edge.target] = DependencyEdge(
        target=edge.target,
        kinds=existing.kinds | edge.kinds,
        crate_name=existing.crate_name if existing.is_normal else edge.crate_name,
    )


def _relocate(path: Optional[Path], manifest_dir: Path, source_dir: Path) -> Path:
    """Map a manifest-reported path into the located source directory."""
    if path is not None:
        try:
            return source_dir / path.relative_to(manifest_dir)
        except ValueError:
            return path
    return source_dir / "src" / "lib.rs"
