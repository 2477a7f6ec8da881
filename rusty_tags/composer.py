"""
Tags file composition for rusty-tags.

Every package gets a tags file at its source root. Two strategies share
the graph walking and differ only in how the file is assembled:

- MergeComposer (vi): the sorted union of the package's own records and
  the exported records of its dependencies.
- IncludeComposer (emacs): the package's own records plus include
  directives pointing at the dependencies' tags files.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from rusty_tags.fileutils import atomic_write_text
from rusty_tags.graph import DependencyGraph
from rusty_tags.records import TagRecord, merge_vi_records, render_etags, render_vi
from rusty_tags.tag_cache import TagCache
from rusty_tags.types import DependencyEdge, PackageId, PackageKind, PackageNode, TagsKind

logger = logging.getLogger(__name__)


class IndexComposer(ABC):
    """Writes the tags file of one package from cached records."""

    def __init__(
        self,
        cache: TagCache,
        tags_file_name: str,
        std_lib_tags_file: Optional[Path] = None,
        omit_deps: bool = False,
    ):
        self.cache = cache
        self.tags_file_name = tags_file_name
        self.std_lib_tags_file = std_lib_tags_file
        self.omit_deps = omit_deps

    def output_path(self, node: PackageNode) -> Optional[Path]:
        if node.kind is PackageKind.STD_LIB:
            return self.std_lib_tags_file
        if node.source_dir is None:
            return None
        return node.source_dir / self.tags_file_name

    def compose(self, node: PackageNode, graph: DependencyGraph) -> Optional[Path]:
        """Write the tags file of ``node``; returns its path or None if it has none."""
        path = self.output_path(node)
        if path is None:
            return None

        edges = [] if self.omit_deps else graph.library_edges(node.package)
        text = self.render(node, graph, edges)
        atomic_write_text(path, text)
        logger.debug("%s: wrote %s", node.package, path)
        return path

    def own_records(self, package: PackageId) -> Tuple[str, ...]:
        entry = self.cache.peek(package)
        return entry.records if entry is not None else ()

    @abstractmethod
    def render(self, node: PackageNode, graph: DependencyGraph, edges: Sequence[DependencyEdge]) -> str:
        ...


class MergeComposer(IndexComposer):
    """Inlines dependency records into one sorted vi tags file."""

    def exported_records(self, package: PackageId, graph: DependencyGraph) -> List[Tuple[PackageId, str]]:
        """Records visible through ``package``: its own plus, transitively,
        those of the dependencies it re-exports."""
        result: List[Tuple[PackageId, str]] = []
        seen: Set[PackageId] = set()
        stack = [package]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            result.extend((current, line) for line in self.own_records(current))
            stack.extend(graph.reexport_targets(current))
        return result

    def render(self, node: PackageNode, graph: DependencyGraph, edges: Sequence[DependencyEdge]) -> str:
        origins: Dict[PackageId, str] = {}
        records = []

        def add(origin: PackageId, line: str) -> None:
            label = origins.setdefault(origin, str(origin))
            record = TagRecord.parse(line, origin=label)
            if record is not None:
                records.append(record)

        for line in self.own_records(node.package):
            add(node.package, line)
        for edge in edges:
            for origin, line in self.exported_records(edge.target, graph):
                add(origin, line)

        return render_vi(merge_vi_records(records))


class IncludeComposer(IndexComposer):
    """Writes own etags sections plus include directives for dependencies."""

    def include_paths(self, node: PackageNode, graph: DependencyGraph, edges: Sequence[DependencyEdge]) -> List[str]:
        own_path = self.output_path(node)
        targets: List[PackageId] = [edge.target for edge in edges]
        for edge in edges:
            if edge.reexport:
                targets.extend(graph.library_dependencies(edge.target))

        paths: List[str] = []
        for target in targets:
            path = self.output_path(graph[target])
            if path is None or path == own_path:
                continue
            if not path.is_file():
                logger.debug("%s: %s doesn't exist yet, including anyway", node.package, path)
            entry = str(path)
            if entry not in paths:
                paths.append(entry)
        return paths

    def render(self, node: PackageNode, graph: DependencyGraph, edges: Sequence[DependencyEdge]) -> str:
        return render_etags(self.own_records(node.package), self.include_paths(node, graph, edges))


def make_composer(
    tags_kind: TagsKind,
    cache: TagCache,
    tags_file_name: str,
    std_lib_tags_file: Optional[Path] = None,
    omit_deps: bool = False,
) -> IndexComposer:
    composer_cls = MergeComposer if tags_kind is TagsKind.VI else IncludeComposer
    return composer_cls(
        cache,
        tags_file_name,
        std_lib_tags_file=std_lib_tags_file,
        omit_deps=omit_deps,
    )
