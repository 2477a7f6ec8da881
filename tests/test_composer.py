"""Tests for rusty_tags.composer module."""

from pathlib import Path
from typing import Sequence

import pytest

from conftest import MemoryCacheStore
from rusty_tags.composer import IncludeComposer, MergeComposer, make_composer
from rusty_tags.graph import DependencyGraph
from rusty_tags.records import VI_HEADERS
from rusty_tags.tag_cache import CacheEntry, TagCache, cache_key
from rusty_tags.types import DependencyEdge, DepKind, PackageId, PackageKind, PackageNode, SourceKind, TagsKind

NORMAL = frozenset({DepKind.NORMAL})


class World:
    """Packages with prepared cache entries below one temp dir."""

    def __init__(self, root: Path, tags_kind: TagsKind):
        self.root = root
        self.tags_kind = tags_kind
        self.store = MemoryCacheStore()
        self.nodes = {}

    def pid(self, name: str, version: str = "1.0.0") -> PackageId:
        return PackageId(name, version, SourceKind.REGISTRY)

    def add(self, name: str, deps: Sequence[str] = (), reexports: Sequence[str] = (),
            version: str = "1.0.0", records: Sequence[str] = None, is_root: bool = False,
            kind: PackageKind = PackageKind.LIBRARY, has_source: bool = True) -> PackageId:
        package = self.pid(name, version)
        source_dir = None
        if has_source:
            source_dir = self.root / f"{name}-{version}"
            source_dir.mkdir(parents=True, exist_ok=True)
        if records is None:
            if self.tags_kind is TagsKind.VI:
                records = [f'{name}_item\t{source_dir}/src/lib.rs\t/^pub fn {name}_item() {{}}$/;"\tf']
            else:
                records = [f"{source_dir}/src/lib.rs,10\npub fn {name}_item\x7f{name}_item\x011,0\n"]
        edges = []
        for dep in deps:
            target = dep if isinstance(dep, PackageId) else self.pid(dep)
            edges.append(DependencyEdge(target=target, kinds=NORMAL, crate_name=target.name,
                                        reexport=target.name in reexports))
        self.nodes[package] = PackageNode(package=package, kind=kind, source_dir=source_dir,
                                          edges=tuple(edges), is_root=is_root)
        self.store.save(cache_key(package, self.tags_kind),
                        CacheEntry(package=package, fingerprint="f", records=tuple(records), built_at="now"))
        return package

    def graph(self) -> DependencyGraph:
        return DependencyGraph(self.nodes, [p for p, n in self.nodes.items() if n.is_root])

    def composer(self, omit_deps: bool = False, std_lib_tags_file=None):
        cache = TagCache(self.store, None, self.tags_kind)
        return make_composer(self.tags_kind, cache, f"rusty-tags.{self.tags_kind.value}",
                             std_lib_tags_file=std_lib_tags_file, omit_deps=omit_deps)


@pytest.fixture
def vi(tmp_path):
    return World(tmp_path / "vi", TagsKind.VI)


@pytest.fixture
def emacs(tmp_path):
    return World(tmp_path / "emacs", TagsKind.EMACS)


def tag_names(path: Path):
    return [line.split("\t")[0] for line in path.read_text().splitlines() if not line.startswith("!")]


class TestMakeComposer:
    def test_selects_strategy(self, vi, emacs):
        assert isinstance(vi.composer(), MergeComposer)
        assert isinstance(emacs.composer(), IncludeComposer)


class TestMergeComposer:
    def test_own_records_and_direct_dependencies(self, vi):
        vi.add("b")
        a = vi.add("a", deps=["b"], is_root=True)
        graph = vi.graph()

        path = vi.composer().compose(graph[a], graph)

        assert path == graph[a].source_dir / "rusty-tags.vi"
        assert tag_names(path) == ["a_item", "b_item"]
        assert path.read_text().splitlines()[:2] == list(VI_HEADERS)

    def test_non_reexported_transitive_dependency_not_inlined(self, vi):
        vi.add("c")
        vi.add("b", deps=["c"])
        a = vi.add("a", deps=["b"], is_root=True)
        graph = vi.graph()

        path = vi.composer().compose(graph[a], graph)

        assert tag_names(path) == ["a_item", "b_item"]

    def test_reexport_is_flattened_transitively(self, vi):
        vi.add("d")
        vi.add("c", deps=["d"], reexports=["d"])
        vi.add("b", deps=["c"], reexports=["c"])
        a = vi.add("a", deps=["b"], is_root=True)
        graph = vi.graph()

        path = vi.composer().compose(graph[a], graph)

        assert tag_names(path) == ["a_item", "b_item", "c_item", "d_item"]

    def test_diamond_record_appears_once(self, vi):
        vi.add("d")
        vi.add("b", deps=["d"], reexports=["d"])
        vi.add("c", deps=["d"], reexports=["d"])
        a = vi.add("a", deps=["b", "c", "d"], is_root=True)
        graph = vi.graph()

        path = vi.composer().compose(graph[a], graph)

        assert tag_names(path).count("d_item") == 1

    def test_multiple_versions_do_not_collide(self, vi):
        v1 = vi.add("p1", version="1.0.0")
        v2 = vi.add("p1", version="2.0.0")
        vi.add("p2", deps=[v2], reexports=["p1"])
        r = vi.add("r", deps=[v1, vi.pid("p2")], is_root=True)
        graph = vi.graph()

        path = vi.composer().compose(graph[r], graph)

        lines = path.read_text()
        assert "p1-1.0.0" in lines
        assert "p1-2.0.0" in lines
        assert graph[v1].source_dir != graph[v2].source_dir

    def test_omit_deps_writes_own_records_only(self, vi):
        vi.add("b")
        a = vi.add("a", deps=["b"], is_root=True)
        graph = vi.graph()

        path = vi.composer(omit_deps=True).compose(graph[a], graph)

        assert tag_names(path) == ["a_item"]

    def test_missing_dependency_entry_contributes_nothing(self, vi):
        b = vi.add("b")
        a = vi.add("a", deps=["b"], is_root=True)
        del vi.store.entries[cache_key(b, TagsKind.VI)]
        graph = vi.graph()

        path = vi.composer().compose(graph[a], graph)

        assert tag_names(path) == ["a_item"]

    def test_no_source_dir_writes_nothing(self, vi):
        ghost = vi.add("ghost", has_source=False, records=[])
        graph = vi.graph()
        assert vi.composer().compose(graph[ghost], graph) is None

    def test_std_lib_goes_to_configured_file(self, vi, tmp_path):
        std = vi.add("std", kind=PackageKind.STD_LIB)
        graph = vi.graph()
        std_file = tmp_path / "home" / "rust-std-lib.vi"

        path = vi.composer(std_lib_tags_file=std_file).compose(graph[std], graph)

        assert path == std_file
        assert tag_names(std_file) == ["std_item"]

    def test_idempotent(self, vi):
        vi.add("d")
        vi.add("b", deps=["d"], reexports=["d"])
        a = vi.add("a", deps=["b"], is_root=True)
        graph = vi.graph()
        composer = vi.composer()

        first = composer.compose(graph[a], graph).read_bytes()
        second = composer.compose(graph[a], graph).read_bytes()
        assert first == second


class TestIncludeComposer:
    def test_own_sections_and_includes(self, emacs):
        emacs.add("b")
        a = emacs.add("a", deps=["b"], is_root=True)
        graph = emacs.graph()

        path = emacs.composer().compose(graph[a], graph)

        text = path.read_text()
        b_file = graph[emacs.pid("b")].source_dir / "rusty-tags.emacs"
        assert "a_item" in text
        assert "b_item" not in text
        assert text.endswith(f"\x0c\n{b_file},include\n")

    def test_reexport_injects_its_dependencies(self, emacs):
        emacs.add("d")
        emacs.add("b", deps=["d"], reexports=["d"])
        emacs.add("c", deps=["d"])
        a = emacs.add("a", deps=["b"], is_root=True)
        graph = emacs.graph()

        includes = emacs.composer().include_paths(graph[a], graph, graph.library_edges(a))

        assert includes == [str(graph[emacs.pid("b")].source_dir / "rusty-tags.emacs")]

        e = emacs.add("e")
        emacs.nodes[emacs.pid("d")] = PackageNode(
            package=emacs.pid("d"), kind=PackageKind.LIBRARY, source_dir=graph[emacs.pid("d")].source_dir,
            edges=(DependencyEdge(target=e, kinds=NORMAL, crate_name="e"),),
        )
        a2 = emacs.add("a2", deps=["d"], reexports=["d"], is_root=True)
        graph = emacs.graph()

        includes = emacs.composer().include_paths(graph[a2], graph, graph.library_edges(a2))

        assert includes == [
            str(graph[emacs.pid("d")].source_dir / "rusty-tags.emacs"),
            str(graph[e].source_dir / "rusty-tags.emacs"),
        ]

    def test_missing_dependency_file_still_included(self, emacs):
        emacs.add("b")
        a = emacs.add("a", deps=["b"], is_root=True)
        graph = emacs.graph()
        b_file = graph[emacs.pid("b")].source_dir / "rusty-tags.emacs"
        assert not b_file.exists()

        path = emacs.composer().compose(graph[a], graph)

        assert f"{b_file},include" in path.read_text()

    def test_duplicates_and_self_excluded(self, emacs):
        emacs.add("d")
        emacs.add("b", deps=["d"], reexports=["d"])
        a = emacs.add("a", deps=["b", "d"], reexports=["b"], is_root=True)
        graph = emacs.graph()

        includes = emacs.composer().include_paths(graph[a], graph, graph.library_edges(a))

        assert len(includes) == len(set(includes)) == 2
        assert str(graph[a].source_dir / "rusty-tags.emacs") not in includes

    def test_dependency_without_source_skipped(self, emacs):
        emacs.add("ghost", has_source=False, records=[])
        a = emacs.add("a", deps=["ghost"], is_root=True)
        graph = emacs.graph()

        assert emacs.composer().include_paths(graph[a], graph, graph.library_edges(a)) == []
