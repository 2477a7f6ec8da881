"""
Tags update pipeline for rusty-tags.

One run: find the project manifest, lock its workspace, read the resolved
dependency graph, then let the scheduler cache and compose the tags of
every package. Everything that touches the outside world (cache store,
lock, ctags, cargo) can be swapped out, which is how the tests run the
whole pipeline without either tool installed.
"""

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from rusty_tags.composer import make_composer
from rusty_tags.config import RunOptions, RustyTagsConfig
from rusty_tags.graph import DependencyGraph, GraphBuilder
from rusty_tags.indexer import CtagsIndexer, find_ctags
from rusty_tags.locator import PackageLocator, SourceRoots
from rusty_tags.lock import ProjectLock
from rusty_tags.manifest import ManifestMetadata, find_manifest_dir, find_workspace_root, load_metadata
from rusty_tags.scheduler import BuildResult, BuildScheduler
from rusty_tags.tag_cache import CacheStore, DiskCacheStore, TagCache
from rusty_tags.types import PackageId, PackageNode

logger = logging.getLogger(__name__)

MetadataLoader = Callable[[Path], ManifestMetadata]


@dataclass
class UpdateReport:
    """What a run did, for the CLI to print."""

    project_dir: Path
    graph: DependencyGraph
    result: BuildResult
    rebuilt: List[PackageId] = field(default_factory=list)
    reused: List[PackageId] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def missing_sources(self) -> List[PackageNode]:
        """Packages whose sources couldn't be found, failed or not."""
        return [node for node in self.graph.nodes() if node.source_dir is None]


class TagsUpdater:
    """Creates or refreshes the tags files of one project."""

    def __init__(
        self,
        config: RustyTagsConfig,
        options: RunOptions,
        store: Optional[CacheStore] = None,
        indexer=None,
        metadata_loader: Optional[MetadataLoader] = None,
        lock_factory: Optional[Callable[[Path, Path], ProjectLock]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.options = options
        self.store = store if store is not None else DiskCacheStore(config.cache_dir)
        self.indexer = indexer
        self.metadata_loader = metadata_loader or self._load_metadata
        self.lock_factory = lock_factory or ProjectLock
        self.cancel_event = cancel_event or threading.Event()

    def _load_metadata(self, project_dir: Path) -> ManifestMetadata:
        return load_metadata(project_dir, self.config.cargo_exe, self.config.metadata_timeout)

    def _get_indexer(self):
        if self.indexer is None:
            ctags = find_ctags(self.config.ctags_exe)
            self.indexer = CtagsIndexer(
                ctags,
                self.options.tags_kind,
                options=self.config.ctags_options,
                timeout=self.config.ctags_timeout,
            )
        return self.indexer

    def locator(self) -> PackageLocator:
        return PackageLocator(
            SourceRoots(
                git_checkouts=self.config.cargo_git_checkouts_dir,
                registry_src=self.config.cargo_registry_src_dir,
                std_src=self.config.std_src_dir,
            )
        )

    def run(self) -> UpdateReport:
        """Update all tags files of the project containing the start directory.

        Raises:
            ManifestError: No manifest found or its metadata unreadable.
            LockContentionError: Another run holds the project lock.
            ConfigError: An invalid configuration value.
        """
        start_dir = self.options.start_dir or Path.cwd()
        manifest_dir = find_manifest_dir(start_dir)
        project_dir = find_workspace_root(manifest_dir)
        workers = self.options.worker_count(self.config)
        tags_kind = self.options.tags_kind
        self.config.ensure_directories()

        with ExitStack() as locks:
            locks.enter_context(self.lock_factory(project_dir, self.config.locks_dir))
            metadata = self.metadata_loader(manifest_dir)
            workspace_root = Path(metadata.workspace_root).resolve()
            if workspace_root != project_dir:
                logger.warning("cargo reports workspace root '%s', locking it too", workspace_root)
                locks.enter_context(self.lock_factory(workspace_root, self.config.locks_dir))
                project_dir = workspace_root

            graph = GraphBuilder(self.locator()).build(metadata)

            cache = TagCache(
                self.store,
                self._get_indexer(),
                tags_kind,
                force_recreate=self.options.force_recreate,
            )
            composer = make_composer(
                tags_kind,
                cache,
                self.options.tags_file_name(self.config),
                std_lib_tags_file=self.config.std_lib_tags_file(tags_kind),
                omit_deps=self.options.omit_deps,
            )
            scheduler = BuildScheduler(cache, composer, concurrency=workers, cancel_event=self.cancel_event)
            result = scheduler.run(graph, omit_deps=self.options.omit_deps)

        report = UpdateReport(
            project_dir=project_dir,
            graph=graph,
            result=result,
            rebuilt=list(cache.rebuilt),
            reused=list(cache.reused),
        )
        logger.debug(
            "%s: %d written, %d rebuilt, %d cached, %d failed",
            project_dir, result.built_count, len(report.rebuilt), len(report.reused), len(result.errors),
        )
        return report
