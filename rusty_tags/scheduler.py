"""
Parallel build scheduling for rusty-tags.

Walks the dependency graph bottom-up with a bounded worker pool: a
package is handed to a worker once every library it depends on is done
(or failed), so its tags file can include theirs. Failures are collected
per package, they never stop unrelated work.
"""

import logging
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Set

from rusty_tags.composer import IndexComposer
from rusty_tags.errors import ResolutionError
from rusty_tags.graph import DependencyGraph
from rusty_tags.tag_cache import TagCache
from rusty_tags.types import PackageId, PackageNode

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    BUILDING = "building"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PackageError:
    package: PackageId
    message: str
    error_type: str = "RustyTagsError"

    def __str__(self) -> str:
        return f"{self.package}: {self.message}"


@dataclass
class BuildResult:
    built_count: int = 0
    errors: List[PackageError] = field(default_factory=list)
    states: Dict[PackageId, NodeState] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled

    def packages_in(self, state: NodeState) -> List[PackageId]:
        return [pid for pid, s in self.states.items() if s is state]

    @property
    def skipped(self) -> List[PackageId]:
        """Packages never handed to a worker."""
        return self.packages_in(NodeState.PENDING) + self.packages_in(NodeState.READY)


class BuildScheduler:
    """Builds every package of a graph, dependencies first."""

    def __init__(
        self,
        cache: TagCache,
        composer: IndexComposer,
        concurrency: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ):
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.cache = cache
        self.composer = composer
        self.concurrency = concurrency
        self.cancel_event = cancel_event or threading.Event()

    def run(self, graph: DependencyGraph, omit_deps: bool = False) -> BuildResult:
        targets = list(graph.roots) if omit_deps else sorted(graph, key=str)
        target_set = set(targets)

        blockers: Dict[PackageId, Set[PackageId]] = {}
        dependents: Dict[PackageId, List[PackageId]] = {pid: [] for pid in targets}
        for pid in targets:
            deps = set() if omit_deps else set(graph.library_dependencies(pid)) & target_set
            blockers[pid] = deps
            for dep in deps:
                dependents[dep].append(pid)

        result = BuildResult(states={pid: NodeState.PENDING for pid in targets})
        ready: Deque[PackageId] = deque()
        for pid in targets:
            if not blockers[pid]:
                result.states[pid] = NodeState.READY
                ready.append(pid)

        running: Dict[Future, PackageId] = {}

        def finish(future: Future) -> None:
            pid = running.pop(future)
            exc = future.exception()
            if exc is None:
                result.states[pid] = NodeState.DONE
                if future.result():
                    result.built_count += 1
            else:
                result.states[pid] = NodeState.FAILED
                result.errors.append(PackageError(pid, str(exc).strip(), type(exc).__name__))
                logger.error("Failed to create tags for '%s': %s", pid, exc)

            for dependent in dependents[pid]:
                blockers[dependent].discard(pid)
                if not blockers[dependent] and result.states[dependent] is NodeState.PENDING:
                    result.states[dependent] = NodeState.READY
                    ready.append(dependent)

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            try:
                while ready or running:
                    while ready and len(running) < self.concurrency and not self.cancel_event.is_set():
                        pid = ready.popleft()
                        result.states[pid] = NodeState.BUILDING
                        running[executor.submit(self._build_node, graph[pid], graph)] = pid

                    if not running:
                        break

                    done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                    for future in done:
                        finish(future)
            except KeyboardInterrupt:
                logger.warning("Interrupted, waiting for %d running package(s) ...", len(running))
                self.cancel_event.set()
                done, _ = wait(list(running))
                for future in done:
                    finish(future)

        if self.cancel_event.is_set():
            result.cancelled = True

        if result.skipped and not result.cancelled:
            logger.warning("%d package(s) never became ready", len(result.skipped))

        return result

    def _build_node(self, node: PackageNode, graph: DependencyGraph) -> bool:
        """Cache then compose one package. Returns whether a tags file was written."""
        if node.error is not None:
            raise ResolutionError(node.error)
        if not node.kind.contributes_tags:
            return False

        self.cache.get_or_build(node)
        return self.composer.compose(node, graph) is not None
