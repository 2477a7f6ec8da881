"""
Package source locator for rusty-tags.

Maps a package identity to the directory holding its sources: the
workspace path declared by the manifest, a git checkout or registry
source under the cargo home, or the configured standard library.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from rusty_tags.errors import AmbiguousSourceError, MissingSourceError
from rusty_tags.manifest import MANIFEST_FILE, read_manifest
from rusty_tags.types import PackageId, SourceKind

logger = logging.getLogger(__name__)

_SKIP_DIRS = {"target", ".git"}


@dataclass(frozen=True)
class SourceRoots:
    """Directories dependency sources are looked up in."""

    git_checkouts: Optional[Path] = None
    registry_src: Optional[Path] = None
    std_src: Optional[Path] = None


def _manifest_package_name(manifest: Path) -> Optional[str]:
    package = read_manifest(manifest).get("package")
    if isinstance(package, dict) and isinstance(package.get("name"), str):
        return package["name"]
    return None


def _find_package_dir(checkout: Path, name: str) -> Optional[Path]:
    """Find the directory of package ``name`` inside a git checkout.

    Repositories may hold a whole workspace, so nested manifests are
    searched too.
    """
    manifests = [checkout / MANIFEST_FILE]
    manifests.extend(
        m for m in sorted(checkout.rglob(MANIFEST_FILE))
        if m.parent != checkout and not _SKIP_DIRS.intersection(m.relative_to(checkout).parts)
    )
    for manifest in manifests:
        if manifest.is_file() and _manifest_package_name(manifest) == name:
            return manifest.parent
    return None


def pick_most_recent(package: PackageId, candidates: Iterable[Path]) -> Path:
    """Pick the most recently modified candidate.

    Raises AmbiguousSourceError when the newest candidates share the
    same modification time.
    """
    stamped = []
    for candidate in candidates:
        try:
            stamped.append((candidate.stat().st_mtime_ns, candidate))
        except OSError:
            continue

    if not stamped:
        raise MissingSourceError(str(package))

    stamped.sort(key=lambda item: item[0], reverse=True)
    if len(stamped) > 1 and stamped[0][0] == stamped[1][0]:
        newest = [path for mtime, path in stamped if mtime == stamped[0][0]]
        raise AmbiguousSourceError(str(package), newest)

    if len(stamped) > 1:
        logger.debug("%s: %d source candidates, using %s", package, len(stamped), stamped[0][1])
    return stamped[0][1]


class PackageLocator:
    """Resolves the source directory of packages."""

    def __init__(self, roots: SourceRoots):
        self.roots = roots

    def locate(self, package: PackageId, manifest_dir: Optional[Path] = None) -> Path:
        """Return the source directory of ``package``.

        Args:
            package: The package to locate.
            manifest_dir: Directory of the package's manifest as reported
                by the project metadata, if any.

        Raises:
            MissingSourceError: No source directory could be found.
            AmbiguousSourceError: Several equally recent candidates exist.
        """
        if package.source_kind is SourceKind.WORKSPACE:
            if manifest_dir is not None and manifest_dir.is_dir():
                return manifest_dir
            raise MissingSourceError(str(package), str(manifest_dir) if manifest_dir else None)

        if package.source_kind is SourceKind.STD_LIB:
            std_src = self.roots.std_src
            if std_src is not None and std_src.is_dir():
                return std_src
            raise MissingSourceError(str(package), str(std_src) if std_src else None)

        if package.source_kind is SourceKind.GIT:
            candidates = self._git_candidates(package)
            searched = self.roots.git_checkouts
        else:
            candidates = self._registry_candidates(package)
            searched = self.roots.registry_src

        if candidates:
            return pick_most_recent(package, candidates)

        # Vendored sources and alternative registries live outside the
        # cargo home, the manifest location is all we have for those.
        if manifest_dir is not None and manifest_dir.is_dir():
            logger.debug("%s: not found below %s, using %s", package, searched, manifest_dir)
            return manifest_dir

        raise MissingSourceError(str(package), str(searched) if searched else None)

    def _registry_candidates(self, package: PackageId) -> List[Path]:
        root = self.roots.registry_src
        if root is None or not root.is_dir():
            return []

        dir_name = f"{package.name}-{package.version}"
        return sorted(
            index_dir / dir_name
            for index_dir in root.iterdir()
            if (index_dir / dir_name).is_dir()
        )

    def _git_candidates(self, package: PackageId) -> List[Path]:
        root = self.roots.git_checkouts
        commit = package.commit
        if root is None or not root.is_dir() or not commit:
            return []

        candidates = []
        for repo_dir in sorted(root.iterdir()):
            if not repo_dir.is_dir():
                continue
            for checkout in sorted(repo_dir.iterdir()):
                if not checkout.is_dir():
                    continue
                short = checkout.name[:7]
                if len(short) < 7 or not commit.startswith(short):
                    continue
                package_dir = _find_package_dir(checkout, package.name)
                if package_dir is not None:
                    candidates.append(package_dir)
        return candidates
