"""
Re-export detection for rusty-tags.

Looks at the root source file of a library for crates that are made part
of its public surface, e.g. ``pub use serde::Serialize;`` or
``pub extern crate log;``.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)

_PUB_USE = re.compile(r"^\s*pub\s+use\s+(?:::)?([A-Za-z_][A-Za-z0-9_]*)\s*(?:::|;|\s+as\b)")
_EXTERN_CRATE = re.compile(
    r"^\s*(pub\s+)?extern\s+crate\s+([A-Za-z_][A-Za-z0-9_]*)(?:\s+as\s+([A-Za-z_][A-Za-z0-9_]*))?\s*;"
)
_NOT_CRATES = {"self", "super", "crate", "std", "core", "alloc"}


def find_reexported_crates(lib_file: Optional[Path]) -> Set[str]:
    """Return the names of the crates publicly re-exported by ``lib_file``."""
    if lib_file is None or not lib_file.is_file():
        return set()

    try:
        contents = lib_file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug("Couldn't read %s: %s", lib_file, e)
        return set()

    return parse_reexported_crates(contents)


def parse_reexported_crates(contents: str) -> Set[str]:
    pub_uses: Set[str] = set()
    aliases: Dict[str, str] = {}
    reexported: Set[str] = set()

    for line in contents.splitlines():
        if line.lstrip().startswith("//"):
            continue

        match = _EXTERN_CRATE.match(line)
        if match:
            is_pub, name, alias = match.groups()
            if is_pub:
                reexported.add(name)
            aliases[alias or name] = name
            continue

        match = _PUB_USE.match(line)
        if match:
            pub_uses.add(match.group(1))

    for root in pub_uses:
        if root in _NOT_CRATES:
            continue
        reexported.add(aliases.get(root, root))

    return reexported
