"""
Tag record formats for rusty-tags.

vi tags are one record per line (``name<TAB>file<TAB>address;"<TAB>kind``)
and are kept sorted by name. Emacs tags (etags) are a sequence of
sections, one per source file, each introduced by a form feed line.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

VI_HEADERS = (
    '!_TAG_FILE_FORMAT\t2\t/extended format; --format=1 will not append ;" to lines/',
    "!_TAG_FILE_SORTED\t1\t/0=unsorted, 1=sorted, 2=foldcase/",
)

ETAGS_SECTION_START = "\x0c\n"

_STRUCT_ADDRESS = re.compile(r"^/\^\s*(pub )?struct.*$")
_ENUM_ADDRESS = re.compile(r"^/\^\s*(pub )?enum.*$")

RANK_STRUCT = 0
RANK_ENUM = 1
RANK_OTHER = 5


def address_rank(address: str) -> int:
    """Rank a tag address so struct and enum definitions come first."""
    if _STRUCT_ADDRESS.match(address):
        return RANK_STRUCT
    if _ENUM_ADDRESS.match(address):
        return RANK_ENUM
    return RANK_OTHER


@dataclass(frozen=True)
class TagRecord:
    """One vi tag line, remembering which package it came from."""

    name: str
    file: str
    address: str
    kind: str
    line: str
    origin: str = ""

    @classmethod
    def parse(cls, line: str, origin: str = "") -> Optional["TagRecord"]:
        if not line or line.startswith("!"):
            return None
        fields = line.split("\t")
        if len(fields) < 3:
            logger.debug("Ignoring malformed tag line: %r", line)
            return None
        address, kind = fields[2], ""
        if address.endswith(';"'):
            address = address[:-2]
        elif ';"' in address:
            address, _, kind = address.rpartition(';"')
        if len(fields) > 3:
            kind = fields[3]
        return cls(name=fields[0], file=fields[1], address=address, kind=kind.strip(), line=line, origin=origin)

    @property
    def sort_key(self) -> Tuple[str, int, str, str]:
        return (self.name, address_rank(self.address), self.origin, self.line)


def parse_vi_lines(text: str) -> List[str]:
    """Tag lines of a vi tags file, without headers and blank lines."""
    return [line for line in text.splitlines() if line and not line.startswith("!")]


def merge_vi_records(records: Iterable[TagRecord]) -> List[str]:
    """Sort records and collapse the ones seen via several paths."""
    seen = set()
    merged = []
    for record in sorted(records, key=lambda r: r.sort_key):
        if record.line in seen:
            continue
        seen.add(record.line)
        merged.append(record.line)
    return merged


def render_vi(lines: Iterable[str]) -> str:
    return "".join(f"{line}\n" for line in (*VI_HEADERS, *lines))


def parse_etags_sections(text: str) -> List[str]:
    """Split an etags file into its per-file sections (form feed stripped)."""
    sections = []
    for chunk in text.split("\x0c"):
        chunk = chunk.lstrip("\n")
        if not chunk:
            continue
        if not chunk.endswith("\n"):
            chunk += "\n"
        sections.append(chunk)
    return sections


def etags_include(path: str) -> str:
    return f"{path},include\n"


def render_etags(sections: Iterable[str], includes: Iterable[str] = ()) -> str:
    parts = [f"{ETAGS_SECTION_START}{section}" for section in sections]
    parts.extend(f"{ETAGS_SECTION_START}{etags_include(path)}" for path in includes)
    return "".join(parts)
