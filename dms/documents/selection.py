"""
DMS Selection Resolver — Typed entry ids to per-kind id sets.

Raw selections arrive as opaque tokens ``<kind>-<id>``:

    folder-3, file-7, folder-link-9, file-link-11, url-link-12

parse_selection() turns them into a Selection with five disjoint, insertion
ordered, de-duplicated id lists. Download and email dereference folder and
file links into the folder/file lists; delete and restore act on the links
themselves.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

logger = logging.getLogger("dms.documents.selection")

_TOKEN = re.compile(r"^(folder|file|folder-link|file-link|url-link)-(\d+)$")


class SelectionKind(str, enum.Enum):
    FOLDER = "folder"
    FILE = "file"
    FOLDER_LINK = "folder-link"
    FILE_LINK = "file-link"
    URL_LINK = "url-link"


@dataclass(frozen=True)
class SelectionItem:
    kind: SelectionKind
    id: int

    @classmethod
    def parse(cls, token: str) -> Optional["SelectionItem"]:
        """Parse ``kind-id``; None for anything else."""
        match = _TOKEN.match(token.strip()) if isinstance(token, str) else None
        if match is None:
            return None
        return cls(SelectionKind(match.group(1)), int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.id}"


def _append_unique(target: List[int], value: int) -> None:
    if value not in target:
        target.append(value)


@dataclass
class Selection:
    folders: List[int] = field(default_factory=list)
    files: List[int] = field(default_factory=list)
    folder_links: List[int] = field(default_factory=list)
    file_links: List[int] = field(default_factory=list)
    url_links: List[int] = field(default_factory=list)

    def add(self, item: SelectionItem) -> None:
        target = {
            SelectionKind.FOLDER: self.folders,
            SelectionKind.FILE: self.files,
            SelectionKind.FOLDER_LINK: self.folder_links,
            SelectionKind.FILE_LINK: self.file_links,
            SelectionKind.URL_LINK: self.url_links,
        }[item.kind]
        _append_unique(target, item.id)

    @property
    def links(self) -> List[int]:
        return [*self.folder_links, *self.file_links, *self.url_links]

    def is_empty(self) -> bool:
        return not (self.folders or self.files or self.links)

    def resolve_link_targets(self, store) -> "Selection":
        """
        Union folder-link/file-link targets into ``folders``/``files``.

        Missing links are skipped; url links have no target to merge.
        """
        for link_id in self.folder_links:
            link = store.get_link(link_id)
            if link is None or link.target_id is None:
                logger.debug(f"Skipping unresolvable folder-link-{link_id}")
                continue
            _append_unique(self.folders, link.target_id)
        for link_id in self.file_links:
            link = store.get_link(link_id)
            if link is None or link.target_id is None:
                logger.debug(f"Skipping unresolvable file-link-{link_id}")
                continue
            _append_unique(self.files, link.target_id)
        return self


def parse_selection(ids: Iterable[str]) -> Selection:
    """Build a Selection from raw tokens; unknown tokens are ignored."""
    selection = Selection()
    for token in ids or ():
        item = SelectionItem.parse(token)
        if item is None:
            logger.debug(f"Ignoring selection token {token!r}")
            continue
        selection.add(item)
    return selection
