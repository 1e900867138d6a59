"""Data models for the file-backed note tree."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import frontmatter
import yaml

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger("notetree.models")

# Logical name of the storage root. Never a physical subdirectory.
DEFAULT_GROUP = "default"

# Attachments live in this hidden directory beside the notes that use them.
ASSETS_DIR = ".assets"


def new_note_id() -> str:
    """Generate a compact note ID: n-<12 hex chars>."""
    return "n-" + uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Note:
    """A note file found by a scan."""

    path: Path                  # physical file path (identity)
    name: str                   # display name: file stem
    group: str                  # logical group path, or DEFAULT_GROUP
    modified: datetime          # last-modified, UTC

    @property
    def in_default_group(self) -> bool:
        return self.group == DEFAULT_GROUP


@dataclass
class Group:
    """A node of the group tree. Built fresh from every scan, never persisted."""

    path: str                                  # full slash-joined logical path
    name: str                                  # leaf segment
    parent: str | None = None                  # parent path, None for top level
    notes: list[Note] = field(default_factory=list)
    children: list[Group] = field(default_factory=list)

    @property
    def is_default(self) -> bool:
        return self.path == DEFAULT_GROUP

    @property
    def is_empty(self) -> bool:
        return not self.notes

    def walk(self) -> Iterator[Group]:
        """Depth-first, pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def note_count(self) -> int:
        """Notes in this group and all descendants."""
        return len(self.notes) + sum(c.note_count() for c in self.children)


@dataclass
class ScanResult:
    """Output of a full tree scan."""

    notes: list[Note] = field(default_factory=list)
    empty_groups: list[str] = field(default_factory=list)

    @property
    def groups(self) -> set[str]:
        """Every non-default group path, populated or empty."""
        found = {n.group for n in self.notes if n.group != DEFAULT_GROUP}
        found.update(self.empty_groups)
        return found

    def notes_in(self, group: str) -> list[Note]:
        return [n for n in self.notes if n.group == group]

    def find(self, name: str, group: str = DEFAULT_GROUP) -> Note | None:
        for n in self.notes:
            if n.name == name and n.group == group:
                return n
        return None


class ChangeKind(enum.Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"
    DIR_ADDED = "dir_added"
    DIR_REMOVED = "dir_removed"
    ERROR = "error"           # watcher failure, e.g. the root disappeared


@dataclass(frozen=True)
class ChangeEvent:
    """One observed file-system change under the store root."""

    kind: ChangeKind
    path: Path
    message: str = ""

    @property
    def is_dir(self) -> bool:
        return self.kind in (ChangeKind.DIR_ADDED, ChangeKind.DIR_REMOVED)


# ---------------------------------------------------------------------------
# Header block
# ---------------------------------------------------------------------------

@dataclass
class NoteDocument:
    """A note file split into its header block and body.

    On-disk layout (header optional):

        ---
        title: Weekly plan
        id: n-3f9a0c1d2e4b
        date: '2026-01-05T09:30:00+00:00'
        ---

        body text...
    """

    body: str = ""
    header: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        value = self.header.get("title")
        return str(value) if value is not None else None

    @property
    def id(self) -> str | None:
        value = self.header.get("id")
        return str(value) if value is not None else None

    @property
    def date(self) -> str | None:
        value = self.header.get("date")
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value) if value is not None else None

    @classmethod
    def parse(cls, text: str) -> NoteDocument:
        """Split text into header and body. A malformed header is kept as body."""
        if not text.startswith("---"):
            return cls(body=text)
        try:
            post = frontmatter.loads(text)
        except yaml.YAMLError:
            logger.debug("unparseable header block, treating note as plain text")
            return cls(body=text)
        metadata = dict(post.metadata or {})
        return cls(body=post.content or "", header=metadata)

    def dumps(self) -> str:
        if not self.header:
            return self.body
        post = frontmatter.Post(self.body, **self.header)
        text = frontmatter.dumps(post, sort_keys=False)
        return text if text.endswith("\n") else text + "\n"


def new_note_content(
    title: str,
    body: str = "",
    note_id: str | None = None,
    date: datetime | None = None,
) -> str:
    """Compose note text with a fresh title/id/date header."""
    header = {
        "title": title,
        "id": note_id or new_note_id(),
        "date": (date or datetime.now(UTC)).isoformat(),
    }
    return NoteDocument(body=body, header=header).dumps()
