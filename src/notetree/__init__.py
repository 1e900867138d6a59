"""File-based note tree: directories are groups, files are notes.

Layout:
    notes/                  # store root = the default group
        todo.md             # note in the default group
        Work/               # group "Work"
            plan.md
            Meetings/       # group "Work/Meetings"
                standup.md
        Archive/            # empty group: a directory with no notes in it

Note files are UTF-8 text with an optional header block:
    ---
    title: Weekly plan
    id: n-<12hex>
    date: '2026-01-05T09:30:00+00:00'
    ---

    body...

The file system is the only source of truth. Every view is a fresh scan;
the watcher only says when to scan again.
"""

from notetree.config import NoteTreeConfig, init_config, load_config
from notetree.errors import ErrorKind, Result, StoreError
from notetree.models import (
    DEFAULT_GROUP,
    ChangeEvent,
    ChangeKind,
    Group,
    Note,
    NoteDocument,
    ScanResult,
    new_note_content,
)
from notetree.store import NoteStore, Subscription
from notetree.watcher import ChangeWatcher

__all__ = [
    "DEFAULT_GROUP",
    "ChangeEvent",
    "ChangeKind",
    "ChangeWatcher",
    "ErrorKind",
    "Group",
    "Note",
    "NoteDocument",
    "NoteStore",
    "NoteTreeConfig",
    "Result",
    "ScanResult",
    "StoreError",
    "Subscription",
    "init_config",
    "load_config",
    "new_note_content",
]
