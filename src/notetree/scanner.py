"""Full recursive scan of the store root.

A scan is the only way the in-memory view is built: nothing is patched
incrementally, every consumer re-scans when told something changed.

    result = scan(root)
    result.notes          # every note file, tagged with its logical group
    result.empty_groups   # directories with no notes directly inside
    build_tree(result)    # group forest, default group first
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from notetree.errors import StoreError
from notetree.models import ASSETS_DIR, DEFAULT_GROUP, Group, Note, ScanResult
from notetree.paths import ancestors, check_segment, split_group

logger = logging.getLogger("notetree.scanner")


def _child_group(group: str, name: str) -> str:
    return name if group == DEFAULT_GROUP else f"{group}/{name}"


def scan(root: Path, extension: str = ".md", *, ignore_hidden: bool = True) -> ScanResult:
    """Walk root and return every note plus every directory holding no notes directly."""
    if not root.is_dir():
        logger.warning("store root missing: %s", root)
        return ScanResult()

    ext = extension.lower()
    notes: list[Note] = []
    empty: set[str] = set()

    stack: list[tuple[Path, str]] = [(root, DEFAULT_GROUP)]
    while stack:
        directory, group = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as exc:
            logger.warning("cannot read %s: %s", directory, exc)
            if group != DEFAULT_GROUP:
                empty.add(group)
            continue

        direct = 0
        for entry in entries:
            if ignore_hidden and entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    if group == DEFAULT_GROUP and entry.name == DEFAULT_GROUP:
                        logger.warning("skipping %s: name is reserved for the root group", entry.path)
                        continue
                    if entry.name == ASSETS_DIR:
                        continue
                    try:
                        check_segment(entry.name)
                    except StoreError:
                        logger.warning("skipping %s: name cannot be addressed as a group", entry.path)
                        continue
                    stack.append((Path(entry.path), _child_group(group, entry.name)))
                elif entry.is_file() and entry.name.lower().endswith(ext) and len(entry.name) > len(ext):
                    st = entry.stat()
                    notes.append(Note(
                        path=Path(entry.path),
                        name=entry.name[: -len(ext)],
                        group=group,
                        modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
                    ))
                    direct += 1
            except OSError:
                # Removed between listing and stat
                logger.debug("vanished during scan: %s", entry.path)

        if direct == 0 and group != DEFAULT_GROUP:
            empty.add(group)

    # Ancestors of populated groups hold no notes of their own but must still
    # appear so the tree has no orphaned branches.
    note_groups = {n.group for n in notes}
    for group in note_groups:
        if group == DEFAULT_GROUP:
            continue
        for parent in ancestors(group):
            if parent not in note_groups:
                empty.add(parent)

    notes.sort(key=lambda n: (n.group.lower(), n.name.lower()))
    logger.debug("scanned %s: %d notes, %d empty groups", root, len(notes), len(empty))
    return ScanResult(notes=notes, empty_groups=sorted(empty, key=str.lower))


def build_tree(result: ScanResult) -> list[Group]:
    """Group forest for a scan: the default group first, then top-level groups by name."""
    default = Group(path=DEFAULT_GROUP, name=DEFAULT_GROUP)
    nodes: dict[str, Group] = {}

    def ensure(path: str) -> Group:
        node = nodes.get(path)
        if node is not None:
            return node
        parent, leaf = split_group(path)
        node = Group(path=path, name=leaf, parent=parent)
        nodes[path] = node
        if parent is not None:
            ensure(parent).children.append(node)
        return node

    for path in sorted(result.groups):
        ensure(path)
    for note in result.notes:
        target = default if note.group == DEFAULT_GROUP else ensure(note.group)
        target.notes.append(note)

    for node in (default, *nodes.values()):
        node.children.sort(key=lambda g: g.name.lower())
        node.notes.sort(key=lambda n: n.name.lower())

    top = sorted((g for g in nodes.values() if g.parent is None), key=lambda g: g.name.lower())
    return [default, *top]


__all__ = ["build_tree", "scan"]
