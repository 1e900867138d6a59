"""Logical group paths <-> physical directories.

A group path is a slash-joined list of directory names relative to the store
root ("Work/Meetings"). The root itself is the default group, spelled
DEFAULT_GROUP ("default"), "" or None on input and always DEFAULT_GROUP on
output.

Two levels of name checks:
    check_segment   an existing name, judged by the local file system's rules
                    only, so every directory a scan reports can be addressed
    validate_name   a name the store is about to create: additionally portable
                    (no Windows-reserved characters, no edge whitespace)

'/' is the only separator, plus '\\' where the OS uses it.

Everything here raises StoreError; NoteStore turns those into Results.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from notetree.errors import ErrorKind, StoreError
from notetree.models import DEFAULT_GROUP

_INVALID_CHARS = frozenset('\\:*?"<>|')
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_MAX_NAME_BYTES = 255
_WINDOWS = os.sep == "\\"


# ---------------------------------------------------------------------------
# Names and logical paths
# ---------------------------------------------------------------------------

def check_segment(name: str) -> str:
    """Validate one segment of a path to something that may already exist."""
    if not name or name in (".", ".."):
        raise StoreError(ErrorKind.INVALID_PATH, "Path segment must not be empty or a relative reference", name)
    if "/" in name or "\0" in name or (_WINDOWS and "\\" in name):
        raise StoreError(ErrorKind.INVALID_PATH, "Path segment contains a separator", name)
    if len(name.encode("utf-8", "surrogateescape")) > _MAX_NAME_BYTES:
        raise StoreError(ErrorKind.INVALID_PATH, "Name is too long", name)
    return name


def validate_name(name: str) -> str:
    """Validate a new note or group name (one path segment). Returns it stripped."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise StoreError(ErrorKind.INVALID_PATH, "Name must not be empty", name)
    if cleaned in (".", ".."):
        raise StoreError(ErrorKind.INVALID_PATH, "Name must not be a relative directory reference", name)
    if "/" in cleaned:
        raise StoreError(ErrorKind.INVALID_PATH, "Name must not contain '/'", name)
    if any(ch in _INVALID_CHARS or ord(ch) < 32 for ch in cleaned):
        raise StoreError(ErrorKind.INVALID_PATH, "Name contains invalid characters", name)
    return check_segment(cleaned)


def _check_new_segment(segment: str) -> None:
    if segment != segment.strip():
        raise StoreError(ErrorKind.INVALID_PATH, "Name must not start or end with whitespace", segment)
    validate_name(segment)


def _segments(raw: str) -> list[str]:
    if _WINDOWS:
        raw = raw.replace("\\", "/")
    return [seg for seg in raw.split("/") if seg]


def normalize_group_path(group_path: str | None) -> str:
    """Canonical form of a group path: '/'-joined, no empty segments, DEFAULT_GROUP for root."""
    if group_path is None or not group_path.strip():
        return DEFAULT_GROUP
    if group_path.startswith("/") or (_WINDOWS and (group_path.startswith("\\") or _DRIVE_RE.match(group_path))):
        raise StoreError(ErrorKind.INVALID_PATH, "Group path must be relative", group_path)
    parts = _segments(group_path)
    if not parts or parts == [DEFAULT_GROUP]:
        return DEFAULT_GROUP
    return "/".join(check_segment(seg) for seg in parts)


def is_default(group_path: str | None) -> bool:
    return normalize_group_path(group_path) == DEFAULT_GROUP


def is_reserved(group_path: str) -> bool:
    """True for paths below a top-level directory that would shadow DEFAULT_GROUP."""
    parts = group_path.split("/")
    return len(parts) > 1 and parts[0] == DEFAULT_GROUP


def split_group(group_path: str) -> tuple[str | None, str]:
    """('Work/Meetings') -> ('Work', 'Meetings'); top level -> (None, leaf)."""
    parent, _, leaf = group_path.rpartition("/")
    return (parent or None), leaf


def join_group(parent: str | None, leaf: str) -> str:
    if parent is None or parent == DEFAULT_GROUP or parent == "":
        return leaf
    return f"{parent}/{leaf}"


def is_same_or_descendant(candidate: str, ancestor: str) -> bool:
    """Segment-aware prefix test: 'Work/A' is below 'Work', 'Workshop' is not."""
    return candidate == ancestor or candidate.startswith(ancestor + "/")


def ancestors(group_path: str) -> list[str]:
    """'a/b/c' -> ['a', 'a/b'] (proper ancestors, shallowest first)."""
    parts = group_path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def note_file_name(name: str, extension: str) -> str:
    """Append the note extension unless the name already carries it."""
    cleaned = validate_name(name)
    if cleaned.lower().endswith(extension.lower()) and len(cleaned) > len(extension):
        return cleaned
    return cleaned + extension


# ---------------------------------------------------------------------------
# Logical <-> physical
# ---------------------------------------------------------------------------

def _ensure_inside(root: Path, target: Path, original: str | Path) -> None:
    root_resolved = root.resolve()
    if not target.resolve().is_relative_to(root_resolved):
        raise StoreError(ErrorKind.INVALID_PATH, "Path escapes the store root", original)


def group_dir(root: Path, group_path: str | None) -> Path:
    """Physical directory for a group path, without touching the file system."""
    normalized = normalize_group_path(group_path)
    if normalized == DEFAULT_GROUP:
        return root
    target = root.joinpath(*normalized.split("/"))
    _ensure_inside(root, target, normalized)
    return target


def resolve_group_dir(root: Path, group_path: str | None, *, create: bool = True) -> Path:
    """Physical directory for a group path, creating missing directories (idempotent).

    Raises StoreError(INVALID_PATH) for escapes and for missing segments that
    are not portable names, StoreError(PROTECTED_GROUP) for paths under a
    top-level 'default' directory.
    """
    normalized = normalize_group_path(group_path)
    if is_reserved(normalized):
        raise StoreError(ErrorKind.PROTECTED_GROUP, f"'{DEFAULT_GROUP}' is reserved for the root group", normalized)
    target = group_dir(root, normalized)
    if create and target != root:
        current = root
        for segment in normalized.split("/"):
            current = current / segment
            if not current.exists():
                _check_new_segment(segment)
        target.mkdir(parents=True, exist_ok=True)
    return target


def relative_group_path(root: Path, absolute_path: str | Path) -> str:
    """Logical group path of a directory under root. The root maps to DEFAULT_GROUP."""
    path = Path(absolute_path)
    try:
        rel = path.relative_to(root)
    except ValueError:
        try:
            rel = path.resolve().relative_to(root.resolve())
        except ValueError:
            raise StoreError(ErrorKind.INVALID_PATH, "Path is outside the store root", path) from None
    if rel == Path("."):
        return DEFAULT_GROUP
    return rel.as_posix()


def resolve_note_path(root: Path, note_path: str | Path) -> Path:
    """Absolute path of a note given as an absolute path or relative to root."""
    raw = Path(note_path)
    if not raw.is_absolute():
        parts = _segments(str(note_path))
        if not parts or any(part in ("..", ".") for part in parts):
            raise StoreError(ErrorKind.INVALID_PATH, "Note path must not contain '..'", note_path)
        raw = root.joinpath(*parts)
    _ensure_inside(root, raw.parent, note_path)
    return raw


__all__ = [
    "ancestors",
    "check_segment",
    "group_dir",
    "is_default",
    "is_reserved",
    "is_same_or_descendant",
    "join_group",
    "normalize_group_path",
    "note_file_name",
    "relative_group_path",
    "resolve_group_dir",
    "resolve_note_path",
    "split_group",
    "validate_name",
]
