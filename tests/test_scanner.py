"""Tests for the full-tree scan and the group forest built from it."""

import os
from datetime import UTC, datetime

import pytest

from notetree.models import DEFAULT_GROUP
from notetree.scanner import build_tree, scan


def _touch(path, text=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestScan:
    def test_empty_root(self, root):
        result = scan(root)
        assert result.notes == []
        assert result.empty_groups == []

    def test_missing_root(self, tmp_path):
        result = scan(tmp_path / "nope")
        assert result.notes == []
        assert result.empty_groups == []

    def test_notes_and_groups(self, root):
        _touch(root / "todo.md")
        _touch(root / "Work" / "plan.md")
        _touch(root / "Work" / "Meetings" / "standup.md")
        (root / "Archive").mkdir()

        result = scan(root)
        found = {(n.group, n.name) for n in result.notes}
        assert found == {
            (DEFAULT_GROUP, "todo"),
            ("Work", "plan"),
            ("Work/Meetings", "standup"),
        }
        assert result.empty_groups == ["Archive"]
        assert result.groups == {"Work", "Work/Meetings", "Archive"}

    def test_intermediate_directories_are_empty_groups(self, root):
        _touch(root / "a" / "b" / "c" / "deep.md")
        result = scan(root)
        assert set(result.empty_groups) == {"a", "a/b"}

    def test_other_extensions_ignored(self, root):
        _touch(root / "image.png")
        _touch(root / "Work" / "readme.txt")
        _touch(root / ".md")
        result = scan(root)
        assert result.notes == []
        assert result.empty_groups == ["Work"]

    def test_extension_case_insensitive(self, root):
        _touch(root / "LOUD.MD")
        result = scan(root)
        assert [n.name for n in result.notes] == ["LOUD"]

    def test_custom_extension(self, root):
        _touch(root / "a.txt")
        _touch(root / "b.md")
        result = scan(root, ".txt")
        assert [n.name for n in result.notes] == ["a"]

    def test_hidden_entries_skipped(self, root):
        _touch(root / ".hidden.md")
        _touch(root / ".git" / "HEAD.md")
        _touch(root / "visible.md")
        result = scan(root)
        assert [n.name for n in result.notes] == ["visible"]
        assert result.empty_groups == []

        shown = scan(root, ignore_hidden=False)
        assert {n.name for n in shown.notes} == {".hidden", "HEAD", "visible"}

    def test_reserved_default_directory_skipped(self, root):
        _touch(root / "default" / "shadow.md")
        _touch(root / "real.md")
        result = scan(root)
        assert [(n.group, n.name) for n in result.notes] == [(DEFAULT_GROUP, "real")]
        assert "default" not in result.empty_groups

    def test_assets_directory_skipped(self, root):
        _touch(root / ".assets" / "readme.md")
        _touch(root / "Work" / ".assets" / "pic.png")
        _touch(root / "Work" / "plan.md")
        result = scan(root, ignore_hidden=False)
        assert [(n.group, n.name) for n in result.notes] == [("Work", "plan")]
        assert result.groups == {"Work"}

    @pytest.mark.skipif(os.sep == "\\", reason="backslash is a separator on Windows")
    def test_backslash_directory_is_one_group(self, root):
        _touch(root / "a\\b" / "x.md")
        result = scan(root)
        assert result.notes[0].group == "a\\b"
        assert result.groups == {"a\\b"}

    def test_nested_default_is_a_normal_group(self, root):
        _touch(root / "Work" / "default" / "x.md")
        result = scan(root)
        assert result.notes[0].group == "Work/default"

    def test_modified_is_utc(self, root):
        path = _touch(root / "todo.md")
        os.utime(path, (1_700_000_000, 1_700_000_000))
        note = scan(root).notes[0]
        assert note.modified == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert note.path == path

    def test_symlinked_directory_not_followed(self, root, tmp_path):
        outside = tmp_path / "outside"
        _touch(outside / "secret.md")
        (root / "link").symlink_to(outside, target_is_directory=True)
        result = scan(root)
        assert result.notes == []


class TestBuildTree:
    def test_default_first_then_sorted(self, root):
        _touch(root / "todo.md")
        _touch(root / "zeta" / "z.md")
        _touch(root / "Alpha" / "a.md")
        (root / "beta").mkdir()

        forest = build_tree(scan(root))
        assert [g.path for g in forest] == [DEFAULT_GROUP, "Alpha", "beta", "zeta"]
        assert forest[0].is_default
        assert [n.name for n in forest[0].notes] == ["todo"]

    def test_nesting(self, root):
        _touch(root / "Work" / "plan.md")
        _touch(root / "Work" / "Meetings" / "standup.md")
        (root / "Work" / "Empty").mkdir()

        forest = build_tree(scan(root))
        work = forest[1]
        assert work.path == "Work"
        assert [c.path for c in work.children] == ["Work/Empty", "Work/Meetings"]
        assert work.children[0].is_empty
        assert work.children[1].parent == "Work"
        assert work.note_count() == 2
        assert [g.path for g in work.walk()] == ["Work", "Work/Empty", "Work/Meetings"]

    def test_empty_store(self, root):
        forest = build_tree(scan(root))
        assert len(forest) == 1
        assert forest[0].is_default
        assert forest[0].is_empty
