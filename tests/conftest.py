"""Common test fixtures for notetree."""

import pytest

from notetree.store import NoteStore


@pytest.fixture
def root(tmp_path):
    """An empty store root."""
    path = tmp_path / "notes"
    path.mkdir()
    return path


@pytest.fixture
def store(root):
    """A NoteStore over the empty root, watching with the poll backend."""
    s = NoteStore(root, stability_window=0.3, watch_backend="poll", poll_interval=0.05)
    yield s
    s.stop_watching()


@pytest.fixture
def populated(store):
    """Store with a small tree:

        todo.md
        Work/plan.md
        Work/Meetings/standup.md
        Archive/            (empty)
    """
    store.create_note("todo", None, "buy milk").unwrap()
    store.create_note("plan", "Work", "q3 plan").unwrap()
    store.create_note("standup", "Work/Meetings", "notes").unwrap()
    store.create_group("Archive").unwrap()
    return store

