"""Tests for the change watcher: coalescing, backends and the store's notification sink."""

import threading
import time
from pathlib import Path

import pytest

from notetree.models import ChangeEvent, ChangeKind
from notetree.watcher import ChangeWatcher, Coalescer


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class Recorder:
    """Thread-safe collector of change batches."""

    def __init__(self):
        self.batches = []
        self._lock = threading.Lock()
        self._event = threading.Event()

    def __call__(self, events):
        with self._lock:
            self.batches.append(list(events))
        self._event.set()

    def wait(self, timeout=5.0):
        ok = self._event.wait(timeout)
        self._event.clear()
        return ok

    @property
    def count(self):
        with self._lock:
            return len(self.batches)

    def paths(self):
        with self._lock:
            return {e.path for batch in self.batches for e in batch}


def wait_until(predicate, timeout=5.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# ---------------------------------------------------------------------------
# Coalescer
# ---------------------------------------------------------------------------


class TestCoalescer:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def sigs(self):
        return {}

    @pytest.fixture
    def coalescer(self, clock, sigs):
        return Coalescer(1.0, clock=clock, stat=lambda p: sigs.get(p))

    def test_nothing_pending(self, coalescer):
        assert coalescer.poll() is None
        assert not coalescer.has_pending

    def test_released_after_window(self, coalescer, clock):
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, Path("/r/a.md")))
        clock.advance(0.5)
        assert coalescer.poll() is None
        clock.advance(0.6)
        batch = coalescer.poll()
        assert batch == [ChangeEvent(ChangeKind.ADDED, Path("/r/a.md"))]
        assert coalescer.poll() is None

    def test_new_events_extend_window(self, coalescer, clock):
        coalescer.feed(ChangeEvent(ChangeKind.DIR_ADDED, Path("/r/X")))
        clock.advance(0.8)
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, Path("/r/X/a.md")))
        clock.advance(0.8)
        assert coalescer.poll() is None
        clock.advance(0.3)
        batch = coalescer.poll()
        assert {e.kind for e in batch} == {ChangeKind.DIR_ADDED, ChangeKind.ADDED}

    def test_growing_file_holds_batch(self, coalescer, clock, sigs):
        path = Path("/r/big.md")
        sigs[path] = (10, 1)
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, path))
        clock.advance(0.9)
        sigs[path] = (20, 2)
        assert coalescer.poll() is None
        clock.advance(0.9)
        assert coalescer.poll() is None
        clock.advance(0.2)
        assert coalescer.poll() == [ChangeEvent(ChangeKind.ADDED, path)]

    def test_added_then_changed_is_added(self, coalescer, clock):
        path = Path("/r/a.md")
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, path))
        coalescer.feed(ChangeEvent(ChangeKind.CHANGED, path))
        clock.advance(2)
        assert coalescer.poll() == [ChangeEvent(ChangeKind.ADDED, path)]

    def test_added_then_removed_cancels(self, coalescer, clock):
        path = Path("/r/tmp.md")
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, path))
        coalescer.feed(ChangeEvent(ChangeKind.REMOVED, path))
        clock.advance(2)
        assert coalescer.poll() is None
        assert not coalescer.has_pending

    def test_removed_then_added_is_changed(self, coalescer, clock):
        path = Path("/r/a.md")
        coalescer.feed(ChangeEvent(ChangeKind.REMOVED, path))
        coalescer.feed(ChangeEvent(ChangeKind.ADDED, path))
        clock.advance(2)
        assert coalescer.poll() == [ChangeEvent(ChangeKind.CHANGED, path)]

    def test_errors_delivered(self, coalescer, clock):
        coalescer.feed(ChangeEvent(ChangeKind.ERROR, Path("/r"), "store root removed"))
        clock.advance(2)
        batch = coalescer.poll()
        assert [e.kind for e in batch] == [ChangeKind.ERROR]
        assert batch[0].message == "store root removed"


# ---------------------------------------------------------------------------
# ChangeWatcher
# ---------------------------------------------------------------------------


def test_unknown_backend(root):
    with pytest.raises(ValueError):
        ChangeWatcher(root, lambda events: None, backend="fsevents")


class _WatcherContract:
    backend = "poll"

    @pytest.fixture
    def recorder(self):
        return Recorder()

    @pytest.fixture
    def watcher(self, root, recorder):
        w = ChangeWatcher(root, recorder, stability_window=0.3, backend=self.backend, poll_interval=0.05)
        w.start()
        yield w
        w.stop()

    def test_no_initial_burst(self, root, recorder):
        (root / "existing.md").write_text("x")
        (root / "Group").mkdir()
        w = ChangeWatcher(root, recorder, stability_window=0.2, backend=self.backend, poll_interval=0.05)
        with w:
            time.sleep(0.8)
        assert recorder.count == 0

    def test_dir_with_file_is_one_batch(self, root, recorder, watcher):
        assert watcher.backend_name == self.backend
        external = root / "External"
        external.mkdir()
        (external / "note.md").write_text("hello")

        assert recorder.wait(5.0)
        time.sleep(0.6)
        assert recorder.count == 1
        assert {external, external / "note.md"} <= recorder.paths()

    def test_removal(self, root, recorder, watcher):
        path = root / "gone.md"
        path.write_text("x")
        assert recorder.wait(5.0)
        path.unlink()
        assert recorder.wait(5.0)
        kinds = [e.kind for e in recorder.batches[-1]]
        assert kinds == [ChangeKind.REMOVED]

    def test_hidden_ignored(self, root, recorder, watcher):
        (root / ".swap").write_text("x")
        time.sleep(0.8)
        assert recorder.count == 0

    def test_no_callback_after_stop(self, root, recorder, watcher):
        (root / "late.md").write_text("x")
        watcher.stop()
        count = recorder.count
        time.sleep(0.8)
        assert recorder.count == count
        assert not watcher.running

    def test_stop_waits_for_slow_callback(self, root):
        entered, finished = threading.Event(), threading.Event()
        calls = []

        def slow(events):
            calls.append(events)
            entered.set()
            time.sleep(0.5)
            finished.set()

        w = ChangeWatcher(root, slow, stability_window=0.2, backend=self.backend, poll_interval=0.05)
        w.start()
        (root / "first.md").write_text("1")
        assert entered.wait(5.0)
        w.stop(timeout=0.01)
        assert finished.is_set()

        (root / "second.md").write_text("2")
        (root / "third.md").write_text("3")
        time.sleep(0.8)
        assert len(calls) == 1

    def test_stop_from_inside_callback(self, root):
        calls = []
        w = ChangeWatcher(root, None, stability_window=0.2, backend=self.backend, poll_interval=0.05)

        def stop_self(events):
            calls.append(events)
            w.stop()

        w.on_change = stop_self
        w.start()
        (root / "one.md").write_text("1")
        assert wait_until(lambda: not w.running)
        (root / "two.md").write_text("2")
        time.sleep(0.6)
        assert len(calls) == 1

    def test_raising_callback_keeps_watching(self, root):
        calls = []

        def boom(events):
            calls.append(events)
            raise RuntimeError("subscriber bug")

        w = ChangeWatcher(root, boom, stability_window=0.2, backend=self.backend, poll_interval=0.05)
        with w:
            (root / "one.md").write_text("1")
            assert wait_until(lambda: len(calls) == 1)
            (root / "two.md").write_text("2")
            assert wait_until(lambda: len(calls) == 2)
            assert w.running


class TestPollWatcher(_WatcherContract):
    backend = "poll"

    def test_root_removed_reports_error(self, tmp_path, recorder):
        root = tmp_path / "vanishing"
        root.mkdir()
        w = ChangeWatcher(root, recorder, stability_window=0.2, backend="poll", poll_interval=0.05)
        with w:
            root.rmdir()
            assert recorder.wait(5.0)
            assert [e.kind for e in recorder.batches[0]] == [ChangeKind.ERROR]
            assert w.running


class TestInotifyWatcher(_WatcherContract):
    backend = "inotify"

    @pytest.fixture(autouse=True)
    def _needs_inotify(self):
        pytest.importorskip("inotify_simple")


# ---------------------------------------------------------------------------
# NoteStore notification sink
# ---------------------------------------------------------------------------


class TestStoreNotifications:
    def test_external_group_scenario(self, store):
        recorder = Recorder()
        store.on_change(recorder)
        store.start_watching()

        external = store.root / "External"
        external.mkdir()
        (external / "found.md").write_text("hi")

        assert recorder.wait(5.0)
        time.sleep(0.6)
        assert recorder.count == 1
        result = store.scan()
        assert result.find("found", "External") is not None

    def test_store_operations_are_reported(self, store):
        recorder = Recorder()
        store.on_change(recorder)
        store.start_watching()
        note = store.create_note("a", "Work", "x").unwrap()
        assert recorder.wait(5.0)
        assert note.path in recorder.paths()

    def test_cancel(self, store):
        kept, dropped = Recorder(), Recorder()
        store.on_change(kept)
        sub = store.on_change(dropped)
        sub.cancel()
        assert not sub.active
        sub.cancel()

        with store:
            store.start_watching()
            store.create_note("a").unwrap()
            assert kept.wait(5.0)
        assert dropped.count == 0
        assert not store.watching

    def test_failing_subscriber_isolated(self, store):
        good = Recorder()

        def bad(events):
            raise RuntimeError("nope")

        store.on_change(bad)
        store.on_change(good)
        store.start_watching()
        store.create_note("a").unwrap()
        assert good.wait(5.0)

    def test_start_is_idempotent(self, store):
        first = store.start_watching()
        assert store.start_watching() is first
        store.stop_watching()
        store.stop_watching()
        assert not store.watching
