"""Change watcher: observes the store root and reports debounced change batches.

    watcher = ChangeWatcher(root, on_change=lambda events: ..., stability_window=1.5)
    watcher.start()
    ...
    watcher.stop()      # no callback fires after this returns

Backends:
    inotify   inotify_simple (Linux). Recursive: a watch per directory, new
              directories are picked up as they appear.
    poll      size/mtime snapshot diff every poll_interval seconds. Used when
              inotify is unavailable (macOS, some containers).

Raw events go through a Coalescer. A batch is released once nothing new
arrived and no pending file changed size or mtime for one stability window,
so a save in progress or a directory created together with its files yields a
single notification. The listing that exists when start() returns is never
reported.

Failures (root removed, unreadable directories, a raising callback) are
logged and the loop keeps running; losing the root is also reported as an
ERROR event.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from notetree.models import ChangeEvent, ChangeKind

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("notetree.watcher")

_DEFAULT_STABILITY_WINDOW = 1.5
_DEFAULT_POLL_INTERVAL = 0.5
_MAX_TICK = 0.1             # seconds between coalescer checks

Signature = tuple[int, int]


def _signature(path: Path) -> Signature | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_size, st.st_mtime_ns)


def _hidden(name: str) -> bool:
    return name.startswith(".")


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------

def _merge(prev: ChangeKind | None, new: ChangeKind) -> ChangeKind | None:
    """Fold a new raw event into the pending kind for the same path. None = cancelled out."""
    if prev is None:
        return new
    if prev is ChangeKind.ADDED and new is ChangeKind.CHANGED:
        return ChangeKind.ADDED
    if prev is ChangeKind.ADDED and new is ChangeKind.REMOVED:
        return None
    if prev is ChangeKind.REMOVED and new in (ChangeKind.ADDED, ChangeKind.CHANGED):
        return ChangeKind.CHANGED
    if prev is ChangeKind.DIR_ADDED and new is ChangeKind.DIR_REMOVED:
        return None
    return new


@dataclass
class _Pending:
    kind: ChangeKind
    signature: Signature | None


class Coalescer:
    """Folds raw events per path and releases them as one batch after a quiet window."""

    def __init__(
        self,
        window: float,
        clock: Callable[[], float] = time.monotonic,
        stat: Callable[[Path], Signature | None] = _signature,
    ) -> None:
        self.window = window
        self._clock = clock
        self._stat = stat
        self._pending: dict[Path, _Pending] = {}
        self._errors: list[ChangeEvent] = []
        self._last_activity: float | None = None

    @property
    def has_pending(self) -> bool:
        return self._last_activity is not None

    def feed(self, event: ChangeEvent) -> None:
        self._last_activity = self._clock()
        if event.kind is ChangeKind.ERROR:
            self._errors.append(event)
            return
        prev = self._pending.get(event.path)
        kind = _merge(prev.kind if prev else None, event.kind)
        if kind is None:
            self._pending.pop(event.path, None)
            return
        sig = self._stat(event.path) if kind in (ChangeKind.ADDED, ChangeKind.CHANGED) else None
        self._pending[event.path] = _Pending(kind, sig)

    def poll(self) -> list[ChangeEvent] | None:
        """Return the batch once it is stable, else None."""
        if self._last_activity is None:
            return None
        now = self._clock()
        for path, pending in self._pending.items():
            if pending.kind not in (ChangeKind.ADDED, ChangeKind.CHANGED):
                continue
            sig = self._stat(path)
            if sig != pending.signature:
                # Still being written
                pending.signature = sig
                self._last_activity = now
        if now - self._last_activity < self.window:
            return None

        batch = [ChangeEvent(p.kind, path) for path, p in self._pending.items()]
        batch.extend(self._errors)
        self.clear()
        return batch or None

    def clear(self) -> None:
        self._pending.clear()
        self._errors.clear()
        self._last_activity = None


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

def _walk(root: Path, ignore_hidden: bool) -> dict[Path, tuple[bool, Signature | None]]:
    """{path: (is_dir, signature)} for everything under root (root excluded)."""
    found: dict[Path, tuple[bool, Signature | None]] = {}
    stack = [root]
    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError:
            continue
        for entry in entries:
            if ignore_hidden and _hidden(entry.name):
                continue
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    found[path] = (True, None)
                    stack.append(path)
                else:
                    st = entry.stat()
                    found[path] = (False, (st.st_size, st.st_mtime_ns))
            except OSError:
                continue
    return found


def _added_events(snapshot: dict[Path, tuple[bool, Signature | None]]) -> list[ChangeEvent]:
    return [
        ChangeEvent(ChangeKind.DIR_ADDED if is_dir else ChangeKind.ADDED, path)
        for path, (is_dir, _) in sorted(snapshot.items())
    ]


# ---------------------------------------------------------------------------
# inotify backend
# ---------------------------------------------------------------------------

class _InotifyBackend:
    name = "inotify"

    def __init__(self, root: Path, ignore_hidden: bool) -> None:
        import inotify_simple  # type: ignore[import]  # raises ImportError off Linux

        self.root = root
        self.ignore_hidden = ignore_hidden
        self._inotify = inotify_simple.INotify()
        self._flags = inotify_simple.flags  # type: ignore[attr-defined]
        f = self._flags
        self._mask = (
            f.CREATE | f.DELETE | f.MODIFY | f.CLOSE_WRITE
            | f.MOVED_FROM | f.MOVED_TO | f.DELETE_SELF | f.MOVE_SELF
        )
        # wd -> watched directory
        self._watched: dict[int, Path] = {}
        self._root_attached = False
        self._attach_root(report=False)

    def _add_watch(self, directory: Path) -> bool:
        try:
            wd = self._inotify.add_watch(str(directory), self._mask)
        except OSError as exc:
            logger.warning("cannot watch %s: %s", directory, exc)
            return False
        self._watched[wd] = directory
        return True

    def _add_tree(self, top: Path, *, report: bool) -> list[ChangeEvent]:
        """Watch top and every directory below it.

        With report=True, return events for whatever already exists inside:
        a directory may be populated before its watch is in place.
        """
        if not self._add_watch(top):
            return []
        events: list[ChangeEvent] = []
        stack = [top]
        while stack:
            directory = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError:
                continue
            for entry in entries:
                if self.ignore_hidden and _hidden(entry.name):
                    continue
                path = Path(entry.path)
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    continue
                if is_dir:
                    if self._add_watch(path):
                        stack.append(path)
                    if report:
                        events.append(ChangeEvent(ChangeKind.DIR_ADDED, path))
                elif report:
                    events.append(ChangeEvent(ChangeKind.ADDED, path))
        return events

    def _attach_root(self, *, report: bool) -> list[ChangeEvent]:
        if not self.root.is_dir():
            return []
        events = self._add_tree(self.root, report=report)
        self._root_attached = any(p == self.root for p in self._watched.values())
        if self._root_attached:
            logger.info("inotify watching %s (%d dirs)", self.root, len(self._watched))
        return events

    def _forget_below(self, top: Path) -> None:
        """Drop watches for a subtree that was moved away."""
        for wd, directory in list(self._watched.items()):
            if directory == top or directory.is_relative_to(top):
                self._watched.pop(wd, None)
                try:
                    self._inotify.rm_watch(wd)
                except OSError:
                    pass

    def read(self, timeout: float) -> list[ChangeEvent]:
        if not self._root_attached:
            if not self.root.is_dir():
                time.sleep(timeout)
                return []
            logger.info("store root is back: %s", self.root)
            return self._attach_root(report=True)

        f = self._flags
        events: list[ChangeEvent] = []
        for event in self._inotify.read(timeout=int(timeout * 1000)):
            if event.mask & f.Q_OVERFLOW:
                events.append(ChangeEvent(ChangeKind.ERROR, self.root, "inotify queue overflowed"))
                continue
            directory = self._watched.get(event.wd)
            if event.mask & f.IGNORED:
                self._watched.pop(event.wd, None)
                continue
            if directory is None:
                continue

            if event.mask & (f.DELETE_SELF | f.MOVE_SELF):
                if directory == self.root:
                    logger.error("store root removed: %s", self.root)
                    self._root_attached = False
                    events.append(ChangeEvent(ChangeKind.ERROR, self.root, "store root removed"))
                continue

            name = event.name
            if not name or (self.ignore_hidden and _hidden(name)):
                continue
            path = directory / name
            is_dir = bool(event.mask & f.ISDIR)

            if event.mask & (f.CREATE | f.MOVED_TO):
                if is_dir:
                    events.append(ChangeEvent(ChangeKind.DIR_ADDED, path))
                    events.extend(self._add_tree(path, report=True))
                else:
                    events.append(ChangeEvent(ChangeKind.ADDED, path))
            elif event.mask & (f.DELETE | f.MOVED_FROM):
                if is_dir:
                    events.append(ChangeEvent(ChangeKind.DIR_REMOVED, path))
                    if event.mask & f.MOVED_FROM:
                        self._forget_below(path)
                else:
                    events.append(ChangeEvent(ChangeKind.REMOVED, path))
            elif not is_dir and event.mask & (f.MODIFY | f.CLOSE_WRITE):
                events.append(ChangeEvent(ChangeKind.CHANGED, path))
        return events

    def close(self) -> None:
        self._inotify.close()


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

class _PollBackend:
    name = "poll"

    def __init__(self, root: Path, ignore_hidden: bool, interval: float = _DEFAULT_POLL_INTERVAL) -> None:
        self.root = root
        self.ignore_hidden = ignore_hidden
        self.interval = interval
        self._root_present = root.is_dir()
        self._seen = _walk(root, ignore_hidden) if self._root_present else {}
        self._next_poll = time.monotonic() + interval
        logger.info("polling %s every %.2fs", root, interval)

    def read(self, timeout: float) -> list[ChangeEvent]:
        wait = self._next_poll - time.monotonic()
        if wait > 0:
            time.sleep(min(wait, timeout))
            if time.monotonic() < self._next_poll:
                return []
        self._next_poll = time.monotonic() + self.interval

        if not self.root.is_dir():
            if self._root_present:
                logger.error("store root removed: %s", self.root)
                self._root_present = False
                self._seen = {}
                return [ChangeEvent(ChangeKind.ERROR, self.root, "store root removed")]
            return []
        if not self._root_present:
            logger.info("store root is back: %s", self.root)
            self._root_present = True

        current = _walk(self.root, self.ignore_hidden)
        events: list[ChangeEvent] = []
        for path, (is_dir, sig) in current.items():
            before = self._seen.get(path)
            if before is None:
                events.append(ChangeEvent(ChangeKind.DIR_ADDED if is_dir else ChangeKind.ADDED, path))
            elif before[0] != is_dir:
                events.append(ChangeEvent(ChangeKind.DIR_REMOVED if before[0] else ChangeKind.REMOVED, path))
                events.append(ChangeEvent(ChangeKind.DIR_ADDED if is_dir else ChangeKind.ADDED, path))
            elif not is_dir and before[1] != sig:
                events.append(ChangeEvent(ChangeKind.CHANGED, path))
        for path, (was_dir, _) in self._seen.items():
            if path not in current:
                events.append(ChangeEvent(ChangeKind.DIR_REMOVED if was_dir else ChangeKind.REMOVED, path))
        self._seen = current
        return events

    def close(self) -> None:
        self._seen = {}


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------

class ChangeWatcher:
    """Background watcher for one store root."""

    def __init__(
        self,
        root: Path | str,
        on_change: Callable[[list[ChangeEvent]], None],
        *,
        stability_window: float = _DEFAULT_STABILITY_WINDOW,
        backend: str = "auto",
        poll_interval: float = _DEFAULT_POLL_INTERVAL,
        ignore_hidden: bool = True,
    ) -> None:
        if backend not in ("auto", "inotify", "poll"):
            msg = f"unknown watcher backend: {backend!r}"
            raise ValueError(msg)
        self.root = Path(root)
        self.on_change = on_change
        self.stability_window = stability_window
        self.backend = backend
        self.poll_interval = poll_interval
        self.ignore_hidden = ignore_hidden
        self._tick = min(_MAX_TICK, max(stability_window / 4, 0.01))
        self._impl: _InotifyBackend | _PollBackend | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._emit_lock = threading.RLock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def backend_name(self) -> str | None:
        return self._impl.name if self._impl is not None else None

    def _make_backend(self) -> _InotifyBackend | _PollBackend:
        if self.backend in ("auto", "inotify"):
            try:
                return _InotifyBackend(self.root, self.ignore_hidden)
            except (ImportError, OSError) as exc:
                if self.backend == "inotify":
                    raise
                logger.warning("inotify not available (%s), falling back to polling", exc)
        return _PollBackend(self.root, self.ignore_hidden, self.poll_interval)

    def start(self) -> None:
        """Attach to the root and start the background thread.

        The existing contents are recorded before this returns, so only later
        changes are reported.
        """
        if self.running:
            return
        stop = threading.Event()
        impl = self._make_backend()
        self._stop = stop
        self._impl = impl
        self._thread = threading.Thread(
            target=self._run, args=(impl, stop), name=f"notetree-watcher:{self.root.name}", daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop watching. No callback fires after this returns.

        A callback already running is waited for, however long it takes;
        timeout bounds only the wait for the thread to exit afterwards.
        """
        self._stop.set()
        with self._emit_lock:
            pass
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("watcher thread did not exit within %.1fs", timeout or 0.0)
        self._thread = None

    def __enter__(self) -> ChangeWatcher:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def _run(self, impl: _InotifyBackend | _PollBackend, stop: threading.Event) -> None:
        coalescer = Coalescer(self.stability_window)
        try:
            while not stop.is_set():
                try:
                    raw = impl.read(self._tick)
                except Exception:
                    logger.exception("watch backend failed on %s", self.root)
                    raw = []
                    stop.wait(self._tick)
                for event in raw:
                    logger.debug("raw %s %s", event.kind.value, event.path)
                    coalescer.feed(event)
                batch = coalescer.poll()
                if batch:
                    self._emit(batch, stop)
        finally:
            coalescer.clear()
            try:
                impl.close()
            except OSError:
                logger.exception("failed to close watch backend")

    def _emit(self, batch: list[ChangeEvent], stop: threading.Event) -> None:
        # stop() takes the same lock, so once it returns no emit can begin.
        with self._emit_lock:
            if stop.is_set():
                return
            logger.info("%d change(s) under %s", len(batch), self.root)
            try:
                self.on_change(batch)
            except Exception:
                logger.exception("change callback failed")


__all__ = ["ChangeWatcher", "Coalescer"]
