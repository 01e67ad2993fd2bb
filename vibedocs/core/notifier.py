"""
Filesystem change notification and live-reload fan-out.

The watchdog handler only classifies events and puts them on a bounded queue.
A single dispatcher thread drains the queue, coalesces bursts, rebuilds the
search index once per burst and then broadcasts to connected clients.
"""

import json
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .paths import canonical, is_markdown, is_within, relative_posix
from .search import SearchIndex
from .tree import EXCLUDED_DIRS, is_excluded_name

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.2
DEFAULT_QUEUE_SIZE = 256


class ChangeKind(Enum):
    CREATED = 'created'
    MODIFIED = 'modified'
    DELETED = 'deleted'
    TREE = 'tree'  # tree changed without a specific watched file (uploads, folder removals)


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: str = ''


class WatcherState(Enum):
    ACTIVE = 'active'
    STOPPED = 'stopped'


class ClientHub:
    """The set of open live-reload connections."""

    def __init__(self):
        self._clients = set()
        self._lock = threading.Lock()

    def add(self, client) -> None:
        with self._lock:
            self._clients.add(client)
        logger.debug(f"Live-reload client connected ({len(self)} open)")

    def discard(self, client) -> None:
        with self._lock:
            self._clients.discard(client)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def broadcast(self, message: Dict[str, Any]) -> int:
        """Send to every client; failing clients are dropped. Returns the delivery count."""
        data = json.dumps(message)
        with self._lock:
            clients = list(self._clients)

        delivered = 0
        for client in clients:
            try:
                client.send(data)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping live-reload client after send failure: {e}")
                self.discard(client)
        return delivered


class MarkdownEventHandler(FileSystemEventHandler):
    """Translate watchdog events under ``root`` into ``ChangeEvent`` items."""

    def __init__(self, root: str, notifier: 'ChangeNotifier',
                 excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS):
        super().__init__()
        self.root = canonical(root)
        self.notifier = notifier
        self.excluded_dirs = excluded_dirs

    def _watched_relative(self, raw_path) -> Optional[str]:
        """Root-relative path if ``raw_path`` is under the root and not excluded."""
        if isinstance(raw_path, bytes):
            raw_path = os.fsdecode(raw_path)
        path = os.path.abspath(raw_path)
        if path == self.root or not is_within(path, self.root):
            return None
        rel_path = relative_posix(path, self.root)
        for part in rel_path.split('/'):
            if is_excluded_name(part, self.excluded_dirs):
                return None
        return rel_path

    def relevant_path(self, raw_path) -> Optional[str]:
        """Root-relative path of a watched markdown file, or None."""
        rel_path = self._watched_relative(raw_path)
        if rel_path is None or not is_markdown(rel_path):
            return None
        return rel_path

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            self._on_directory_event(event)
            return

        if event.event_type == 'moved':
            src = self.relevant_path(event.src_path)
            dest = self.relevant_path(event.dest_path)
            if src:
                self._emit(ChangeKind.DELETED, src)
            if dest:
                self._emit(ChangeKind.CREATED, dest)
            return

        kind = {
            'created': ChangeKind.CREATED,
            'modified': ChangeKind.MODIFIED,
            'deleted': ChangeKind.DELETED,
        }.get(event.event_type)
        if kind is None:
            return
        rel_path = self.relevant_path(event.src_path)
        if rel_path:
            self._emit(kind, rel_path)

    def _on_directory_event(self, event: FileSystemEvent):
        # A folder moved out of the root arrives as one event with no per-file deletes
        if event.event_type not in ('deleted', 'moved'):
            return
        paths = [self._watched_relative(event.src_path)]
        if event.event_type == 'moved':
            paths.append(self._watched_relative(event.dest_path))
        rel_path = next((p for p in paths if p), None)
        if rel_path is None:
            return
        logger.info(f"folder:  {rel_path} ({event.event_type})")
        self.notifier.submit(ChangeEvent(ChangeKind.TREE, rel_path))

    def _emit(self, kind: ChangeKind, rel_path: str):
        label = {
            ChangeKind.CREATED: 'added:  ',
            ChangeKind.MODIFIED: 'changed:',
            ChangeKind.DELETED: 'removed:',
        }[kind]
        logger.info(f"{label} {rel_path}")
        self.notifier.submit(ChangeEvent(kind, rel_path))


_STOP = object()


class ChangeNotifier:
    """Owns the watcher, the event queue and the dispatcher thread."""

    def __init__(self, root: str, index: SearchIndex, hub: ClientHub,
                 excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 queue_size: int = DEFAULT_QUEUE_SIZE,
                 observer_class: Callable[[], BaseObserver] = Observer):
        self.root = canonical(root)
        self.index = index
        self.hub = hub
        self.debounce_seconds = debounce_seconds
        self.handler = MarkdownEventHandler(self.root, self, excluded_dirs)
        self.state = WatcherState.STOPPED
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._overflow = threading.Event()
        self._observer: Optional[BaseObserver] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._observer_class = observer_class

    def start(self, watch: bool = True) -> None:
        """Start the dispatcher and, unless ``watch`` is False, the filesystem observer."""
        with self._state_lock:
            if self.state is WatcherState.ACTIVE:
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name='vibedocs-dispatcher', daemon=True)
            self._dispatcher.start()

            if watch and os.path.isdir(self.root):
                self._observer = self._start_observer()
            elif watch:
                logger.warning(f"Projects root {self.root} does not exist, file watching disabled")

            self.state = WatcherState.ACTIVE

    def _start_observer(self) -> Optional[BaseObserver]:
        observer = self._observer_class()
        try:
            observer.schedule(self.handler, self.root, recursive=True)
            observer.start()
        except Exception as e:
            # Uploads still refresh clients through the dispatcher
            logger.error(f"Failed to start file watcher on {self.root}: {e}")
            logger.debug("Observer start failed", exc_info=True)
            return None
        logger.info(f"Watching {self.root} for markdown changes")
        return observer

    def stop(self) -> None:
        with self._state_lock:
            if self.state is WatcherState.STOPPED:
                return
            self.state = WatcherState.STOPPED

            if self._observer is not None:
                self._observer.stop()
                self._observer.join(timeout=5)
                self._observer = None

            if self._dispatcher is not None:
                try:
                    self._queue.put(_STOP, timeout=5)
                except queue.Full:
                    logger.warning("Event queue full during shutdown, dispatcher left running")
                else:
                    self._dispatcher.join(timeout=5)
                self._dispatcher = None
        logger.info("Change notifier stopped")

    def submit(self, event: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # The pending burst rebuilds anyway; make it refresh the tree too
            self._overflow.set()
            logger.warning(f"Change queue full, dropped {event.kind.value} event for {event.path}")

    def notify_tree_changed(self) -> None:
        self.submit(ChangeEvent(ChangeKind.TREE))

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            batch = [item]
            stopping = self._drain(batch)
            try:
                self.process_events(batch)
            except Exception:
                logger.exception("Failed to process change events")
            if stopping:
                return

    def _drain(self, batch: List[ChangeEvent]) -> bool:
        """Collect events arriving within the debounce window. True if stop was requested."""
        deadline = time.monotonic() + self.debounce_seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                return False
            if item is _STOP:
                return True
            batch.append(item)

    def process_events(self, events: List[ChangeEvent]) -> None:
        """Rebuild the index once, then broadcast reloads and at most one tree refresh.

        Editors that save by replacing the file report a delete and a create
        instead of a modify, so every modified or created document that exists
        once the batch settles gets a ``reload``.
        """
        tree_changed = self._overflow.is_set()
        self._overflow.clear()

        candidates: List[str] = []
        for event in events:
            if event.kind is not ChangeKind.MODIFIED:
                tree_changed = True
            if event.kind in (ChangeKind.MODIFIED, ChangeKind.CREATED) and event.path not in candidates:
                candidates.append(event.path)

        self.index.rebuild(self.root)

        for path in candidates:
            if not os.path.isfile(os.path.join(self.root, *path.split('/'))):
                continue
            self.hub.broadcast({'type': 'reload', 'path': path})
        if tree_changed:
            self.hub.broadcast({'type': 'refresh-tree'})
