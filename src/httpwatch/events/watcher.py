"""Filesystem change watcher with debouncing and pattern filtering."""

import asyncio
import os
import stat
import time
from collections.abc import Callable, Hashable
from pathlib import Path
from typing import NamedTuple

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from httpwatch.events.broadcaster import Broadcaster
from httpwatch.events.types import WATCHDOG_OPERATIONS, Operation, RawChange, WatchConfig
from httpwatch.exceptions import WatchInitError

logger = structlog.get_logger()

DEFAULT_DEBOUNCE_MS = 100


def _decode(path: str | bytes) -> str:
    if isinstance(path, str):
        return path
    return bytes(path).decode("utf-8", errors="replace")


def _is_dir(path: str) -> bool:
    try:
        return stat.S_ISDIR(os.stat(path).st_mode)
    except OSError:
        return False


class _Signature(NamedTuple):
    mtime_ns: int
    size: int
    mode: int
    uid: int
    gid: int

    @property
    def content(self) -> tuple[int, int]:
        return self.mtime_ns, self.size

    @property
    def attributes(self) -> tuple[int, int, int]:
        return self.mode, self.uid, self.gid


class Debouncer:
    """Time-windowed suppression of repeated keys.

    A key seen again within `window` seconds of its last accepted
    occurrence is suppressed; suppressed occurrences do not extend the
    window. Entries older than `ttl` are evicted at most once per
    `prune_interval`.
    """

    def __init__(
        self,
        window: float,
        ttl: float | None = None,
        prune_interval: float = 10.0,
    ) -> None:
        self._window = window
        self._ttl = ttl if ttl is not None else window * 10
        self._prune_interval = prune_interval
        self._last_seen: dict[Hashable, float] = {}
        self._last_prune: float | None = None

    def __len__(self) -> int:
        return len(self._last_seen)

    def suppress(self, key: Hashable, now: float) -> bool:
        """Record an occurrence of key.

        Args:
            key: Identity of the occurrence.
            now: Current monotonic time in seconds.

        Returns:
            True if the occurrence falls inside the debounce window.
        """
        self._maybe_prune(now)

        last = self._last_seen.get(key)
        if last is not None and now - last < self._window:
            return True
        self._last_seen[key] = now
        return False

    def prune(self, now: float) -> int:
        """Evict entries older than the TTL.

        Returns:
            Number of entries removed.
        """
        stale = [key for key, seen in self._last_seen.items() if now - seen > self._ttl]
        for key in stale:
            del self._last_seen[key]
        self._last_prune = now
        return len(stale)

    def _maybe_prune(self, now: float) -> None:
        if self._last_prune is None:
            self._last_prune = now
            return
        if now - self._last_prune >= self._prune_interval:
            removed = self.prune(now)
            if removed:
                logger.debug("debounce_pruned", removed=removed, remaining=len(self))


class ChangeHandler(FileSystemEventHandler):
    """Watchdog handler that hands raw changes to the event loop.

    Runs on the observer thread and does no filtering of its own.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: "asyncio.Queue[RawChange | None]",
    ) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event: FileSystemEvent) -> None:
        op = WATCHDOG_OPERATIONS.get(event.event_type)
        if op is None:
            return

        src_path = _decode(event.src_path)
        if op is Operation.RENAME:
            self._forward(RawChange(src_path, Operation.RENAME, event.is_directory))
            dest_path = _decode(event.dest_path)
            if dest_path:
                self._forward(RawChange(dest_path, Operation.CREATE, event.is_directory))
            return

        content = event.event_type == "closed"
        self._forward(RawChange(src_path, op, event.is_directory, content))

    def _forward(self, change: RawChange) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, change)
        except RuntimeError as e:
            logger.error("watcher_handoff_error", error=str(e), path=change.path)


class ChangeWatcher:
    """Publishes root-relative paths of changed files to a broadcaster.

    The watchdog observer reports raw events on its own threads; they are
    queued onto the event loop and processed one at a time by `run`, so
    the debounce table and the signature cache need no locking.

    Attributes:
        config: Watched root, inclusion pattern and recursion flag.
    """

    def __init__(
        self,
        config: WatchConfig,
        broadcaster: Broadcaster,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        debounce_ttl: float | None = None,
        prune_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize change watcher.

        Args:
            config: Watch configuration.
            broadcaster: Destination for change notifications.
            debounce_ms: Window in which repeated (path, operation) pairs
                are suppressed.
            debounce_ttl: Age in seconds after which debounce entries are
                evicted. Defaults to ten debounce windows.
            prune_interval: Minimum seconds between evictions.
            clock: Monotonic time source.
        """
        self.config = config
        self._root = Path(os.path.abspath(config.root))
        self._broadcaster = broadcaster
        self._debouncer = Debouncer(debounce_ms / 1000.0, debounce_ttl, prune_interval)
        self._clock = clock
        self._signatures: dict[str, _Signature] = {}
        self._directories: set[str] = set()
        self._queue: asyncio.Queue[RawChange | None] = asyncio.Queue()
        self._observer: Observer | None = None  # pyright: ignore[reportInvalidTypeForm]
        self._published_count = 0

    @property
    def root(self) -> Path:
        """Absolute path of the watched root."""
        return self._root

    @property
    def running(self) -> bool:
        """Whether the observer is active."""
        return self._observer is not None and self._observer.is_alive()

    @property
    def watched_directories(self) -> int:
        """Number of directories known to be covered by the watch."""
        return len(self._directories)

    @property
    def published_count(self) -> int:
        """Number of change notifications published."""
        return self._published_count

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Register the root with the OS watch facility and start observing.

        Args:
            loop: Loop that runs `run`. Defaults to the running loop.

        Raises:
            WatchInitError: If the root is missing, is not a directory, or
                cannot be watched.
        """
        if self._observer is not None:
            return

        if not self._root.exists():
            raise WatchInitError(f"Watch root does not exist: {self._root}")
        if not self._root.is_dir():
            raise WatchInitError(f"Watch root is not a directory: {self._root}")

        handler = ChangeHandler(loop or asyncio.get_running_loop(), self._queue)
        observer = Observer()
        try:
            observer.schedule(handler, str(self._root), recursive=self.config.recursive)
            observer.start()
        except OSError as e:
            raise WatchInitError(f"Failed to watch {self._root}: {e}") from e

        self._observer = observer
        self._register_tree(str(self._root))
        logger.info(
            "watcher_started",
            root=str(self._root),
            pattern=self.config.pattern.pattern,
            recursive=self.config.recursive,
            directories=len(self._directories),
        )

    async def run(self) -> None:
        """Process queued changes until `stop` is called."""
        while True:
            change = await self._queue.get()
            if change is None:
                break
            self.process(change)
        logger.info("watcher_loop_stopped", published=self._published_count)

    def stop(self) -> None:
        """Stop the observer and end `run`."""
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        self._queue.put_nowait(None)

        observer.stop()
        observer.join(timeout=5.0)
        logger.info("watcher_stopped", root=str(self._root))

    def process(self, change: RawChange, now: float | None = None) -> str | None:
        """Filter one raw change and publish it if relevant.

        Args:
            change: Raw change reported by the observer.
            now: Monotonic timestamp of the change. Defaults to the clock.

        Returns:
            The published relative path, or None if the change was dropped.
        """
        if now is None:
            now = self._clock()

        try:
            path = os.path.abspath(change.path)
        except (OSError, ValueError) as e:
            logger.error("watcher_path_error", path=change.path, error=str(e))
            return None

        if self._debouncer.suppress((path, change.op, change.content), now):
            return None

        if change.is_directory or _is_dir(path):
            if change.op & Operation.CREATE and self.config.recursive:
                self._register_tree(path)
                logger.debug("watcher_directory_added", path=path)
            elif change.op & (Operation.REMOVE | Operation.RENAME):
                self._directories.discard(path)
            return None

        # Signatures are only kept for files that can ever be published.
        matches = self.config.pattern.search(os.path.basename(path)) is not None
        op = self._classify(path, change) if matches else change.op
        if op is Operation.CHMOD:
            return None

        if not matches:
            return None

        relative = self._relative(path)
        if relative is None:
            return None

        delivered = self._broadcaster.publish(relative)
        self._published_count += 1
        logger.debug(
            "file_changed",
            file=relative,
            operation=op.name,
            delivered_to=delivered,
        )
        return relative

    def _register_tree(self, path: str) -> None:
        # The recursive watchdog watch on the root already covers new
        # subdirectories; this only tracks what is covered.
        if not self.config.recursive:
            self._directories.add(path)
            return
        for dirpath, _, _ in os.walk(path):
            self._directories.add(os.path.abspath(dirpath))

    def _classify(self, path: str, change: RawChange) -> Operation:
        """Downgrade writes that only changed file metadata to CHMOD.

        watchdog reports attribute changes as modifications. A write is
        metadata only when mtime and size are unchanged while the mode or
        ownership did change; anything less conclusive counts as content.
        A close after write is always content.
        """
        op = change.op
        if op & (Operation.REMOVE | Operation.RENAME):
            self._signatures.pop(path, None)
            return op
        if not op & (Operation.CREATE | Operation.WRITE):
            return op

        try:
            st = os.stat(path)
        except OSError:
            return op

        signature = _Signature(st.st_mtime_ns, st.st_size, st.st_mode, st.st_uid, st.st_gid)
        previous = self._signatures.get(path)
        self._signatures[path] = signature
        if op is not Operation.WRITE or change.content or previous is None:
            return op
        if signature.content == previous.content and signature.attributes != previous.attributes:
            return Operation.CHMOD
        return op

    def _relative(self, path: str) -> str | None:
        try:
            return Path(path).relative_to(self._root).as_posix()
        except ValueError:
            logger.warning("watcher_path_outside_root", path=path, root=str(self._root))
            return None
