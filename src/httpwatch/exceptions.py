"""Exception types raised by the http-watch service."""


class HTTPWatchError(Exception):
    """Base class for errors raised by http-watch."""


class WatchInitError(HTTPWatchError):
    """The change watcher could not register its root directory.

    Raised by `ChangeWatcher.start` before the watch loop runs, so the
    caller decides whether the process should keep going.
    """


class SubscriberClosedError(HTTPWatchError):
    """The subscriber inbox was closed and holds no more messages."""
