"""Health check endpoint."""
from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class WatcherStatus(BaseModel):
    """State of the change watcher.

    Attributes:
        root: Absolute path of the watched directory.
        pattern: Inclusion pattern for file names.
        recursive: Whether subdirectories are watched.
        running: Whether the observer is active.
        directories: Directories covered by the watch.
        published: Change notifications published so far.
    """

    root: str
    pattern: str
    recursive: bool
    running: bool
    directories: int
    published: int


class HealthResponse(BaseModel):
    """Response model for the health probe.

    Attributes:
        status: Always 'alive' when the process is serving.
        subscribers: Connected websocket subscribers.
        dropped_messages: Notifications dropped on full inboxes.
        watcher: Watcher state, or None when no pattern is configured.
    """

    status: Literal["alive"]
    subscribers: int
    dropped_messages: int
    watcher: WatcherStatus | None = None


@router.get("/_/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Report liveness with subscriber and watcher counters.

    Args:
        request: Incoming request.

    Returns:
        Health status response.
    """
    broadcaster = request.app.state.broadcaster
    watcher = request.app.state.watcher

    watcher_status = None
    if watcher is not None:
        watcher_status = WatcherStatus(
            root=str(watcher.root),
            pattern=watcher.config.pattern.pattern,
            recursive=watcher.config.recursive,
            running=watcher.running,
            directories=watcher.watched_directories,
            published=watcher.published_count,
        )

    return HealthResponse(
        status="alive",
        subscribers=broadcaster.subscriber_count,
        dropped_messages=broadcaster.dropped_messages,
        watcher=watcher_status,
    )
