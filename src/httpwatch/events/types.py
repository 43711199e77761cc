"""Types shared by the change watcher, broadcaster and delivery loop."""
import re
from dataclasses import dataclass
from enum import Enum, Flag, auto
from pathlib import Path

from pydantic import BaseModel, Field


class Operation(Flag):
    """Kind of filesystem operation reported for a path."""

    CREATE = auto()
    WRITE = auto()
    REMOVE = auto()
    RENAME = auto()
    CHMOD = auto()


WATCHDOG_OPERATIONS: dict[str, Operation] = {
    "created": Operation.CREATE,
    "modified": Operation.WRITE,
    "closed": Operation.WRITE,
    "deleted": Operation.REMOVE,
    "moved": Operation.RENAME,
    "opened": Operation.CHMOD,
    "closed_no_write": Operation.CHMOD,
}


@dataclass(frozen=True)
class RawChange:
    """Filesystem change handed from the observer thread to the watcher task.

    Attributes:
        path: Path as reported by the observer.
        op: Operation observed on the path.
        is_directory: Whether the observer flagged the path as a directory.
        content: Whether the observer saw the file closed after a write,
            which proves its content changed.
    """

    path: str
    op: Operation
    is_directory: bool = False
    content: bool = False


@dataclass(frozen=True)
class WatchConfig:
    """Immutable watcher configuration.

    Attributes:
        root: Directory whose changes are published.
        pattern: Regular expression searched in each file's base name.
        recursive: Watch every subdirectory of root as well.
    """

    root: Path
    pattern: re.Pattern[str]
    recursive: bool = True


class MessageType(str, Enum):
    """Message types pushed to websocket subscribers."""

    FILE_CHANGE = "file.change"
    PING = "ping"


class WebsocketMessage(BaseModel):
    """Envelope for every frame sent to a websocket subscriber.

    Attributes:
        type: Message type.
        data: Changed path relative to the watched root, if any.
    """

    type: MessageType = Field(description="Message type")
    data: str | None = Field(default=None, description="Relative file path")

    @classmethod
    def file_change(cls, path: str) -> "WebsocketMessage":
        return cls(type=MessageType.FILE_CHANGE, data=path)

    @classmethod
    def ping(cls) -> "WebsocketMessage":
        return cls(type=MessageType.PING)

    def to_text(self) -> str:
        """Serialize to the JSON text frame sent over the wire."""
        return self.model_dump_json(exclude_none=True)
