"""Change notification pipeline: watcher, broadcaster and delivery loop."""
from httpwatch.events.broadcaster import Broadcaster, Subscriber
from httpwatch.events.delivery import DeliveryLoop
from httpwatch.events.types import Operation, RawChange, WatchConfig, WebsocketMessage
from httpwatch.events.watcher import ChangeWatcher, Debouncer

__all__ = [
    "Broadcaster",
    "ChangeWatcher",
    "Debouncer",
    "DeliveryLoop",
    "Operation",
    "RawChange",
    "Subscriber",
    "WatchConfig",
    "WebsocketMessage",
]
