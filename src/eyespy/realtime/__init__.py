from .connection import GLOBAL_ROOM, ConnectionState, RealtimeConnection
from .dispatcher import GLOBAL, EventDispatcher
from .events import FailureEvent, LogEvent, StatusEvent, decode_event, status_as_log

__all__ = [
    "ConnectionState",
    "EventDispatcher",
    "FailureEvent",
    "GLOBAL",
    "GLOBAL_ROOM",
    "LogEvent",
    "RealtimeConnection",
    "StatusEvent",
    "decode_event",
    "status_as_log",
]
