from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Final

from loguru import logger

from .events import FailureEvent, LogEvent, StatusEvent, status_as_log


class _GlobalScope:
    def __repr__(self) -> str:
        return "GLOBAL"


GLOBAL: Final = _GlobalScope()

Event = StatusEvent | FailureEvent | LogEvent
EventHandler = Callable[[Event], None]
Scope = _GlobalScope | str


class EventDispatcher:
    """Routes decoded events to handlers registered per scope.

    The global scope receives status changes and dedicated failures for every
    face. A face scope receives that face's logs (including broadcast logs,
    tagged with the face id), its failures, and its status changes converted
    into log entries.
    """

    def __init__(self):
        self._handlers: dict[Scope, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def add(self, scope: Scope, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(scope, []).append(handler)

    def remove_scope(self, scope: Scope) -> int:
        """Drop every handler of a scope, returning how many were removed."""
        with self._lock:
            return len(self._handlers.pop(scope, []))

    def remove(self, scope: Scope, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(scope)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[scope]

    def scopes(self) -> list[Scope]:
        with self._lock:
            return list(self._handlers)

    def has_handlers(self) -> bool:
        with self._lock:
            return bool(self._handlers)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def dispatch(self, event: Event) -> int:
        """Deliver an event to every matching handler. Returns the delivery count."""
        with self._lock:
            snapshot = {scope: list(handlers) for scope, handlers in self._handlers.items()}

        deliveries: list[tuple[EventHandler, Event]] = []
        for scope, handlers in snapshot.items():
            routed = self._route(scope, event)
            if routed is not None:
                deliveries.extend((handler, routed) for handler in handlers)

        for handler, routed in deliveries:
            try:
                handler(routed)
            except Exception as e:
                logger.exception(f"Real-time event handler failed for {routed.kind} event: {e}")
        return len(deliveries)

    @staticmethod
    def _route(scope: Scope, event: Event) -> Event | None:
        if scope is GLOBAL:
            if isinstance(event, (StatusEvent, FailureEvent)):
                return event
            return None

        face_id = scope
        if isinstance(event, LogEvent):
            if event.face_id == face_id:
                return event
            if event.face_id is None:
                return event.model_copy(update={"face_id": face_id})
            return None
        if isinstance(event, StatusEvent):
            # global_processing_update repeats the face room update
            if event.broadcast or event.face_id != face_id:
                return None
            return status_as_log(event, face_id)
        if isinstance(event, FailureEvent):
            return event if event.face_id == face_id else None
        raise TypeError(f"Unhandled event type: {type(event).__name__}")
