"""Real-time channel connection over MQTT.

Rooms map onto topic trees. A room named R delivers event E on
`<prefix>/rooms/R/E`; the global feed is the `all_faces` room and every face
has a room named after its identifier. Join and leave requests are published
as JSON to `<prefix>/join` and `<prefix>/leave` so the server side can start
or stop routing events into a room.
"""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Callable
from typing import Any, Literal

import paho.mqtt.client as mqtt
from loguru import logger

from ..common.config import ClientConfig
from ..common.exceptions import ChannelConnectionError
from .dispatcher import GLOBAL, EventDispatcher, EventHandler, Scope
from .events import LogEvent, decode_event

ConnectionState = Literal["disconnected", "connecting", "connected"]
StateListener = Callable[[ConnectionState], None]
TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]

GLOBAL_ROOM = "all_faces"
STILL_LISTENING_MESSAGE = "Still listening for logs from server..."
RECONNECTING_MESSAGE = "Socket connection issue. Trying to reconnect..."

_FORBIDDEN_ROOM_CHARS = frozenset("/+#")


def _default_client_factory() -> mqtt.Client:
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2, client_id=f"eyespy-{uuid.uuid4().hex[:12]}"
    )


def _room_for(scope: Scope) -> str:
    if scope is GLOBAL:
        return GLOBAL_ROOM
    room = str(scope)
    if not room or _FORBIDDEN_ROOM_CHARS & set(room):
        raise ValueError(f"Invalid face id for a real-time room: {room!r}")
    return room


def _join_payload(room: str) -> dict[str, str]:
    return {"room": room} if room == GLOBAL_ROOM else {"face_id": room}


class RealtimeConnection:
    """Owned connection to the real-time event channel.

    Create one per application and hand it to the controllers that need live
    updates. `open()` is idempotent and `close()` tears everything down.

    While at least one subscription is registered, dropped connections are
    retried with a fixed delay up to `reconnect_attempts` times. Every
    (re)connect re-issues the joins for all registered rooms. Failures are
    logged and reported through state listeners; they never raise out of the
    network loop.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        client_factory: Callable[[], mqtt.Client] | None = None,
        timer_factory: TimerFactory | None = None,
    ):
        self.config: ClientConfig = config or ClientConfig()
        self._client_factory = client_factory or _default_client_factory
        self._timer_factory: TimerFactory = timer_factory or threading.Timer
        self.client: mqtt.Client | None = None
        self.dispatcher = EventDispatcher()

        self._state: ConnectionState = "disconnected"
        self._lock = threading.RLock()
        self._connected_event = threading.Event()
        self._rooms: dict[str, None] = {}
        self._listeners: list[StateListener] = []
        self._watchdogs: dict[str, threading.Timer] = {}
        self._failed_attempts = 0
        self._loop_started = False
        self._closing = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == "connected"

    @property
    def rooms(self) -> list[str]:
        with self._lock:
            return list(self._rooms)

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Observe connection state changes. Returns a function that removes the listener."""
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if state == self._state:
                return
            previous, self._state = self._state, state
            listeners = list(self._listeners)
        if state == "connected":
            self._connected_event.set()
        else:
            self._connected_event.clear()
        logger.debug(f"Real-time connection {previous} -> {state}")
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.exception(f"Connection state listener failed: {e}")

    def wait_connected(self, timeout: float | None = None) -> bool:
        """Block until connected. Returns False on timeout."""
        return self._connected_event.wait(timeout=timeout)

    def require_connected(self, timeout: float | None = None) -> None:
        if not self.wait_connected(timeout if timeout is not None else self.config.connect_timeout):
            raise ChannelConnectionError(
                f"Real-time channel {self.config.mqtt_url} is not reachable"
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> RealtimeConnection:
        """Start connecting if not already connected or connecting."""
        with self._lock:
            if self._state != "disconnected":
                return self
            if not self.config.mqtt_enabled:
                logger.warning("Real-time channel disabled, relying on polling")
                return self
            self._closing = False
            self._failed_attempts = 0

            if self.client is None:
                self.client = self._client_factory()
                self.client.on_connect = self._on_connect
                self.client.on_disconnect = self._on_disconnect
                self.client.on_connect_fail = self._on_connect_fail
                self.client.on_message = self._on_message
            client = self.client

        self._stop_loop()
        self._set_state("connecting")
        try:
            host, port = self.config.mqtt_endpoint()
            delay = max(1, round(self.config.reconnect_delay))
            client.reconnect_delay_set(min_delay=delay, max_delay=delay)
            logger.info(f"Connecting to real-time channel at {host}:{port}")
            client.connect_async(host, port, keepalive=60)
            client.loop_start()
            self._loop_started = True
        except Exception as e:
            logger.error(f"Failed to start real-time connection: {e}")
            self._set_state("disconnected")
        return self

    def reconnect(self) -> None:
        """Force a fresh connection attempt when not connected."""
        if self.connected:
            return
        logger.info("Forcing real-time reconnection")
        with self._lock:
            self._state = "disconnected"
        self.open()

    def close(self) -> None:
        """Disconnect, drop every subscription and stop all timers."""
        with self._lock:
            self._closing = True
            watchdogs = list(self._watchdogs.values())
            self._watchdogs.clear()
            self._rooms.clear()
            client = self.client
        for timer in watchdogs:
            timer.cancel()
        self.dispatcher.clear()

        if client is not None:
            try:
                client.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting real-time channel: {e}")
            self._stop_loop()
        self._set_state("disconnected")
        logger.info("Real-time connection closed")

    def __enter__(self) -> RealtimeConnection:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _stop_loop(self) -> None:
        if self._loop_started and self.client is not None:
            try:
                self.client.loop_stop()
            except Exception as e:
                logger.error(f"Error stopping real-time network loop: {e}")
            self._loop_started = False

    # ------------------------------------------------------------------
    # Network callbacks (paho thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        if reason_code != 0:
            logger.error(f"Real-time channel refused connection: {reason_code}")
            self._register_failure(client)
            return

        with self._lock:
            self._failed_attempts = 0
            rooms = list(self._rooms)
        logger.info("Connected to real-time channel")
        self._set_state("connected")
        for room in rooms:
            self._send_join(room)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        if self._closing:
            return
        logger.warning(f"Disconnected from real-time channel: {reason_code}")
        self._register_failure(client)

    def _on_connect_fail(self, client, userdata):
        logger.error("Real-time channel connection attempt failed")
        self._register_failure(client)

    def _register_failure(self, client) -> None:
        with self._lock:
            self._failed_attempts += 1
            attempts = self._failed_attempts
            wanted = self.dispatcher.has_handlers()
            limit = self.config.reconnect_attempts

        if not wanted:
            logger.info("No real-time subscriptions left, not reconnecting")
            self._give_up(client)
        elif attempts > limit:
            logger.error(f"Giving up on real-time channel after {limit} reconnect attempts")
            self._give_up(client)
        else:
            logger.info(f"Reconnecting to real-time channel (attempt {attempts}/{limit})")
            self._set_state("connecting")

    def _give_up(self, client) -> None:
        # Only flags the loop to terminate when called from the loop thread;
        # open() joins it before starting a new one.
        try:
            client.loop_stop()
        except Exception as e:
            logger.error(f"Error stopping real-time network loop: {e}")
        self._set_state("disconnected")

    def _on_message(self, client, userdata, msg):
        try:
            parts = msg.topic.split("/")
            if len(parts) < 3:
                logger.warning(f"Invalid real-time topic: {msg.topic}")
                return
            event_name = parts[-1]
            try:
                payload = json.loads(msg.payload.decode("utf-8")) if msg.payload else {}
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to parse '{event_name}' payload: {e}")
                return

            event = decode_event(event_name, payload)
            if event is None:
                return
            logger.trace(f"Received {event_name}: {payload}")
            self.dispatcher.dispatch(event)
        except Exception as e:
            logger.error(f"Error processing real-time message: {e}")

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def _room_topic(self, room: str) -> str:
        return f"{self.config.topic_prefix}/rooms/{room}/+"

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        """Publish a control message such as join or leave."""
        client = self.client
        if client is None or not self.connected:
            raise ChannelConnectionError(f"Cannot send '{name}': real-time channel not connected")
        _ = client.publish(f"{self.config.topic_prefix}/{name}", json.dumps(payload), qos=1)

    def _send_join(self, room: str) -> None:
        client = self.client
        if client is None:
            return
        try:
            _ = client.subscribe(self._room_topic(room), qos=1)
            self.emit("join", _join_payload(room))
            logger.debug(f"Joined room {room}")
        except ChannelConnectionError:
            logger.debug(f"Connection dropped before joining {room}, will join on reconnect")
        except Exception as e:
            logger.error(f"Failed to join room {room}: {e}")

    def join_face_channel(self, face_id: str) -> None:
        """Join a face room now, or once the connection is established."""
        self._join(_room_for(face_id))

    def _join(self, room: str) -> None:
        with self._lock:
            self._rooms[room] = None
            connected = self.connected
        if connected:
            self._send_join(room)
        else:
            logger.debug(f"Not connected, will join room {room} once connected")
            self.open()

    def _leave(self, room: str) -> None:
        with self._lock:
            self._rooms.pop(room, None)
            client = self.client
            connected = self.connected
        if client is None or not connected:
            return
        try:
            _ = client.unsubscribe(self._room_topic(room))
            self.emit("leave", _join_payload(room))
            logger.debug(f"Left room {room}")
        except Exception as e:
            logger.error(f"Failed to leave room {room}: {e}")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_global(self, handler: EventHandler) -> None:
        """Receive every status change plus dedicated failure events."""
        self.dispatcher.add(GLOBAL, handler)
        self._join(GLOBAL_ROOM)

    def subscribe_face(self, face_id: str, handler: EventHandler, watchdog: bool = True) -> None:
        """Receive logs, failures and status changes (as logs) for one face."""
        room = _room_for(face_id)
        self.dispatcher.add(face_id, handler)
        self._join(room)
        if watchdog:
            self._arm_watchdog(face_id)

    def unsubscribe(self, scope: Scope) -> None:
        """Remove every handler of GLOBAL or of one face, leaving its room."""
        removed = self.dispatcher.remove_scope(scope)
        if scope is not GLOBAL:
            with self._lock:
                timer = self._watchdogs.pop(str(scope), None)
            if timer is not None:
                timer.cancel()
        self._leave(_room_for(scope))
        logger.debug(f"Unsubscribed {removed} handler(s) from {scope}")

    # ------------------------------------------------------------------
    # Log watchdog
    # ------------------------------------------------------------------

    def _arm_watchdog(self, face_id: str) -> None:
        timer = self._timer_factory(
            self.config.log_watchdog_delay, lambda: self._watchdog_fired(face_id)
        )
        timer.daemon = True
        with self._lock:
            previous = self._watchdogs.pop(face_id, None)
            self._watchdogs[face_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _watchdog_fired(self, face_id: str) -> None:
        with self._lock:
            self._watchdogs.pop(face_id, None)
            if face_id not in self.dispatcher.scopes():
                return

        if self.connected:
            self._send_join(face_id)
            notice = LogEvent(face_id=face_id, message=STILL_LISTENING_MESSAGE, log_type="info")
        else:
            notice = LogEvent(face_id=face_id, message=RECONNECTING_MESSAGE, log_type="warning")
            self.reconnect()
        _ = self.dispatcher.dispatch(notice)
