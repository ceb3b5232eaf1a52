"""
Tests for the MQTT-backed real-time connection.

The paho client is replaced by a MagicMock; broker callbacks are invoked
directly the way the paho network thread would.
"""

import json
from unittest.mock import MagicMock, call

from conftest import connect, mqtt_message

from eyespy.common.config import ClientConfig
from eyespy.realtime.connection import (
    RECONNECTING_MESSAGE,
    STILL_LISTENING_MESSAGE,
    RealtimeConnection,
)
from eyespy.realtime.dispatcher import GLOBAL
from eyespy.realtime.events import FailureEvent, LogEvent, StatusEvent


def published(mqtt_client: MagicMock) -> list[tuple[str, dict]]:
    return [(c.args[0], json.loads(c.args[1])) for c in mqtt_client.publish.call_args_list]


class TestLifecycle:
    def test_open_is_idempotent(self, connection, mqtt_client):
        connection.open()
        connection.open()

        assert connection.state == "connecting"
        mqtt_client.connect_async.assert_called_once_with("broker.test", 1883, keepalive=60)
        mqtt_client.loop_start.assert_called_once()
        mqtt_client.reconnect_delay_set.assert_called_once_with(min_delay=1, max_delay=1)

    def test_connect_callback_sets_connected(self, connection):
        states = []
        connection.add_state_listener(states.append)

        connect(connection)

        assert connection.connected
        assert connection.wait_connected(timeout=0)
        assert states == ["connecting", "connected"]

    def test_refused_connection_is_not_fatal(self, connection):
        connection.subscribe_global(MagicMock())
        connection._on_connect(connection.client, None, None, 5, None)

        assert connection.state == "connecting"

    def test_disabled_channel_stays_disconnected(self, mqtt_client):
        conn = RealtimeConnection(
            ClientConfig(mqtt_url=None), client_factory=lambda: mqtt_client
        )

        conn.open()

        assert conn.state == "disconnected"
        mqtt_client.connect_async.assert_not_called()

    def test_close_disconnects_and_clears(self, connection, mqtt_client):
        connection.subscribe_global(MagicMock())
        connect(connection)

        connection.close()

        mqtt_client.disconnect.assert_called_once()
        mqtt_client.loop_stop.assert_called()
        assert connection.state == "disconnected"
        assert connection.rooms == []
        assert connection.dispatcher.has_handlers() is False


class TestRooms:
    def test_join_when_connected_is_immediate(self, connection, mqtt_client):
        connect(connection)

        connection.join_face_channel("face-1")

        mqtt_client.subscribe.assert_called_with("eyespy/rooms/face-1/+", qos=1)
        assert published(mqtt_client) == [("eyespy/join", {"face_id": "face-1"})]

    def test_join_before_connect_is_deferred_once(self, connection, mqtt_client):
        connection.join_face_channel("face-1")
        assert published(mqtt_client) == []

        connection._on_connect(connection.client, None, None, 0, None)

        assert published(mqtt_client) == [("eyespy/join", {"face_id": "face-1"})]

    def test_reconnect_reissues_joins(self, connection, mqtt_client):
        connection.subscribe_global(MagicMock())
        connection.subscribe_face("face-1", MagicMock(), watchdog=False)
        connect(connection)
        mqtt_client.publish.reset_mock()

        connection._on_disconnect(connection.client, None, None, 7, None)
        assert connection.state == "connecting"
        connection._on_connect(connection.client, None, None, 0, None)

        assert published(mqtt_client) == [
            ("eyespy/join", {"room": "all_faces"}),
            ("eyespy/join", {"face_id": "face-1"}),
        ]

    def test_unsubscribe_face_emits_leave(self, connection, mqtt_client):
        handler = MagicMock()
        connection.subscribe_face("face-1", handler, watchdog=False)
        connect(connection)

        connection.unsubscribe("face-1")

        mqtt_client.unsubscribe.assert_called_once_with("eyespy/rooms/face-1/+")
        assert published(mqtt_client)[-1] == ("eyespy/leave", {"face_id": "face-1"})
        assert "face-1" not in connection.rooms

        connection._on_message(
            mqtt_client, None, mqtt_message("eyespy/rooms/face-1/processing_log", {"face_id": "face-1", "message": "x"})
        )
        handler.assert_not_called()

    def test_unsubscribe_global_keeps_face_rooms(self, connection):
        connection.subscribe_global(MagicMock())
        connection.subscribe_face("face-1", MagicMock(), watchdog=False)
        connect(connection)

        connection.unsubscribe(GLOBAL)

        assert connection.rooms == ["face-1"]


class TestReconnectPolicy:
    def test_gives_up_after_bounded_attempts(self, connection, mqtt_client):
        connection.subscribe_global(MagicMock())
        connect(connection)

        for _ in range(3):
            connection._on_connect_fail(mqtt_client, None)
            assert connection.state == "connecting"
        connection._on_connect_fail(mqtt_client, None)

        assert connection.state == "disconnected"
        mqtt_client.loop_stop.assert_called()

    def test_successful_connect_resets_attempts(self, connection, mqtt_client):
        connection.subscribe_global(MagicMock())
        connect(connection)

        for _ in range(3):
            connection._on_connect_fail(mqtt_client, None)
        connection._on_connect(mqtt_client, None, None, 0, None)
        connection._on_disconnect(mqtt_client, None, None, 7, None)

        assert connection.state == "connecting"

    def test_no_reconnect_without_subscriptions(self, connection, mqtt_client):
        connect(connection)

        connection._on_disconnect(mqtt_client, None, None, 7, None)

        assert connection.state == "disconnected"

    def test_open_after_giving_up_restarts_loop(self, connection, mqtt_client):
        connect(connection)
        connection._on_disconnect(mqtt_client, None, None, 7, None)

        connection.open()

        assert connection.state == "connecting"
        assert mqtt_client.connect_async.call_count == 2
        assert mqtt_client.loop_start.call_count == 2


class TestMessages:
    def test_global_subscription_receives_updates_and_failures(self, connection, mqtt_client):
        handler = MagicMock()
        connection.subscribe_global(handler)
        connect(connection)

        connection._on_message(
            mqtt_client,
            None,
            mqtt_message(
                "eyespy/rooms/all_faces/global_processing_update",
                {"face_id": "a", "status": "searching"},
            ),
        )
        connection._on_message(
            mqtt_client,
            None,
            mqtt_message("eyespy/rooms/all_faces/processing_failed", {"face_id": "a"}),
        )

        events = [c.args[0] for c in handler.call_args_list]
        assert isinstance(events[0], StatusEvent)
        assert isinstance(events[1], FailureEvent)
        assert events[1].from_failure_channel

    def test_face_subscription_gets_status_as_log(self, connection, mqtt_client):
        handler = MagicMock()
        connection.subscribe_face("a", handler, watchdog=False)
        connect(connection)

        connection._on_message(
            mqtt_client,
            None,
            mqtt_message("eyespy/rooms/a/processing_update", {"face_id": "a", "status": "generating"}),
        )

        event = handler.call_args.args[0]
        assert isinstance(event, LogEvent)
        assert event.message == "Status changed to generating"

    def test_garbage_payload_is_ignored(self, connection, mqtt_client):
        handler = MagicMock()
        connection.subscribe_global(handler)
        connect(connection)

        connection._on_message(mqtt_client, None, mqtt_message("eyespy/rooms/all_faces/processing_update", b"{not json"))
        connection._on_message(mqtt_client, None, mqtt_message("bad", {}))

        handler.assert_not_called()


class TestLogWatchdog:
    def test_still_listening_notice_when_connected(self, connection, mqtt_client, timers):
        handler = MagicMock()
        connection.subscribe_face("a", handler)
        connect(connection)
        mqtt_client.publish.reset_mock()

        assert len(timers.pending) == 1
        assert timers.pending[0].interval == connection.config.log_watchdog_delay
        timers.pending[0].fire()

        assert published(mqtt_client) == [("eyespy/join", {"face_id": "a"})]
        notice = handler.call_args.args[0]
        assert notice.log_type == "info"
        assert notice.message == STILL_LISTENING_MESSAGE

    def test_reconnect_notice_when_disconnected(self, connection, mqtt_client, timers):
        handler = MagicMock()
        connection.subscribe_face("a", handler)
        connection._state = "disconnected"

        timers.pending[0].fire()

        notice = handler.call_args.args[0]
        assert notice.log_type == "warning"
        assert notice.message == RECONNECTING_MESSAGE
        assert mqtt_client.connect_async.call_count == 2

    def test_unsubscribe_cancels_watchdog(self, connection, timers):
        connection.subscribe_face("a", MagicMock())

        connection.unsubscribe("a")

        assert timers.timers[0].cancelled
        assert timers.pending == []
