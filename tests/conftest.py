"""
Pytest configuration and fixtures for the EyeSpy client tests.
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from eyespy.api.client import EyeSpyClient
from eyespy.api.schemas import FaceRecord
from eyespy.common.config import ClientConfig
from eyespy.realtime.connection import RealtimeConnection

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


def make_face(face_id: str, minutes: int = 0, status: str | None = "searching", **extra) -> dict:
    """Raw face payload as returned by GET /faces."""
    face = {
        "face_id": face_id,
        "upload_timestamp": (BASE_TIME + timedelta(minutes=minutes)).isoformat(),
        "thumbnail_base64": f"thumb-{face_id}",
        "processing_status": status,
    }
    face.update(extra)
    return face


def make_record(face_id: str, minutes: int = 0, status: str | None = "searching") -> FaceRecord:
    return FaceRecord.model_validate(make_face(face_id, minutes, status))


class FakeEyeSpyServer:
    """In-memory stand-in for the EyeSpy REST API behind httpx.MockTransport."""

    def __init__(self):
        self.faces: list[dict] = []
        self.results: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.upload_response: tuple[int, Any] = (200, {"status": "success", "face_id": "new-face"})
        self.fail_next: Exception | None = None
        # optional hook replacing the list handler
        self.list_handler: Callable[[httpx.Request], httpx.Response] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

        path = request.url.path
        if request.method == "GET" and path.endswith("/faces"):
            if self.list_handler is not None:
                return self.list_handler(request)
            limit = int(request.url.params.get("limit", 20))
            offset = int(request.url.params.get("offset", 0))
            page = self.faces[offset : offset + limit]
            return httpx.Response(200, json={"faces": page, "total_faces": len(self.faces)})

        if request.method == "GET" and "/results/" in path:
            face_id = path.rsplit("/", 1)[-1]
            if face_id not in self.results:
                return httpx.Response(404, json={"detail": "Face not found"})
            return httpx.Response(200, json=self.results[face_id])

        if request.method == "POST" and path.endswith("/upload_face"):
            status_code, body = self.upload_response
            return httpx.Response(status_code, json=body)

        if request.method == "DELETE" and "/faces/" in path:
            face_id = path.rsplit("/", 1)[-1]
            before = len(self.faces)
            self.faces = [face for face in self.faces if face["face_id"] != face_id]
            if len(self.faces) == before:
                return httpx.Response(404, json={"detail": "Face not found"})
            return httpx.Response(200, json={"status": "success"})

        return httpx.Response(500, json={"detail": f"unexpected {request.method} {path}"})

    def list_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET" and r.url.path.endswith("/faces")]


class ManualTimer:
    """threading.Timer replacement fired explicitly by tests."""

    def __init__(self, interval: float, function: Callable[[], None]):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class TimerRecorder:
    def __init__(self):
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


def mqtt_message(topic: str, payload: Any) -> SimpleNamespace:
    raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return SimpleNamespace(topic=topic, payload=raw)


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        api_url="http://eyespy.test/api",
        mqtt_url="mqtt://broker.test:1883",
        page_size=10,
        refresh_delay=2.0,
        reconnect_attempts=3,
    )


@pytest.fixture
def server() -> FakeEyeSpyServer:
    return FakeEyeSpyServer()


@pytest.fixture
def client(config: ClientConfig, server: FakeEyeSpyServer):
    api = EyeSpyClient(config, transport=httpx.MockTransport(server.handler))
    yield api
    api.close()


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()


@pytest.fixture
def mqtt_client() -> MagicMock:
    return MagicMock(name="mqtt_client")


@pytest.fixture
def connection(config: ClientConfig, mqtt_client: MagicMock, timers: TimerRecorder):
    conn = RealtimeConnection(config, client_factory=lambda: mqtt_client, timer_factory=timers)
    yield conn
    conn.close()


def connect(conn: RealtimeConnection) -> None:
    """Open the connection and simulate a successful broker handshake."""
    conn.open()
    conn._on_connect(conn.client, None, None, 0, None)
