from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from itertools import count

from loguru import logger

from ..api.client import EyeSpyClient, ImageInput
from ..api.schemas import FaceRecord, PaginationCursor, UploadResponse
from ..common.config import ClientConfig
from ..common.exceptions import EyeSpyError
from ..realtime.connection import ConnectionState, RealtimeConnection, TimerFactory
from ..realtime.dispatcher import GLOBAL
from ..realtime.events import FailureEvent, LogEvent, StatusEvent
from .collection import FaceCollection

ChangeListener = Callable[[list[FaceRecord]], None]


class CollectionSync:
    """Keeps a FaceCollection in sync with the server.

    Two producers feed the collection: list snapshots (mount, focus, pull to
    refresh, load more, polling fallback, deferred refresh after terminal
    events) and real-time events. Both go through FaceCollection, the only
    writer.

    List failures are logged and swallowed; the collection view never shows
    them.
    """

    def __init__(
        self,
        client: EyeSpyClient,
        connection: RealtimeConnection | None = None,
        config: ClientConfig | None = None,
        collection: FaceCollection | None = None,
        timer_factory: TimerFactory | None = None,
    ):
        self.client = client
        self.connection = connection
        self.config: ClientConfig = config or client.config
        self.collection = collection or FaceCollection()
        self.cursor = PaginationCursor(limit=self.config.page_size)

        self._timer_factory: TimerFactory = timer_factory or threading.Timer
        self._lock = threading.Lock()
        self._request_ids = count(1)
        self._latest_request: dict[tuple[int, int], int] = {}
        self._refresh_timer: threading.Timer | None = None
        self._poll_stop = threading.Event()
        self._poller: threading.Thread | None = None
        self._remove_state_listener: Callable[[], None] | None = None
        self._listeners: list[ChangeListener] = []
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def faces(self) -> list[FaceRecord]:
        return self.collection.ordered()

    def add_listener(self, listener: ChangeListener) -> None:
        """Call `listener` with the ordered faces after every change."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        faces = self.collection.ordered()
        for listener in list(self._listeners):
            try:
                listener(faces)
            except Exception as e:
                logger.exception(f"Collection listener failed: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mount(self, poll: bool = True) -> None:
        """Load the first page, subscribe to live updates and start polling."""
        if self._active:
            return
        self._active = True
        self.cursor.reset()
        if self.connection is not None:
            self.connection.subscribe_global(self.handle_event)
            self._remove_state_listener = self.connection.add_state_listener(
                self._on_connection_state
            )
        _ = self.refresh(use_cache=True)
        if poll:
            self._start_poller()

    def unmount(self) -> None:
        """Tear down subscriptions, the poller and any pending refresh."""
        self._active = False
        self._poll_stop.set()
        with self._lock:
            timer, self._refresh_timer = self._refresh_timer, None
        if timer is not None:
            timer.cancel()
        if self.connection is not None:
            self.connection.unsubscribe(GLOBAL)
        if self._remove_state_listener is not None:
            self._remove_state_listener()
            self._remove_state_listener = None
        poller, self._poller = self._poller, None
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout=self.config.poll_interval)

    def focus(self) -> None:
        """Screen regained focus: reload from the first page."""
        self.cursor.reset()
        _ = self.refresh(use_cache=True)

    def __enter__(self) -> CollectionSync:
        self.mount()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unmount()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _fetch(self, offset: int, append: bool, use_cache: bool) -> bool:
        key = (self.cursor.limit, offset)
        request_id = next(self._request_ids)
        with self._lock:
            self._latest_request[key] = request_id

        try:
            page = self.client.list_faces(limit=key[0], offset=offset, use_cache=use_cache)
        except EyeSpyError as e:
            logger.warning(f"Loading faces failed (offset={offset}): {e}")
            return False

        # Sequence check and merge happen as one step
        with self._lock:
            if not self._active:
                logger.debug("Collection unmounted, ignoring list response")
                return False
            if self._latest_request.get(key) != request_id:
                logger.debug(f"Discarding stale list response #{request_id} for {key}")
                return False
            self.collection.apply_snapshot(page.faces, page.total_count, append=append)
            self.cursor.advance(offset, len(page.faces), self.collection.total_count)
        self._notify()
        return True

    def refresh(self, use_cache: bool = False) -> bool:
        """Reload the first page, replacing the collection (pull to refresh)."""
        if not self._active:
            return False
        self.cursor.reset()
        return self._fetch(0, append=False, use_cache=use_cache)

    def load_more(self) -> bool:
        """Append the next page when the end of the list is reached."""
        if not self._active or not self.cursor.has_more:
            return False
        return self._fetch(self.cursor.offset, append=True, use_cache=True)

    # ------------------------------------------------------------------
    # Real-time
    # ------------------------------------------------------------------

    def handle_event(self, event: StatusEvent | FailureEvent | LogEvent) -> None:
        if not self._active:
            return
        before = self.collection.get(event.face_id) if event.face_id else None
        needs_refresh = self.collection.apply_event(event)
        if before is not None and self.collection.get(event.face_id) != before:
            self._notify()
        if needs_refresh:
            self.schedule_refresh()

    def schedule_refresh(self) -> None:
        """Refresh once after the configured delay; coalesces while one is pending."""
        with self._lock:
            if not self._active or self._refresh_timer is not None:
                return
            timer = self._timer_factory(self.config.refresh_delay, self._deferred_refresh)
            timer.daemon = True
            self._refresh_timer = timer
        timer.start()
        logger.debug(f"Scheduled collection refresh in {self.config.refresh_delay}s")

    def _deferred_refresh(self) -> None:
        with self._lock:
            self._refresh_timer = None
        _ = self.refresh()

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state == "connected" and self._active:
            # Catch up on anything missed while disconnected
            self.schedule_refresh()

    # ------------------------------------------------------------------
    # Polling fallback
    # ------------------------------------------------------------------

    def _should_poll(self) -> bool:
        if self.config.always_poll or self.connection is None:
            return True
        return not self.connection.connected

    def poll_once(self) -> bool:
        if not self._active or not self._should_poll():
            return False
        return self.refresh()

    def _start_poller(self) -> None:
        self._poll_stop.clear()
        self._poller = threading.Thread(target=self._poll_loop, name="eyespy-poller", daemon=True)
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._poll_stop.wait(self.config.poll_interval):
            try:
                _ = self.poll_once()
            except Exception as e:
                logger.exception(f"Polling refresh failed: {e}")

    # ------------------------------------------------------------------
    # Upload / delete
    # ------------------------------------------------------------------

    def upload(self, image: ImageInput) -> UploadResponse:
        """Upload a face; it shows up immediately with status 'uploading'."""
        result = self.client.upload_face(image)
        if result.face_id:
            self.collection.add_uploaded(
                FaceRecord(
                    face_id=result.face_id,
                    upload_timestamp=datetime.now(UTC),
                    status="uploading",
                    status_message=result.message,
                )
            )
            self._notify()
        _ = self.refresh()
        return result

    def delete(self, face_id: str) -> None:
        """Delete a face on the server and drop it from the collection."""
        self.collection.mark_deleting(face_id)
        self._notify()
        try:
            _ = self.client.delete_face(face_id)
        except EyeSpyError:
            self.collection.mark_deleting(face_id, False)
            self._notify()
            raise
        self.collection.remove(face_id)
        self.cursor.total_count = self.collection.total_count
        self._notify()
