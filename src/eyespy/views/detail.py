from __future__ import annotations

import threading

from loguru import logger

from ..api.client import EyeSpyClient
from ..api.schemas import FaceResultBundle
from ..common.exceptions import EyeSpyError
from ..formatting import TextSegment, base64_to_uri, format_bio_text, format_timestamp
from ..realtime.connection import RealtimeConnection
from ..realtime.events import FailureEvent, LogEvent, StatusEvent
from ..reconciliation.sync import CollectionSync

LOAD_ERROR_MESSAGE = "Failed to load face details. Please try again."
NO_PROFILE_MESSAGE = "No profile information available for this face."
NO_MATCHES_MESSAGE = "No matches found for this face."


class FaceDetailView:
    """State behind the face detail screen.

    Loads the result bundle with a retry affordance, collects live processing
    logs for the face and deletes it.
    """

    def __init__(
        self,
        client: EyeSpyClient,
        face_id: str,
        connection: RealtimeConnection | None = None,
        collection: CollectionSync | None = None,
    ):
        self.client = client
        self.face_id = face_id
        self.connection = connection
        self.collection = collection

        self.bundle: FaceResultBundle | None = None
        self.error: str | None = None
        self.loading = False
        self.deleted = False
        self.logs: list[LogEvent | FailureEvent] = []
        self._logs_lock = threading.Lock()
        self._streaming = False

    def load(self) -> FaceResultBundle | None:
        """Fetch the result bundle. On failure `error` holds a retryable message."""
        self.loading = True
        self.error = None
        try:
            self.bundle = self.client.get_face_result(self.face_id)
        except EyeSpyError as e:
            logger.error(f"Error loading face details for {self.face_id}: {e}")
            self.error = LOAD_ERROR_MESSAGE
        finally:
            self.loading = False
        return self.bundle

    def retry(self) -> FaceResultBundle | None:
        return self.load()

    def delete(self) -> None:
        """Delete the face. Errors propagate so the caller can report them."""
        self.loading = True
        try:
            if self.collection is not None:
                self.collection.delete(self.face_id)
            else:
                _ = self.client.delete_face(self.face_id)
        finally:
            self.loading = False
        self.deleted = True
        self.stop_log_stream()

    # Live logs

    def _on_event(self, event: StatusEvent | FailureEvent | LogEvent) -> None:
        if isinstance(event, StatusEvent):
            return
        with self._logs_lock:
            self.logs.append(event)

    def start_log_stream(self) -> None:
        if self.connection is None or self._streaming:
            return
        self.connection.subscribe_face(self.face_id, self._on_event)
        self._streaming = True

    def stop_log_stream(self) -> None:
        if self.connection is None or not self._streaming:
            return
        self.connection.unsubscribe(self.face_id)
        self._streaming = False

    def log_lines(self) -> list[str]:
        with self._logs_lock:
            events = list(self.logs)
        lines = []
        for event in events:
            label = "failed" if isinstance(event, FailureEvent) else event.log_type
            lines.append(f"[{label}] {event.message or ''}".rstrip())
        return lines

    # Display helpers

    @property
    def title(self) -> str:
        if self.bundle is None:
            return "Processing..."
        return self.bundle.profile.full_name or "Processing..."

    @property
    def image_uri(self) -> str | None:
        if self.bundle is None:
            return None
        return base64_to_uri(self.bundle.face_info.original_image_base64)

    @property
    def uploaded_label(self) -> str:
        timestamp = self.bundle.face_info.upload_timestamp if self.bundle else None
        return f"Uploaded: {format_timestamp(timestamp)}"

    def bio_paragraphs(self) -> list[list[TextSegment]]:
        if self.bundle is None:
            return []
        return format_bio_text(self.bundle.profile.bio_text)

    @property
    def processing_banner(self) -> str | None:
        """Stage message while processing is incomplete, otherwise None."""
        if self.bundle is None or self.bundle.processing_details.complete:
            return None
        details = self.bundle.processing_details
        return details.message or f"Processing: {details.stage or 'in progress'}"
