from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from loguru import logger

from ..api.schemas import FaceRecord, ProcessingStatus, is_terminal
from ..realtime.events import FailureEvent, LogEvent, StatusEvent

_NO_TIMESTAMP = datetime.min.replace(tzinfo=UTC)


def display_order(records: Iterable[FaceRecord]) -> list[FaceRecord]:
    """Newest upload first, ties broken by identifier descending."""
    return sorted(
        records,
        key=lambda record: (record.upload_timestamp or _NO_TIMESTAMP, record.face_id),
        reverse=True,
    )


class FaceCollection:
    """Identifier-keyed face collection merging REST snapshots and live events.

    This is the single entry point for every mutation of the collection.
    Real-time status and failure events always win over snapshots; once an
    event carries a terminal status the face is locked and later snapshots
    can no longer change its status or message. Locks last for the lifetime
    of the collection. Faces deleted through this collection are never
    resurrected by a snapshot.
    """

    def __init__(self):
        self._faces: dict[str, FaceRecord] = {}
        # face_id -> (status, message) last set by a real-time event
        self._locked: dict[str, tuple[ProcessingStatus, str | None]] = {}
        self._deleted: set[str] = set()
        # uploaded faces not yet seen in a snapshot -> server total before the upload
        self._pending: dict[str, int] = {}
        self._total_count = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._faces)

    def __contains__(self, face_id: object) -> bool:
        with self._lock:
            return face_id in self._faces

    def get(self, face_id: str) -> FaceRecord | None:
        with self._lock:
            return self._faces.get(face_id)

    @property
    def total_count(self) -> int:
        with self._lock:
            return self._total_count

    def is_locked(self, face_id: str) -> bool:
        with self._lock:
            return face_id in self._locked

    def locked_ids(self) -> set[str]:
        with self._lock:
            return set(self._locked)

    def ordered(self) -> list[FaceRecord]:
        with self._lock:
            return display_order(self._faces.values())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _merge_record(self, incoming: FaceRecord) -> FaceRecord:
        update: dict[str, object] = {}
        existing = self._faces.get(incoming.face_id)
        if existing is not None and existing.deleting:
            update["deleting"] = True

        lock = self._locked.get(incoming.face_id)
        if lock is not None:
            status, message = lock
            update.update(status=status, status_message=message, locked=True)
        else:
            update["locked"] = False
        return incoming.model_copy(update=update)

    def apply_snapshot(
        self, faces: Iterable[FaceRecord], total_count: int, append: bool = False
    ) -> list[FaceRecord]:
        """Merge a page of faces from the list endpoint.

        Args:
            faces: Records from the snapshot
            total_count: Server-side total reported with the snapshot
            append: Add to the collection (pagination) instead of replacing it

        Returns:
            The collection in display order
        """
        with self._lock:
            merged: dict[str, FaceRecord] = dict(self._faces) if append else {}
            resurrect_attempts = 0
            for record in faces:
                if record.face_id in self._deleted:
                    resurrect_attempts += 1
                    continue
                merged[record.face_id] = self._merge_record(record)
                self._pending.pop(record.face_id, None)

            pending_kept = 0
            for face_id, total_before in self._pending.items():
                if face_id not in merged and face_id in self._faces:
                    merged[face_id] = self._faces[face_id]
                    # a server total above the pre-upload total already counts it
                    if total_count <= total_before:
                        pending_kept += 1

            self._faces = merged
            self._total_count = max(
                total_count - resurrect_attempts + pending_kept, len(merged)
            )
            if resurrect_attempts:
                logger.debug(f"Snapshot listed {resurrect_attempts} deleted face(s), skipped")
            return display_order(self._faces.values())

    # ------------------------------------------------------------------
    # Real-time events
    # ------------------------------------------------------------------

    def apply_event(self, event: StatusEvent | FailureEvent | LogEvent) -> bool:
        """Apply a real-time event.

        Returns:
            True when the event moved a face into a terminal status, meaning a
            follow-up snapshot refresh should be scheduled.
        """
        if isinstance(event, LogEvent):
            return False
        if isinstance(event, FailureEvent):
            status: ProcessingStatus = "failed"
        elif isinstance(event, StatusEvent):
            status = event.status
        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

        face_id = event.face_id
        with self._lock:
            if face_id is None or face_id not in self._faces:
                logger.debug(f"Dropping {event.kind} event for unknown face {face_id}")
                return False

            was_locked = face_id in self._locked
            terminal = is_terminal(status)
            if terminal or was_locked:
                self._locked[face_id] = (status, event.message)

            self._faces[face_id] = self._faces[face_id].model_copy(
                update={
                    "status": status,
                    "status_message": event.message,
                    "locked": face_id in self._locked,
                }
            )

        if terminal:
            logger.info(f"Face {face_id} reached terminal status '{status}'")
        else:
            logger.debug(f"Face {face_id} status -> {status}")
        return terminal

    # ------------------------------------------------------------------
    # Client-initiated changes
    # ------------------------------------------------------------------

    def add_uploaded(self, record: FaceRecord) -> None:
        """Insert a face synthesised right after a successful upload."""
        with self._lock:
            if record.face_id in self._faces:
                return
            self._deleted.discard(record.face_id)
            self._pending[record.face_id] = self._total_count
            self._faces[record.face_id] = self._merge_record(record)
            self._total_count += 1

    def mark_deleting(self, face_id: str, deleting: bool = True) -> None:
        with self._lock:
            record = self._faces.get(face_id)
            if record is not None:
                self._faces[face_id] = record.model_copy(update={"deleting": deleting})

    def remove(self, face_id: str) -> bool:
        """Remove a face after a successful delete call. Decrements the total by one."""
        with self._lock:
            self._deleted.add(face_id)
            self._pending.pop(face_id, None)
            if self._faces.pop(face_id, None) is None:
                return False
            self._total_count = max(self._total_count - 1, 0)
            return True
