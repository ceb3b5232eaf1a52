"""Inbound real-time events, decoded once at the channel boundary."""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..api.schemas import ProcessingStatus, coerce_status

PROCESSING_UPDATE = "processing_update"
GLOBAL_PROCESSING_UPDATE = "global_processing_update"
PROCESSING_FAILED = "processing_failed"
PROCESSING_LOG = "processing_log"
GLOBAL_PROCESSING_LOG = "global_processing_log"

EVENT_NAMES: frozenset[str] = frozenset(
    {
        PROCESSING_UPDATE,
        GLOBAL_PROCESSING_UPDATE,
        PROCESSING_FAILED,
        PROCESSING_LOG,
        GLOBAL_PROCESSING_LOG,
    }
)


class _EventBase(BaseModel):
    face_id: str | None = Field(default=None, description="Target face, None for broadcasts")
    message: str | None = None
    timestamp: float = Field(default_factory=time.time, description="Epoch seconds")

    @field_validator("face_id", mode="before")
    @classmethod
    def _blank_id_is_broadcast(cls, value: Any) -> Any:
        if value in ("", None):
            return None
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        return time.time() if value is None else value


class StatusEvent(_EventBase):
    """Status change of a face (processing_update / global_processing_update)."""

    kind: Literal["status"] = "status"
    status: ProcessingStatus
    broadcast: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, value: Any) -> Any:
        return coerce_status(value) or value


class FailureEvent(_EventBase):
    """Dedicated failure signal (processing_failed). Authoritative."""

    kind: Literal["failure"] = "failure"
    from_failure_channel: bool = True

    @property
    def status(self) -> ProcessingStatus:
        return "failed"


class LogEvent(_EventBase):
    """Free-form processing log or info message."""

    kind: Literal["log"] = "log"
    log_type: str = Field(default="info", description="info, warning, error, status, ...")
    status: ProcessingStatus | None = None
    broadcast: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> Any:
        return coerce_status(value)


RealtimeEvent = Annotated[StatusEvent | FailureEvent | LogEvent, Field(discriminator="kind")]

_event_adapter: TypeAdapter[StatusEvent | FailureEvent | LogEvent] = TypeAdapter(RealtimeEvent)


def decode_event(event_name: str, payload: Any) -> StatusEvent | FailureEvent | LogEvent | None:
    """Decode a raw channel message into a typed event.

    Returns None (and logs) for unknown event names and malformed payloads.
    """
    if event_name not in EVENT_NAMES:
        logger.debug(f"Ignoring unknown real-time event '{event_name}'")
        return None
    if not isinstance(payload, dict):
        logger.warning(f"Dropping '{event_name}' event with non-object payload: {payload!r}")
        return None

    data = dict(payload)
    if event_name in (PROCESSING_UPDATE, GLOBAL_PROCESSING_UPDATE):
        data["kind"] = "status"
        data["broadcast"] = event_name == GLOBAL_PROCESSING_UPDATE
    elif event_name == PROCESSING_FAILED:
        data["kind"] = "failure"
        data["from_failure_channel"] = True
    else:
        data["kind"] = "log"
        data["broadcast"] = event_name == GLOBAL_PROCESSING_LOG
        if "log_type" not in data and "type" in data:
            data["log_type"] = data.pop("type")

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning(f"Dropping malformed '{event_name}' event: {e}")
        return None


def status_as_log(event: StatusEvent, face_id: str) -> LogEvent:
    """Convert a status change into a log entry for display uniformity."""
    return LogEvent(
        face_id=face_id,
        message=event.message or f"Status changed to {event.status}",
        log_type="status",
        status=event.status,
        timestamp=event.timestamp,
    )
