from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ProcessingStatus = Literal[
    "uploading",
    "analyzing",
    "searching",
    "generating",
    "checking",
    "complete",
    "failed",
]

PROCESSING_STATUSES: frozenset[str] = frozenset(get_args(ProcessingStatus))
TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "failed"})


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def coerce_status(value: Any) -> str | None:
    """Map a wire status onto ProcessingStatus, None when unknown."""
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    return value if value in PROCESSING_STATUSES else None


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class FaceRecord(BaseModel):
    """One uploaded face and its processing lifecycle."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    face_id: str = Field(..., min_length=1, description="Unique face identifier")
    upload_timestamp: datetime | None = Field(default=None, description="Upload time (UTC)")
    thumbnail_base64: str | None = Field(default=None, description="Thumbnail image payload")
    original_image_base64: str | None = Field(
        default=None, description="Full-size image payload (result bundle only)"
    )
    status: ProcessingStatus | None = Field(
        default=None,
        validation_alias=AliasChoices("processing_status", "status"),
        description="Processing status, None when the server sent none or an unknown value",
    )
    status_message: str | None = Field(
        default=None,
        validation_alias=AliasChoices("status_message", "message"),
        description="Free-form status message",
    )
    locked: bool = Field(
        default=False, description="Terminal status was observed via a real-time event"
    )
    deleting: bool = Field(default=False, description="A delete request is in flight")

    @field_validator("face_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _lenient_status(cls, value: Any) -> str | None:
        return coerce_status(value)

    @field_validator("upload_timestamp", mode="after")
    @classmethod
    def _normalise_timestamp(cls, value: datetime | None) -> datetime | None:
        return to_utc(value) if value is not None else None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class FaceListPage(BaseModel):
    """One page of GET /faces."""

    faces: list[FaceRecord] = Field(default_factory=list)
    total_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("total_faces", "total_count"),
        description="Total number of faces on the server",
    )

    @field_validator("faces", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return value or []


class Profile(BaseModel):
    full_name: str = Field(default="Unknown", description="Identified full name")
    bio_text: str | None = Field(default=None, description="Biography with **bold** markers")

    @field_validator("full_name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return value or "Unknown"


class Match(BaseModel):
    """A web match candidate for a face."""

    url: str = Field(..., min_length=1)
    thumbnail_base64: str = Field(..., min_length=1)
    source_type: str | None = Field(default=None, description="Where the match was found")
    score: float | None = Field(default=None, description="Confidence score (percent)")

    @property
    def confidence_label(self) -> str:
        if self.score is None:
            return "Confidence: n/a"
        return f"Confidence: {self.score:g}%"


class ProcessingDetails(BaseModel):
    complete: bool = False
    stage: str | None = None
    message: str | None = None
    completion_time: datetime | None = None


class FaceResultBundle(BaseModel):
    """Full result payload of GET /results/{face_id}."""

    face_info: FaceRecord
    profile: Profile = Field(default_factory=Profile)
    top_matches: list[Match] = Field(default_factory=list)
    processing_details: ProcessingDetails = Field(default_factory=ProcessingDetails)


class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = Field(..., description="'success' when the upload was accepted")
    message: str | None = None
    face_id: str | None = Field(default=None, description="Identifier assigned to the new face")

    @field_validator("face_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def ok(self) -> bool:
        return self.status == "success"


class PaginationCursor(BaseModel):
    """Pagination state owned by the collection controller."""

    model_config = ConfigDict(validate_assignment=True)

    limit: int = Field(default=20, gt=0)
    offset: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
    has_more: bool = True

    def reset(self) -> None:
        self.offset = 0
        self.has_more = True

    def advance(self, requested_offset: int, returned: int, total_count: int) -> None:
        """Move the cursor after a page of `returned` records at `requested_offset`."""
        self.offset = max(self.offset, requested_offset + returned)
        self.total_count = total_count
        self.has_more = returned >= self.limit
