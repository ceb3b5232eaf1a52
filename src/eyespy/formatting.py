"""Helpers turning API payloads into displayable values."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict

JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"

_BOLD_PATTERN = re.compile(r"(\*\*.*?\*\*)")
_ANSI_BOLD = "\033[1m"
_ANSI_RESET = "\033[0m"


class TextSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    bold: bool = False


def base64_to_uri(value: str | None) -> str | None:
    """Prefix a raw base64 payload so it can be used as an image URI."""
    if value and not value.startswith("data:image"):
        return f"{JPEG_DATA_URI_PREFIX}{value}"
    return value


def format_timestamp(value: str | datetime | None) -> str:
    """Render a timestamp in local time, 'Unknown' when missing."""
    if not value:
        return "Unknown"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return "Invalid Date"
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_text(text: str | None) -> list[TextSegment]:
    """Split text on **bold** markers into plain and bold segments."""
    if not text:
        return []
    segments: list[TextSegment] = []
    for part in _BOLD_PATTERN.split(text):
        if part.startswith("**") and part.endswith("**") and len(part) >= 4:
            inner = part[2:-2]
            if inner:
                segments.append(TextSegment(text=inner, bold=True))
        elif part:
            segments.append(TextSegment(text=part))
    return segments


def format_bio_text(bio_text: str | None) -> list[list[TextSegment]]:
    """Split a biography into paragraphs (blank-line separated) of segments."""
    if not bio_text:
        return []
    return [format_text(paragraph) for paragraph in bio_text.split("\n\n")]


def render_segments(segments: list[TextSegment], ansi: bool = True) -> str:
    if not ansi:
        return "".join(segment.text for segment in segments)
    return "".join(
        f"{_ANSI_BOLD}{segment.text}{_ANSI_RESET}" if segment.bold else segment.text
        for segment in segments
    )
