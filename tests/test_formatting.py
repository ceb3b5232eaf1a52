from datetime import UTC, datetime

from eyespy.formatting import (
    TextSegment,
    base64_to_uri,
    format_bio_text,
    format_text,
    format_timestamp,
    render_segments,
)


def test_base64_to_uri_adds_prefix():
    assert base64_to_uri("abc123") == "data:image/jpeg;base64,abc123"


def test_base64_to_uri_keeps_existing_data_uri():
    uri = "data:image/png;base64,xyz"
    assert base64_to_uri(uri) == uri


def test_base64_to_uri_passes_through_empty():
    assert base64_to_uri(None) is None
    assert base64_to_uri("") == ""


def test_format_timestamp_unknown_and_invalid():
    assert format_timestamp(None) == "Unknown"
    assert format_timestamp("") == "Unknown"
    assert format_timestamp("not a date") == "Invalid Date"


def test_format_timestamp_naive_values_are_rendered_as_is():
    assert format_timestamp(datetime(2024, 5, 1, 9, 30, 15)) == "2024-05-01 09:30:15"
    assert format_timestamp("2024-05-01T09:30:15") == "2024-05-01 09:30:15"


def test_format_timestamp_aware_values_use_local_time():
    value = datetime(2024, 5, 1, 9, 30, 15, tzinfo=UTC)
    expected = value.astimezone().strftime("%Y-%m-%d %H:%M:%S")

    assert format_timestamp(value) == expected
    assert format_timestamp("2024-05-01T09:30:15Z") == expected


def test_format_text_splits_bold_segments():
    segments = format_text("Known as **Jane Doe**, born in **1980**.")

    assert segments == [
        TextSegment(text="Known as "),
        TextSegment(text="Jane Doe", bold=True),
        TextSegment(text=", born in "),
        TextSegment(text="1980", bold=True),
        TextSegment(text="."),
    ]


def test_format_text_without_markers():
    assert format_text("plain") == [TextSegment(text="plain")]
    assert format_text(None) == []


def test_format_text_unbalanced_marker_stays_plain():
    assert format_text("**open only") == [TextSegment(text="**open only")]


def test_format_bio_text_paragraphs():
    paragraphs = format_bio_text("**Name**: Jane\n\nWorks at **ACME**")

    assert len(paragraphs) == 2
    assert paragraphs[0][0] == TextSegment(text="Name", bold=True)
    assert paragraphs[1][-1] == TextSegment(text="ACME", bold=True)
    assert format_bio_text(None) == []


def test_render_segments():
    segments = format_text("a **b** c")

    assert render_segments(segments, ansi=False) == "a b c"
    assert render_segments(segments) == "a \033[1mb\033[0m c"
