"""WebVTT codec: cue list to canonical text and back.

The renderer is the single source of truth for what downstream consumers
receive. The parser is deliberately tolerant: it never raises, it records
header and timing problems so the validator can report them as rules.
"""

import re
from dataclasses import dataclass, field

from src.subtitles.models import SubtitleCue

VTT_HEADER = "WEBVTT"
VTT_TIME_SEPARATOR = " --> "
VTT_LINE_IDENTIFIER = "-->"
VTT_TIMESTAMP_PATTERN = re.compile(r"^(\d{2,}):(\d{2}):(\d{2})\.(\d{3})$")
VTT_HOURS_IN_SECONDS = 3600
VTT_MINUTES_IN_SECONDS = 60
VTT_MILLISECONDS_DIVISOR = 1000


@dataclass
class ParsedVtt:
    """Result of scanning a WebVTT document."""

    cues: list[SubtitleCue] = field(default_factory=list)
    header_valid: bool = False
    timestamp_errors: list[int] = field(default_factory=list)


def to_vtt_timestamp(total_seconds: float) -> str:
    """Format seconds as ``HH:MM:SS.mmm``, rounded to the millisecond and clamped at 0."""
    total_ms = max(0, round(total_seconds * VTT_MILLISECONDS_DIVISOR))
    hours, remainder = divmod(total_ms, VTT_HOURS_IN_SECONDS * VTT_MILLISECONDS_DIVISOR)
    minutes, remainder = divmod(
        remainder, VTT_MINUTES_IN_SECONDS * VTT_MILLISECONDS_DIVISOR
    )
    seconds, milliseconds = divmod(remainder, VTT_MILLISECONDS_DIVISOR)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{milliseconds:03d}"


def parse_vtt_timestamp(value: str) -> float | None:
    match = VTT_TIMESTAMP_PATTERN.match(value.strip())
    if not match:
        return None

    hours, minutes, seconds, millis = (int(group) for group in match.groups())
    return (
        hours * VTT_HOURS_IN_SECONDS
        + minutes * VTT_MINUTES_IN_SECONDS
        + seconds
        + millis / VTT_MILLISECONDS_DIVISOR
    )


def render_webvtt(cues: list[SubtitleCue]) -> str:
    lines = [VTT_HEADER, ""]
    for cue in cues:
        lines.append(
            f"{to_vtt_timestamp(cue.start)}{VTT_TIME_SEPARATOR}{to_vtt_timestamp(cue.end)}"
        )
        lines.append(cue.text)
        lines.append("")
    return "\n".join(lines) + "\n"


def parse_webvtt(vtt: str) -> ParsedVtt:
    """Scan a WebVTT document into cues in file order.

    A block whose timing line cannot be split on ``-->`` into two parsable
    timestamps is recorded in ``timestamp_errors`` (by the index the next
    cue would have had) and the whole block is skipped.
    """
    lines = vtt.replace("\r\n", "\n").split("\n")
    result = ParsedVtt(header_valid=bool(lines) and lines[0].strip() == VTT_HEADER)

    i = 1 if result.header_valid else 0
    cue_index = 0

    while i < len(lines):
        line = lines[i].strip()
        if not line:
            i += 1
            continue

        parts = [part.strip() for part in line.split(VTT_LINE_IDENTIFIER)]
        start = parse_vtt_timestamp(parts[0]) if len(parts) == 2 else None
        end = parse_vtt_timestamp(parts[1]) if len(parts) == 2 else None
        if start is None or end is None:
            result.timestamp_errors.append(cue_index)
            i += 1
            while i < len(lines) and lines[i].strip():
                i += 1
            continue

        i += 1
        text_lines = []
        while i < len(lines) and lines[i].strip():
            text_lines.append(lines[i])
            i += 1

        result.cues.append(
            SubtitleCue(index=cue_index, start=start, end=end, text="\n".join(text_lines))
        )
        cue_index += 1

    return result
