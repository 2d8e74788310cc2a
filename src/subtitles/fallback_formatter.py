"""Deterministic, oracle-free cue construction.

Used once, after the retry pass still fails validation. Every validator rule
maps to an explicit construction step below, so for any segment list
without markup the output renders to a WebVTT document that validates
cleanly:

- whitespace is normalized and empty segments are dropped (EMPTY_CUE)
- text is greedily wrapped by grapheme count (MAX_CPL, MAX_LINES)
- long segments are cut into evenly timed pieces (MAX_DURATION)
- a final sweep in whole milliseconds enforces order, gaps, minimum
  duration and reading speed (MONOTONIC_TIMESTAMPS, OVERLAP, MIN_GAP,
  MIN_DURATION, MAX_CPS)
"""

import logging
import math

from src.subtitles.models import LanguageProfile, SubtitleCue, SubtitleSegment
from src.subtitles.validator import count_chars, split_graphemes

logger = logging.getLogger(__name__)


def wrap_text(text: str, max_cpl: int) -> list[str]:
    """Greedy word wrap by grapheme count.

    Words longer than ``max_cpl`` (including unspaced CJK runs) are hard
    split into ``max_cpl``-sized pieces.
    """
    lines: list[str] = []
    current: list[str] = []

    for word in text.split():
        graphemes = split_graphemes(word)

        if len(graphemes) > max_cpl:
            if current:
                lines.append("".join(current))
                current = []
            for offset in range(0, len(graphemes), max_cpl):
                piece = graphemes[offset : offset + max_cpl]
                if len(piece) == max_cpl:
                    lines.append("".join(piece))
                else:
                    current = list(piece)
            continue

        if not current:
            current = list(graphemes)
        elif len(current) + 1 + len(graphemes) <= max_cpl:
            current.extend([" ", *graphemes])
        else:
            lines.append("".join(current))
            current = list(graphemes)

    if current:
        lines.append("".join(current))
    return lines


def chunk_text(text: str, profile: LanguageProfile) -> list[str]:
    """Wrap text and group lines into cue texts of at most ``max_lines`` lines."""
    lines = wrap_text(text, profile.max_cpl)
    return [
        "\n".join(lines[offset : offset + profile.max_lines])
        for offset in range(0, len(lines), profile.max_lines)
    ]


def _divide_words(words: list[str], parts: int) -> list[list[str]]:
    base, extra = divmod(len(words), parts)
    groups: list[list[str]] = []
    position = 0
    for part in range(parts):
        size = base + (1 if part < extra else 0)
        groups.append(words[position : position + size])
        position += size
    return groups


def _segment_pieces(text: str, duration_ms: int, profile: LanguageProfile) -> list[str]:
    chunks = chunk_text(text, profile)
    max_duration_ms = math.floor(profile.max_duration * 1000)
    needed = max(1, math.ceil(duration_ms / max_duration_ms))
    if needed <= len(chunks):
        return chunks

    words = text.split()
    parts = min(needed, len(words))
    if parts <= len(chunks):
        return chunks

    pieces: list[str] = []
    for group in _divide_words(words, parts):
        pieces.extend(chunk_text(" ".join(group), profile))
    return pieces


def build_fallback_cues(
    segments: list[SubtitleSegment], profile: LanguageProfile
) -> list[SubtitleCue]:
    """Build profile-conformant cues directly from raw segments.

    Args:
    ----
        segments: Raw segments, in any order
        profile: Thresholds for the track's language class

    Returns:
    -------
        Renumbered cues whose times are whole milliseconds

    """
    timed_pieces: list[tuple[int, int, str]] = []

    for segment in sorted(segments, key=lambda s: s.start):
        text = " ".join(segment.text.split())
        if not text:
            continue

        start_ms = max(0, round(segment.start * 1000) - profile.start_offset_ms)
        end_ms = max(start_ms, round(segment.end * 1000) + profile.end_offset_ms)
        duration_ms = end_ms - start_ms

        pieces = _segment_pieces(text, duration_ms, profile)
        count = len(pieces)
        for position, piece in enumerate(pieces):
            slot_start = start_ms + duration_ms * position // count
            slot_end = start_ms + duration_ms * (position + 1) // count
            timed_pieces.append((slot_start, slot_end, piece))

    min_duration_ms = math.ceil(profile.min_duration * 1000)
    max_duration_ms = math.floor(profile.max_duration * 1000)

    cues: list[SubtitleCue] = []
    previous_end_ms: int | None = None
    for slot_start, slot_end, text in timed_pieces:
        start_ms = slot_start
        if previous_end_ms is not None:
            start_ms = max(start_ms, previous_end_ms + profile.min_gap_ms)

        chars = count_chars(text.replace("\n", ""))
        required_ms = max(min_duration_ms, math.ceil(chars * 1000 / profile.max_cps))
        end_ms = max(slot_end, start_ms + required_ms)
        end_ms = min(end_ms, start_ms + max_duration_ms)

        cues.append(
            SubtitleCue(
                index=len(cues), start=start_ms / 1000, end=end_ms / 1000, text=text
            )
        )
        previous_end_ms = end_ms

    logger.info(
        f"Fallback formatter built {len(cues)} cue(s) from {len(segments)} segment(s)"
    )
    return cues
