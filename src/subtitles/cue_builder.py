"""Initial cue construction from raw speech-to-text segments."""

import logging

from src.subtitles.models import SubtitleCue, SubtitleSegment
from src.subtitles.non_speech import is_non_speech_text
from src.subtitles.post_process_config import MERGE_GAP_SEC

logger = logging.getLogger(__name__)


def build_initial_cues(
    segments: list[SubtitleSegment], merge_gap_sec: float = MERGE_GAP_SEC
) -> list[SubtitleCue]:
    """Merge adjacent speech segments into cues.

    Segments are sorted by start. Two neighbours merge when the gap between
    them is at most ``merge_gap_sec`` and neither is a non-speech marker;
    markers always stay standalone. Empty segments are dropped.

    Args:
    ----
        segments: Raw segments, in any order
        merge_gap_sec: Largest gap (seconds) bridged by a merge

    Returns:
    -------
        Cues numbered 0..n-1

    """
    merged: list[dict] = []

    for segment in sorted(segments, key=lambda s: s.start):
        text = segment.text.strip()
        if not text:
            continue

        if not merged:
            merged.append({"start": segment.start, "end": segment.end, "text": text})
            continue

        previous = merged[-1]
        gap = segment.start - previous["end"]
        if (
            not is_non_speech_text(text)
            and not is_non_speech_text(previous["text"])
            and gap <= merge_gap_sec
        ):
            previous["end"] = max(previous["end"], segment.end)
            previous["text"] = f"{previous['text']} {text}".strip()
            continue

        merged.append({"start": segment.start, "end": segment.end, "text": text})

    logger.debug(f"Built {len(merged)} cue(s) from {len(segments)} segment(s)")
    return [
        SubtitleCue(index=index, start=item["start"], end=item["end"], text=item["text"])
        for index, item in enumerate(merged)
    ]
