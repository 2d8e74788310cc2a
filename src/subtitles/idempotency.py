"""Content hashing for cache addressing and track deduplication."""

import hashlib
import json

from src.subtitles.models import SubtitleOrigin, SubtitleSegment
from src.subtitles.post_process_config import (
    SUBTITLE_POST_PROCESS_VERSIONS,
    TRACK_TYPE,
)


def hash_sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def canonical_segments_json(segments: list[SubtitleSegment]) -> str:
    """Serialize segments sorted by start with millisecond-rounded times.

    Float jitter below a millisecond and input reordering produce the same
    text, so they map to the same hash.
    """
    canonical = [
        {
            "id": segment.id,
            "start": round(segment.start, 3),
            "end": round(segment.end, 3),
            "text": segment.text,
        }
        for segment in sorted(segments, key=lambda s: (round(s.start, 3), s.id))
    ]
    return json.dumps(canonical, ensure_ascii=False, separators=(",", ":"))


def hash_segments(segments: list[SubtitleSegment]) -> str:
    return hash_sha256(canonical_segments_json(segments))


def build_idempotency_key(
    asset_id: str,
    language_tag: str,
    origin: SubtitleOrigin,
    segments_sha256: str,
) -> str:
    """Hash the invocation identity together with every version tag.

    Bumping any version tag changes the key, so outputs computed under old
    thresholds or prompts are never served again.
    """
    payload = {
        "asset_id": asset_id,
        "track_type": TRACK_TYPE,
        "language_tag": language_tag,
        "origin": origin.value,
        "whisper_segments_sha256": segments_sha256,
        **SUBTITLE_POST_PROCESS_VERSIONS,
    }
    return hash_sha256(json.dumps(payload, sort_keys=True, ensure_ascii=False))


def build_post_process_input_sha256(
    asset_id: str,
    language_tag: str,
    origin: SubtitleOrigin,
    segments_sha256: str,
) -> str:
    """Version-independent content identity of one invocation."""
    payload = {
        "asset_id": asset_id,
        "language_tag": language_tag,
        "origin": origin.value,
        "whisper_segments_sha256": segments_sha256,
    }
    return hash_sha256(json.dumps(payload, sort_keys=True, ensure_ascii=False))
