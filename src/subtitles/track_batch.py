"""Concurrent post-processing of several language tracks of one asset."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from src.subtitles.manifest import build_post_process_manifest
from src.subtitles.models import PostProcessInput, PostProcessOutput, SubtitleSegment
from src.subtitles.pipeline import SubtitlePostProcessor
from src.subtitles.post_process_config import is_allowed_language

logger = logging.getLogger(__name__)


class NoEligibleTracksError(Exception):
    """Raised when the language allowlist filters out every requested track."""

    pass


@dataclass
class SubtitleTrackRequest:
    language_tag: str
    segments: list[SubtitleSegment]
    origin: str | None = None


@dataclass
class TrackBatchResult:
    outputs: list[PostProcessOutput] = field(default_factory=list)
    skipped_languages: list[str] = field(default_factory=list)
    manifest: dict[str, Any] = field(default_factory=dict)


async def process_subtitle_tracks(
    processor: SubtitlePostProcessor,
    asset_id: str,
    tracks: list[SubtitleTrackRequest],
    allowlist: set[str],
) -> TrackBatchResult:
    """Post-process every allowed track concurrently.

    Each track is an independent invocation; they only share the
    processor's output store. The first failing track's exception
    propagates.

    Args:
    ----
        processor: Pipeline with its oracle and store
        asset_id: Asset the tracks belong to
        tracks: One request per language
        allowlist: Lower-cased language tags (``*`` allows all)

    Returns:
    -------
        Outputs in input order, the skipped languages and the manifest

    Raises:
    ------
        NoEligibleTracksError: If no track's language is allowed

    """
    eligible: list[SubtitleTrackRequest] = []
    skipped: list[str] = []
    for track in tracks:
        if is_allowed_language(track.language_tag, allowlist):
            eligible.append(track)
        else:
            logger.info(
                f"Skipping {track.language_tag} for asset {asset_id}: "
                "not in the post-process allowlist"
            )
            skipped.append(track.language_tag)

    if not eligible:
        raise NoEligibleTracksError(
            f"No subtitle tracks eligible for post-process for asset {asset_id} "
            f"(allowlist: {', '.join(sorted(allowlist)) or 'empty'})"
        )

    logger.info(f"Post-processing {len(eligible)} track(s) for asset {asset_id}")
    outputs = await asyncio.gather(
        *(
            processor.run(
                PostProcessInput(
                    asset_id=asset_id,
                    language_tag=track.language_tag,
                    origin=track.origin,
                    segments=track.segments,
                )
            )
            for track in eligible
        )
    )

    return TrackBatchResult(
        outputs=list(outputs),
        skipped_languages=skipped,
        manifest=build_post_process_manifest(asset_id, list(outputs)),
    )
