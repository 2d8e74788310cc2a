"""Payloads handed to downstream consumers of post-processed tracks."""

from datetime import datetime, timezone
from typing import Any

from src.subtitles.models import PostProcessOutput

TRACK_SOURCE = "ai_post_processed"


def _versions(output: PostProcessOutput) -> dict[str, str]:
    return {
        "profile_version": output.profile_version,
        "prompt_version": output.prompt_version,
        "validator_version": output.validator_version,
        "fallback_version": output.fallback_version,
    }


def build_track_attach_metadata(output: PostProcessOutput) -> dict[str, Any]:
    """Manifest entry used by the delivery service to deduplicate track attachment."""
    return {
        "language": output.language_tag,
        "source": TRACK_SOURCE,
        "ai_post_processed": not output.skipped and not output.used_fallback,
        "origin_before": output.origin_before.value,
        "origin_after": output.origin_after.value,
        "language_class": output.language_class.value,
        **_versions(output),
        "whisper_segments_sha256": output.whisper_segments_sha256,
        "post_process_input_sha256": output.post_process_input_sha256,
        "idempotency_key": output.idempotency_key,
    }


def build_qa_report(output: PostProcessOutput) -> dict[str, Any]:
    """Per-track quality report: findings, edits and how the track was produced."""
    return {
        "language": output.language_tag,
        "origin_before": output.origin_before.value,
        "origin_after": output.origin_after.value,
        "language_class": output.language_class.value,
        "profile": output.profile.model_dump(mode="json"),
        "theology_issues": [
            issue.model_dump(mode="json") for issue in output.theology_issues
        ],
        "language_quality_deltas": [
            delta.model_dump(mode="json") for delta in output.language_quality_deltas
        ],
        "validation_errors": [
            error.model_dump(mode="json") for error in output.validation_errors
        ],
        "ai_retry_count": output.ai_retry_count,
        "used_fallback": output.used_fallback,
        "skipped": output.skipped,
        "skip_reason": output.skip_reason,
        **_versions(output),
        "whisper_segments_sha256": output.whisper_segments_sha256,
        "post_process_input_sha256": output.post_process_input_sha256,
        "idempotency_key": output.idempotency_key,
        "cache_hit": output.cache_hit,
    }


def build_post_process_manifest(
    asset_id: str, tracks: list[PostProcessOutput]
) -> dict[str, Any]:
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "asset_id": asset_id,
        "tracks": [
            {
                "language": track.language_tag,
                "idempotency_key": track.idempotency_key,
                "cache_hit": track.cache_hit,
                "origin_before": track.origin_before.value,
                "origin_after": track.origin_after.value,
                "used_fallback": track.used_fallback,
                "ai_retry_count": track.ai_retry_count,
                "skipped": track.skipped,
                "skip_reason": track.skip_reason,
                "whisper_segments_sha256": track.whisper_segments_sha256,
                "post_process_input_sha256": track.post_process_input_sha256,
            }
            for track in tracks
        ],
    }
