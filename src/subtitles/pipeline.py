"""Subtitle Post-Process Pipeline

Turns raw speech-to-text segments for one (asset, language) pair into a
validated WebVTT track. The run goes through these steps:

1. Origin gate: only ``ai-raw`` tracks may be changed. Anything else gets a
   read-only rendering and is flagged ``skipped``.
2. Cache lookup by idempotency key. A hit is returned as stored.
3. Cue building, then the theology check and the language-quality pass
   (the only two oracle calls of a run).
4. Render and validate, moving through a small finite-state machine of
   correction stages: ATTEMPT, then RETRY (one split pass), then FALLBACK
   (one deterministic rebuild). If errors remain after FALLBACK the run
   fails.
5. A clean result is stored in the output store. Failures are never stored.
"""

import asyncio
import json
import logging
from enum import Enum

from src.ai.content_oracle import ContentOracle
from src.ai.language_quality_pass import run_language_quality_pass
from src.ai.theology_pass import run_theology_pass
from src.subtitles.cue_builder import build_initial_cues
from src.subtitles.fallback_formatter import build_fallback_cues
from src.subtitles.idempotency import (
    build_idempotency_key,
    build_post_process_input_sha256,
    hash_segments,
)
from src.subtitles.language_classifier import classify_language
from src.subtitles.models import (
    LanguageProfile,
    PostProcessInput,
    PostProcessOutput,
    RuleViolation,
    SubtitleCue,
    SubtitleOrigin,
    SubtitleSegment,
)
from src.subtitles.post_process_config import (
    FALLBACK_VERSION,
    PROFILE_VERSION,
    PROMPT_VERSION,
    SKIP_REASON_NOT_MUTABLE,
    VALIDATOR_VERSION,
    can_mutate_subtitle,
    get_profile,
    normalize_subtitle_origin,
)
from src.subtitles.retry_corrector import apply_retry_fixes
from src.subtitles.validator import ValidationResult, validate_webvtt
from src.subtitles.vtt import render_webvtt
from src.utils.caching import SubtitleOutputStore

logger = logging.getLogger(__name__)


class SubtitleValidationFailure(Exception):
    """Raised when validation errors survive both the retry and the fallback.

    The failed output is never cached, so re-running after the cause is
    fixed can succeed.
    """

    def __init__(self, errors: list[RuleViolation], idempotency_key: str):
        self.errors = errors
        self.idempotency_key = idempotency_key
        details = json.dumps(
            [error.model_dump(mode="json") for error in errors], ensure_ascii=False
        )
        super().__init__(
            f"Subtitle post-process validation failed after retry and fallback: {details}"
        )


class PostProcessStage(Enum):
    """Correction stage of one run."""

    ATTEMPT = "attempt"
    RETRY = "retry"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_NEXT_STAGE_ON_ERROR = {
    PostProcessStage.ATTEMPT: PostProcessStage.RETRY,
    PostProcessStage.RETRY: PostProcessStage.FALLBACK,
    PostProcessStage.FALLBACK: PostProcessStage.FAILED,
}


def next_stage(stage: PostProcessStage, errors: list[RuleViolation]) -> PostProcessStage:
    """Return the stage that follows ``stage`` given its validation errors."""
    if stage not in _NEXT_STAGE_ON_ERROR:
        raise ValueError(f"{stage.value} is a terminal stage")
    if not errors:
        return PostProcessStage.SUCCEEDED
    return _NEXT_STAGE_ON_ERROR[stage]


def correct_cues(
    stage: PostProcessStage,
    validation: ValidationResult,
    segments: list[SubtitleSegment],
    profile: LanguageProfile,
) -> list[SubtitleCue]:
    """Build the candidate cues for a correction stage."""
    if stage is PostProcessStage.RETRY:
        return apply_retry_fixes(validation.cues, validation.errors, profile)
    if stage is PostProcessStage.FALLBACK:
        return build_fallback_cues(segments, profile)
    raise ValueError(f"No correction defined for stage {stage.value}")


class SubtitlePostProcessor:
    """Runs the post-process pipeline with injected collaborators.

    Args:
    ----
        oracle: Content oracle used for the theology and language passes
        store: Output store shared by every invocation of this processor

    """

    def __init__(self, oracle: ContentOracle, store: SubtitleOutputStore):
        self.oracle = oracle
        self.store = store

    async def run(self, request: PostProcessInput) -> PostProcessOutput:
        origin = normalize_subtitle_origin(request.origin)
        language_class = classify_language(request.language_tag)
        profile = get_profile(language_class)

        segments_sha256 = hash_segments(request.segments)
        idempotency_key = build_idempotency_key(
            request.asset_id, request.language_tag, origin, segments_sha256
        )
        common = {
            "language_tag": request.language_tag,
            "language_class": language_class,
            "profile": profile,
            "idempotency_key": idempotency_key,
            "origin": origin,
            "origin_before": origin,
            "post_process_input_sha256": build_post_process_input_sha256(
                request.asset_id, request.language_tag, origin, segments_sha256
            ),
            "whisper_segments_sha256": segments_sha256,
            "profile_version": PROFILE_VERSION,
            "prompt_version": PROMPT_VERSION,
            "validator_version": VALIDATOR_VERSION,
            "fallback_version": FALLBACK_VERSION,
        }

        if not can_mutate_subtitle(origin):
            logger.info(
                f"Origin '{origin.value}' is not mutable for asset {request.asset_id} "
                f"({request.language_tag}), rendering read-only"
            )
            cues = build_initial_cues(request.segments)
            return PostProcessOutput(
                **common,
                origin_after=origin,
                vtt=render_webvtt(cues),
                cues=cues,
                skipped=True,
                skip_reason=SKIP_REASON_NOT_MUTABLE,
            )

        cached = await asyncio.to_thread(self.store.get, idempotency_key)
        if cached is not None:
            logger.info(f"Cache hit for {request.language_tag}: {idempotency_key}")
            return cached.model_copy(update={"cache_hit": True})
        logger.info(f"Cache miss for {request.language_tag}: {idempotency_key}")

        base_cues = build_initial_cues(request.segments)
        theology_issues = await run_theology_pass(
            self.oracle, request.asset_id, request.language_tag, base_cues
        )
        cues, deltas = await run_language_quality_pass(
            self.oracle, request.asset_id, request.language_tag, base_cues
        )

        stage = PostProcessStage.ATTEMPT
        vtt = render_webvtt(cues)
        validation = validate_webvtt(vtt, profile)
        ai_retry_count = 0
        used_fallback = False

        while True:
            stage = next_stage(stage, validation.errors)
            if stage is PostProcessStage.SUCCEEDED:
                break
            if stage is PostProcessStage.FAILED:
                logger.error(
                    f"Validation failed after retry and fallback for asset "
                    f"{request.asset_id} ({request.language_tag}): "
                    f"{len(validation.errors)} error(s)"
                )
                raise SubtitleValidationFailure(validation.errors, idempotency_key)

            logger.info(
                f"{len(validation.errors)} validation error(s) for "
                f"{request.language_tag}, entering {stage.value} stage"
            )
            if stage is PostProcessStage.RETRY:
                ai_retry_count = 1
            elif stage is PostProcessStage.FALLBACK:
                used_fallback = True

            cues = correct_cues(stage, validation, request.segments, profile)
            vtt = render_webvtt(cues)
            validation = validate_webvtt(vtt, profile)

        output = PostProcessOutput(
            **common,
            origin_after=SubtitleOrigin.AI_PROCESSED,
            vtt=vtt,
            cues=validation.cues,
            theology_issues=theology_issues,
            language_quality_deltas=deltas,
            validation_errors=validation.errors,
            ai_retry_count=ai_retry_count,
            used_fallback=used_fallback,
        )
        await asyncio.to_thread(self.store.insert, output)
        logger.info(
            f"Post-processed {request.language_tag} for asset {request.asset_id}: "
            f"{len(output.cues)} cue(s), retry={ai_retry_count}, fallback={used_fallback}"
        )
        return output


async def run_subtitle_post_process(
    request: PostProcessInput,
    oracle: ContentOracle,
    store: SubtitleOutputStore,
) -> PostProcessOutput:
    """Run one post-process invocation with the given oracle and store."""
    return await SubtitlePostProcessor(oracle, store).run(request)
