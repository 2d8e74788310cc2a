"""Rule-based WebVTT validation against a language profile.

Validation always runs on rendered text re-parsed through the codec, so
what is checked is exactly what downstream consumers receive. Character
counts use Unicode grapheme clusters (``regex`` ``\\X``) so combining marks
and multi-code-point glyphs count as a reader perceives them.
"""

import logging
import re
from dataclasses import dataclass, field

import regex

from src.subtitles.models import (
    LanguageProfile,
    RuleViolation,
    SubtitleCue,
    ValidationRule,
)
from src.subtitles.vtt import parse_webvtt

logger = logging.getLogger(__name__)

EPSILON = 1e-6
MARKUP_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")
GRAPHEME_PATTERN = regex.compile(r"\X")
TIMESTAMP_FORMAT_HINT = "HH:MM:SS.mmm --> HH:MM:SS.mmm"


@dataclass
class ValidationResult:
    cues: list[SubtitleCue] = field(default_factory=list)
    errors: list[RuleViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def split_graphemes(text: str) -> list[str]:
    return GRAPHEME_PATTERN.findall(text) if text else []


def count_chars(text: str) -> int:
    """Count user-perceived characters (grapheme clusters)."""
    return len(split_graphemes(text))


def normalize_cue_text(text: str) -> str:
    """Strip markup, trim each line and collapse inner whitespace."""
    stripped = MARKUP_PATTERN.sub("", text)
    lines = [WHITESPACE_PATTERN.sub(" ", line.strip()) for line in stripped.split("\n")]
    return "\n".join(lines).strip()


def _violation(
    cue_index: int,
    rule: ValidationRule,
    measured: int | float | str,
    limit: int | float | str,
) -> RuleViolation:
    return RuleViolation(cue_index=cue_index, rule=rule, measured=measured, limit=limit)


def validate_cues(cues: list[SubtitleCue], profile: LanguageProfile) -> list[RuleViolation]:
    errors: list[RuleViolation] = []
    min_gap = profile.min_gap

    previous_start = 0.0
    previous_end = -1.0

    for cue in cues:
        normalized = normalize_cue_text(cue.text)
        if not normalized:
            errors.append(_violation(cue.index, ValidationRule.EMPTY_CUE, 0, ">0"))
            continue

        duration = cue.end - cue.start
        if duration + EPSILON < profile.min_duration:
            errors.append(
                _violation(
                    cue.index,
                    ValidationRule.MIN_DURATION,
                    round(duration, 4),
                    profile.min_duration,
                )
            )
        if duration - EPSILON > profile.max_duration:
            errors.append(
                _violation(
                    cue.index,
                    ValidationRule.MAX_DURATION,
                    round(duration, 4),
                    profile.max_duration,
                )
            )

        lines = normalized.split("\n")
        if len(lines) > profile.max_lines:
            errors.append(
                _violation(cue.index, ValidationRule.MAX_LINES, len(lines), profile.max_lines)
            )

        cpl = max((count_chars(normalize_cue_text(line)) for line in lines), default=0)
        if cpl > profile.max_cpl:
            errors.append(_violation(cue.index, ValidationRule.MAX_CPL, cpl, profile.max_cpl))

        cps_chars = count_chars(normalized.replace("\n", ""))
        cps = cps_chars / duration if duration > 0 else float("inf")
        if cps - EPSILON > profile.max_cps:
            errors.append(
                _violation(
                    cue.index,
                    ValidationRule.MAX_CPS,
                    round(cps, 4) if duration > 0 else "inf",
                    profile.max_cps,
                )
            )

        if cue.start < previous_start or cue.end < cue.start:
            errors.append(
                _violation(
                    cue.index,
                    ValidationRule.MONOTONIC_TIMESTAMPS,
                    f"{cue.start}-{cue.end}",
                    f">= {previous_start}",
                )
            )

        if cue.start < previous_end:
            errors.append(
                _violation(
                    cue.index,
                    ValidationRule.OVERLAP,
                    round(previous_end - cue.start, 4),
                    0,
                )
            )

        gap = cue.start - previous_end
        if cue.index > 0 and gap + EPSILON < min_gap:
            errors.append(
                _violation(cue.index, ValidationRule.MIN_GAP, round(gap, 4), min_gap)
            )

        if MARKUP_PATTERN.search(cue.text):
            errors.append(
                _violation(cue.index, ValidationRule.DISALLOWED_MARKUP, "present", "absent")
            )

        previous_start = cue.start
        previous_end = cue.end

    return errors


def validate_webvtt(vtt: str, profile: LanguageProfile) -> ValidationResult:
    """Validate a WebVTT document; document-level errors use cue index -1."""
    parsed = parse_webvtt(vtt)
    result = ValidationResult(cues=parsed.cues)

    if not parsed.header_valid:
        result.errors.append(
            _violation(-1, ValidationRule.WEBVTT_HEADER, "missing", "WEBVTT")
        )

    for cue_index in parsed.timestamp_errors:
        result.errors.append(
            _violation(
                cue_index, ValidationRule.WEBVTT_TIMESTAMP, "invalid", TIMESTAMP_FORMAT_HINT
            )
        )

    result.errors.extend(validate_cues(parsed.cues, profile))
    if result.errors:
        logger.debug(
            f"Validation found {len(result.errors)} error(s): "
            f"{sorted({error.rule.value for error in result.errors})}"
        )
    return result
