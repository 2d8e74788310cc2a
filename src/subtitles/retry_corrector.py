"""Single corrective pass that splits cues failing size rules.

Only cues whose every failing rule is one of MAX_CPS, MAX_CPL or MAX_LINES
are split; duration, overlap and markup failures cannot be fixed by a
split and are left for the fallback formatter.
"""

import logging
from collections import defaultdict

from src.subtitles.models import (
    LanguageProfile,
    RuleViolation,
    SubtitleCue,
    ValidationRule,
)
from src.subtitles.validator import split_graphemes

logger = logging.getLogger(__name__)

SPLITTABLE_RULES = frozenset(
    {ValidationRule.MAX_CPS, ValidationRule.MAX_CPL, ValidationRule.MAX_LINES}
)


def split_text_in_half(text: str) -> tuple[str, str]:
    """Split at the word boundary nearest the character midpoint.

    A single word is split at its grapheme midpoint instead.
    """
    words = text.split()
    if len(words) <= 1:
        graphemes = split_graphemes(text.strip())
        middle = (len(graphemes) + 1) // 2
        return "".join(graphemes[:middle]).strip(), "".join(graphemes[middle:]).strip()

    joined = " ".join(words)
    graphemes = split_graphemes(joined)
    midpoint = len(graphemes) / 2
    boundaries = [position for position, char in enumerate(graphemes) if char == " "]
    split_at = min(boundaries, key=lambda position: (abs(position - midpoint), position))
    return "".join(graphemes[:split_at]).strip(), "".join(graphemes[split_at + 1 :]).strip()


def _is_splittable(cue_errors: list[RuleViolation]) -> bool:
    return bool(cue_errors) and all(error.rule in SPLITTABLE_RULES for error in cue_errors)


def apply_retry_fixes(
    cues: list[SubtitleCue],
    errors: list[RuleViolation],
    profile: LanguageProfile,
) -> list[SubtitleCue]:
    """Split each size-failing cue at its temporal midpoint.

    A cue is split only when its span exceeds ``min_gap + 2 * min_duration``
    so both halves can still satisfy the minimum duration; the halves are
    separated by the profile's minimum gap. Output cues are renumbered.
    """
    errors_by_cue: dict[int, list[RuleViolation]] = defaultdict(list)
    for error in errors:
        if error.cue_index >= 0:
            errors_by_cue[error.cue_index].append(error)

    gap = profile.min_gap
    corrected: list[SubtitleCue] = []

    for cue in cues:
        cue_errors = errors_by_cue.get(cue.index, [])
        span = cue.end - cue.start
        if not _is_splittable(cue_errors) or span <= gap + profile.min_duration * 2:
            if cue_errors:
                logger.debug(
                    f"Cue {cue.index} left unchanged by retry "
                    f"(rules: {[error.rule.value for error in cue_errors]}, span {span:.3f}s)"
                )
            corrected.append(cue.model_copy(update={"index": len(corrected)}))
            continue

        left_text, right_text = split_text_in_half(cue.text)
        middle = cue.start + span / 2
        logger.debug(f"Splitting cue {cue.index} at {middle:.3f}s")

        corrected.append(
            SubtitleCue(
                index=len(corrected),
                start=cue.start,
                end=middle - gap / 2,
                text=left_text or cue.text,
            )
        )
        corrected.append(
            SubtitleCue(
                index=len(corrected),
                start=middle + gap / 2,
                end=cue.end,
                text=right_text or cue.text,
            )
        )

    return corrected
