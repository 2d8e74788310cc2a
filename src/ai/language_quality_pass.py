"""Language-quality pass: oracle text edits plus fixed terminology rules.

Edits aimed at a cue whose original text is a non-speech marker are thrown
away, whatever the oracle supplies for it.
"""

import logging
import re
from typing import Any

from src.ai.content_oracle import (
    ContentOracle,
    build_oracle_request,
    coerce_cue_index,
)
from src.subtitles.models import LanguageQualityDelta, SubtitleCue
from src.subtitles.non_speech import is_non_speech_text

logger = logging.getLogger(__name__)

TERM_NORMALIZATION: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"jerusalem", re.IGNORECASE), "Jerusalem"),
    (re.compile(r"isaiah", re.IGNORECASE), "Isaiah"),
    (re.compile(r"psalm\s+(\d+)", re.IGNORECASE), r"Psalm \1"),
]


def normalize_terminology(text: str) -> str:
    """Collapse whitespace, trim, then apply proper-noun capitalization."""
    output = " ".join(text.split())
    for pattern, replacement in TERM_NORMALIZATION:
        output = pattern.sub(replacement, output)
    return output


def _normalize_cue_text(text: str) -> str:
    if is_non_speech_text(text):
        return text.strip()
    return normalize_terminology(text)


def collect_edits(cues: list[SubtitleCue], raw_cues: Any) -> dict[int, str]:
    """Map cue index to replacement text, dropping malformed entries."""
    if not isinstance(raw_cues, list):
        if raw_cues is not None:
            logger.warning(
                f"Language-quality pass returned {type(raw_cues).__name__} for cues, "
                "expected a list"
            )
        return {}

    originals = {cue.index: cue.text for cue in cues}
    edits: dict[int, str] = {}
    for item in raw_cues:
        if not isinstance(item, dict):
            logger.warning(f"Dropping language edit that is not an object: {item!r}")
            continue

        index = coerce_cue_index(item.get("index"))
        text = item.get("text")
        if index is None or not isinstance(text, str):
            logger.warning(f"Dropping malformed language edit: {item!r}")
            continue

        if is_non_speech_text(originals.get(index, "")):
            logger.info(f"Ignoring language edit for non-speech cue {index}")
            continue

        edits[index] = text
    return edits


def apply_language_edits(
    cues: list[SubtitleCue], edits: dict[int, str]
) -> tuple[list[SubtitleCue], list[LanguageQualityDelta]]:
    """Apply edits, normalize every cue and report what changed."""
    updated: list[SubtitleCue] = []
    deltas: list[LanguageQualityDelta] = []

    for cue in cues:
        text = _normalize_cue_text(edits.get(cue.index, cue.text))
        updated.append(cue.model_copy(update={"text": text}))
        if text != cue.text:
            deltas.append(
                LanguageQualityDelta(
                    cue_index=cue.index, before_text=cue.text, after_text=text
                )
            )
    return updated, deltas


async def run_language_quality_pass(
    oracle: ContentOracle,
    asset_id: str,
    language_tag: str,
    cues: list[SubtitleCue],
) -> tuple[list[SubtitleCue], list[LanguageQualityDelta]]:
    request = build_oracle_request(asset_id, language_tag, cues)
    response = await oracle.language_quality_pass(request)
    if isinstance(response, dict):
        raw_cues = response.get("cues")
    else:
        logger.warning(
            f"Language-quality pass returned {type(response).__name__}, "
            "expected an object"
        )
        raw_cues = None
    edits = collect_edits(cues, raw_cues)
    updated, deltas = apply_language_edits(cues, edits)
    logger.info(
        f"Language-quality pass changed {len(deltas)} of {len(cues)} cue(s) "
        f"for {language_tag}"
    )
    return updated, deltas
