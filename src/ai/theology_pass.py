"""Advisory doctrinal review of subtitle cues.

The pass never changes cue text. Only the shape of the oracle's answer is
checked here; oracle failures propagate to the caller.
"""

import logging
from typing import Any

from src.ai.content_oracle import (
    DEFAULT_ISSUE_MESSAGE,
    ContentOracle,
    build_oracle_request,
    coerce_cue_index,
)
from src.subtitles.models import IssueSeverity, SubtitleCue, TheologyIssue

logger = logging.getLogger(__name__)

VALID_SEVERITIES = {severity.value for severity in IssueSeverity}


def sanitize_theology_issues(
    cues: list[SubtitleCue], raw_issues: Any
) -> list[TheologyIssue]:
    """Drop malformed or out-of-range issues and coerce the rest.

    Args:
    ----
        cues: Cues the oracle was asked about
        raw_issues: The ``issues`` value from the oracle response

    Returns:
    -------
        Issues with a valid cue index, a known severity and a message

    """
    if not isinstance(raw_issues, list):
        if raw_issues is not None:
            logger.warning(
                f"Theology check returned {type(raw_issues).__name__} for issues, "
                "expected a list"
            )
        return []

    issues: list[TheologyIssue] = []
    for item in raw_issues:
        if not isinstance(item, dict):
            logger.warning(f"Dropping theology issue that is not an object: {item!r}")
            continue

        cue_index = coerce_cue_index(item.get("cueIndex", item.get("cue_index")))
        if cue_index is None or not 0 <= cue_index < len(cues):
            logger.warning(f"Dropping theology issue with invalid cue index: {item!r}")
            continue

        severity = item.get("severity")
        if not isinstance(severity, str) or severity not in VALID_SEVERITIES:
            severity = IssueSeverity.LOW.value

        message = item.get("message")
        suggestion = item.get("suggestion")
        issues.append(
            TheologyIssue(
                cue_index=cue_index,
                severity=IssueSeverity(severity),
                message=str(message) if message is not None else DEFAULT_ISSUE_MESSAGE,
                suggestion=str(suggestion) if suggestion else None,
            )
        )
    return issues


async def run_theology_pass(
    oracle: ContentOracle,
    asset_id: str,
    language_tag: str,
    cues: list[SubtitleCue],
) -> list[TheologyIssue]:
    request = build_oracle_request(asset_id, language_tag, cues)
    response = await oracle.theology_check(request)
    if isinstance(response, dict):
        raw_issues = response.get("issues")
    else:
        logger.warning(
            f"Theology check returned {type(response).__name__}, expected an object"
        )
        raw_issues = None
    issues = sanitize_theology_issues(cues, raw_issues)
    logger.info(f"Theology check reported {len(issues)} issue(s) for {language_tag}")
    return issues
