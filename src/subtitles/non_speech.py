"""Detection of non-speech marker text such as ``[Music]`` or ``♪ ... ♪``."""

import re

BRACKETED_NON_SPEECH = re.compile(
    r"^\[(music|applause|laughter|silence|noise|inaudible|offscreen)\]$",
    re.IGNORECASE,
)
MUSICAL_NON_SPEECH = re.compile(r"^♪.*♪$")


def is_non_speech_text(text: str) -> bool:
    """Return True if the trimmed text is a non-speech marker."""
    normalized = text.strip()
    if not normalized:
        return False

    return bool(
        BRACKETED_NON_SPEECH.match(normalized) or MUSICAL_NON_SPEECH.match(normalized)
    )
