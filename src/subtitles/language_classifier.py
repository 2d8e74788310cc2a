"""Language tag to script-family classification."""

from typing import NamedTuple

from src.subtitles.models import LanguageClass

RTL_LANGUAGES = frozenset({"ar", "he", "fa", "ur"})
CJK_LANGUAGES = frozenset({"zh", "ja", "ko"})

RTL_SCRIPTS = frozenset({"arab", "hebr"})
CJK_SCRIPTS = frozenset({"hans", "hant", "hani", "kana", "jpan", "hang", "kore"})

DEFAULT_LANGUAGE = "en"


class ParsedLanguageTag(NamedTuple):
    language: str
    script: str | None = None


def parse_language_tag(value: str) -> ParsedLanguageTag:
    """Split a BCP-47 tag into base language and optional script subtag.

    The script is the first 4-letter subtag after the base language.
    An empty tag parses as English.
    """
    normalized = value.strip()
    if not normalized:
        return ParsedLanguageTag(DEFAULT_LANGUAGE)

    parts = [part for part in normalized.split("-") if part]
    language = parts[0].lower() if parts else DEFAULT_LANGUAGE

    script = None
    for part in parts[1:]:
        if len(part) == 4:
            script = part.lower()
            break

    return ParsedLanguageTag(language, script)


def classify_language(language_tag: str) -> LanguageClass:
    """Classify a language tag; an explicit script subtag wins over the base language."""
    parsed = parse_language_tag(language_tag)

    if parsed.script in RTL_SCRIPTS:
        return LanguageClass.RTL
    if parsed.script in CJK_SCRIPTS:
        return LanguageClass.CJK

    if parsed.language in RTL_LANGUAGES:
        return LanguageClass.RTL
    if parsed.language in CJK_LANGUAGES:
        return LanguageClass.CJK

    return LanguageClass.LTR
