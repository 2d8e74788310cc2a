"""Data models for the subtitle post-process engine.

Segments come from speech-to-text, cues are derived from them at every
pipeline stage, and ``PostProcessOutput`` is the immutable record that is
returned to callers and persisted in the output store.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LanguageClass(str, Enum):
    """Script family used to pick readability thresholds."""

    LTR = "LTR"
    RTL = "RTL"
    CJK = "CJK"


class SubtitleOrigin(str, Enum):
    """Provenance of a subtitle track; governs whether it may be mutated."""

    AI_RAW = "ai-raw"
    AI_PROCESSED = "ai-processed"
    AI_HUMAN = "ai-human"
    HUMAN = "human"


class ValidationRule(str, Enum):
    WEBVTT_HEADER = "WEBVTT_HEADER"
    WEBVTT_TIMESTAMP = "WEBVTT_TIMESTAMP"
    MAX_LINES = "MAX_LINES"
    MAX_CPL = "MAX_CPL"
    MAX_CPS = "MAX_CPS"
    MIN_DURATION = "MIN_DURATION"
    MAX_DURATION = "MAX_DURATION"
    MIN_GAP = "MIN_GAP"
    OVERLAP = "OVERLAP"
    EMPTY_CUE = "EMPTY_CUE"
    MONOTONIC_TIMESTAMPS = "MONOTONIC_TIMESTAMPS"
    DISALLOWED_MARKUP = "DISALLOWED_MARKUP"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SubtitleSegment(BaseModel):
    """Raw speech-to-text segment (times in seconds)."""

    model_config = ConfigDict(frozen=True)

    id: str
    start: float
    end: float
    text: str


class SubtitleCue(BaseModel):
    """One timed caption unit; ``index`` is 0-based and contiguous."""

    model_config = ConfigDict(frozen=True)

    index: int
    start: float
    end: float
    text: str


class LanguageProfile(BaseModel):
    """Readability and timing thresholds for one script family."""

    model_config = ConfigDict(frozen=True)

    target_cps: float
    max_cps: float
    target_cpl: int
    max_cpl: int
    max_lines: int
    min_duration: float
    max_duration: float
    start_offset_ms: int
    end_offset_ms: int
    min_gap_ms: int
    profile_version: str

    @property
    def min_gap(self) -> float:
        """Minimum inter-cue gap in seconds."""
        return self.min_gap_ms / 1000


class RuleViolation(BaseModel):
    """A single validator finding; ``cue_index`` is -1 for document errors."""

    model_config = ConfigDict(frozen=True)

    cue_index: int
    rule: ValidationRule
    measured: int | float | str
    limit: int | float | str


class TheologyIssue(BaseModel):
    """Advisory doctrinal-review finding. Never mutates cue text."""

    model_config = ConfigDict(frozen=True)

    cue_index: int
    severity: IssueSeverity = IssueSeverity.LOW
    message: str
    suggestion: str | None = None


class LanguageQualityDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    cue_index: int
    before_text: str
    after_text: str


class PostProcessInput(BaseModel):
    """One invocation: a single asset/language pair.

    ``origin`` is kept as a raw string so unknown values can be normalized
    by the origin gate instead of being rejected.
    """

    model_config = ConfigDict(frozen=True)

    asset_id: str
    language_tag: str
    origin: str | None = None
    segments: list[SubtitleSegment] = Field(default_factory=list)


class PostProcessOutput(BaseModel):
    """Immutable result of one post-process run."""

    model_config = ConfigDict(frozen=True)

    language_tag: str
    language_class: LanguageClass
    profile: LanguageProfile
    idempotency_key: str
    cache_hit: bool = False
    origin: SubtitleOrigin
    origin_before: SubtitleOrigin
    origin_after: SubtitleOrigin
    vtt: str
    cues: list[SubtitleCue] = Field(default_factory=list)
    theology_issues: list[TheologyIssue] = Field(default_factory=list)
    language_quality_deltas: list[LanguageQualityDelta] = Field(default_factory=list)
    validation_errors: list[RuleViolation] = Field(default_factory=list)
    ai_retry_count: int = 0
    used_fallback: bool = False
    post_process_input_sha256: str
    whisper_segments_sha256: str
    profile_version: str
    prompt_version: str
    validator_version: str
    fallback_version: str
    skipped: bool = False
    skip_reason: str | None = None
