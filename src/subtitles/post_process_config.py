# src/subtitles/post_process_config.py
import logging
import os
from pathlib import Path

import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    model_validator,
)

from src.subtitles.models import LanguageClass, LanguageProfile, SubtitleOrigin

logger = logging.getLogger(__name__)

PROFILE_VERSION = "v1"
PROMPT_VERSION = "v1"
VALIDATOR_VERSION = "v1"
FALLBACK_VERSION = "v1"
SUBTITLE_POST_PROCESS_VERSIONS = {
    "profile_version": PROFILE_VERSION,
    "prompt_version": PROMPT_VERSION,
    "validator_version": VALIDATOR_VERSION,
    "fallback_version": FALLBACK_VERSION,
}

TRACK_TYPE = "captions"
SKIP_REASON_NOT_MUTABLE = "subtitle origin is not mutable"
ALLOWLIST_ENV_VAR = "SUBTITLE_POST_PROCESS_ALLOWLIST"
ALLOW_ALL_LANGUAGES = "*"

# Cue builder merge window
MERGE_GAP_SEC = 0.3

ORACLE_MAX_TOKENS = 2048
ORACLE_TEMPERATURE = 0.2
ORACLE_TIMEOUT_SECONDS = 60
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_LANGUAGE_ALLOWLIST = [
    "en",
    "es",
    "fr",
    "de",
    "ar",
    "he",
    "fa",
    "ur",
    "ja",
    "ko",
    "zh-Hans",
    "zh-Hant",
]

LTR_PROFILE = LanguageProfile(
    target_cps=13.5,
    max_cps=17,
    target_cpl=32,
    max_cpl=38,
    max_lines=2,
    min_duration=1.3,
    max_duration=6.0,
    start_offset_ms=150,
    end_offset_ms=50,
    min_gap_ms=50,
    profile_version=PROFILE_VERSION,
)

RTL_PROFILE = LanguageProfile(
    target_cps=12,
    max_cps=16,
    target_cpl=28,
    max_cpl=34,
    max_lines=2,
    min_duration=1.5,
    max_duration=5.5,
    start_offset_ms=150,
    end_offset_ms=50,
    min_gap_ms=50,
    profile_version=PROFILE_VERSION,
)

# Denser glyphs: fewer characters per line and per second, single line.
CJK_PROFILE = LanguageProfile(
    target_cps=8,
    max_cps=11,
    target_cpl=14,
    max_cpl=18,
    max_lines=1,
    min_duration=1.2,
    max_duration=4.5,
    start_offset_ms=150,
    end_offset_ms=50,
    min_gap_ms=50,
    profile_version=PROFILE_VERSION,
)

SUBTITLE_PROFILES: dict[LanguageClass, LanguageProfile] = {
    LanguageClass.LTR: LTR_PROFILE,
    LanguageClass.RTL: RTL_PROFILE,
    LanguageClass.CJK: CJK_PROFILE,
}


def get_profile(language_class: LanguageClass) -> LanguageProfile:
    return SUBTITLE_PROFILES[language_class]


class OracleSettings(BaseModel):
    provider: str = Field("deterministic")
    api_key_env_var: str = Field("OPENROUTER_API_KEY")
    models: list[str] = Field(["openai/gpt-4o-mini"], min_length=1)
    base_url: str | None = Field(DEFAULT_OPENROUTER_BASE_URL)
    max_tokens: int = Field(ORACLE_MAX_TOKENS)
    temperature: float = Field(ORACLE_TEMPERATURE)
    timeout_seconds: int = Field(ORACLE_TIMEOUT_SECONDS)
    theology_prompt_path: str = Field("src/ai/prompts/subtitle_theology_check.txt")
    language_quality_prompt_path: str = Field(
        "src/ai/prompts/subtitle_language_quality.txt"
    )

    @model_validator(mode="after")
    def validate_provider(self) -> "OracleSettings":
        if self.provider not in ("deterministic", "openrouter"):
            raise ValueError(
                f"Unknown oracle provider: {self.provider!r}. "
                "Valid options: deterministic, openrouter"
            )
        return self


class CacheSettings(BaseModel):
    backend: str = Field("json", description="'memory' or 'json'")
    json_path: str = Field(".data/subtitle-post-process-cache.json")

    @model_validator(mode="after")
    def validate_backend(self) -> "CacheSettings":
        if self.backend not in ("memory", "json"):
            raise ValueError(
                f"Unknown cache backend: {self.backend!r}. Valid options: memory, json"
            )
        return self


class PostProcessConfig(BaseModel):
    oracle_settings: OracleSettings = Field(
        default_factory=lambda: OracleSettings()  # type: ignore[call-arg]
    )
    cache_settings: CacheSettings = Field(
        default_factory=lambda: CacheSettings()  # type: ignore[call-arg]
    )
    language_allowlist: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LANGUAGE_ALLOWLIST)
    )

    project_root: Path = Field(
        default_factory=lambda: Path(__file__).resolve().parent.parent.parent,
        init=False,
    )

    @model_validator(mode="after")
    def resolve_paths(self) -> "PostProcessConfig":
        for attr in ("theology_prompt_path", "language_quality_prompt_path"):
            path_obj = Path(getattr(self.oracle_settings, attr))
            if not path_obj.is_absolute():
                setattr(self.oracle_settings, attr, str(self.project_root / path_obj))

        cache_path = Path(self.cache_settings.json_path)
        if not cache_path.is_absolute():
            self.cache_settings.json_path = str(self.project_root / cache_path)
        return self


def load_post_process_config(config_path: Path) -> PostProcessConfig:
    logger.info(f"Loading subtitle post-process config from: {config_path}")
    if not config_path.is_file():
        raise FileNotFoundError(f"Subtitle post-process config not found: {config_path}")
    try:
        with open(config_path, encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Config file is not a valid dictionary.")
        return PostProcessConfig(**config_data)
    except ValidationError as e:
        logger.error(f"Config validation error: {e}")
        raise ValueError("Config validation failed.") from e
    except yaml.YAMLError as e:
        logger.error(f"Error parsing config data: {e}", exc_info=True)
        raise ValueError("Unexpected error during config parsing.") from e


DEFAULT_CONFIG_PATH = (
    Path(__file__).resolve().parent.parent.parent
    / "config"
    / "subtitle_post_process.yaml"
)
try:
    config = load_post_process_config(DEFAULT_CONFIG_PATH)
    logger.info("Default subtitle post-process configuration loaded successfully")
except (FileNotFoundError, ValueError) as e:
    logger.error(f"Failed to load default configuration: {e}")
    config = PostProcessConfig()


def get_language_allowlist(configured: list[str] | None = None) -> set[str]:
    """Return the effective allowlist, lower-cased.

    ``SUBTITLE_POST_PROCESS_ALLOWLIST`` overrides the configured list when
    set; ``*`` allows every language.
    """
    raw = os.environ.get(ALLOWLIST_ENV_VAR, "").strip()
    if not raw:
        source = configured if configured is not None else config.language_allowlist
        return {value.strip().lower() for value in source if value.strip()}

    if raw == ALLOW_ALL_LANGUAGES:
        return {ALLOW_ALL_LANGUAGES}

    return {value.strip().lower() for value in raw.split(",") if value.strip()}


def is_allowed_language(language_tag: str, allowlist: set[str]) -> bool:
    """Match the tag or any of its hyphen prefixes against the allowlist."""
    if ALLOW_ALL_LANGUAGES in allowlist:
        return True

    normalized = language_tag.strip().lower()
    if not normalized:
        return False

    parts = [part for part in normalized.split("-") if part]
    for length in range(len(parts), 0, -1):
        if "-".join(parts[:length]) in allowlist:
            return True
    return False


def normalize_subtitle_origin(origin: str | SubtitleOrigin | None) -> SubtitleOrigin:
    """Map any unknown or missing origin to ``human`` (the read-only default)."""
    if isinstance(origin, SubtitleOrigin):
        return origin
    try:
        return SubtitleOrigin(origin)
    except ValueError:
        return SubtitleOrigin.HUMAN


def can_mutate_subtitle(origin: SubtitleOrigin) -> bool:
    return origin is SubtitleOrigin.AI_RAW
