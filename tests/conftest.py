"""Pytest configuration and shared fixtures for subtitle post-process tests."""

import math
import random
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from aioresponses import aioresponses

from src.ai.content_oracle import DeterministicContentOracle
from src.subtitles.models import (
    LanguageClass,
    LanguageProfile,
    PostProcessInput,
    PostProcessOutput,
    SubtitleCue,
    SubtitleOrigin,
    SubtitleSegment,
)
from src.subtitles.pipeline import SubtitlePostProcessor
from src.subtitles.post_process_config import OracleSettings, get_profile
from src.utils.caching import InMemorySubtitleOutputStore
from src.utils.circuit_breaker import content_oracle_circuit_breaker


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def ltr_profile() -> LanguageProfile:
    return get_profile(LanguageClass.LTR)


@pytest.fixture
def rtl_profile() -> LanguageProfile:
    return get_profile(LanguageClass.RTL)


@pytest.fixture
def cjk_profile() -> LanguageProfile:
    return get_profile(LanguageClass.CJK)


@pytest.fixture
def memory_store() -> InMemorySubtitleOutputStore:
    return InMemorySubtitleOutputStore()


@pytest.fixture
def recording_oracle() -> DeterministicContentOracle:
    """Deterministic oracle that records every request it receives."""
    return DeterministicContentOracle()


@pytest.fixture
def processor(
    recording_oracle: DeterministicContentOracle,
    memory_store: InMemorySubtitleOutputStore,
) -> SubtitlePostProcessor:
    return SubtitlePostProcessor(recording_oracle, memory_store)


@pytest.fixture
def sample_segments() -> list[SubtitleSegment]:
    """Two English segments close enough to merge into one cue."""
    return [
        SubtitleSegment(id="seg-1", start=0.0, end=2.5, text="In the beginning."),
        SubtitleSegment(
            id="seg-2", start=2.8, end=5.2, text="The earth was without form."
        ),
    ]


@pytest.fixture
def sample_request(sample_segments: list[SubtitleSegment]) -> PostProcessInput:
    return PostProcessInput(
        asset_id="asset-1",
        language_tag="en",
        origin="ai-raw",
        segments=sample_segments,
    )


@pytest.fixture
def make_cue():
    """Factory for cues with sensible defaults."""

    def _make(index: int, start: float, end: float, text: str = "Hello") -> SubtitleCue:
        return SubtitleCue(index=index, start=start, end=end, text=text)

    return _make


@pytest.fixture
def oracle_settings(temp_dir: Path) -> OracleSettings:
    """OpenRouter settings with prompt templates in a temporary directory."""
    theology_prompt = temp_dir / "theology.txt"
    theology_prompt.write_text(
        "Review {ASSET_ID} ({LANGUAGE_TAG}, {PROMPT_VERSION}): {FULL_TRANSCRIPT}\n"
        "{CUES_JSON}",
        encoding="utf-8",
    )
    language_prompt = temp_dir / "language.txt"
    language_prompt.write_text(
        "Polish {ASSET_ID} ({LANGUAGE_TAG}): {FULL_TRANSCRIPT}\n{CUES_JSON}",
        encoding="utf-8",
    )
    return OracleSettings(
        provider="openrouter",
        models=["test/model-a", "test/model-b"],
        base_url="https://oracle.test/api/v1",
        timeout_seconds=5,
        theology_prompt_path=str(theology_prompt),
        language_quality_prompt_path=str(language_prompt),
    )


@pytest.fixture
def mock_aioresponses() -> Generator[aioresponses, None, None]:
    """Mock aiohttp responses for testing."""
    with aioresponses() as m:
        yield m


@pytest.fixture(autouse=True)
def reset_oracle_circuit_breaker() -> Generator[None, None, None]:
    """Keep the shared oracle circuit breaker from leaking state between tests."""
    content_oracle_circuit_breaker.reset()
    yield
    content_oracle_circuit_breaker.reset()


@pytest.fixture(autouse=True)
def clear_allowlist_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUBTITLE_POST_PROCESS_ALLOWLIST", raising=False)


LTR_WORDS = ["grace", "peace", "faith", "truth", "light", "hope", "mercy", "wisdom"]
RTL_WORDS = ["نعمة", "سلام", "إيمان", "حق", "نور", "رجاء", "رحمة", "حكمة"]
CJK_TOKENS = ["字幕品質", "日本語", "検証", "読みやすさ", "確認", "調整", "改善"]


def build_random_segments(
    rng: random.Random, language_class: LanguageClass
) -> list[SubtitleSegment]:
    """Generate feasible segments whose text fits the profile's reading budget."""
    profile = get_profile(language_class)
    segments: list[SubtitleSegment] = []
    cursor = 0.0

    for i in range(2 + int(rng.random() * 4)):
        duration = 2.2 + rng.random() * 2.2
        gap = 0.4 + rng.random() * 0.4
        start = cursor
        end = start + duration
        by_duration = max(6, math.floor(duration * profile.target_cps * 0.7))
        budget = max(6, min(by_duration, profile.max_cpl * profile.max_lines))

        if language_class is LanguageClass.CJK:
            tokens: list[str] = []
            while len("".join(tokens)) < budget:
                tokens.append(rng.choice(CJK_TOKENS))
            text = "".join(tokens)[:budget]
        else:
            pool = LTR_WORDS if language_class is LanguageClass.LTR else RTL_WORDS
            words: list[str] = []
            while len(" ".join(words)) < budget:
                words.append(rng.choice(pool))
            text = " ".join(words)[:budget].strip()

        segments.append(
            SubtitleSegment(
                id=f"{language_class.value}-{i + 1}",
                start=round(start, 3),
                end=round(end, 3),
                text=text,
            )
        )
        cursor = end + gap

    return segments


@pytest.fixture
def random_segments():
    """Factory for seeded random segment lists."""
    return build_random_segments


@pytest.fixture
def make_output(ltr_profile: LanguageProfile):
    """Factory for minimal successful outputs keyed by ``key``."""

    def _make(key: str = "key-1", **overrides) -> PostProcessOutput:
        fields = {
            "language_tag": "en",
            "language_class": LanguageClass.LTR,
            "profile": ltr_profile,
            "idempotency_key": key,
            "origin": SubtitleOrigin.AI_RAW,
            "origin_before": SubtitleOrigin.AI_RAW,
            "origin_after": SubtitleOrigin.AI_PROCESSED,
            "vtt": "WEBVTT\n\n00:00:00.000 --> 00:00:02.000\nAmen\n\n",
            "cues": [SubtitleCue(index=0, start=0.0, end=2.0, text="Amen")],
            "post_process_input_sha256": "input-sha",
            "whisper_segments_sha256": "segments-sha",
            "profile_version": "v1",
            "prompt_version": "v1",
            "validator_version": "v1",
            "fallback_version": "v1",
        }
        fields.update(overrides)
        return PostProcessOutput(**fields)

    return _make
