"""Content Oracle Module

This module defines the boundary between the subtitle post-process pipeline and
the language model that reviews subtitle text. The pipeline only ever talks to
the two-method ``ContentOracle`` interface:

- ``theology_check``: advisory doctrinal review, returns ``{"issues": [...]}``
- ``language_quality_pass``: text polish, returns ``{"cues": [{index, text}]}``

Two providers are available:

- ``DeterministicContentOracle``: offline stand-in for tests and development
  (echoes cues, reports no issues unless asked to)
- ``OpenRouterContentOracle``: one chat-completion request per operation

Responses are returned as raw dictionaries. Checking their shape is the job of
the theology and language-quality passes; transport failures are never caught
here and propagate to the caller unchanged.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from src.subtitles.models import SubtitleCue
from src.subtitles.post_process_config import (
    DEFAULT_OPENROUTER_BASE_URL,
    PROMPT_VERSION,
    OracleSettings,
)
from src.utils.circuit_breaker import content_oracle_circuit_breaker
from src.utils.connection_pool import get_http_session

logger = logging.getLogger(__name__)

THEOLOGY_CHECK = "theology_check"
LANGUAGE_QUALITY_PASS = "language_quality_pass"

DEFAULT_ISSUE_MESSAGE = "Potential doctrinal terminology inconsistency detected."

TERM_SUGGESTIONS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"holy spirit", re.IGNORECASE),
        "Consider canonical capitalization for Holy Spirit.",
    ),
    (
        re.compile(r"jesus christ", re.IGNORECASE),
        "Consider canonical capitalization for Jesus Christ.",
    ),
    (
        re.compile(r"gospel", re.IGNORECASE),
        "Verify doctrinal term consistency for gospel.",
    ),
]


class ContentOracleError(Exception):
    """Exception raised when the content oracle is misconfigured or returns nothing.

    HTTP and timeout errors from ``aiohttp`` are not wrapped; they propagate
    as they are.
    """

    pass


class OracleCue(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    start: float
    end: float
    text: str


class OracleRequest(BaseModel):
    """Payload shared by both oracle operations."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    language_tag: str
    prompt_version: str
    full_transcript: str
    cues: list[OracleCue] = Field(default_factory=list)


def build_full_transcript(cues: list[SubtitleCue]) -> str:
    """Join trimmed cue texts with single spaces, skipping empty cues."""
    return " ".join(text for text in (cue.text.strip() for cue in cues) if text)


def build_oracle_request(
    asset_id: str, language_tag: str, cues: list[SubtitleCue]
) -> OracleRequest:
    return OracleRequest(
        asset_id=asset_id,
        language_tag=language_tag,
        prompt_version=PROMPT_VERSION,
        full_transcript=build_full_transcript(cues),
        cues=[
            OracleCue(index=cue.index, start=cue.start, end=cue.end, text=cue.text)
            for cue in cues
        ],
    )


def coerce_cue_index(value: Any) -> int | None:
    """Accept ints and integral floats; reject booleans, strings and the rest."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


class ContentOracle(ABC):
    """Two-operation interface the pipeline depends on."""

    @abstractmethod
    async def theology_check(self, request: OracleRequest) -> dict[str, Any]:
        """Return ``{"issues": [...]}``; must not propose text changes."""

    @abstractmethod
    async def language_quality_pass(self, request: OracleRequest) -> dict[str, Any]:
        """Return ``{"cues": [{"index": int, "text": str}, ...]}``."""


class DeterministicContentOracle(ContentOracle):
    """Offline oracle that echoes cues and records every request.

    Args:
    ----
        emit_term_suggestions: Report low-severity issues for a few doctrinal
            terms, so offline runs exercise the issue path

    """

    def __init__(self, emit_term_suggestions: bool = False):
        self.emit_term_suggestions = emit_term_suggestions
        self.requests: list[tuple[str, OracleRequest]] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def theology_check(self, request: OracleRequest) -> dict[str, Any]:
        self.requests.append((THEOLOGY_CHECK, request))
        if not self.emit_term_suggestions:
            return {"issues": []}

        issues = [
            {
                "cueIndex": cue.index,
                "severity": "low",
                "message": DEFAULT_ISSUE_MESSAGE,
                "suggestion": suggestion,
            }
            for cue in request.cues
            for pattern, suggestion in TERM_SUGGESTIONS
            if pattern.search(cue.text)
        ]
        return {"issues": issues}

    async def language_quality_pass(self, request: OracleRequest) -> dict[str, Any]:
        self.requests.append((LANGUAGE_QUALITY_PASS, request))
        return {"cues": [{"index": cue.index, "text": cue.text} for cue in request.cues]}


def load_prompt_template(path: Path) -> str:
    """Load a prompt template from a file.

    Raises
    ------
        FileNotFoundError: If the template file doesn't exist

    """
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return f.read()


def format_oracle_prompt(template: str, request: OracleRequest) -> str:
    """Fill a prompt template with the request fields.

    Placeholders: ``{ASSET_ID}``, ``{LANGUAGE_TAG}``, ``{PROMPT_VERSION}``,
    ``{FULL_TRANSCRIPT}`` and ``{CUES_JSON}``.
    """
    cues_json = json.dumps(
        [cue.model_dump() for cue in request.cues], ensure_ascii=False, indent=2
    )
    try:
        return template.format(
            ASSET_ID=request.asset_id,
            LANGUAGE_TAG=request.language_tag,
            PROMPT_VERSION=request.prompt_version,
            FULL_TRANSCRIPT=request.full_transcript,
            CUES_JSON=cues_json,
        )
    except KeyError as e:
        raise ValueError(f"Missing placeholder in template: {e}") from e


def parse_completion_json(content: str, operation: str) -> dict[str, Any]:
    """Parse a completion as a JSON object; malformed content yields ``{}``."""
    cleaned = re.sub(r"```[\w\s]*", "", content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"Oracle {operation} returned non-JSON content: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(
            f"Oracle {operation} returned {type(data).__name__}, expected a JSON object"
        )
        return {}
    return data


@content_oracle_circuit_breaker
async def _call_chat_completion(
    session: aiohttp.ClientSession,
    api_url: str,
    api_key: str,
    payload: dict[str, Any],
    timeout_seconds: int,
) -> str:
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async with session.post(
        api_url,
        headers=headers,
        json=payload,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds),
    ) as response:
        response.raise_for_status()
        data = await response.json()

    choices = data.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content", "")
    if not content or not str(content).strip():
        raise ContentOracleError("Empty content in oracle response")
    return str(content)


class OpenRouterContentOracle(ContentOracle):
    """Oracle backed by an OpenRouter-compatible chat-completions endpoint.

    Exactly one HTTP request is made per operation, using the first
    configured model. Retrying a failed run is the caller's decision.
    """

    def __init__(
        self,
        settings: OracleSettings,
        api_key: str,
        session: aiohttp.ClientSession | None = None,
    ):
        if not api_key:
            raise ContentOracleError("OpenRouter API key is empty")

        self.settings = settings
        self.api_key = api_key
        self.model = settings.models[0]
        self.api_url = (
            f"{(settings.base_url or DEFAULT_OPENROUTER_BASE_URL).rstrip('/')}"
            "/chat/completions"
        )
        self._session = session
        self._templates = {
            THEOLOGY_CHECK: load_prompt_template(Path(settings.theology_prompt_path)),
            LANGUAGE_QUALITY_PASS: load_prompt_template(
                Path(settings.language_quality_prompt_path)
            ),
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = await get_http_session()
        return self._session

    async def _run(self, operation: str, request: OracleRequest) -> dict[str, Any]:
        prompt = format_oracle_prompt(self._templates[operation], request)
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
        }

        logger.info(
            f"Calling oracle {operation} for asset {request.asset_id} "
            f"({request.language_tag}, {len(request.cues)} cues) with {self.model}"
        )
        session = await self._get_session()
        content = await _call_chat_completion(
            session, self.api_url, self.api_key, payload, self.settings.timeout_seconds
        )
        return parse_completion_json(content, operation)

    async def theology_check(self, request: OracleRequest) -> dict[str, Any]:
        return await self._run(THEOLOGY_CHECK, request)

    async def language_quality_pass(self, request: OracleRequest) -> dict[str, Any]:
        return await self._run(LANGUAGE_QUALITY_PASS, request)


def create_content_oracle(
    settings: OracleSettings, secrets: Mapping[str, str] | None = None
) -> ContentOracle:
    """Build the oracle selected by ``settings.provider``.

    Args:
    ----
        settings: Oracle configuration section
        secrets: Where to look up the API key; defaults to ``os.environ``

    Raises:
    ------
        ContentOracleError: If the OpenRouter provider has no API key

    """
    if settings.provider == "deterministic":
        logger.info("Using deterministic content oracle")
        return DeterministicContentOracle()

    source = secrets if secrets is not None else os.environ
    api_key = source.get(settings.api_key_env_var, "")
    if not api_key:
        raise ContentOracleError(
            f"API key environment variable '{settings.api_key_env_var}' is not set"
        )
    logger.info(f"Using OpenRouter content oracle with model {settings.models[0]}")
    return OpenRouterContentOracle(settings, api_key)
