"""Tests for the advisory theology pass."""

from unittest.mock import AsyncMock

import pytest

from src.ai.content_oracle import DEFAULT_ISSUE_MESSAGE
from src.ai.theology_pass import run_theology_pass, sanitize_theology_issues
from src.subtitles.models import IssueSeverity, SubtitleCue


@pytest.fixture
def cues() -> list[SubtitleCue]:
    return [
        SubtitleCue(index=0, start=0.0, end=2.0, text="Grace"),
        SubtitleCue(index=1, start=2.5, end=4.5, text="Peace"),
    ]


class TestSanitizeTheologyIssues:
    """Test shape checking of oracle issues."""

    def test_well_formed_issue(self, cues):
        issues = sanitize_theology_issues(
            cues,
            [
                {
                    "cueIndex": 1,
                    "severity": "high",
                    "message": "Check wording",
                    "suggestion": "Use 'peace be with you'",
                }
            ],
        )
        assert len(issues) == 1
        assert issues[0].cue_index == 1
        assert issues[0].severity is IssueSeverity.HIGH
        assert issues[0].message == "Check wording"
        assert issues[0].suggestion == "Use 'peace be with you'"

    def test_snake_case_index_is_accepted(self, cues):
        issues = sanitize_theology_issues(cues, [{"cue_index": 0, "message": "m"}])
        assert issues[0].cue_index == 0

    def test_defaults_for_missing_fields(self, cues):
        issues = sanitize_theology_issues(cues, [{"cueIndex": 0, "severity": "urgent"}])
        assert issues[0].severity is IssueSeverity.LOW
        assert issues[0].message == DEFAULT_ISSUE_MESSAGE
        assert issues[0].suggestion is None

    @pytest.mark.parametrize(
        "item",
        [
            {"cueIndex": 2},
            {"cueIndex": -1},
            {"cueIndex": "0"},
            {"cueIndex": True},
            {"message": "no index"},
            "not an object",
            None,
        ],
    )
    def test_malformed_issues_are_dropped(self, cues, item):
        assert sanitize_theology_issues(cues, [item]) == []

    @pytest.mark.parametrize("raw", [None, {"cueIndex": 0}, "issues"])
    def test_non_list_yields_no_issues(self, cues, raw):
        assert sanitize_theology_issues(cues, raw) == []

    @pytest.mark.parametrize("severity", [["high"], {"x": 1}, 3, None])
    def test_non_string_severity_defaults_to_low(self, cues, severity):
        issues = sanitize_theology_issues(
            cues, [{"cueIndex": 0, "severity": severity, "message": "m"}]
        )
        assert len(issues) == 1
        assert issues[0].severity is IssueSeverity.LOW


class TestRunTheologyPass:
    """Test the pass against an oracle stub."""

    @pytest.mark.asyncio
    async def test_issues_do_not_touch_cues(self, cues):
        oracle = AsyncMock()
        oracle.theology_check.return_value = {
            "issues": [{"cueIndex": 0, "severity": "medium", "message": "Check"}]
        }

        issues = await run_theology_pass(oracle, "asset-1", "en", cues)

        assert [issue.cue_index for issue in issues] == [0]
        assert cues[0].text == "Grace"
        request = oracle.theology_check.await_args.args[0]
        assert request.asset_id == "asset-1"
        assert request.full_transcript == "Grace Peace"

    @pytest.mark.asyncio
    async def test_response_without_issues(self, cues):
        oracle = AsyncMock()
        oracle.theology_check.return_value = {}
        assert await run_theology_pass(oracle, "asset-1", "en", cues) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [None, [], "issues"])
    async def test_non_object_response_yields_no_issues(self, cues, response):
        oracle = AsyncMock()
        oracle.theology_check.return_value = response
        assert await run_theology_pass(oracle, "asset-1", "en", cues) == []

    @pytest.mark.asyncio
    async def test_oracle_errors_propagate(self, cues):
        oracle = AsyncMock()
        oracle.theology_check.side_effect = ConnectionError("down")
        with pytest.raises(ConnectionError):
            await run_theology_pass(oracle, "asset-1", "en", cues)
