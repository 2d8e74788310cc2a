"""Tests for the circuit breaker around content oracle HTTP calls."""

import asyncio

import aiohttp
import pytest
from yarl import URL

from src.ai.content_oracle import ContentOracleError, OpenRouterContentOracle
from src.subtitles.pipeline import SubtitlePostProcessor
from src.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    content_oracle_circuit_breaker,
)

API_URL = "https://oracle.test/api/v1/chat/completions"
COMPLETION = {"choices": [{"message": {"role": "assistant", "content": "{}"}}]}


async def post_completion(session: aiohttp.ClientSession) -> dict:
    async with session.post(API_URL, json={"model": "test/model-a"}) as response:
        response.raise_for_status()
        data = await response.json()
    if not data.get("choices"):
        raise ContentOracleError("Empty content in oracle response")
    return data


def posted(mock_aioresponses) -> int:
    return len(mock_aioresponses.requests.get(("POST", URL(API_URL)), []))


@pytest.fixture
def breaker() -> CircuitBreaker:
    """Oracle-style breaker with a short cool-down."""
    return CircuitBreaker(
        failure_threshold=2,
        timeout=0.2,
        expected_exceptions=(aiohttp.ClientError, asyncio.TimeoutError),
        name="TestOracle",
    )


class TestCircuitBreaker:
    """Drive the breaker with mocked chat-completions responses."""

    @pytest.mark.asyncio
    async def test_two_server_errors_open_the_circuit(self, breaker, mock_aioresponses):
        mock_aioresponses.post(API_URL, status=500)
        mock_aioresponses.post(API_URL, status=500)

        async with aiohttp.ClientSession() as session:
            for _ in range(2):
                with pytest.raises(aiohttp.ClientResponseError):
                    await breaker.call(post_completion, session)

            assert breaker.is_open
            with pytest.raises(CircuitBreakerError, match="TestOracle is OPEN"):
                await breaker.call(post_completion, session)

        assert posted(mock_aioresponses) == 2
        stats = breaker.get_stats()
        assert stats["total_calls"] == 2
        assert stats["failed_calls"] == 2
        assert stats["rejected_calls"] == 1
        assert stats["state"] == "OPEN"

    @pytest.mark.asyncio
    async def test_success_clears_failure_count(self, breaker, mock_aioresponses):
        mock_aioresponses.post(API_URL, status=502)
        mock_aioresponses.post(API_URL, payload=COMPLETION)

        async with aiohttp.ClientSession() as session:
            with pytest.raises(aiohttp.ClientResponseError):
                await breaker.call(post_completion, session)
            assert breaker.failure_count == 1

            assert await breaker.call(post_completion, session) == COMPLETION

        assert breaker.failure_count == 0
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_trial_call_after_cool_down_closes_circuit(
        self, breaker, mock_aioresponses
    ):
        mock_aioresponses.post(API_URL, status=503)
        mock_aioresponses.post(API_URL, status=503)
        mock_aioresponses.post(API_URL, payload=COMPLETION)

        async with aiohttp.ClientSession() as session:
            for _ in range(2):
                with pytest.raises(aiohttp.ClientResponseError):
                    await breaker.call(post_completion, session)

            await asyncio.sleep(0.25)

            assert await breaker.call(post_completion, session) == COMPLETION

        assert breaker.is_closed
        assert posted(mock_aioresponses) == 3

    @pytest.mark.asyncio
    async def test_failed_trial_call_reopens_circuit(self, breaker, mock_aioresponses):
        mock_aioresponses.post(API_URL, status=500, repeat=True)

        async with aiohttp.ClientSession() as session:
            for _ in range(2):
                with pytest.raises(aiohttp.ClientResponseError):
                    await breaker.call(post_completion, session)

            await asyncio.sleep(0.25)

            with pytest.raises(aiohttp.ClientResponseError):
                await breaker.call(post_completion, session)
            assert breaker.state is CircuitState.OPEN

            with pytest.raises(CircuitBreakerError):
                await breaker.call(post_completion, session)

        assert posted(mock_aioresponses) == 3

    @pytest.mark.asyncio
    async def test_unparsable_content_does_not_count(self, breaker, mock_aioresponses):
        mock_aioresponses.post(API_URL, payload={"choices": []}, repeat=True)

        async with aiohttp.ClientSession() as session:
            for _ in range(3):
                with pytest.raises(ContentOracleError):
                    await breaker.call(post_completion, session)

        assert breaker.is_closed
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_reset_closes_an_open_circuit(self, breaker, mock_aioresponses):
        mock_aioresponses.post(API_URL, status=500, repeat=True)

        async with aiohttp.ClientSession() as session:
            for _ in range(2):
                with pytest.raises(aiohttp.ClientResponseError):
                    await breaker.call(post_completion, session)

        assert breaker.is_open
        breaker.reset()
        assert breaker.is_closed
        assert breaker.failure_count == 0

    def test_sync_functions_are_rejected(self, breaker):
        with pytest.raises(TypeError, match="only wraps async functions"):

            @breaker
            def fetch():
                return COMPLETION


class TestContentOracleCircuitBreaker:
    """Test the shared breaker used by the OpenRouter oracle."""

    def test_configuration(self):
        assert content_oracle_circuit_breaker.name == "ContentOracle"
        assert content_oracle_circuit_breaker.failure_threshold == 2
        assert content_oracle_circuit_breaker.timeout == 30
        assert aiohttp.ClientError in content_oracle_circuit_breaker.expected_exceptions
        assert asyncio.TimeoutError in content_oracle_circuit_breaker.expected_exceptions

    @pytest.mark.asyncio
    async def test_failing_provider_fails_fast_across_runs(
        self, oracle_settings, sample_request, memory_store, mock_aioresponses
    ):
        mock_aioresponses.post(API_URL, status=500, repeat=True)
        rejected_before = content_oracle_circuit_breaker.rejected_calls

        async with aiohttp.ClientSession() as session:
            oracle = OpenRouterContentOracle(oracle_settings, "test-key", session=session)
            processor = SubtitlePostProcessor(oracle, memory_store)

            for _ in range(2):
                with pytest.raises(aiohttp.ClientResponseError):
                    await processor.run(sample_request)
            with pytest.raises(CircuitBreakerError):
                await processor.run(sample_request)

        assert posted(mock_aioresponses) == 2
        assert content_oracle_circuit_breaker.rejected_calls == rejected_before + 1
        assert len(memory_store) == 0
