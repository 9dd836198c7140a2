"""
Rememberly Backend — Note Analyzer Unit Tests (Mocked)
========================================================

What:  CircuitBreaker and GeminiAnalyzer with the Google SDK patched out.
How:   The genai module is patched; the model is an AsyncMock so no request
       ever leaves the process.

What we test:
    ✅ Circuit breaker state transitions
    ✅ JSON replies (plain and fenced) become an AnalysisResult
    ✅ Oversized or malformed fields are clamped or defaulted
    ✅ Non-JSON replies fall back to a locally derived result
    ✅ Gemini failures raise LLMServiceError and count against the breaker
    ❌ Real API calls
"""

import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rememberly.exceptions import CircuitBreakerOpenError, LLMServiceError
from rememberly.services.analysis import (
    CircuitBreaker,
    GeminiAnalyzer,
    MAX_TAGS,
    MAX_TITLE_LENGTH,
    fallback_analysis,
)


def _model_replying(text):
    response = MagicMock()
    response.text = text
    model = MagicMock()
    model.generate_content_async = AsyncMock(return_value=response)
    return model


class TestCircuitBreaker:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.can_execute()

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        assert cb.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_half_open_trial_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute()
        assert cb.state == CircuitBreaker.HALF_OPEN
        cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN

    def test_half_open_trial_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_success()
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0


class TestParseResponse:

    def test_plain_json(self):
        result = GeminiAnalyzer.parse_response(
            '{"title": "Trip plan", "summary": "Flights and hotel.", "tags": ["travel"]}',
            "raw",
        )
        assert result.title == "Trip plan"
        assert result.summary == "Flights and hotel."
        assert result.tags == ["travel"]

    def test_fenced_json(self):
        raw = '```json\n{"title": "Recipe", "summary": "Pasta.", "tags": ["#food"]}\n```'
        result = GeminiAnalyzer.parse_response(raw, "raw")
        assert result.title == "Recipe"
        assert result.tags == ["food"]

    def test_fields_are_clamped_and_defaulted(self):
        raw = json.dumps({"title": "x" * 300, "tags": [f"t{i}" for i in range(20)]})
        result = GeminiAnalyzer.parse_response(raw, "raw")

        assert len(result.title) == MAX_TITLE_LENGTH
        assert result.summary == "No summary available"
        assert len(result.tags) == MAX_TAGS

    def test_non_list_tags_default(self):
        result = GeminiAnalyzer.parse_response('{"title": "T", "tags": "oops"}', "raw")
        assert result.tags == ["note"]

    @pytest.mark.parametrize("raw", ["Sure! Here is your summary.", "[1, 2, 3]", ""])
    def test_unparseable_reply_falls_back(self, raw):
        result = GeminiAnalyzer.parse_response(raw, "\n  Buy milk\nand eggs")
        assert result.title == "Buy milk"
        assert result.tags == ["note"]

    def test_fallback_for_blank_content(self):
        assert fallback_analysis("   ").title == "Untitled Note"


class TestGeminiAnalyzerMocked:

    @pytest.mark.asyncio
    async def test_analyze_success(self):
        with patch("rememberly.services.analysis.genai"):
            model = _model_replying('{"title": "Groceries", "summary": "Milk.", "tags": ["food"]}')
            analyzer = GeminiAnalyzer(model=model)

            result = await analyzer.analyze("milk", "text")

        assert result.title == "Groceries"
        assert analyzer.circuit_breaker.failure_count == 0
        prompt = model.generate_content_async.await_args.args[0]
        assert "milk" in prompt

    @pytest.mark.asyncio
    async def test_analyze_failure_raises_llm_error(self):
        with patch("rememberly.services.analysis.genai"):
            model = MagicMock()
            model.generate_content_async = AsyncMock(side_effect=TimeoutError("deadline"))
            analyzer = GeminiAnalyzer(model=model)

            with pytest.raises(LLMServiceError):
                await analyzer.analyze("milk")

        assert analyzer.circuit_breaker.failure_count == 1
        assert model.generate_content_async.await_count == 2

    @pytest.mark.asyncio
    async def test_analyze_circuit_breaker_open(self):
        with patch("rememberly.services.analysis.genai"):
            model = _model_replying("{}")
            analyzer = GeminiAnalyzer(model=model)
            for _ in range(analyzer.circuit_breaker.failure_threshold):
                analyzer.circuit_breaker.record_failure()

            with pytest.raises(CircuitBreakerOpenError):
                await analyzer.analyze("milk")

        model.generate_content_async.assert_not_called()

    @pytest.mark.asyncio
    async def test_health_check_returns_bool(self):
        with patch("rememberly.services.analysis.genai") as mock_genai:
            mock_genai.list_models.return_value = [MagicMock()]
            analyzer = GeminiAnalyzer(model=MagicMock())
            assert await analyzer.health_check() is True

            mock_genai.list_models.side_effect = ConnectionError("offline")
            assert await analyzer.health_check() is False
