"""
Rememberly Backend — Gemini Note Analyzer
===========================================

What:  TextAnalyzer that asks Google Gemini for a title, summary and tags for
       raw note content (typed text, a pasted URL, a file description).
How:   A JSON-only prompt sent through generate_content_async, retried with
       tenacity (exponential backoff + jitter) and guarded by a circuit
       breaker. The model's JSON is clamped to sane lengths.
Who:   Created by the application factory; called by POST /api/notes/analyze
       before the resulting note is saved through the ModeController.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker so a Gemini outage fails fast instead of stacking retries
    3. A reply that is not valid JSON degrades to a locally derived result
"""

import json
import logging
import re
import time
import uuid
from typing import Optional

import google.generativeai as genai
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from rememberly.config import settings
from rememberly.exceptions import CircuitBreakerOpenError, LLMServiceError
from rememberly.schemas.records import AnalysisResult, NoteType
from rememberly.services.interfaces import TextAnalyzer

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_SUMMARY_LENGTH = 500
MAX_TAGS = 10

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → (threshold consecutive failures) → OPEN → (recovery timeout)
    → HALF_OPEN → one trial call → CLOSED on success, OPEN on failure.

    Not thread-safe; the app runs on a single event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Raises:
            CircuitBreakerOpenError: OPEN and the recovery timeout has not elapsed
        """
        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed < self.recovery_timeout:
                raise CircuitBreakerOpenError(
                    recovery_time=int(self.recovery_timeout - elapsed)
                )
            logger.info("Circuit breaker HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker CLOSED (analysis recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker back to OPEN (trial call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Gemini Analyzer
# ══════════════════════════════════════════════════════════════════════════

class GeminiAnalyzer(TextAnalyzer):

    ANALYZE_PROMPT = """Analyze this {note_type} content and respond with JSON of exactly this shape:

{{
  "title": "A smart, engaging title (max 8 words)",
  "summary": "A clear, concise summary (2-4 sentences) that captures the main points",
  "tags": ["relevant", "searchable", "keywords", "max 10"]
}}

Rules:
- Answer in the same language as the content
- Tags are plain keywords, no hashtags
- Return valid JSON only, no commentary

Content to analyze:
{content}"""

    def __init__(self, model: Optional[object] = None):
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model = model or genai.GenerativeModel(settings.gemini_model)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info(
            "GeminiAnalyzer initialized with model=%s, circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    async def analyze(self, content: str, note_type: NoteType = "text") -> AnalysisResult:
        """
        Title, summarize and tag `content`.

        Raises:
            CircuitBreakerOpenError: Too many recent Gemini failures
            LLMServiceError: Gemini failed after all retry attempts
        """
        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()
        logger.info("[%s] Analyzing %s content (%d chars)", request_id, note_type, len(content))

        try:
            raw = await self._call_gemini_with_retry(content, note_type, request_id)
            self.circuit_breaker.record_success()
        except RetryError as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] All Gemini retries exhausted: %s",
                request_id,
                str(e.last_attempt.exception()) if e.last_attempt else "Unknown error",
            )
            raise LLMServiceError(
                message="Note analysis failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini analysis failed: %s", request_id, str(e), exc_info=True)
            raise LLMServiceError(
                message="Note analysis failed. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

        return self.parse_response(raw, content)

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(
        self, content: str, note_type: NoteType, request_id: str
    ) -> str:
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                self.ANALYZE_PROMPT.format(note_type=note_type, content=content),
                request_options={"timeout": 60},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        text = response.text.strip() if response.text else ""
        logger.info(
            "[%s] Gemini analysis completed in %.0fms (%d chars)",
            request_id,
            (time.time() - start_time) * 1000,
            len(text),
        )
        return text

    @staticmethod
    def parse_response(raw: str, content: str) -> AnalysisResult:
        """
        Turn the model's reply into an AnalysisResult.

        Code fences are stripped. A reply that is not a JSON object falls
        back to a title taken from the content's first line.
        """
        try:
            parsed = json.loads(_FENCE_RE.sub("", raw).strip())
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            logger.warning("Unparseable analysis reply, using fallback: %s", str(e))
            return fallback_analysis(content)

        tags = parsed.get("tags")
        if not isinstance(tags, list):
            tags = ["note"]
        return AnalysisResult(
            title=str(parsed.get("title") or "Untitled Note")[:MAX_TITLE_LENGTH],
            summary=str(parsed.get("summary") or "No summary available")[:MAX_SUMMARY_LENGTH],
            tags=[str(t).lstrip("#") for t in tags[:MAX_TAGS]],
        )

    async def health_check(self) -> bool:
        """Lists models (no token cost) to confirm key and connectivity."""
        try:
            names = [m.name for m in genai.list_models()]
            if f"models/{settings.gemini_model}" not in names:
                logger.warning("Configured model %s not found", settings.gemini_model)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


def fallback_analysis(content: str) -> AnalysisResult:
    first_line = next((line.strip() for line in content.splitlines() if line.strip()), "")
    return AnalysisResult(
        title=(first_line or "Untitled Note")[:MAX_TITLE_LENGTH],
        summary=content.strip()[:MAX_SUMMARY_LENGTH],
        tags=["note"],
    )
