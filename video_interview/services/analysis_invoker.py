"""
Remote analysis invocation.

The scoring capability is opaque: it receives the clip locator and question
text and returns a transcript, sentiment, tone, score and feedback. Whatever
happens on the wire, ``AnalysisInvoker.analyze`` returns a usable result; on
any failure it substitutes the neutral fallback so the pipeline never stalls.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from video_interview.core.config import settings
from video_interview.core.error_handling import AnalysisUnavailableError
from video_interview.core.metrics import Timer, collector
from video_interview.db.models import Sentiment

logger = logging.getLogger(__name__)

FALLBACK_TRANSCRIPT = "Analysis failed"
FALLBACK_TONE = "unclear"
FALLBACK_SCORE = 5
FALLBACK_FEEDBACK = "Automatic analysis failed. Manual review may be required."

DEFAULT_TONE = "professional"
DEFAULT_FEEDBACK = "Analysis completed"

MIN_SCORE = 1
MAX_SCORE = 10

_REQUIRED_FIELDS = ("transcript", "sentiment", "score")


class AnalysisResult(BaseModel):
    transcript: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    tone: str = DEFAULT_TONE
    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    feedback: str = DEFAULT_FEEDBACK
    has_inappropriate_language: bool = False
    is_fallback: bool = False


def fallback_result() -> AnalysisResult:
    """Deterministic placeholder used whenever the remote analysis is unusable."""
    return AnalysisResult(
        transcript=FALLBACK_TRANSCRIPT,
        sentiment=Sentiment.NEUTRAL,
        tone=FALLBACK_TONE,
        score=FALLBACK_SCORE,
        feedback=FALLBACK_FEEDBACK,
        has_inappropriate_language=False,
        is_fallback=True,
    )


def _coerce_score(raw: Any) -> int:
    if isinstance(raw, bool):
        raise AnalysisUnavailableError("score is not numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise AnalysisUnavailableError(f"score is not numeric: {raw!r}") from exc
    if not math.isfinite(value):
        raise AnalysisUnavailableError(f"score is not finite: {raw!r}")
    return max(MIN_SCORE, min(MAX_SCORE, int(round(value))))


def _coerce_sentiment(raw: Any) -> Sentiment:
    try:
        return Sentiment(str(raw).strip().lower())
    except ValueError:
        return Sentiment.NEUTRAL


def _coerce_flag(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes"}
    return bool(raw)


def parse_analysis_payload(payload: Any) -> AnalysisResult:
    """Normalize a remote reply. Raises AnalysisUnavailableError if it is unusable."""
    if not isinstance(payload, dict):
        raise AnalysisUnavailableError("analysis reply is not an object")
    # Some deployments wrap the result
    if "analysis" in payload and isinstance(payload["analysis"], dict):
        payload = payload["analysis"]
    missing = [f for f in _REQUIRED_FIELDS if payload.get(f) is None]
    if missing:
        raise AnalysisUnavailableError(f"analysis reply missing fields: {', '.join(missing)}")

    flag = payload.get("has_inappropriate_language", payload.get("inappropriate", False))
    return AnalysisResult(
        transcript=str(payload["transcript"]),
        sentiment=_coerce_sentiment(payload["sentiment"]),
        tone=str(payload.get("tone") or DEFAULT_TONE),
        score=_coerce_score(payload["score"]),
        feedback=str(payload.get("feedback") or DEFAULT_FEEDBACK),
        has_inappropriate_language=_coerce_flag(flag),
        is_fallback=False,
    )


class AnalysisInvoker:
    """Calls the remote analysis endpoint with a bounded timeout."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url if url is not None else settings.analysis_url
        self.api_key = api_key if api_key is not None else settings.analysis_api_key
        self.timeout = timeout if timeout is not None else settings.analysis_timeout_seconds
        self._transport = transport

    async def _request(self, locator: str, question: str, candidate_name: Optional[str]) -> AnalysisResult:
        if not self.url:
            raise AnalysisUnavailableError("ANALYSIS_URL not configured")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"videoUrl": locator, "question": question, "candidateName": candidate_name or ""}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise AnalysisUnavailableError(f"analysis timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise AnalysisUnavailableError(f"analysis transport error: {type(exc).__name__}") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise AnalysisUnavailableError(
                f"analysis returned HTTP {resp.status_code}", service_status_code=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AnalysisUnavailableError("analysis reply is not JSON", service_status_code=resp.status_code) from exc
        try:
            return parse_analysis_payload(payload)
        except AnalysisUnavailableError:
            raise
        except Exception as exc:
            raise AnalysisUnavailableError(f"analysis reply could not be normalized: {type(exc).__name__}") from exc

    async def analyze(
        self,
        locator: str,
        question: str,
        candidate_name: Optional[str] = None,
        response_id: Optional[int] = None,
    ) -> AnalysisResult:
        """Score one answer. Never raises for remote failures; falls back instead."""
        log_extra = {"response_id": response_id, "locator": locator}
        try:
            with Timer() as t:
                result = await self._request(locator, question, candidate_name)
        except AnalysisUnavailableError as exc:
            collector.record_error()
            collector.increment_counter("analysis_fallback")
            logger.warning(
                "Analysis unavailable, using fallback: %s",
                exc.message,
                extra={**log_extra, "error_code": exc.error_code},
            )
            return fallback_result()
        collector.record_analysis_ms(t.ms)
        logger.info("Analysis received", extra={**log_extra, "duration_ms": round(t.ms, 2)})
        return result
