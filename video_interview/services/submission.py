"""
Submission pipeline.

For one answer: upload -> ledger response row -> remote analysis -> ledger
analysis row -> completion check. Steps are strictly sequential and each
ledger write commits on its own.

Failure contract:
- upload fails: nothing is written, ``UploadError`` propagates and the
  candidate may resend the same clip.
- analysis fails: absorbed by the invoker's fallback, the pipeline continues.
- ledger write fails after a successful upload: the stored locator is logged
  on the ``reconciliation`` logger and ``LedgerWriteError`` propagates.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_interview.core.error_handling import InterviewCompletedError, LedgerWriteError, NotFoundError
from video_interview.core.metrics import collector
from video_interview.db.models import AIAnalysis, Interview, InterviewQuestion, VideoResponse
from video_interview.services import ledger
from video_interview.services.analysis_invoker import AnalysisInvoker
from video_interview.services.capture import Clip
from video_interview.services.completion import evaluate_completion
from video_interview.services.upload_gateway import UploadGateway

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("reconciliation")


@dataclass
class SubmissionOutcome:
    response: VideoResponse
    analysis: AIAnalysis
    interview_status: str
    overall_score: Optional[int]
    completed: bool
    already_submitted: bool = False


class SubmissionPipeline:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gateway: Optional[UploadGateway] = None,
        invoker: Optional[AnalysisInvoker] = None,
    ) -> None:
        if session_factory is None:
            from video_interview.db.session import async_session_factory

            session_factory = async_session_factory
        self.session_factory = session_factory
        self.gateway = gateway or UploadGateway()
        self.invoker = invoker or AnalysisInvoker()
        self._slot_locks: "weakref.WeakValueDictionary[tuple[int, int], asyncio.Lock]" = weakref.WeakValueDictionary()
        self._pending: set[asyncio.Task] = set()

    def _slot_lock(self, interview_id: int, question_id: int) -> asyncio.Lock:
        key = (interview_id, question_id)
        lock = self._slot_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._slot_locks[key] = lock
        return lock

    async def submit(self, interview: Interview, question: InterviewQuestion, clip: Clip) -> SubmissionOutcome:
        """Run one submission end to end.

        Same-slot submissions are serialized in process; the second one finds
        the analyzed row and returns it with ``already_submitted=True``.
        """
        if question.job_id != interview.job_id:
            raise NotFoundError("InterviewQuestion", question.id)
        lock = self._slot_lock(interview.id, question.id)
        async with lock:
            existing = await self._existing_outcome(interview.id, question.id)
            if existing is not None:
                return existing

            locator = await self.gateway.upload(interview.id, question.id, clip)
            # Past this point the clip is durable; finish the ledger writes even if the caller goes away
            task = asyncio.ensure_future(self._record(interview, question, clip, locator))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for ledger writes whose callers were cancelled after upload."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _existing_outcome(self, interview_id: int, question_id: int) -> Optional[SubmissionOutcome]:
        async with self.session_factory() as session:
            current = await ledger.get_interview(session, interview_id)
            response = await ledger.get_response(session, interview_id, question_id)
            if response is not None and response.analysis is not None:
                logger.info(
                    "Question already submitted; returning recorded result",
                    extra={"interview_id": interview_id, "question_id": question_id, "response_id": response.id},
                )
                current = await self._complete(session, interview_id, response.video_url)
                return self._outcome(response, response.analysis, current, already_submitted=True)
            if current.is_completed:
                raise InterviewCompletedError(interview_id)
        return None

    async def _record(
        self,
        interview: Interview,
        question: InterviewQuestion,
        clip: Clip,
        locator: str,
    ) -> SubmissionOutcome:
        log_extra = {"interview_id": interview.id, "question_id": question.id, "locator": locator}

        async with self.session_factory() as session:
            try:
                response = await ledger.record_response(
                    session,
                    interview.id,
                    question.id,
                    locator,
                    clip.duration_seconds,
                    content_type=clip.content_type,
                    size_bytes=clip.size,
                )
                await ledger.mark_in_progress(session, interview.id)
                analysis = await ledger.get_analysis(session, response.id)
            except SQLAlchemyError as exc:
                self._reconcile("response", exc, log_extra)
                raise LedgerWriteError(f"Failed to record response: {exc}", locator=locator) from exc
        response_id = response.id

        if analysis is None:
            result = await self.invoker.analyze(
                locator, question.question, interview.candidate_name, response_id=response_id
            )
            async with self.session_factory() as session:
                try:
                    await ledger.record_analysis(session, response_id, result)
                except SQLAlchemyError as exc:
                    self._reconcile("analysis", exc, {**log_extra, "response_id": response_id})
                    raise LedgerWriteError(f"Failed to record analysis: {exc}", locator=locator) from exc

        async with self.session_factory() as session:
            current = await self._complete(session, interview.id, locator)
            response = await ledger.get_response(session, interview.id, question.id)
        if response is None or response.analysis is None:
            self._reconcile("read-back", RuntimeError("response row missing"), log_extra)
            raise LedgerWriteError("Recorded response could not be read back", locator=locator)
        return self._outcome(response, response.analysis, current)

    async def _complete(self, session: AsyncSession, interview_id: int, locator: str) -> Interview:
        try:
            return await evaluate_completion(session, interview_id)
        except SQLAlchemyError as exc:
            self._reconcile("completion", exc, {"interview_id": interview_id, "locator": locator})
            raise LedgerWriteError(f"Failed to evaluate completion: {exc}", locator=locator) from exc

    @staticmethod
    def _reconcile(step: str, exc: Exception, extra: dict) -> None:
        collector.record_error()
        collector.increment_counter("ledger_write_failed")
        reconciliation_logger.error(
            "Ledger %s write failed after upload; stored clip needs reconciliation", step,
            extra={**extra, "exception_type": type(exc).__name__},
        )

    @staticmethod
    def _outcome(
        response: VideoResponse,
        analysis: AIAnalysis,
        interview: Interview,
        already_submitted: bool = False,
    ) -> SubmissionOutcome:
        return SubmissionOutcome(
            response=response,
            analysis=analysis,
            interview_status=interview.status,
            overall_score=interview.overall_score,
            completed=interview.is_completed,
            already_submitted=already_submitted,
        )
