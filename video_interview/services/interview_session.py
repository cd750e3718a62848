"""
Candidate interview session.

Owns the per-session capture device and one ResponseRecorder per question.
Recorders are independent: a candidate can answer out of order and start
recording one question while another is still submitting. The device is the
only shared resource and admits one recording at a time.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_interview.core.error_handling import NotFoundError
from video_interview.db.models import Interview, InterviewQuestion
from video_interview.services import ledger
from video_interview.services.capture import Clip, DeviceState, StreamCaptureDevice
from video_interview.services.recorder import RecorderState, ResponseRecorder
from video_interview.services.submission import SubmissionOutcome, SubmissionPipeline

logger = logging.getLogger(__name__)


class InterviewSession:
    def __init__(
        self,
        interview: Interview,
        questions: List[InterviewQuestion],
        pipeline: SubmissionPipeline,
        answered: Optional[Set[int]] = None,
        device: Optional[StreamCaptureDevice] = None,
    ) -> None:
        self.interview = interview
        self.questions = questions
        self.pipeline = pipeline
        self.device = device or StreamCaptureDevice()
        self.closed = False
        answered = answered or set()
        self._questions: Dict[int, InterviewQuestion] = {q.id: q for q in questions}
        self.recorders: Dict[int, ResponseRecorder] = {
            q.id: ResponseRecorder(
                q.id,
                self.device,
                submit=partial(self._submit_clip, q),
                submitted=q.id in answered,
            )
            for q in questions
        }
        self.current_question_id: int = next(
            (q.id for q in questions if q.id not in answered), questions[0].id
        )

    @classmethod
    async def open(
        cls,
        link: str,
        pipeline: Optional[SubmissionPipeline] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        device: Optional[StreamCaptureDevice] = None,
    ) -> "InterviewSession":
        """Resolve the link and build the session. Raises InterviewNotFoundError."""
        pipeline = pipeline or SubmissionPipeline(session_factory=session_factory)
        factory = session_factory or pipeline.session_factory
        async with factory() as session:
            interview, questions = await ledger.resolve_interview_link(session, link)
            answered = await ledger.answered_question_ids(session, interview.id)
        logger.info(
            "Interview session opened (%d/%d answered)", len(answered), len(questions),
            extra={"interview_id": interview.id},
        )
        return cls(interview, questions, pipeline, answered=answered, device=device)

    @property
    def link(self) -> str:
        return self.interview.interview_link

    def recorder(self, question_id: int) -> ResponseRecorder:
        try:
            return self.recorders[question_id]
        except KeyError:
            raise NotFoundError("InterviewQuestion", question_id) from None

    def select(self, question_id: int) -> ResponseRecorder:
        """Navigate to a question. Never starts a recording and never resets other questions."""
        rec = self.recorder(question_id)
        self.current_question_id = question_id
        return rec

    def activate_device(self, granted: bool = True, reason: Optional[str] = None) -> DeviceState:
        return self.device.activate(granted=granted, reason=reason)

    def start(self, question_id: int) -> ResponseRecorder:
        rec = self.select(question_id)
        rec.start()
        return rec

    def feed(self, chunk: bytes) -> None:
        self.device.feed(chunk)

    async def stop(self, question_id: int) -> Clip:
        return await self.recorder(question_id).stop()

    def retake(self, question_id: int) -> ResponseRecorder:
        rec = self.recorder(question_id)
        rec.retake()
        return rec

    async def submit(self, question_id: int) -> SubmissionOutcome:
        outcome = await self.recorder(question_id).submit()
        if outcome.completed and not self.closed:
            await self.close()
        return outcome

    async def _submit_clip(self, question: InterviewQuestion, clip: Clip) -> SubmissionOutcome:
        outcome = await self.pipeline.submit(self.interview, question, clip)
        self.interview.status = outcome.interview_status
        self.interview.overall_score = outcome.overall_score
        return outcome

    def progress(self) -> dict:
        answered = [qid for qid, rec in self.recorders.items() if rec.state == RecorderState.SUBMITTED]
        return {
            "interview_id": self.interview.id,
            "status": self.interview.status,
            "answered": len(answered),
            "total": len(self.questions),
            "current_question_id": self.current_question_id,
            "device": self.device.state.value,
            "recorders": {qid: rec.state.value for qid, rec in self.recorders.items()},
        }

    async def close(self) -> None:
        """End the session: unsent clips are dropped and the device released."""
        if self.closed:
            return
        self.closed = True
        for rec in self.recorders.values():
            await rec.discard()
        await self.device.release()
        logger.info("Interview session closed", extra={"interview_id": self.interview.id})


class SessionRegistry:
    """In-process sessions keyed by interview link."""

    def __init__(self) -> None:
        self._sessions: Dict[str, InterviewSession] = {}
        self._lock = asyncio.Lock()

    def get(self, link: str) -> Optional[InterviewSession]:
        session = self._sessions.get(link)
        if session is not None and session.closed:
            self._sessions.pop(link, None)
            return None
        return session

    async def open(self, link: str, pipeline: Optional[SubmissionPipeline] = None) -> InterviewSession:
        async with self._lock:
            existing = self.get(link)
            if existing is not None:
                return existing
            session = await InterviewSession.open(link, pipeline=pipeline)
            self._sessions[link] = session
            return session

    async def close(self, link: str) -> None:
        session = self._sessions.pop(link, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        for link in list(self._sessions):
            await self.close(link)


sessions = SessionRegistry()
