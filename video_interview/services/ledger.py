from __future__ import annotations

import datetime as dt
from typing import List, Optional, Set, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from video_interview.core.error_handling import BusinessLogicError, InterviewNotFoundError, NotFoundError
from video_interview.db.models import AIAnalysis, Interview, InterviewQuestion, InterviewStatus, VideoResponse
from video_interview.services.analysis_invoker import AnalysisResult


def _utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


async def resolve_interview_link(
    session: AsyncSession,
    link: str,
    now: Optional[dt.datetime] = None,
) -> Tuple[Interview, List[InterviewQuestion]]:
    """Resolve an opaque link to its interview and the job's ordered questions.

    Unknown or expired links, and jobs without questions, are terminal.
    """
    token = (link or "").strip()
    if not token:
        raise InterviewNotFoundError(link=link)
    interview = (
        await session.execute(select(Interview).where(Interview.interview_link == token))
    ).scalar_one_or_none()
    if interview is None:
        raise InterviewNotFoundError(link=token)
    expires_at = _utc(interview.link_expires_at)
    if expires_at is not None and expires_at <= (now or dt.datetime.now(dt.timezone.utc)):
        raise InterviewNotFoundError(link=token, interview_id=interview.id, reason="expired")
    questions = await list_questions(session, interview.job_id)
    if not questions:
        raise InterviewNotFoundError(link=token, interview_id=interview.id, reason="no_questions")
    return interview, questions


async def list_questions(session: AsyncSession, job_id: int) -> List[InterviewQuestion]:
    result = await session.execute(
        select(InterviewQuestion)
        .where(InterviewQuestion.job_id == job_id)
        .order_by(InterviewQuestion.order_index)
    )
    return list(result.scalars().all())


async def count_questions(session: AsyncSession, job_id: int) -> int:
    result = await session.execute(
        select(func.count(InterviewQuestion.id)).where(InterviewQuestion.job_id == job_id)
    )
    return int(result.scalar_one())


async def get_interview(session: AsyncSession, interview_id: int) -> Interview:
    interview = await session.get(Interview, interview_id, populate_existing=True)
    if interview is None:
        raise NotFoundError("Interview", interview_id)
    return interview


async def get_response(session: AsyncSession, interview_id: int, question_id: int) -> Optional[VideoResponse]:
    result = await session.execute(
        select(VideoResponse)
        .where(VideoResponse.interview_id == interview_id, VideoResponse.question_id == question_id)
        .options(selectinload(VideoResponse.analysis))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_analysis(session: AsyncSession, response_id: int) -> Optional[AIAnalysis]:
    result = await session.execute(
        select(AIAnalysis)
        .where(AIAnalysis.response_id == response_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def record_response(
    session: AsyncSession,
    interview_id: int,
    question_id: int,
    locator: str,
    duration: int,
    content_type: Optional[str] = None,
    size_bytes: Optional[int] = None,
) -> VideoResponse:
    """Write the ledger row for one (interview, question) slot.

    - An analyzed row is immutable and is returned untouched.
    - A row without analysis (an interrupted earlier attempt) is updated in place.
    - A concurrent insert for the same slot resolves to the row that won.
    """
    existing = await get_response(session, interview_id, question_id)
    if existing is None:
        row = VideoResponse(
            interview_id=interview_id,
            question_id=question_id,
            video_url=locator,
            duration=max(0, int(duration)),
            content_type=content_type,
            size_bytes=size_bytes,
        )
        session.add(row)
        try:
            await session.commit()
            return row
        except IntegrityError:
            await session.rollback()
            existing = await get_response(session, interview_id, question_id)
            if existing is None:
                raise

    if existing.analysis is not None:
        return existing
    existing.video_url = locator
    existing.duration = max(0, int(duration))
    existing.content_type = content_type
    existing.size_bytes = size_bytes
    await session.commit()
    return existing


async def record_analysis(session: AsyncSession, response_id: int, result: AnalysisResult) -> AIAnalysis:
    """Attach the analysis to its response. The first analysis written wins."""
    existing = await get_analysis(session, response_id)
    if existing is not None:
        return existing
    row = AIAnalysis(
        response_id=response_id,
        transcript=result.transcript,
        sentiment=result.sentiment.value,
        tone=result.tone,
        score=result.score,
        feedback=result.feedback,
        has_inappropriate_language=result.has_inappropriate_language,
        is_fallback=result.is_fallback,
    )
    session.add(row)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await get_analysis(session, response_id)
        if existing is None:
            raise
        return existing
    return row


async def mark_in_progress(session: AsyncSession, interview_id: int) -> None:
    """pending -> in_progress; other states are left alone."""
    await session.execute(
        update(Interview)
        .where(Interview.id == interview_id, Interview.status == InterviewStatus.PENDING.value)
        .values(status=InterviewStatus.IN_PROGRESS.value)
    )
    await session.commit()


def _analyzed_scores_stmt(interview_id: int):
    return (
        select(AIAnalysis.score)
        .join(VideoResponse, VideoResponse.id == AIAnalysis.response_id)
        .join(Interview, Interview.id == VideoResponse.interview_id)
        .join(
            InterviewQuestion,
            (InterviewQuestion.id == VideoResponse.question_id) & (InterviewQuestion.job_id == Interview.job_id),
        )
        .where(VideoResponse.interview_id == interview_id)
    )


async def analyzed_scores(session: AsyncSession, interview_id: int) -> List[int]:
    result = await session.execute(_analyzed_scores_stmt(interview_id))
    return [int(s) for s in result.scalars().all()]


async def count_analyzed(session: AsyncSession, interview_id: int) -> int:
    """Number of responses for this interview that carry an analysis."""
    result = await session.execute(
        select(func.count()).select_from(_analyzed_scores_stmt(interview_id).subquery())
    )
    return int(result.scalar_one())


async def is_complete(session: AsyncSession, interview_id: int, total_questions: int) -> bool:
    if total_questions <= 0:
        return False
    return await count_analyzed(session, interview_id) == total_questions


async def answered_question_ids(session: AsyncSession, interview_id: int) -> Set[int]:
    result = await session.execute(
        select(VideoResponse.question_id)
        .join(AIAnalysis, AIAnalysis.response_id == VideoResponse.id)
        .where(VideoResponse.interview_id == interview_id)
    )
    return set(result.scalars().all())


async def fetch_responses(session: AsyncSession, interview_id: int) -> List[VideoResponse]:
    """All responses with analysis and question loaded, in question order."""
    result = await session.execute(
        select(VideoResponse)
        .join(InterviewQuestion, InterviewQuestion.id == VideoResponse.question_id)
        .where(VideoResponse.interview_id == interview_id)
        .options(selectinload(VideoResponse.analysis), selectinload(VideoResponse.question))
        .order_by(InterviewQuestion.order_index)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def all_locators(session: AsyncSession) -> Set[str]:
    result = await session.execute(select(VideoResponse.video_url))
    return set(result.scalars().all())


async def add_reviewer_feedback(
    session: AsyncSession,
    analysis_id: int,
    feedback: str,
    reviewer: Optional[str] = None,
) -> AIAnalysis:
    """Attach a human reviewer's note. Written once; score and completion are never touched."""
    analysis = await session.get(AIAnalysis, analysis_id, populate_existing=True)
    if analysis is None:
        raise NotFoundError("AIAnalysis", analysis_id)
    if analysis.manager_feedback is not None:
        raise BusinessLogicError(
            rule="reviewer_feedback_once",
            message=f"Reviewer feedback already recorded for analysis {analysis_id}",
            user_message="Reviewer feedback has already been recorded.",
            details={"analysis_id": analysis_id},
        )
    analysis.manager_feedback = feedback
    analysis.manager_feedback_by = reviewer
    analysis.manager_feedback_at = dt.datetime.now(dt.timezone.utc)
    await session.commit()
    return analysis
