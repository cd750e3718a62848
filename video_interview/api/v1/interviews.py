import math
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from video_interview.api.v1.schemas import (
    AnalysisRead,
    InterviewResultsRead,
    InterviewSessionRead,
    InterviewStatusRead,
    QuestionRead,
    ResultItem,
    SubmissionRead,
    VideoResponseRead,
)
from video_interview.core.config import settings
from video_interview.core.error_handling import NotFoundError, ValidationError, ValidationErrorDetail
from video_interview.db.models import Job
from video_interview.db.session import get_session
from video_interview.services import ledger
from video_interview.services.capture import Clip
from video_interview.services.submission import SubmissionOutcome, SubmissionPipeline

router = APIRouter(prefix="/interviews", tags=["interviews"])

# Candidate-facing endpoints addressed by the opaque interview link
candidate_router = APIRouter(prefix="/interviews/by-link", tags=["candidate"])


@lru_cache
def get_pipeline() -> SubmissionPipeline:
    return SubmissionPipeline()


def submission_read(outcome: SubmissionOutcome) -> SubmissionRead:
    return SubmissionRead(
        response=VideoResponseRead.model_validate(outcome.response),
        analysis=AnalysisRead.model_validate(outcome.analysis),
        interview_status=outcome.interview_status,
        overall_score=outcome.overall_score,
        completed=outcome.completed,
        already_submitted=outcome.already_submitted,
    )


@candidate_router.get("/{link}", response_model=InterviewSessionRead)
async def get_interview_by_link(link: str, session: AsyncSession = Depends(get_session)):
    """Resolve a candidate link to the interview and its ordered questions."""
    interview, questions = await ledger.resolve_interview_link(session, link)
    answered = await ledger.answered_question_ids(session, interview.id)
    job = await session.get(Job, interview.job_id)
    return InterviewSessionRead(
        interview_id=interview.id,
        candidate_name=interview.candidate_name,
        status=interview.status,
        job_title=job.title if job else None,
        company=job.company if job else None,
        questions=[
            QuestionRead(id=q.id, question=q.question, order_index=q.order_index, answered=q.id in answered)
            for q in questions
        ],
        answered=len(answered),
        total=len(questions),
    )


@candidate_router.post(
    "/{link}/questions/{question_id}/response",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit_response(
    link: str,
    question_id: int,
    file: UploadFile = File(...),
    duration: float = Form(0),
    session: AsyncSession = Depends(get_session),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """Upload one recorded answer and run it through upload, analysis and completion."""
    interview, questions = await ledger.resolve_interview_link(session, link)
    question = next((q for q in questions if q.id == question_id), None)
    if question is None:
        raise NotFoundError("InterviewQuestion", question_id)

    data = await file.read(settings.max_clip_bytes + 1)
    if len(data) > settings.max_clip_bytes:
        raise ValidationError(
            "Recorded clip exceeds size limit",
            field_errors=[ValidationErrorDetail(field="file", message=f"max {settings.max_clip_bytes} bytes", code="too_large")],
            status_code=413,
        )
    if duration < 0 or not math.isfinite(duration):
        raise ValidationError(
            "Invalid duration",
            field_errors=[ValidationErrorDetail(field="duration", message="must be a non-negative number", code="invalid")],
        )
    clip = Clip(
        data=data,
        content_type=file.content_type or settings.clip_content_type,
        duration_seconds=int(math.floor(duration)),
    )
    outcome = await pipeline.submit(interview, question, clip)
    return submission_read(outcome)


@router.get("/{interview_id}/results", response_model=InterviewResultsRead)
async def get_interview_results(interview_id: int, session: AsyncSession = Depends(get_session)):
    """Reviewer view: every response with its analysis, in question order."""
    interview = await ledger.get_interview(session, interview_id)
    responses = await ledger.fetch_responses(session, interview_id)
    return InterviewResultsRead(
        interview_id=interview.id,
        status=interview.status,
        overall_score=interview.overall_score,
        completed_at=interview.completed_at,
        summary=interview.summary,
        responses=[
            ResultItem(
                question_id=r.question_id,
                question=r.question.question,
                order_index=r.question.order_index,
                response=VideoResponseRead.model_validate(r),
                analysis=AnalysisRead.model_validate(r.analysis) if r.analysis else None,
            )
            for r in responses
        ],
    )


@router.get("/{interview_id}/status", response_model=InterviewStatusRead)
async def get_interview_status(interview_id: int, session: AsyncSession = Depends(get_session)):
    interview = await ledger.get_interview(session, interview_id)
    return InterviewStatusRead(
        interview_id=interview.id,
        status=interview.status,
        completed_at=interview.completed_at,
        overall_score=interview.overall_score,
        is_completed=interview.is_completed,
        answered=await ledger.count_analyzed(session, interview_id),
        total=await ledger.count_questions(session, interview.job_id),
    )
