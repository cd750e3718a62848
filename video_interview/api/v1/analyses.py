from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from video_interview.api.v1.schemas import AnalysisRead, ReviewerFeedbackUpdate
from video_interview.db.session import get_session
from video_interview.services import ledger

router = APIRouter(prefix="/analyses", tags=["analyses"])


@router.patch("/{analysis_id}/reviewer-feedback", response_model=AnalysisRead)
async def add_reviewer_feedback(
    analysis_id: int,
    body: ReviewerFeedbackUpdate,
    session: AsyncSession = Depends(get_session),
):
    """Attach a human reviewer's note to an analysis (typically a fallback placeholder)."""
    analysis = await ledger.add_reviewer_feedback(session, analysis_id, body.feedback.strip(), body.reviewer)
    return AnalysisRead.model_validate(analysis)
