from __future__ import annotations

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from video_interview.core.metrics import collector
from video_interview.db.models import Interview, InterviewStatus
from video_interview.services import ledger

logger = logging.getLogger(__name__)


def overall_score(scores: Iterable[int]) -> Optional[int]:
    """Arithmetic mean rounded half up (7.5 -> 8). None when there is nothing to average."""
    values = [int(s) for s in scores]
    if not values:
        return None
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def completion_summary(response_count: int, score: int) -> str:
    return f"Interview completed with {response_count} responses. Average score: {score}/10."


async def evaluate_completion(
    session: AsyncSession,
    interview_id: int,
    now: Optional[dt.datetime] = None,
) -> Interview:
    """Flip the interview to completed once every question has an analyzed response.

    One-shot: a completed interview is returned as is, so completed_at and
    overall_score are written exactly once. The update is conditional on the
    current status, so two concurrent evaluators cannot both write.
    """
    interview = await ledger.get_interview(session, interview_id)
    if interview.is_completed:
        return interview

    total = await ledger.count_questions(session, interview.job_id)
    scores = await ledger.analyzed_scores(session, interview_id)
    if total == 0 or len(scores) < total:
        logger.debug(
            "Interview not complete: %d/%d analyzed", len(scores), total,
            extra={"interview_id": interview_id},
        )
        return interview

    score = overall_score(scores)
    result = await session.execute(
        update(Interview)
        .where(Interview.id == interview_id, Interview.status != InterviewStatus.COMPLETED.value)
        .values(
            status=InterviewStatus.COMPLETED.value,
            completed_at=now or dt.datetime.now(dt.timezone.utc),
            overall_score=score,
            summary=completion_summary(len(scores), score),
        )
    )
    await session.commit()
    if result.rowcount:
        collector.increment_counter("interview_completed")
        logger.info(
            "Interview completed with overall score %s", score,
            extra={"interview_id": interview_id},
        )
    return await ledger.get_interview(session, interview_id)
