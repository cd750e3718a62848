import pytest
from sqlalchemy import func, select

from conftest import in_days
from video_interview.core.error_handling import BusinessLogicError, InterviewNotFoundError, NotFoundError
from video_interview.db.models import AIAnalysis, VideoResponse
from video_interview.services import ledger
from video_interview.services.analysis_invoker import AnalysisResult, fallback_result


def scored(score: int) -> AnalysisResult:
    return AnalysisResult(transcript="t", sentiment="positive", tone="calm", score=score, feedback="f")


async def count_rows(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_resolve_link_returns_ordered_questions(make_interview, session_factory) -> None:
    interview, rows = await make_interview(expires_at=in_days(3))
    async with session_factory() as session:
        found, questions = await ledger.resolve_interview_link(session, interview.interview_link)
    assert found.id == interview.id
    assert [q.order_index for q in questions] == [0, 1, 2]
    assert [q.id for q in questions] == [r.id for r in rows]


@pytest.mark.asyncio
async def test_unknown_expired_and_empty_links_are_not_found(make_interview, session_factory) -> None:
    expired, _ = await make_interview(expires_at=in_days(-1))
    empty, _ = await make_interview(questions=())
    async with session_factory() as session:
        with pytest.raises(InterviewNotFoundError):
            await ledger.resolve_interview_link(session, "no-such-link")
        with pytest.raises(InterviewNotFoundError) as exc_info:
            await ledger.resolve_interview_link(session, expired.interview_link)
        assert exc_info.value.details["reason"] == "expired"
        with pytest.raises(InterviewNotFoundError) as exc_info:
            await ledger.resolve_interview_link(session, empty.interview_link)
        assert exc_info.value.details["reason"] == "no_questions"


@pytest.mark.asyncio
async def test_one_response_row_per_slot(make_interview, session_factory) -> None:
    interview, rows = await make_interview()
    q = rows[0]
    async with session_factory() as session:
        first = await ledger.record_response(session, interview.id, q.id, "loc-1", 10)
        second = await ledger.record_response(session, interview.id, q.id, "loc-2", 12)
        assert first.id == second.id
        assert second.video_url == "loc-2"
        assert await count_rows(session, VideoResponse) == 1


@pytest.mark.asyncio
async def test_analyzed_response_is_immutable(make_interview, session_factory) -> None:
    interview, rows = await make_interview()
    q = rows[0]
    async with session_factory() as session:
        response = await ledger.record_response(session, interview.id, q.id, "loc-1", 10)
        await ledger.record_analysis(session, response.id, scored(8))

        again = await ledger.record_response(session, interview.id, q.id, "loc-2", 99)
        assert again.id == response.id
        assert again.video_url == "loc-1"
        assert again.duration == 10


@pytest.mark.asyncio
async def test_first_analysis_wins(make_interview, session_factory) -> None:
    interview, rows = await make_interview()
    async with session_factory() as session:
        response = await ledger.record_response(session, interview.id, rows[0].id, "loc", 5)
        first = await ledger.record_analysis(session, response.id, scored(9))
        second = await ledger.record_analysis(session, response.id, fallback_result())
        assert first.id == second.id
        assert second.score == 9
        assert await count_rows(session, AIAnalysis) == 1


@pytest.mark.asyncio
async def test_is_complete_counts_only_analyzed_responses(make_interview, session_factory) -> None:
    interview, rows = await make_interview(questions=("a", "b"))
    async with session_factory() as session:
        r1 = await ledger.record_response(session, interview.id, rows[0].id, "l1", 1)
        await ledger.record_analysis(session, r1.id, scored(6))
        await ledger.record_response(session, interview.id, rows[1].id, "l2", 1)

        assert await ledger.count_analyzed(session, interview.id) == 1
        assert not await ledger.is_complete(session, interview.id, 2)
        assert await ledger.answered_question_ids(session, interview.id) == {rows[0].id}
        assert not await ledger.is_complete(session, interview.id, 0)


@pytest.mark.asyncio
async def test_mark_in_progress_only_from_pending(make_interview, session_factory) -> None:
    interview, _ = await make_interview()
    async with session_factory() as session:
        await ledger.mark_in_progress(session, interview.id)
        assert (await ledger.get_interview(session, interview.id)).status == "in_progress"


@pytest.mark.asyncio
async def test_reviewer_feedback_is_written_once(make_interview, session_factory) -> None:
    interview, rows = await make_interview()
    async with session_factory() as session:
        response = await ledger.record_response(session, interview.id, rows[0].id, "loc", 5)
        analysis = await ledger.record_analysis(session, response.id, fallback_result())

        updated = await ledger.add_reviewer_feedback(session, analysis.id, "Watched it, solid answer", "reviewer-1")
        assert updated.manager_feedback == "Watched it, solid answer"
        assert updated.manager_feedback_by == "reviewer-1"
        assert updated.manager_feedback_at is not None
        assert updated.score == 5

        with pytest.raises(BusinessLogicError):
            await ledger.add_reviewer_feedback(session, analysis.id, "again")
        with pytest.raises(NotFoundError):
            await ledger.add_reviewer_feedback(session, 9999, "nope")
