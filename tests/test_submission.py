import asyncio
import logging

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError

from conftest import TIMEOUT, analysis_reply
from video_interview.core.error_handling import InterviewCompletedError, LedgerWriteError, UploadError
from video_interview.db.models import AIAnalysis, VideoResponse
from video_interview.services import ledger
from video_interview.services.analysis_invoker import FALLBACK_TRANSCRIPT
from video_interview.services.capture import Clip
from video_interview.services.upload_gateway import UploadGateway


class BrokenStorage:
    def put(self, key, body, content_type):
        raise ConnectionError("quota exceeded")


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_out_of_order_submissions_with_one_timeout(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, (q1, q2, q3) = await make_interview()
    pipeline = make_pipeline({
        q1.question: TIMEOUT,
        q2.question: analysis_reply(8),
        q3.question: analysis_reply(9),
    })

    second = await pipeline.submit(interview, q2, clip)
    assert second.analysis.score == 8
    assert second.interview_status == "in_progress"
    assert not second.completed

    first = await pipeline.submit(interview, q1, clip)
    assert first.analysis.score == 5
    assert first.analysis.is_fallback
    assert first.analysis.tone == "unclear"
    assert not first.completed

    third = await pipeline.submit(interview, q3, clip)
    assert third.completed
    assert third.interview_status == "completed"
    assert third.overall_score == 7

    async with session_factory() as session:
        stored = await ledger.get_interview(session, interview.id)
    assert stored.overall_score == 7
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_unreachable_analysis_still_completes(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, questions = await make_interview()
    pipeline = make_pipeline({})

    outcomes = [await pipeline.submit(interview, q, clip) for q in questions]

    assert outcomes[-1].completed
    assert outcomes[-1].overall_score == 5
    async with session_factory() as session:
        responses = await ledger.fetch_responses(session, interview.id)
    assert [r.analysis.transcript for r in responses] == [FALLBACK_TRANSCRIPT] * 3
    assert all(r.analysis.sentiment == "neutral" for r in responses)
    assert all(r.analysis.has_inappropriate_language is False for r in responses)


@pytest.mark.asyncio
async def test_failed_upload_writes_nothing_and_can_be_retried(
    make_interview, make_pipeline, clip, session_factory, gateway
) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(6)})
    pipeline.gateway = UploadGateway(storage=BrokenStorage())

    with pytest.raises(UploadError):
        await pipeline.submit(interview, q1, clip)
    assert await count_rows(session_factory, VideoResponse) == 0
    assert await count_rows(session_factory, AIAnalysis) == 0
    assert pipeline.transport.calls == []

    pipeline.gateway = gateway
    outcome = await pipeline.submit(interview, q1, clip)
    assert outcome.analysis.score == 6
    assert await count_rows(session_factory, VideoResponse) == 1


@pytest.mark.asyncio
async def test_request_payload_carries_locator_question_and_candidate(make_interview, make_pipeline, clip) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(7)})

    outcome = await pipeline.submit(interview, q1, clip)

    [call] = pipeline.transport.calls
    assert call == {
        "videoUrl": outcome.response.video_url,
        "question": q1.question,
        "candidateName": "Sam Doe",
    }
    assert outcome.response.video_url.endswith(f"interview-{interview.id}-question-{q1.id}.webm")
    assert outcome.response.duration == 42
    assert outcome.response.size_bytes == clip.size


@pytest.mark.asyncio
async def test_resubmitting_an_answered_question_is_a_no_op(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(9)})

    first = await pipeline.submit(interview, q1, clip)
    again = await pipeline.submit(interview, q1, Clip(b"other", "video/webm", 3))

    assert again.already_submitted
    assert again.response.id == first.response.id
    assert again.analysis.id == first.analysis.id
    assert again.response.duration == 42
    assert len(pipeline.transport.calls) == 1
    assert await count_rows(session_factory, VideoResponse) == 1


@pytest.mark.asyncio
async def test_concurrent_double_submit_writes_one_row(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(4)})

    a, b = await asyncio.gather(
        pipeline.submit(interview, q1, clip),
        pipeline.submit(interview, q1, clip),
    )

    assert {a.already_submitted, b.already_submitted} == {False, True}
    assert a.response.id == b.response.id
    assert await count_rows(session_factory, VideoResponse) == 1
    assert await count_rows(session_factory, AIAnalysis) == 1


@pytest.mark.asyncio
async def test_completed_interview_rejects_new_answers(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, (q1,) = await make_interview(questions=("Only question",))
    other, (other_q,) = await make_interview(questions=("Elsewhere",))
    pipeline = make_pipeline({})
    await pipeline.submit(interview, q1, clip)

    # Force an unanswered slot on a completed interview
    async with session_factory() as session:
        stored = await ledger.get_interview(session, other.id)
        stored.status = "completed"
        await session.commit()

    with pytest.raises(InterviewCompletedError):
        await pipeline.submit(other, other_q, clip)


@pytest.mark.asyncio
async def test_ledger_failure_after_upload_is_logged_for_reconciliation(
    make_interview, make_pipeline, clip, storage, monkeypatch, caplog
) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(8)})

    async def failing_record_response(*args, **kwargs):
        raise OperationalError("INSERT INTO video_responses", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "record_response", failing_record_response)
    # The reconciliation logger does not propagate to root
    reconciliation = logging.getLogger("reconciliation")
    reconciliation.addHandler(caplog.handler)
    try:
        with pytest.raises(LedgerWriteError) as exc_info:
            await pipeline.submit(interview, q1, clip)
    finally:
        reconciliation.removeHandler(caplog.handler)

    key = f"interview-videos/interview-{interview.id}-question-{q1.id}.webm"
    assert storage.exists(key)
    assert exc_info.value.locator == storage.locator_for(key)
    records = [r for r in caplog.records if r.name == "reconciliation"]
    assert records and records[0].locator == storage.locator_for(key)


@pytest.mark.asyncio
async def test_overflowing_score_still_records_fallback_analysis(
    make_interview, make_pipeline, clip, session_factory
) -> None:
    interview, (q1,) = await make_interview(questions=("Only question",))
    pipeline = make_pipeline({q1.question: b'{"transcript": "t", "sentiment": "positive", "score": 1e400}'})

    outcome = await pipeline.submit(interview, q1, clip)

    assert outcome.analysis.is_fallback
    assert outcome.completed
    assert outcome.overall_score == 5
    assert await count_rows(session_factory, VideoResponse) == 1
    assert await count_rows(session_factory, AIAnalysis) == 1


@pytest.mark.asyncio
async def test_retry_with_another_content_type_reuses_the_stored_object(
    make_interview, make_pipeline, clip, storage, monkeypatch
) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(7)})
    original_record_response = ledger.record_response

    async def failing_record_response(*args, **kwargs):
        raise OperationalError("INSERT INTO video_responses", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "record_response", failing_record_response)
    with pytest.raises(LedgerWriteError):
        await pipeline.submit(interview, q1, clip)

    monkeypatch.setattr(ledger, "record_response", original_record_response)
    outcome = await pipeline.submit(interview, q1, Clip(b"mp4-bytes", "video/mp4", 30))

    key = f"interview-videos/interview-{interview.id}-question-{q1.id}.webm"
    assert list(storage.list_keys("interview-videos/")) == [key]
    assert outcome.response.video_url == storage.locator_for(key)
    assert outcome.response.content_type == "video/mp4"


@pytest.mark.asyncio
async def test_response_lost_before_read_back_is_a_ledger_error(
    make_interview, make_pipeline, clip, session_factory, monkeypatch
) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(7)})
    original_complete = pipeline._complete

    async def complete_then_drop_row(session, interview_id, locator):
        current = await original_complete(session, interview_id, locator)
        async with session_factory() as other:
            await other.execute(delete(VideoResponse).where(VideoResponse.interview_id == interview_id))
            await other.commit()
        return current

    monkeypatch.setattr(pipeline, "_complete", complete_then_drop_row)
    with pytest.raises(LedgerWriteError) as exc_info:
        await pipeline.submit(interview, q1, clip)
    assert exc_info.value.locator.endswith(f"interview-{interview.id}-question-{q1.id}.webm")


@pytest.mark.asyncio
async def test_cancel_during_upload_writes_nothing(make_interview, make_pipeline, clip, session_factory) -> None:
    interview, (q1, _, _) = await make_interview()
    pipeline = make_pipeline({q1.question: analysis_reply(8)})
    uploading = asyncio.Event()

    async def hanging_upload(interview_id, question_id, clip):
        uploading.set()
        await asyncio.Event().wait()

    pipeline.gateway.upload = hanging_upload
    task = asyncio.create_task(pipeline.submit(interview, q1, clip))
    await uploading.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    await pipeline.drain()
    assert await count_rows(session_factory, VideoResponse) == 0
    assert await count_rows(session_factory, AIAnalysis) == 0
    assert pipeline.transport.calls == []


@pytest.mark.asyncio
async def test_cancel_after_upload_still_finishes_ledger_writes(
    make_interview, make_pipeline, clip, session_factory
) -> None:
    interview, (q1,) = await make_interview(questions=("Only question",))
    pipeline = make_pipeline({q1.question: analysis_reply(8)})
    analyzing = asyncio.Event()
    release = asyncio.Event()
    original_analyze = pipeline.invoker.analyze

    async def slow_analyze(*args, **kwargs):
        analyzing.set()
        await release.wait()
        return await original_analyze(*args, **kwargs)

    pipeline.invoker.analyze = slow_analyze
    task = asyncio.create_task(pipeline.submit(interview, q1, clip))
    await analyzing.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()
    await pipeline.drain()

    assert await count_rows(session_factory, VideoResponse) == 1
    assert await count_rows(session_factory, AIAnalysis) == 1
    async with session_factory() as session:
        stored = await ledger.get_interview(session, interview.id)
    assert stored.status == "completed"
    assert stored.overall_score == 8
