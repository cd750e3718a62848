import pytest

from video_interview.core.error_handling import InvalidRecorderTransitionError, UploadError
from video_interview.services.capture import StreamCaptureDevice
from video_interview.services.recorder import RecorderState, ResponseRecorder


class FakeSubmit:
    """Fails the first ``failures`` calls with UploadError, then succeeds."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.clips = []

    async def __call__(self, clip):
        self.clips.append(clip)
        if self.failures:
            self.failures -= 1
            raise UploadError("storage down", key="k")
        return {"ok": True}


def ready_device() -> StreamCaptureDevice:
    device = StreamCaptureDevice()
    device.activate()
    return device


async def record(rec: ResponseRecorder, payload: bytes = b"clip") -> None:
    rec.start()
    rec.device.feed(payload)
    await rec.stop()


@pytest.mark.asyncio
async def test_happy_path_reaches_submitted() -> None:
    submit = FakeSubmit()
    rec = ResponseRecorder(1, ready_device(), submit)
    assert rec.state == RecorderState.IDLE

    await record(rec)
    assert rec.state == RecorderState.RECORDED
    assert rec.clip is not None and rec.clip.data == b"clip"

    outcome = await rec.submit()

    assert outcome == {"ok": True}
    assert rec.state == RecorderState.SUBMITTED
    assert rec.clip is None
    assert len(submit.clips) == 1


@pytest.mark.asyncio
async def test_retake_discards_clip() -> None:
    submit = FakeSubmit()
    rec = ResponseRecorder(1, ready_device(), submit)
    await record(rec, b"first")

    rec.retake()

    assert rec.state == RecorderState.IDLE
    assert rec.clip is None
    assert submit.clips == []
    await record(rec, b"second")
    await rec.submit()
    assert submit.clips[0].data == b"second"


@pytest.mark.asyncio
async def test_failed_upload_returns_to_recorded_and_retry_resends_same_clip() -> None:
    submit = FakeSubmit(failures=1)
    rec = ResponseRecorder(1, ready_device(), submit)
    await record(rec, b"answer")

    with pytest.raises(UploadError):
        await rec.submit()

    assert rec.state == RecorderState.RECORDED
    assert rec.last_error == "upload_failed"
    assert rec.clip is not None

    await rec.submit()
    assert rec.state == RecorderState.SUBMITTED
    assert [c.data for c in submit.clips] == [b"answer", b"answer"]


@pytest.mark.asyncio
async def test_invalid_transitions_are_rejected() -> None:
    rec = ResponseRecorder(1, ready_device(), FakeSubmit())
    with pytest.raises(InvalidRecorderTransitionError):
        await rec.stop()
    with pytest.raises(InvalidRecorderTransitionError):
        rec.retake()
    with pytest.raises(InvalidRecorderTransitionError):
        await rec.submit()

    rec.start()
    with pytest.raises(InvalidRecorderTransitionError) as exc_info:
        rec.start()
    assert exc_info.value.action == "start"
    assert exc_info.value.state == "recording"
    await rec.discard()
    assert rec.state == RecorderState.IDLE


@pytest.mark.asyncio
async def test_submitted_is_terminal() -> None:
    rec = ResponseRecorder(1, ready_device(), FakeSubmit(), submitted=True)
    assert rec.state == RecorderState.SUBMITTED
    with pytest.raises(InvalidRecorderTransitionError):
        rec.start()
    with pytest.raises(InvalidRecorderTransitionError):
        rec.retake()


@pytest.mark.asyncio
async def test_recorders_share_one_device() -> None:
    device = ready_device()
    first = ResponseRecorder(1, device, FakeSubmit())
    second = ResponseRecorder(2, device, FakeSubmit())

    first.start()
    with pytest.raises(InvalidRecorderTransitionError):
        second.start()
    assert second.state == RecorderState.IDLE

    await first.stop()
    second.start()
    assert second.state == RecorderState.RECORDING
    # Navigating away from question 1 kept its recorded clip
    assert first.state == RecorderState.RECORDED
    await second.discard()
