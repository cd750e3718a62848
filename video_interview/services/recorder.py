from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from video_interview.core.error_handling import ApplicationError, InvalidRecorderTransitionError
from video_interview.services.capture import Clip, StreamCaptureDevice

if TYPE_CHECKING:
    from video_interview.services.submission import SubmissionOutcome

logger = logging.getLogger(__name__)


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    RECORDED = "recorded"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


SubmitFn = Callable[[Clip], Awaitable["SubmissionOutcome"]]


class ResponseRecorder:
    """Per-question recording lifecycle.

    idle -> recording -> recorded -> (retake -> idle | submitting -> submitted).
    A failed submission returns to ``recorded`` so the same clip can be resent.
    The recorded clip is transient and never persisted by the recorder itself.
    """

    def __init__(
        self,
        question_id: int,
        device: StreamCaptureDevice,
        submit: SubmitFn,
        submitted: bool = False,
    ) -> None:
        self.question_id = question_id
        self.device = device
        self._submit = submit
        self.state = RecorderState.SUBMITTED if submitted else RecorderState.IDLE
        self.clip: Optional[Clip] = None
        self.last_error: Optional[str] = None
        self.outcome: Optional["SubmissionOutcome"] = None

    def _require(self, action: str, *allowed: RecorderState) -> None:
        if self.state not in allowed:
            raise InvalidRecorderTransitionError(action, self.state.value, question_id=self.question_id)

    @property
    def elapsed_seconds(self) -> int:
        """Wall-clock timer for UI feedback only."""
        if self.state == RecorderState.RECORDING:
            return self.device.elapsed_seconds()
        if self.clip is not None:
            return self.clip.duration_seconds
        return 0

    def start(self) -> None:
        self._require("start", RecorderState.IDLE)
        self.device.start_recording(owner=self.question_id)
        self.last_error = None
        self.state = RecorderState.RECORDING

    async def stop(self) -> Clip:
        self._require("stop", RecorderState.RECORDING)
        self.clip = await self.device.stop_recording(owner=self.question_id)
        self.state = RecorderState.RECORDED
        return self.clip

    def retake(self) -> None:
        self._require("retake", RecorderState.RECORDED)
        self.clip = None
        self.state = RecorderState.IDLE

    async def submit(self) -> "SubmissionOutcome":
        self._require("submit", RecorderState.RECORDED)
        if self.clip is None:
            raise InvalidRecorderTransitionError("submit", self.state.value, question_id=self.question_id, reason="no clip")
        self.state = RecorderState.SUBMITTING
        try:
            outcome = await self._submit(self.clip)
        except ApplicationError as exc:
            self.state = RecorderState.RECORDED
            self.last_error = exc.error_code
            logger.warning(
                "Submission failed; clip kept for retry",
                extra={"question_id": self.question_id, "error_code": exc.error_code},
            )
            raise
        except BaseException:
            # Cancelled or unexpected: keep the clip so the candidate can resend it
            self.state = RecorderState.RECORDED
            raise
        self.outcome = outcome
        self.clip = None
        self.state = RecorderState.SUBMITTED
        return outcome

    async def discard(self) -> None:
        """Session teardown: drop any in-progress or unsent recording."""
        if self.state == RecorderState.RECORDING:
            await self.device.cancel_recording()
            self.state = RecorderState.IDLE
        elif self.state == RecorderState.RECORDED:
            self.state = RecorderState.IDLE
        self.clip = None
