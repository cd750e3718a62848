"""
Capture device adapter.

The candidate's camera/microphone lives in the client; the server sees it as a
stream of encoded chunks. ``StreamCaptureDevice`` turns that stream into finite
clips: a recording is an asyncio task that collects chunks until stopped and
resolves to a ``Clip``. Access is requested once per session, reused for every
question and released when the session ends.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from video_interview.core.config import settings
from video_interview.core.error_handling import DeviceUnavailableError, InvalidRecorderTransitionError

logger = logging.getLogger(__name__)


class DeviceState(str, Enum):
    INACTIVE = "inactive"
    READY = "ready"
    UNAVAILABLE = "unavailable"
    RELEASED = "released"


@dataclass(frozen=True)
class Clip:
    """A finite recorded answer. Held in memory only until it is submitted or discarded."""

    data: bytes
    content_type: str
    duration_seconds: int

    @property
    def size(self) -> int:
        return len(self.data)


_STOP = object()


class StreamCaptureDevice:
    """Exclusive, session-scoped capture device fed by client chunks.

    Only one recording may be active at a time; ``owner`` identifies the
    question whose recorder holds the device.
    """

    def __init__(
        self,
        content_type: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.content_type = content_type or settings.clip_content_type
        self.state = DeviceState.INACTIVE
        self.unavailable_reason: Optional[str] = None
        self._clock = clock
        self._owner: Optional[int] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self.state == DeviceState.READY

    @property
    def recording_owner(self) -> Optional[int]:
        return self._owner

    @property
    def is_recording(self) -> bool:
        return self._task is not None and not self._task.done()

    def activate(self, granted: bool = True, reason: Optional[str] = None) -> DeviceState:
        """Record the outcome of the client's permission request.

        A denied or absent device is a distinct terminal state for recording.
        """
        if self.state == DeviceState.READY:
            return self.state
        if self.state == DeviceState.RELEASED:
            raise DeviceUnavailableError("Capture device already released", reason="released")
        if not granted:
            self.state = DeviceState.UNAVAILABLE
            self.unavailable_reason = reason or "denied"
            logger.warning("Capture device unavailable: %s", self.unavailable_reason)
            raise DeviceUnavailableError(reason=self.unavailable_reason)
        self.state = DeviceState.READY
        return self.state

    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return int(math.floor(self._clock() - self._started_at))

    def start_recording(self, owner: int) -> None:
        if self.state != DeviceState.READY:
            raise DeviceUnavailableError(reason=self.unavailable_reason or self.state.value)
        if self.is_recording:
            raise InvalidRecorderTransitionError(
                "start", "recording", question_id=owner,
                reason=f"device busy with question {self._owner}",
            )
        self._owner = owner
        self._queue = asyncio.Queue()
        self._started_at = self._clock()
        self._task = asyncio.create_task(self._collect(self._queue))

    def feed(self, chunk: bytes) -> None:
        """Append an encoded chunk to the active recording; ignored when idle."""
        if not chunk or self._queue is None or not self.is_recording:
            return
        self._queue.put_nowait(chunk)

    async def stop_recording(self, owner: int) -> Clip:
        if self._queue is None or self._task is None or not self.is_recording or self._owner != owner:
            raise InvalidRecorderTransitionError("stop", "idle", question_id=owner, reason="not recording")
        duration = self.elapsed_seconds()
        self._queue.put_nowait(_STOP)
        try:
            data = await self._task
        finally:
            self._reset()
        return Clip(data=data, content_type=self.content_type, duration_seconds=duration)

    async def cancel_recording(self) -> None:
        """Drop the active recording, if any, without producing a clip."""
        task = self._task
        self._reset()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def release(self) -> None:
        await self.cancel_recording()
        self.state = DeviceState.RELEASED

    def _reset(self) -> None:
        self._owner = None
        self._queue = None
        self._task = None
        self._started_at = None

    @staticmethod
    async def _collect(queue: asyncio.Queue) -> bytes:
        chunks: list[bytes] = []
        while True:
            item = await queue.get()
            if item is _STOP:
                return b"".join(chunks)
            chunks.append(item)
