from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from video_interview.api.v1.interviews import get_pipeline, submission_read
from video_interview.core.error_handling import ApplicationError, InterviewNotFoundError
from video_interview.services.interview_session import InterviewSession, sessions
from video_interview.services.submission import SubmissionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/interviews/by-link", tags=["candidate"])


class _Channel:
    """Serializes outbound frames; submissions report back from their own tasks."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._lock = asyncio.Lock()
        self.open = True

    async def send(self, payload: dict) -> None:
        if not self.open:
            return
        async with self._lock:
            try:
                await self.websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError):
                self.open = False


def _error_event(exc: ApplicationError, question_id: Optional[int] = None) -> dict:
    event: dict[str, Any] = {
        "type": "error",
        "error": exc.error_code,
        "message": exc.user_message or exc.message,
    }
    if question_id is not None:
        event["question_id"] = question_id
    if exc.suggested_action:
        event["suggested_action"] = exc.suggested_action
    return event


def _state_event(session: InterviewSession, question_id: int, **extra: Any) -> dict:
    rec = session.recorder(question_id)
    return {
        "type": "state",
        "question_id": question_id,
        "state": rec.state.value,
        "elapsed_seconds": rec.elapsed_seconds,
        **extra,
    }


async def _run_submit(session: InterviewSession, channel: _Channel, question_id: int) -> None:
    try:
        outcome = await session.submit(question_id)
    except ApplicationError as exc:
        await channel.send(_error_event(exc, question_id))
        await channel.send(_state_event(session, question_id))
        return
    except Exception:
        logger.exception("Submission crashed", extra={"question_id": question_id})
        await channel.send({"type": "error", "error": "internal_server_error", "question_id": question_id})
        await channel.send(_state_event(session, question_id))
        return
    await channel.send({"type": "submitted", **submission_read(outcome).model_dump(mode="json")})
    await channel.send(_state_event(session, question_id))
    if outcome.completed:
        await channel.send({"type": "completed", "overall_score": outcome.overall_score})


async def _handle_action(
    session: InterviewSession,
    channel: _Channel,
    message: dict,
    tasks: Set[asyncio.Task],
) -> None:
    action = str(message.get("action") or "").lower()
    raw_qid = message.get("question_id")
    question_id = int(raw_qid) if raw_qid is not None else session.current_question_id

    if action == "activate":
        state = session.activate_device(granted=bool(message.get("granted", True)), reason=message.get("reason"))
        await channel.send({"type": "device", "state": state.value})
    elif action == "select":
        session.select(question_id)
        await channel.send(_state_event(session, question_id, current=True))
    elif action == "start":
        session.start(question_id)
        await channel.send(_state_event(session, question_id))
    elif action == "stop":
        clip = await session.stop(question_id)
        await channel.send(_state_event(session, question_id, duration=clip.duration_seconds, size=clip.size))
    elif action == "retake":
        session.retake(question_id)
        await channel.send(_state_event(session, question_id))
    elif action == "submit":
        session.recorder(question_id)
        task = asyncio.create_task(_run_submit(session, channel, question_id))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        # Let the recorder enter "submitting" before reporting it
        await asyncio.sleep(0)
        await channel.send(_state_event(session, question_id))
    elif action == "progress":
        await channel.send({"type": "session", **session.progress()})
    else:
        await channel.send({"type": "error", "error": "unknown_action", "action": action})


@router.websocket("/{link}/record")
async def record_stream(
    websocket: WebSocket,
    link: str,
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """Streaming capture channel for one candidate session.

    Client frames:
      text   {"action": "activate"|"select"|"start"|"stop"|"retake"|"submit"|"progress", "question_id": ...}
      binary encoded media chunks for the active recording
    Server frames: {"type": "session"|"device"|"state"|"submitted"|"completed"|"error", ...}
    """
    await websocket.accept()
    channel = _Channel(websocket)
    try:
        session = await sessions.open(link, pipeline=pipeline)
    except InterviewNotFoundError as exc:
        await channel.send(_error_event(exc))
        await websocket.close(code=4404)
        return

    await channel.send({"type": "session", **session.progress()})
    tasks: Set[asyncio.Task] = set()
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            data = message.get("bytes")
            if data:
                session.feed(data)
                continue
            text = message.get("text")
            if not text:
                continue
            try:
                payload = json.loads(text)
            except ValueError:
                await channel.send({"type": "error", "error": "invalid_frame"})
                continue
            if not isinstance(payload, dict):
                await channel.send({"type": "error", "error": "invalid_frame"})
                continue
            try:
                await _handle_action(session, channel, payload, tasks)
            except ApplicationError as exc:
                await channel.send(_error_event(exc, payload.get("question_id")))
            except (TypeError, ValueError):
                await channel.send({"type": "error", "error": "invalid_frame"})
    except WebSocketDisconnect:
        pass
    finally:
        channel.open = False
        pending = list(tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await sessions.close(link)
