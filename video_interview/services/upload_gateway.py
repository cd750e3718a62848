from __future__ import annotations

import logging
from functools import partial
from typing import Optional

from anyio import to_thread

from video_interview.core.config import settings
from video_interview.core.error_handling import UploadError, ValidationError, ValidationErrorDetail
from video_interview.core.metrics import Timer, collector
from video_interview.core.storage import ObjectStorage, get_storage
from video_interview.services.capture import Clip

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "video/webm": "webm",
    "audio/webm": "webm",
    "video/mp4": "mp4",
    "audio/mp4": "mp4",
    "video/ogg": "ogg",
    "audio/ogg": "ogg",
    "video/quicktime": "mov",
}


def extension_for(content_type: Optional[str]) -> str:
    base = (content_type or "").split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, "bin")


class UploadGateway:
    """Persists clips under one fixed key per (interview, question) slot.

    The key does not depend on the uploaded clip: its extension comes from
    CLIP_CONTENT_TYPE, while the clip's own type is kept in the S3 object
    metadata and in ``VideoResponse.content_type``. A re-upload to the same slot always overwrites the previous object.
    """

    def __init__(self, storage: Optional[ObjectStorage] = None, prefix: Optional[str] = None) -> None:
        self._storage = storage
        self.prefix = (prefix if prefix is not None else settings.media_prefix).strip("/")

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    def object_key(self, interview_id: int, question_id: int) -> str:
        name = f"interview-{interview_id}-question-{question_id}.{extension_for(settings.clip_content_type)}"
        return f"{self.prefix}/{name}" if self.prefix else name

    def _validate(self, clip: Clip) -> None:
        if clip.size == 0:
            raise ValidationError(
                "Recorded clip is empty",
                field_errors=[ValidationErrorDetail(field="file", message="empty clip", code="empty")],
            )
        if clip.size > settings.max_clip_bytes:
            raise ValidationError(
                "Recorded clip exceeds size limit",
                field_errors=[ValidationErrorDetail(
                    field="file", message=f"max {settings.max_clip_bytes} bytes", code="too_large", value=clip.size
                )],
                status_code=413,
            )

    async def upload(self, interview_id: int, question_id: int, clip: Clip) -> str:
        """Store the clip and return its locator. Raises UploadError on any storage failure."""
        self._validate(clip)
        key = self.object_key(interview_id, question_id)
        try:
            with Timer() as t:
                locator = await to_thread.run_sync(
                    partial(self.storage.put, key, clip.data, clip.content_type)
                )
        except Exception as exc:
            collector.record_error()
            collector.increment_counter("upload_failed")
            logger.warning(
                "Clip upload failed: %s",
                exc,
                extra={"interview_id": interview_id, "question_id": question_id, "exception_type": type(exc).__name__},
            )
            raise UploadError(f"Upload failed for {key}: {exc}", key=key) from exc
        collector.record_upload_ms(t.ms)
        logger.info(
            "Clip uploaded",
            extra={"interview_id": interview_id, "question_id": question_id, "locator": locator, "duration_ms": round(t.ms, 2)},
        )
        return locator
