from __future__ import annotations

from functools import lru_cache
from typing import Iterator, Optional, Protocol

from video_interview.core.config import settings


class ObjectStorage(Protocol):
    """Blocking object store keyed by caller-chosen paths.

    ``put`` overwrites any existing object at ``key`` and returns a resolvable locator.
    """

    def put(self, key: str, body: bytes, content_type: str) -> str: ...

    def get(self, key: str) -> tuple[bytes, str]: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str) -> Iterator[str]: ...

    def locator_for(self, key: str) -> str: ...

    def key_for(self, locator: str) -> Optional[str]: ...


@lru_cache
def get_storage() -> ObjectStorage:
    """Return the configured storage backend (process-wide)."""
    if settings.storage_backend == "s3":
        from video_interview.core.s3 import S3ObjectStorage

        return S3ObjectStorage()
    from video_interview.core.local_storage import LocalObjectStorage

    return LocalObjectStorage()
