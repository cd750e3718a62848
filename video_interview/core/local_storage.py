"""Local file storage for development and single-host deployments."""

import logging
import mimetypes
from pathlib import Path
from typing import Iterator, Optional

from video_interview.core.config import settings

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Stores clips as files under ``base_path``; locators are built from ``base_url``."""

    def __init__(self, base_path: Optional[str] = None, base_url: Optional[str] = None):
        self.base_path = Path(base_path or settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or settings.local_storage_base_url).rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, body: bytes, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a reader never sees a half-written clip
        tmp = path.with_suffix(path.suffix + ".part")
        tmp.write_bytes(body)
        tmp.replace(path)
        logger.info(f"Saved {len(body)} bytes to {path}")
        return self.locator_for(key)

    def get(self, key: str) -> tuple[bytes, str]:
        path = self._path(key)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {key}")
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return path.read_bytes(), content_type

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted file: {path}")

    def list_keys(self, prefix: str) -> Iterator[str]:
        root = self.base_path.resolve()
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.name.endswith(".part"):
                continue
            key = path.relative_to(root).as_posix()
            if key.startswith(prefix):
                yield key

    def locator_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_for(self, locator: str) -> Optional[str]:
        if locator and locator.startswith(self.base_url + "/"):
            return locator[len(self.base_url) + 1:]
        return None
