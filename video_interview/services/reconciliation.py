from __future__ import annotations

import logging
from typing import List

from anyio import to_thread
from sqlalchemy.ext.asyncio import AsyncSession

from video_interview.core.storage import ObjectStorage
from video_interview.services import ledger

logger = logging.getLogger("reconciliation")


async def find_orphan_keys(session: AsyncSession, storage: ObjectStorage, prefix: str) -> List[str]:
    """Storage keys under ``prefix`` that no ledger row points at.

    These are clips whose upload succeeded but whose response row was never
    written (or was deleted afterwards).
    """
    known = {storage.key_for(locator) for locator in await ledger.all_locators(session)}
    keys = await to_thread.run_sync(lambda: list(storage.list_keys(prefix)))
    return sorted(k for k in keys if k not in known)


async def delete_orphans(storage: ObjectStorage, keys: List[str]) -> int:
    deleted = 0
    for key in keys:
        await to_thread.run_sync(storage.delete, key)
        logger.warning("Deleted orphaned clip", extra={"locator": storage.locator_for(key)})
        deleted += 1
    return deleted
