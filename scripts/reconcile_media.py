import argparse
import asyncio

from video_interview.core.config import settings
from video_interview.core.logging_config import setup_logging
from video_interview.core.storage import get_storage
from video_interview.db.session import async_session_factory
from video_interview.services.reconciliation import delete_orphans, find_orphan_keys


async def main(delete: bool) -> None:
    storage = get_storage()
    async with async_session_factory() as session:
        orphans = await find_orphan_keys(session, storage, f"{settings.media_prefix}/")
    for key in orphans:
        print(storage.locator_for(key))
    if not orphans:
        print("no orphaned clips")
        return
    if delete:
        n = await delete_orphans(storage, orphans)
        print(f"deleted {n}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="List stored clips that have no response row.")
    parser.add_argument("--delete", action="store_true", help="remove the orphaned objects")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(main(args.delete))
