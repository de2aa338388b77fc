import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import Field

from eventagg_kit.ekit_config import CLEANUP_DEFAULT_DAYS_TO_KEEP
from eventagg_kit.ekit_ports import CamelModel, EventStorePort


logger = logging.getLogger("cleanup")


class CleanupResult(CamelModel):
    success: bool = True
    events_deleted: int = 0
    dry_run: bool = False
    cutoff: Optional[datetime] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


async def cleanup_old_events(
    events: EventStorePort,
    days_to_keep: int = CLEANUP_DEFAULT_DAYS_TO_KEEP,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> CleanupResult:
    """
    Delete events that started more than `days_to_keep` days ago. With
    dry_run only counts what would be deleted. A storage failure is reported
    as success=False rather than raised.
    """
    if days_to_keep < 1:
        raise ValueError("days_to_keep must be >= 1")
    t0 = time.time()
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_to_keep)
    logger.info("cleanup start days_to_keep=%d cutoff=%s dry_run=%s", days_to_keep, cutoff.isoformat(), dry_run)
    result = CleanupResult(dry_run=dry_run, cutoff=cutoff)
    try:
        result.events_deleted = await events.delete_older_than(cutoff, dry_run=dry_run)
    except Exception as e:
        logger.error("cleanup failed: %s %s", type(e).__name__, e, exc_info=e)
        result.success = False
        return result
    logger.info(
        "cleanup done: %s %d events in %.2fs",
        "would delete" if dry_run else "deleted", result.events_deleted, time.time() - t0,
    )
    return result
