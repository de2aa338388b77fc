import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field

from eventagg_kit.ekit_config import DEFAULT_IMAGES_BUCKET, EVENT_SYNC_PAST_DAYS, EXTERNAL_CALL_TIMEOUT, TOKEN_WARNING_DAYS
from eventagg_kit.ekit_mongo import Page
from eventagg_kit.ekit_ports import CamelModel, EventStorePort, FacebookPort, ImageStoragePort, PageRegistryPort, TokenStore
from eventagg_kit.ekit_token_expiry import evaluate_expiry
from eventagg_kit.integrations.facebook.models import FacebookEvent, NormalizedEvent
from eventagg_kit.integrations.facebook.utils import cover_image_path, is_token_invalid_error, normalize_event


logger = logging.getLogger("evsync")


@dataclass
class ExpiringToken:
    page_id: str
    page_name: str
    days_until_expiry: int


@dataclass
class PageSyncResult:
    page_id: str
    events: List[NormalizedEvent] = field(default_factory=list)
    error: Optional[str] = None


class SyncError(CamelModel):
    page_id: str
    error: str


class SyncRunSummary(CamelModel):
    success: bool = True
    pages_processed: int = 0
    events_added: int = 0
    events_updated: int = 0
    errors: List[SyncError] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventSyncer:
    """
    Pulls upcoming and recent past events for every active page concurrently
    and writes them in one batch upsert.

    Each page task catches its own errors and returns a PageSyncResult, so a
    broken page never cancels its siblings. A page whose token Facebook
    rejects is marked expired and contributes nothing, without counting as an
    error.
    """

    def __init__(
        self,
        registry: PageRegistryPort,
        token_store: TokenStore,
        facebook: FacebookPort,
        events: EventStorePort,
        images: Optional[ImageStoragePort] = None,
        images_bucket: str = DEFAULT_IMAGES_BUCKET,
        warning_days: int = TOKEN_WARNING_DAYS,
        days_back: int = EVENT_SYNC_PAST_DAYS,
        call_timeout: float = EXTERNAL_CALL_TIMEOUT,
    ):
        self.registry = registry
        self.token_store = token_store
        self.facebook = facebook
        self.events = events
        self.images = images
        self.images_bucket = images_bucket
        self.warning_days = warning_days
        self.days_back = days_back
        self.call_timeout = call_timeout

    async def sync_all_pages(self) -> SyncRunSummary:
        pages = await self.registry.list_active()
        if not pages:
            logger.info("no active pages to sync")
            return SyncRunSummary()
        logger.info("syncing events for %d pages", len(pages))
        expiring: List[ExpiringToken] = []
        results = await asyncio.gather(*(self.sync_single_page(p, expiring) for p in pages))

        all_events: List[NormalizedEvent] = []
        errors: List[SyncError] = []
        for r in results:
            all_events.extend(r.events)
            if r.error is not None:
                errors.append(SyncError(page_id=r.page_id, error=r.error))

        written = await self.events.batch_upsert(all_events) if all_events else 0

        if expiring:
            logger.warning(
                "%d page tokens expiring soon: %s",
                len(expiring),
                ", ".join("%s (%s) in %dd" % (t.page_id, t.page_name, t.days_until_expiry) for t in expiring),
            )
        summary = SyncRunSummary(
            success=True,
            pages_processed=len(pages),
            events_added=written,
            events_updated=0,
            errors=errors,
        )
        logger.info("sync done: pages=%d events=%d errors=%d", summary.pages_processed, summary.events_added, len(errors))
        return summary

    async def sync_page_by_id(self, page_id: str) -> PageSyncResult:
        page = await self.registry.get_page(page_id)
        if page is None or not page.is_syncable:
            logger.info("page %s is not registered or not active, nothing to sync", page_id)
            return PageSyncResult(page_id=str(page_id))
        result = await self.sync_single_page(page, [])
        if result.events:
            await self.events.batch_upsert(result.events)
        return result

    async def sync_single_page(self, page: Page, expiring_tokens: List[ExpiringToken]) -> PageSyncResult:
        page_id = page.page_id
        try:
            status = evaluate_expiry(page.token_expires_at, self.warning_days)
            if status.is_expiring:
                expiring_tokens.append(ExpiringToken(page_id, page.page_name, status.days_until_expiry))

            token = await asyncio.wait_for(self.token_store.get(page_id), self.call_timeout)
            if not token:
                logger.warning("page %s has no stored token, skipping", page_id)
                return PageSyncResult(page_id=page_id)

            try:
                fb_events = await asyncio.wait_for(
                    self.facebook.get_all_relevant_events(page_id, token, self.days_back),
                    self.call_timeout,
                )
            except Exception as e:
                if not is_token_invalid_error(e):
                    raise
                logger.warning("page %s token rejected while listing events, marking expired: %s", page_id, e)
                await asyncio.wait_for(self.registry.mark_expired(page_id), self.call_timeout)
                return PageSyncResult(page_id=page_id)

            normalized = []
            for ev in fb_events:
                cover_url = await self._relocate_cover(ev)
                normalized.append(normalize_event(ev, page_id, cover_url))
            logger.info("page %s: %d events", page_id, len(normalized))
            return PageSyncResult(page_id=page_id, events=normalized)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("page %s sync failed: %s %s", page_id, type(e).__name__, error)
            return PageSyncResult(page_id=page_id, error=error)

    async def _relocate_cover(self, ev: FacebookEvent) -> Optional[str]:
        if self.images is None or not ev.cover or not ev.cover.source:
            return None
        try:
            upload = await asyncio.wait_for(
                self.images.download_and_upload(ev.cover.source, self.images_bucket, cover_image_path(ev)),
                self.call_timeout,
            )
            return upload.url
        except Exception as e:
            logger.warning("event %s cover relocation failed, keeping facebook url: %s %s", ev.id, type(e).__name__, e)
            return None
