import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field

from eventagg_kit import ekit_logs
from eventagg_kit.ekit_config import (
    EXTERNAL_CALL_TIMEOUT,
    TOKEN_DEFAULT_EXPIRES_DAYS,
    TOKEN_REFRESH_PER_PAGE_PER_DAY,
    TOKEN_WARNING_DAYS,
    AppCredentials,
)
from eventagg_kit.ekit_limiter import TokenBucketLimiter
from eventagg_kit.ekit_mongo import Page, TokenStatus
from eventagg_kit.ekit_ports import AlertSenderPort, CamelModel, FacebookPort, PageRegistryPort, TokenStore
from eventagg_kit.ekit_token_expiry import calculate_expiration_date, evaluate_expiry
from eventagg_kit.integrations.facebook.exceptions import FacebookAPIError


logger = logging.getLogger("tokrefresh")


class RefreshResult(CamelModel):
    page_id: str
    success: bool
    error: Optional[str] = None
    days_until_expiry: Optional[int] = None
    expires_in_days: Optional[int] = None


class RefreshRunSummary(CamelModel):
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[RefreshResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def refresh_limiter() -> TokenBucketLimiter:
    return TokenBucketLimiter("token-refresh", TOKEN_REFRESH_PER_PAGE_PER_DAY, 24 * 3600)


class TokenRefresher:
    """
    Exchanges page tokens that are about to expire for fresh long-lived ones.

    Pages are handled one after another, each in its own try block: a page
    failing never stops the others. Only listing the active pages can fail the
    whole run.
    """

    def __init__(
        self,
        registry: PageRegistryPort,
        token_store: TokenStore,
        facebook: FacebookPort,
        alerts: Optional[AlertSenderPort] = None,
        limiter: Optional[TokenBucketLimiter] = None,
        warning_days: int = TOKEN_WARNING_DAYS,
        expires_days: int = TOKEN_DEFAULT_EXPIRES_DAYS,
        call_timeout: float = EXTERNAL_CALL_TIMEOUT,
    ):
        self.registry = registry
        self.token_store = token_store
        self.facebook = facebook
        self.alerts = alerts
        self.limiter = limiter or refresh_limiter()
        self.warning_days = warning_days
        self.expires_days = expires_days
        self.call_timeout = call_timeout

    async def refresh_expiring_tokens(self, creds: AppCredentials) -> RefreshRunSummary:
        pages = await self.registry.list_active()
        summary = RefreshRunSummary()
        if not pages:
            logger.info("no active pages, nothing to refresh")
            return summary
        logger.info("checking %d active pages for expiring tokens", len(pages))
        for page in pages:
            result = await self._refresh_page(page, creds)
            if result is None:
                summary.skipped += 1
                continue
            summary.results.append(result)
            if result.success:
                summary.refreshed += 1
            else:
                summary.failed += 1
        summary.timestamp = datetime.now(timezone.utc)
        logger.info("token refresh done: refreshed=%d failed=%d skipped=%d", summary.refreshed, summary.failed, summary.skipped)
        return summary

    async def _refresh_page(self, page: Page, creds: AppCredentials) -> Optional[RefreshResult]:
        page_id = page.page_id
        try:
            token = await asyncio.wait_for(self.token_store.get(page_id), self.call_timeout)
            if not token:
                logger.warning("page %s has no stored token, skipping refresh", page_id)
                return None
            status = evaluate_expiry(page.token_expires_at, self.warning_days)
            if not status.is_expiring:
                return None
            logger.info("page %s token expires in %d days, refreshing", page_id, status.days_until_expiry)
            if not self.limiter.check(page_id):
                logger.warning("page %s token refresh rate limited", page_id)
                return RefreshResult(page_id=page_id, success=False, error="rate limited", days_until_expiry=status.days_until_expiry)
            try:
                new_token = await asyncio.wait_for(
                    self.facebook.exchange_for_long_lived_token(token, creds.app_id, creds.app_secret),
                    self.call_timeout,
                )
            except FacebookAPIError as e:
                if not e.is_auth_error:
                    raise
                logger.warning("page %s token rejected by facebook (code 190), marking expired", page_id)
                await asyncio.wait_for(self.registry.mark_expired(page_id), self.call_timeout)
                return RefreshResult(page_id=page_id, success=False, error=str(e), days_until_expiry=status.days_until_expiry)
            await asyncio.wait_for(self.token_store.put(page_id, new_token, self.expires_days), self.call_timeout)
            await asyncio.wait_for(
                self.registry.update_token_status(page_id, TokenStatus.ACTIVE, calculate_expiration_date(self.expires_days)),
                self.call_timeout,
            )
            logger.info("page %s token refreshed, valid for %d days", page_id, self.expires_days)
            return RefreshResult(page_id=page_id, success=True, days_until_expiry=status.days_until_expiry, expires_in_days=self.expires_days)
        except Exception as e:
            error = str(e) or type(e).__name__
            ekit_logs.alert(logger, "page %s token refresh failed: %s %s", page_id, type(e).__name__, error)
            await self._send_failure_alert(page_id, error)
            return RefreshResult(page_id=page_id, success=False, error=error)

    async def _send_failure_alert(self, page_id: str, error: str) -> None:
        if self.alerts is None:
            return
        try:
            await asyncio.wait_for(self.alerts.send_token_refresh_failed_alert(page_id, error), self.call_timeout)
        except Exception as e:
            logger.error("alert mail for page %s refresh failure not sent: %s %s", page_id, type(e).__name__, e)
