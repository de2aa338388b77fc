import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field

from eventagg_kit import ekit_logs
from eventagg_kit.ekit_config import EXTERNAL_CALL_TIMEOUT, TOKEN_WARNING_DAYS
from eventagg_kit.ekit_mongo import Page
from eventagg_kit.ekit_ports import AlertSenderPort, CamelModel, PageRegistryPort
from eventagg_kit.ekit_token_expiry import evaluate_expiry


logger = logging.getLogger("tokhealth")


class TokenHealthEntry(CamelModel):
    page_id: str
    page_name: str = ""
    days_until_expiry: Optional[int] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


class TokenHealthReport(CamelModel):
    total_pages: int = 0
    healthy: List[TokenHealthEntry] = Field(default_factory=list)
    expiring_soon: List[TokenHealthEntry] = Field(default_factory=list)
    expired: List[TokenHealthEntry] = Field(default_factory=list)
    unknown: List[TokenHealthEntry] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TokenHealthReporter:
    """
    Read-only token health overview of all active pages. Expiry is re-read per
    page from the registry, a page whose read fails lands in `unknown` with
    the error attached.
    """

    def __init__(
        self,
        registry: PageRegistryPort,
        warning_days: int = TOKEN_WARNING_DAYS,
        call_timeout: float = EXTERNAL_CALL_TIMEOUT,
    ):
        self.registry = registry
        self.warning_days = warning_days
        self.call_timeout = call_timeout

    async def _check_page(self, page: Page, now: datetime, report: TokenHealthReport) -> None:
        try:
            expires_at = await asyncio.wait_for(self.registry.get_token_expiry(page.page_id), self.call_timeout)
            status = evaluate_expiry(expires_at, self.warning_days, now)
        except Exception as e:
            logger.warning("page %s token expiry check failed: %s %s", page.page_id, type(e).__name__, e)
            report.unknown.append(TokenHealthEntry(page_id=page.page_id, page_name=page.page_name, error=str(e) or type(e).__name__))
            return
        entry = TokenHealthEntry(
            page_id=page.page_id,
            page_name=page.page_name,
            days_until_expiry=status.days_until_expiry,
            expires_at=status.expires_at,
        )
        if status.days_until_expiry < 0:
            report.expired.append(entry)
        elif status.is_expiring:
            report.expiring_soon.append(entry)
        elif status.expires_at is not None:
            report.healthy.append(entry)
        else:
            report.unknown.append(entry)

    async def check_all_token_health(self, now: Optional[datetime] = None) -> TokenHealthReport:
        now = now or datetime.now(timezone.utc)
        pages = await self.registry.list_active()
        report = TokenHealthReport(total_pages=len(pages), timestamp=now)
        await asyncio.gather(*(self._check_page(p, now, report) for p in pages))
        report.expiring_soon.sort(key=lambda e: e.days_until_expiry)
        return report


async def monitor_token_health(reporter: TokenHealthReporter, mailer: Optional[AlertSenderPort] = None) -> TokenHealthReport:
    report = await reporter.check_all_token_health()
    logger.info(
        "token health: total=%d healthy=%d expiring_soon=%d expired=%d unknown=%d",
        report.total_pages, len(report.healthy), len(report.expiring_soon), len(report.expired), len(report.unknown),
    )
    for entry in report.expired:
        ekit_logs.alert(logger, "page %s (%s) token EXPIRED %d days ago, re-authorization needed", entry.page_id, entry.page_name, -entry.days_until_expiry)
    for entry in report.expiring_soon:
        logger.warning("page %s (%s) token expires in %d days", entry.page_id, entry.page_name, entry.days_until_expiry)
        if mailer is None:
            continue
        if entry.expires_at is not None:
            expires_in_seconds = int((entry.expires_at - report.timestamp).total_seconds())
        else:
            expires_in_seconds = 0
        try:
            await asyncio.wait_for(mailer.send_token_expiry_warning(entry.page_id, expires_in_seconds), reporter.call_timeout)
        except Exception as e:
            logger.error("expiry warning mail for page %s failed: %s %s", entry.page_id, type(e).__name__, e)
    for entry in report.unknown:
        logger.warning("page %s (%s) token state unknown: %s", entry.page_id, entry.page_name, entry.error)
    return report
