import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from eventagg_kit.ekit_config import EXTERNAL_CALL_TIMEOUT, TOKEN_DEFAULT_EXPIRES_DAYS, AppCredentials
from eventagg_kit.ekit_event_sync import EventSyncer
from eventagg_kit.ekit_ports import FacebookPort, PageRegistryPort, TokenStore
from eventagg_kit.ekit_token_expiry import calculate_expiration_date


logger = logging.getLogger("oauth")


DEFAULT_WEB_APP_URL = "http://localhost:3000"


@dataclass
class OAuthOutcome:
    redirect_url: str
    pages: int = 0
    events: int = 0
    error: Optional[str] = None


def redirect_base(state: Optional[str], fallback: str) -> str:
    """The web app origin to send the user back to, taken from `state` when it is a URL."""
    if state:
        parsed = urlparse(state)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
        logger.warning("state parameter is not a URL: %r", state[:200])
    return fallback.rstrip("/")


class OAuthCallbackHandler:
    """
    Completes Facebook login: code -> short-lived user token -> long-lived
    user token -> managed pages. Every page token is stored, the page is
    registered as active, then synced once so the user sees events right away.
    """

    def __init__(
        self,
        registry: PageRegistryPort,
        token_store: TokenStore,
        facebook: FacebookPort,
        syncer: EventSyncer,
        callback_url: str,
        web_app_url: Optional[str] = None,
        expires_days: int = TOKEN_DEFAULT_EXPIRES_DAYS,
        call_timeout: float = EXTERNAL_CALL_TIMEOUT,
    ):
        self.registry = registry
        self.token_store = token_store
        self.facebook = facebook
        self.syncer = syncer
        self.callback_url = callback_url
        self.web_app_url = web_app_url or DEFAULT_WEB_APP_URL
        self.expires_days = expires_days
        self.call_timeout = call_timeout

    async def handle(self, creds: AppCredentials, code: Optional[str], error: Optional[str] = None, state: Optional[str] = None) -> OAuthOutcome:
        base = redirect_base(state, self.web_app_url)
        if error:
            logger.error("facebook oauth error from callback: %s", error)
            return OAuthOutcome(redirect_url=f"{base}/?error=oauth_failed", error=error)
        if not code:
            logger.error("missing authorization code in oauth callback")
            return OAuthOutcome(redirect_url=f"{base}/?error=missing_code", error="missing_code")
        try:
            return await self._complete(creds, code, base)
        except Exception as e:
            logger.error("facebook oauth callback failed: %s %s", type(e).__name__, e, exc_info=e)
            return OAuthOutcome(redirect_url=f"{base}/?error=callback_failed", error=str(e) or type(e).__name__)

    async def _complete(self, creds: AppCredentials, code: str, base: str) -> OAuthOutcome:
        short_token = await asyncio.wait_for(
            self.facebook.exchange_code_for_token(code, creds.app_id, creds.app_secret, self.callback_url),
            self.call_timeout,
        )
        user_token = await asyncio.wait_for(
            self.facebook.exchange_for_long_lived_token(short_token, creds.app_id, creds.app_secret),
            self.call_timeout,
        )
        pages = await asyncio.wait_for(self.facebook.get_user_pages(user_token), self.call_timeout)
        if not pages:
            logger.warning("user granted access but manages no pages")
            return OAuthOutcome(redirect_url=f"{base}/?error=no_pages", error="no_pages")

        stored = []
        for page in pages:
            if not page.access_token:
                logger.warning("page %s (%s) came without an access token, skipping", page.id, page.name)
                continue
            ref = await asyncio.wait_for(self.token_store.put(page.id, page.access_token, self.expires_days), self.call_timeout)
            await asyncio.wait_for(
                self.registry.save_page(page.id, page.name, ref, calculate_expiration_date(self.expires_days)),
                self.call_timeout,
            )
            stored.append(page)

        total_events = 0
        for page in stored:
            result = await self.syncer.sync_page_by_id(page.id)
            if result.error is not None:
                logger.error("initial sync of page %s (%s) failed: %s", page.id, page.name, result.error)
            total_events += len(result.events)

        logger.info("oauth flow completed: pages=%d events=%d", len(stored), total_events)
        return OAuthOutcome(
            redirect_url=f"{base}/?success=true&pages={len(stored)}&events={total_events}",
            pages=len(stored),
            events=total_events,
        )
