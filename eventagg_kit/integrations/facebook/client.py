from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import httpx
from .exceptions import (
    FacebookAPIError,
    FacebookAuthError,
    FacebookTimeoutError,
    parse_api_error,
)
from .models import FacebookEvent, FacebookPage, PaginatedEvents, PaginatedPages
from .utils import dedupe_events, filter_recent_past, validate_page_id
logger = logging.getLogger("facebook.client")
API_BASE = "https://graph.facebook.com"
API_VERSION = "v23.0"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0
PAGINATION_LIMIT = 100
PAST_EVENTS_DAYS = 30
EVENT_FIELDS = "id,name,description,start_time,end_time,place,cover{id,source}"
PAGE_FIELDS = "id,name,access_token"
class FacebookGraphClient:
    """
    Async client for the handful of Graph API calls event sync needs: token
    exchange, managed page listing, and page event listing.
    """
    def __init__(
        self,
        api_version: str = API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        initial_retry_delay: float = INITIAL_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self._transport = transport
    @property
    def graph_url(self) -> str:
        return f"{API_BASE}/{self.api_version}"
    async def request(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async def make_request() -> Dict[str, Any]:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(url, params=params, timeout=self.timeout)
                if response.status_code != 200:
                    raise await parse_api_error(response)
                try:
                    return response.json()
                except ValueError as e:
                    raise FacebookAPIError(response.status_code, f"JSON parse error: {e}", status=response.status_code)
        return await self._retry_with_backoff(make_request)
    async def _retry_with_backoff(self, func) -> Dict[str, Any]:
        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await func()
            except (httpx.HTTPError, httpx.TimeoutException) as e:
                last_exception = e
                if attempt == self.max_retries - 1:
                    raise FacebookTimeoutError(self.timeout) from e
                delay = self.initial_retry_delay * (2 ** attempt)
                logger.warning("Retry %d/%d after %ss due to: %s", attempt + 1, self.max_retries, delay, e)
                await asyncio.sleep(delay)
            except FacebookAPIError as e:
                if e.is_auth_error:
                    logger.error("Facebook token expired or invalid (code %s, status %s)", e.code, e.status)
                    raise
                if not e.is_retryable:
                    raise
                last_exception = e
                if attempt == self.max_retries - 1:
                    raise
                delay = self.initial_retry_delay * (2 ** attempt)
                if e.is_rate_limit:
                    delay *= 2
                logger.warning("Facebook API error %s, retry %d/%d after %ss", e.code, attempt + 1, self.max_retries, delay)
                await asyncio.sleep(delay)
        if last_exception:
            raise last_exception
        raise FacebookAPIError(500, "Unexpected retry loop exit")
    async def exchange_code_for_token(self, code: str, app_id: str, app_secret: str, redirect_uri: str) -> str:
        data = await self.request(f"{self.graph_url}/oauth/access_token", {
            "client_id": app_id,
            "client_secret": app_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        })
        token = data.get("access_token")
        if not token:
            raise FacebookAuthError("No access token received from Facebook")
        logger.info("Exchanged authorization code for short-lived token")
        return token
    async def exchange_for_long_lived_token(self, short_token: str, app_id: str, app_secret: str) -> str:
        data = await self.request(f"{self.graph_url}/oauth/access_token", {
            "grant_type": "fb_exchange_token",
            "client_id": app_id,
            "client_secret": app_secret,
            "fb_exchange_token": short_token,
        })
        token = data.get("access_token")
        if not token:
            raise FacebookAuthError("No long-lived token received from Facebook")
        logger.info("Exchanged token for long-lived token")
        return token
    async def get_user_pages(self, user_token: str) -> List[FacebookPage]:
        pages: List[FacebookPage] = []
        url: Optional[str] = f"{self.graph_url}/me/accounts"
        params: Optional[Dict[str, Any]] = {
            "access_token": user_token,
            "fields": PAGE_FIELDS,
            "limit": PAGINATION_LIMIT,
        }
        while url:
            batch = PaginatedPages.model_validate(await self.request(url, params))
            pages.extend(batch.data)
            url = batch.paging.next if batch.paging else None
            params = None  # paging.next already carries the query
        logger.info("Fetched %d facebook user pages", len(pages))
        return pages
    async def get_page_events(self, page_id: str, token: str, time_filter: str = "upcoming") -> List[FacebookEvent]:
        page_id = validate_page_id(page_id)
        events: List[FacebookEvent] = []
        url: Optional[str] = f"{self.graph_url}/{page_id}/events"
        params: Optional[Dict[str, Any]] = {
            "access_token": token,
            "time_filter": time_filter,
            "fields": EVENT_FIELDS,
            "limit": PAGINATION_LIMIT,
        }
        while url:
            batch = PaginatedEvents.model_validate(await self.request(url, params))
            events.extend(batch.data)
            logger.debug("page %s %s events batch of %d", page_id, time_filter, len(batch.data))
            url = batch.paging.next if batch.paging else None
            params = None
        logger.info("Fetched %d %s events for page %s", len(events), time_filter, page_id)
        return events
    async def get_all_relevant_events(self, page_id: str, token: str, days_back: int = PAST_EVENTS_DAYS) -> List[FacebookEvent]:
        upcoming = await self.get_page_events(page_id, token, "upcoming")
        past = await self.get_page_events(page_id, token, "past")
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_back)
        recent_past = filter_recent_past(past, cutoff)
        unique = dedupe_events(upcoming + recent_past)
        logger.info(
            "page %s relevant events: upcoming=%d recent_past=%d unique=%d days_back=%d",
            page_id, len(upcoming), len(recent_past), len(unique), days_back,
        )
        return unique
