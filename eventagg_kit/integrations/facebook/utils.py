from __future__ import annotations
import logging
import posixpath
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from eventagg_kit.integrations.facebook.exceptions import FacebookAPIError, FacebookValidationError
from eventagg_kit.integrations.facebook.models import EventCover, EventData, FacebookEvent, NormalizedEvent

logger = logging.getLogger("facebook.utils")

ALLOWED_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")
DEFAULT_IMAGE_EXTENSION = "jpg"


def validate_page_id(page_id: str) -> str:
    if page_id is None:
        raise FacebookValidationError("page_id", "is required")
    page_id = str(page_id).strip()
    if not page_id:
        raise FacebookValidationError("page_id", "cannot be empty")
    if not page_id.isdigit():
        raise FacebookValidationError("page_id", "must be numeric")
    return page_id


def is_token_invalid_error(exc: BaseException) -> bool:
    """
    Decide whether an event-listing failure means the page token is dead.

    A structured Graph error is decided by its code alone. Errors that lost
    their structure on the way up are matched by message: anything mentioning
    "190" or "token" counts. That fallback is an approximation, an unrelated
    error that happens to mention a token is misread as an expired token and
    the page is marked expired.
    """
    if isinstance(exc, FacebookAPIError):
        return exc.is_auth_error
    message = str(exc)
    return "190" in message or "token" in message.lower()


def parse_fb_time(value: Optional[str]) -> Optional[datetime]:
    # Graph returns "2025-06-01T19:00:00+0200"; fromisoformat wants "+02:00" before py3.11
    if not value:
        return None
    v = value.strip()
    if len(v) > 5 and v[-5] in "+-" and v[-4:].isdigit():
        v = v[:-2] + ":" + v[-2:]
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(v)
    except ValueError:
        logger.warning("unparseable facebook time %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def filter_recent_past(events: Iterable[FacebookEvent], cutoff: datetime) -> List[FacebookEvent]:
    recent = []
    for event in events:
        start = parse_fb_time(event.start_time)
        if start is not None and start >= cutoff:
            recent.append(event)
    return recent


def dedupe_events(events: Iterable[FacebookEvent]) -> List[FacebookEvent]:
    by_id = {}
    for event in events:
        by_id[event.id] = event
    return list(by_id.values())


def image_extension(url: str) -> str:
    ext = posixpath.splitext(urlparse(url).path)[1].lower().lstrip(".")
    if ext in ALLOWED_IMAGE_EXTENSIONS:
        return ext
    return DEFAULT_IMAGE_EXTENSION


def cover_image_path(event: FacebookEvent, now: Optional[datetime] = None) -> str:
    start = parse_fb_time(event.start_time)
    year = start.year if start else (now or datetime.now(timezone.utc)).year
    source = event.cover.source if event.cover and event.cover.source else ""
    return f"events/{year}/{event.id}.{image_extension(source)}"


def normalize_event(event: FacebookEvent, page_id: str, cover_image_url: Optional[str] = None) -> NormalizedEvent:
    final_cover = cover_image_url
    if final_cover is None and event.cover and event.cover.source:
        final_cover = event.cover.source
    cover = None
    if final_cover is not None:
        cover = EventCover(source=final_cover, id=event.cover.id if event.cover else None)
    return NormalizedEvent(
        page_id=str(page_id),
        event_id=event.id,
        event_data=EventData(
            id=event.id,
            name=event.name,
            start_time=event.start_time,
            end_time=event.end_time,
            description=event.description,
            place=event.place,
            cover=cover,
        ),
    )
