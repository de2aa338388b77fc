import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import Field, field_validator

from eventagg_kit.ekit_config import EVENTS_DEFAULT_PAGE_SIZE, EVENTS_MAX_PAGE_SIZE, EVENTS_MAX_SEARCH_LENGTH
from eventagg_kit.ekit_mongo import StoredEvent
from eventagg_kit.ekit_ports import CamelModel, EventStorePort
from eventagg_kit.integrations.facebook.models import FacebookPlace
from eventagg_kit.integrations.facebook.utils import parse_fb_time


logger = logging.getLogger("events")


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
EVENT_URL_TEMPLATE = "https://facebook.com/events/%s"


def encode_page_token(start: datetime) -> str:
    millis = (start - EPOCH) // timedelta(milliseconds=1)
    return base64.b64encode(str(millis).encode("ascii")).decode("ascii")


def decode_page_token(token: str) -> datetime:
    """
    The paging cursor is the base64 of the last returned start time in epoch
    milliseconds. Raises ValueError for anything else.
    """
    try:
        millis = int(base64.b64decode(token, validate=True).decode("ascii"))
        return EPOCH + timedelta(milliseconds=millis)
    except (ValueError, OverflowError) as e:
        raise ValueError("Invalid page token") from e


class EventListQuery(CamelModel):
    limit: int = Field(EVENTS_DEFAULT_PAGE_SIZE, ge=1, le=EVENTS_MAX_PAGE_SIZE)
    page_token: Optional[str] = None
    page_id: Optional[str] = None
    upcoming: bool = True
    search: Optional[str] = Field(None, min_length=1, max_length=EVENTS_MAX_SEARCH_LENGTH)

    @field_validator("limit", mode="before")
    @classmethod
    def empty_limit_is_default(cls, v):
        return EVENTS_DEFAULT_PAGE_SIZE if v == "" else v

    @field_validator("upcoming", mode="before")
    @classmethod
    def only_false_disables(cls, v):
        if isinstance(v, str):
            return v != "false"
        return v

    @field_validator("search", mode="before")
    @classmethod
    def strip_search(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("page_token")
    @classmethod
    def page_token_decodes(cls, v):
        if v is not None:
            decode_page_token(v)
        return v


class ListedEvent(CamelModel):
    id: str
    page_id: str
    title: str
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    place: Optional[FacebookPlace] = None
    cover_image_url: Optional[str] = None
    event_url: str = Field(alias="eventURL")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_stored(cls, ev: StoredEvent) -> "ListedEvent":
        data = ev.event_data
        return cls(
            id=ev.event_id,
            page_id=ev.page_id,
            title=data.name,
            description=data.description,
            start_time=ev.event_start or parse_fb_time(data.start_time),
            end_time=parse_fb_time(data.end_time),
            place=data.place,
            cover_image_url=data.cover.source if data.cover else None,
            event_url=EVENT_URL_TEMPLATE % ev.event_id,
            created_at=ev.created_at,
            updated_at=ev.updated_at,
        )

    def matches(self, needle: str) -> bool:
        place_name = self.place.name if self.place and self.place.name else ""
        text = " ".join([self.title, self.description or "", place_name]).lower()
        return needle in text


class EventListPage(CamelModel):
    events: List[ListedEvent] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    has_more: bool = False
    total_returned: int = 0


async def list_events(events: EventStorePort, query: EventListQuery, now: Optional[datetime] = None) -> EventListPage:
    """
    One page of stored events ordered by start time. Search is applied to the
    fetched page, so a page can hold fewer than `limit` events while more
    remain. The next page token is only set when more rows exist and the page
    is not empty.
    """
    start_after = decode_page_token(query.page_token) if query.page_token else None
    start_from = (now or datetime.now(timezone.utc)) if query.upcoming else None
    rows = await events.list_events(query.limit + 1, page_id=query.page_id or None, start_from=start_from, start_after=start_after)
    has_more = len(rows) > query.limit
    listed = [ListedEvent.from_stored(r) for r in rows[:query.limit]]
    if query.search:
        needle = query.search.lower()
        listed = [e for e in listed if e.matches(needle)]
    result = EventListPage(events=listed, has_more=has_more, total_returned=len(listed))
    if has_more and listed and listed[-1].start_time is not None:
        result.next_page_token = encode_page_token(listed[-1].start_time)
    logger.debug("listed %d events has_more=%s search=%s", len(listed), has_more, bool(query.search))
    return result
