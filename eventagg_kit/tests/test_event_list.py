"""
Tests for event listing: query parsing, paging cursor and search.
"""

import base64
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from eventagg_kit.ekit_event_list import EventListQuery, decode_page_token, encode_page_token, list_events
from eventagg_kit.integrations.facebook.models import FacebookEvent, FacebookPlace
from eventagg_kit.integrations.facebook.utils import normalize_event
from eventagg_kit.testing import MemoryEventStore


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _event(event_id: str, hours_from_now: int, name: str = "Event", description=None, place=None) -> FacebookEvent:
    start = NOW + timedelta(hours=hours_from_now)
    return FacebookEvent(
        id=event_id,
        name=name,
        description=description,
        start_time=start.strftime("%Y-%m-%dT%H:%M:%S%z"),
        place=place,
    )


async def _store(*events, page_id: str = "100") -> MemoryEventStore:
    store = MemoryEventStore()
    await store.batch_upsert([normalize_event(ev, page_id) for ev in events])
    return store


class TestPageToken:
    """Tests for the paging cursor."""

    def test_cursor_is_base64_millis(self):
        """Test the cursor encodes epoch milliseconds."""
        token = encode_page_token(datetime(2025, 6, 1, tzinfo=timezone.utc))
        assert base64.b64decode(token) == b"1748736000000"
        assert decode_page_token(token) == datetime(2025, 6, 1, tzinfo=timezone.utc)

    def test_millisecond_precision_kept(self):
        """Test a start time with milliseconds comes back unchanged."""
        start = datetime(2025, 6, 1, 19, 30, 15, 123000, tzinfo=timezone.utc)
        assert decode_page_token(encode_page_token(start)) == start

    @pytest.mark.parametrize("token", ["%%%", base64.b64encode(b"yesterday").decode(), base64.b64encode(b"9" * 30).decode()])
    def test_garbage_rejected(self, token):
        """Test undecodable cursors raise ValueError."""
        with pytest.raises(ValueError):
            decode_page_token(token)


class TestEventListQuery:
    """Tests for query parameter parsing."""

    def test_defaults(self):
        """Test defaults when no parameters are given."""
        q = EventListQuery.model_validate({})
        assert (q.limit, q.upcoming, q.page_token, q.page_id, q.search) == (50, True, None, None, None)

    def test_string_params(self):
        """Test raw query strings are converted."""
        q = EventListQuery.model_validate({"limit": "20", "pageId": "100", "upcoming": "false", "search": "  jazz  "})
        assert q.limit == 20
        assert q.page_id == "100"
        assert q.upcoming is False
        assert q.search == "jazz"

    def test_only_false_disables_upcoming(self):
        """Test any other upcoming value keeps the filter on."""
        assert EventListQuery.model_validate({"upcoming": "no"}).upcoming is True
        assert EventListQuery.model_validate({"upcoming": "true"}).upcoming is True

    def test_empty_limit_is_default(self):
        """Test an empty limit falls back to the default page size."""
        assert EventListQuery.model_validate({"limit": ""}).limit == 50

    @pytest.mark.parametrize("params", [
        {"limit": "0"},
        {"limit": "101"},
        {"limit": "many"},
        {"pageToken": "???"},
        {"search": ""},
        {"search": "a" * 201},
    ])
    def test_invalid(self, params):
        """Test out of range or malformed parameters fail validation."""
        with pytest.raises(ValidationError):
            EventListQuery.model_validate(params)


class TestListEvents:
    """Tests for list_events."""

    @pytest.mark.asyncio
    async def test_upcoming_only_in_start_order(self):
        """Test past events are left out and the rest are ordered by start."""
        store = await _store(_event("late", 48), _event("gone", -5), _event("early", 2))
        page = await list_events(store, EventListQuery(), now=NOW)
        assert [e.id for e in page.events] == ["early", "late"]
        assert page.has_more is False
        assert page.next_page_token is None
        assert page.total_returned == 2

    @pytest.mark.asyncio
    async def test_walk_pages(self):
        """Test following nextPageToken visits every event once."""
        store = await _store(*[_event(f"e{i}", i + 1) for i in range(5)])
        seen = []
        token = None
        for _ in range(5):
            page = await list_events(store, EventListQuery(limit=2, page_token=token), now=NOW)
            seen.extend(e.id for e in page.events)
            if not page.has_more:
                break
            token = page.next_page_token
        assert seen == ["e0", "e1", "e2", "e3", "e4"]

    @pytest.mark.asyncio
    async def test_search_fields(self):
        """Test search looks at title, description and place name."""
        store = await _store(
            _event("t", 1, name="Jazz Night"),
            _event("d", 2, description="late JAZZ session"),
            _event("p", 3, place=FacebookPlace(name="Jazzhouse")),
            _event("n", 4, name="Rock"),
        )
        page = await list_events(store, EventListQuery(search="jazz"), now=NOW)
        assert [e.id for e in page.events] == ["t", "d", "p"]
        assert page.total_returned == 3

    @pytest.mark.asyncio
    async def test_search_applies_after_fetch(self):
        """Test a filtered page can be short while more events remain."""
        store = await _store(_event("a", 1, name="Rock"), _event("b", 2, name="Jazz"), _event("c", 3, name="Jazz"))
        page = await list_events(store, EventListQuery(limit=2, search="jazz"), now=NOW)
        assert [e.id for e in page.events] == ["b"]
        assert page.has_more is True
        assert decode_page_token(page.next_page_token) == NOW + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_no_token_when_filtered_page_empty(self):
        """Test no cursor is produced when search leaves nothing on the page."""
        store = await _store(_event("a", 1, name="Rock"), _event("b", 2, name="Pop"))
        page = await list_events(store, EventListQuery(limit=1, search="jazz"), now=NOW)
        assert page.events == []
        assert page.has_more is True
        assert page.next_page_token is None

    @pytest.mark.asyncio
    async def test_page_filter_and_json_shape(self):
        """Test pageId filtering and the camelCase output."""
        store = MemoryEventStore()
        await store.batch_upsert([
            normalize_event(_event("a", 1, name="Mine"), "100"),
            normalize_event(_event("b", 1, name="Other"), "200"),
        ])
        page = await list_events(store, EventListQuery(page_id="100"), now=NOW)
        out = page.to_json_dict()
        assert out["totalReturned"] == 1
        assert out["hasMore"] is False
        ev = out["events"][0]
        assert ev["id"] == "a"
        assert ev["pageId"] == "100"
        assert ev["title"] == "Mine"
        assert ev["eventURL"] == "https://facebook.com/events/a"
        assert ev["startTime"].startswith("2025-06-01T13:00:00")
