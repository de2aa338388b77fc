"""
Tests for EventSyncer.
"""

import logging
import time

import pytest

from eventagg_kit.ekit_event_sync import EventSyncer
from eventagg_kit.ekit_mongo import TokenStatus
from eventagg_kit.integrations.facebook.exceptions import FacebookAPIError
from eventagg_kit.integrations.facebook.testing import MockFacebookClient, generate_mock_event
from eventagg_kit.testing import MemoryEventStore, MemoryPageRegistry, MemoryTokenStore, MockImageStorage, generate_page


def _syncer(pages, tokens, facebook, images=None):
    registry = MemoryPageRegistry(pages)
    events = MemoryEventStore()
    images = images if images is not None else MockImageStorage()
    syncer = EventSyncer(registry, MemoryTokenStore(tokens), facebook, events, images=images, call_timeout=5.0)
    return syncer, registry, events, images


class TestSyncAllPages:
    """Tests for sync_all_pages."""

    @pytest.mark.asyncio
    async def test_zero_pages(self):
        """Test an empty registry writes nothing."""
        syncer, _, events, _ = _syncer([], {}, MockFacebookClient())
        summary = await syncer.sync_all_pages()
        assert summary.success
        assert summary.pages_processed == 0
        assert summary.events_added == 0
        assert events.batches == []

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_pages(self):
        """Test one page failing leaves the other page's events written."""
        facebook = MockFacebookClient()
        facebook.fail_events("A", RuntimeError("Graph returned 500"))
        facebook.set_events("B", [generate_mock_event(id="b1"), generate_mock_event(id="b2")])
        syncer, _, events, _ = _syncer(
            [generate_page("A"), generate_page("B")],
            {"A": "tokA", "B": "tokB"},
            facebook,
        )
        summary = await syncer.sync_all_pages()
        assert summary.success
        assert summary.pages_processed == 2
        assert summary.events_added == 2
        assert summary.events_updated == 0
        assert [(e.page_id, e.error) for e in summary.errors] == [("A", "Graph returned 500")]
        assert sorted(events.events) == [("B", "b1"), ("B", "b2")]
        assert events.batches == [2]

    @pytest.mark.asyncio
    async def test_invalid_token_marks_expired(self):
        """Test a rejected token marks the page expired and is not an error."""
        facebook = MockFacebookClient()
        facebook.fail_events("A", FacebookAPIError(190, "Error validating access token"))
        facebook.set_events("B", [generate_mock_event(id="b1")])
        syncer, registry, events, _ = _syncer(
            [generate_page("A"), generate_page("B")],
            {"A": "tokA", "B": "tokB"},
            facebook,
        )
        summary = await syncer.sync_all_pages()
        assert summary.errors == []
        assert registry.expired_calls == ["A"]
        assert registry.pages["A"].token_status == TokenStatus.EXPIRED
        assert list(events.events) == [("B", "b1")]

    @pytest.mark.asyncio
    async def test_unstructured_token_message_marks_expired(self):
        """Test a plain error whose message names the token marks the page expired."""
        facebook = MockFacebookClient()
        facebook.fail_events("A", RuntimeError("Invalid OAuth access token"))
        syncer, registry, _, _ = _syncer([generate_page("A")], {"A": "tokA"}, facebook)
        summary = await syncer.sync_all_pages()
        assert summary.errors == []
        assert registry.expired_calls == ["A"]
        assert registry.pages["A"].token_status == TokenStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_structured_non_auth_error_is_reported(self):
        """Test a Graph error that is not code 190 stays a page error even if it mentions a token."""
        facebook = MockFacebookClient()
        facebook.fail_events("A", FacebookAPIError(100, "Invalid parameter: access token field is malformed"))
        syncer, registry, _, _ = _syncer([generate_page("A")], {"A": "tokA"}, facebook)
        summary = await syncer.sync_all_pages()
        assert [e.page_id for e in summary.errors] == ["A"]
        assert registry.expired_calls == []

    @pytest.mark.asyncio
    async def test_pages_fetched_concurrently(self):
        """Test slow pages overlap rather than adding up."""
        facebook = MockFacebookClient()
        facebook.latency = 0.2
        page_ids = [str(i) for i in range(5)]
        for pid in page_ids:
            facebook.set_events(pid, [generate_mock_event(id=f"e{pid}")])
        syncer, _, events, _ = _syncer([generate_page(pid) for pid in page_ids], {pid: f"tok{pid}" for pid in page_ids}, facebook)
        t0 = time.monotonic()
        summary = await syncer.sync_all_pages()
        elapsed = time.monotonic() - t0
        assert summary.events_added == 5
        assert elapsed < 0.6
        assert events.batches == [5]

    @pytest.mark.asyncio
    async def test_expiring_tokens_single_warning(self, caplog):
        """Test expiring pages are reported in one aggregate warning after the run."""
        facebook = MockFacebookClient()
        pages = [generate_page("A", expires_in_days=2), generate_page("B", expires_in_days=3), generate_page("C", expires_in_days=40)]
        syncer, _, _, _ = _syncer(pages, {"A": "tokA", "B": "tokB", "C": "tokC"}, facebook)
        with caplog.at_level(logging.WARNING, logger="evsync"):
            await syncer.sync_all_pages()
        warnings = [r for r in caplog.records if r.name == "evsync" and "expiring soon" in r.getMessage()]
        assert len(warnings) == 1
        assert warnings[0].levelno == logging.WARNING
        message = warnings[0].getMessage()
        assert message.startswith("2 page tokens expiring soon")
        assert "A (Page A)" in message and "B (Page B)" in message
        assert "C (" not in message

    @pytest.mark.asyncio
    async def test_missing_token_contributes_nothing(self):
        """Test a page without a stored token is skipped quietly."""
        facebook = MockFacebookClient()
        facebook.set_events("A", [generate_mock_event(id="a1")])
        syncer, _, events, _ = _syncer([generate_page("A")], {}, facebook)
        summary = await syncer.sync_all_pages()
        assert summary.errors == []
        assert summary.events_added == 0
        assert facebook.event_calls == []
        assert events.batches == []

    @pytest.mark.asyncio
    async def test_double_sync_idempotent(self):
        """Test syncing twice leaves one document per event."""
        facebook = MockFacebookClient()
        facebook.set_events("A", [generate_mock_event(id="a1"), generate_mock_event(id="a2")])
        syncer, _, events, _ = _syncer([generate_page("A")], {"A": "tokA"}, facebook)
        await syncer.sync_all_pages()
        await syncer.sync_all_pages()
        assert len(events.events) == 2
        assert events.batches == [2, 2]

    @pytest.mark.asyncio
    async def test_expired_status_pages_not_synced(self):
        """Test pages already marked expired are not listed."""
        facebook = MockFacebookClient()
        syncer, _, _, _ = _syncer([generate_page("A", status=TokenStatus.EXPIRED)], {"A": "tokA"}, facebook)
        summary = await syncer.sync_all_pages()
        assert summary.pages_processed == 0
        assert facebook.event_calls == []


class TestCoverRelocation:
    """Tests for cover image relocation."""

    @pytest.mark.asyncio
    async def test_cover_uploaded_under_event_year(self):
        """Test the stored cover URL points at the relocated image."""
        facebook = MockFacebookClient()
        ev = generate_mock_event(id="e1")
        facebook.set_events("A", [ev])
        syncer, _, events, images = _syncer([generate_page("A")], {"A": "tokA"}, facebook)
        await syncer.sync_all_pages()
        source, bucket, path = images.uploads[0]
        assert source == ev.cover.source
        assert bucket == "event-images"
        assert path.startswith("events/") and path.endswith("/e1.jpg")
        stored = events.events[("A", "e1")]
        assert stored.event_data.cover.source == f"https://media.test/media/event-images/{path}"

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_facebook_url(self):
        """Test a failed upload falls back to the Facebook cover URL."""
        facebook = MockFacebookClient()
        ev = generate_mock_event(id="e1", cover_url="https://scontent.test/e1.png")
        facebook.set_events("A", [ev])
        syncer, _, events, _ = _syncer([generate_page("A")], {"A": "tokA"}, facebook, images=MockImageStorage(fail=True))
        summary = await syncer.sync_all_pages()
        assert summary.errors == []
        assert events.events[("A", "e1")].event_data.cover.source == "https://scontent.test/e1.png"

    @pytest.mark.asyncio
    async def test_event_without_cover(self):
        """Test events without a cover are stored without one."""
        facebook = MockFacebookClient()
        facebook.set_events("A", [generate_mock_event(id="e1", with_cover=False)])
        syncer, _, events, images = _syncer([generate_page("A")], {"A": "tokA"}, facebook)
        await syncer.sync_all_pages()
        assert images.uploads == []
        assert events.events[("A", "e1")].event_data.cover is None


class TestSyncPageById:
    """Tests for sync_page_by_id."""

    @pytest.mark.asyncio
    async def test_single_page_written(self):
        """Test only the requested page is fetched and written."""
        facebook = MockFacebookClient()
        facebook.set_events("A", [generate_mock_event(id="a1")])
        facebook.set_events("B", [generate_mock_event(id="b1")])
        syncer, _, events, _ = _syncer([generate_page("A"), generate_page("B")], {"A": "tokA", "B": "tokB"}, facebook)
        result = await syncer.sync_page_by_id("A")
        assert result.error is None
        assert [e.event_id for e in result.events] == ["a1"]
        assert facebook.event_calls == ["A"]
        assert list(events.events) == [("A", "a1")]

    @pytest.mark.asyncio
    async def test_unknown_page(self):
        """Test an unregistered page gives an empty result."""
        facebook = MockFacebookClient()
        syncer, _, events, _ = _syncer([], {}, facebook)
        result = await syncer.sync_page_by_id("404")
        assert result.events == [] and result.error is None
        assert facebook.event_calls == []
        assert events.batches == []
