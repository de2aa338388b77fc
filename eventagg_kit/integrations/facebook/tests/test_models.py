"""
Tests for Facebook Graph models and error parsing.
"""

import httpx
import pytest

from ..exceptions import FacebookAPIError, parse_api_error
from ..models import FacebookEvent, FacebookPage, PaginatedEvents
from ..testing import generate_mock_event, generate_mock_page, graph_error_body


class TestFacebookEvent:
    """Tests for FacebookEvent."""

    def test_numeric_id_coerced(self):
        """Test numeric ids become strings."""
        assert FacebookEvent(id=123).id == "123"

    def test_extra_fields_allowed(self):
        """Test unknown Graph fields are kept rather than rejected."""
        ev = FacebookEvent.model_validate({"id": "1", "name": "x", "is_online": True})
        assert ev.model_extra["is_online"] is True

    def test_nested_place_and_cover(self):
        """Test mock generator produces a complete event."""
        ev = generate_mock_event(id="42", with_place=True)
        assert ev.cover.source.endswith("42.jpg")
        assert ev.place.location.city == "Copenhagen"


class TestPagination:
    """Tests for paginated responses."""

    def test_paging_next(self):
        """Test paging.next is parsed."""
        batch = PaginatedEvents.model_validate({
            "data": [{"id": "1"}, {"id": "2"}],
            "paging": {"cursors": {"after": "abc"}, "next": "https://graph.facebook.com/next"},
        })
        assert len(batch.data) == 2
        assert batch.paging.next == "https://graph.facebook.com/next"

    def test_empty_response(self):
        """Test missing data gives an empty list."""
        assert PaginatedEvents.model_validate({}).data == []

    def test_page_access_token(self):
        """Test page access token is exposed."""
        page = generate_mock_page(id="77", access_token="EAAB-page")
        assert FacebookPage.model_validate(page.model_dump()).access_token == "EAAB-page"


class TestParseApiError:
    """Tests for parse_api_error."""

    @pytest.mark.asyncio
    async def test_graph_error_body(self):
        """Test Graph error bodies keep code and status."""
        response = httpx.Response(400, json=graph_error_body(190))
        err = await parse_api_error(response)
        assert isinstance(err, FacebookAPIError)
        assert err.code == 190
        assert err.status == 400
        assert err.is_auth_error
        assert "190" in str(err)

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test HTML error pages fall back to the HTTP status."""
        err = await parse_api_error(httpx.Response(502, text="<html>Bad Gateway</html>"))
        assert err.code == 502
        assert err.is_server_error
        assert err.is_retryable

    def test_rate_limit_codes(self):
        """Test rate limit codes are retryable, permission errors are not."""
        assert FacebookAPIError(17, "User request limit reached").is_rate_limit
        assert FacebookAPIError(4, "Application request limit reached").is_retryable
        assert not FacebookAPIError(10, "Permission denied", status=403).is_retryable
