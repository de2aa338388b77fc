"""
Tests for the token health report and the scheduled monitor.
"""

import pytest

from eventagg_kit.ekit_mongo import TokenStatus
from eventagg_kit.ekit_token_health import TokenHealthReporter, monitor_token_health
from eventagg_kit.testing import MemoryPageRegistry, MockAlertSender, generate_page


class TestCheckAllTokenHealth:
    """Tests for TokenHealthReporter.check_all_token_health."""

    @pytest.mark.asyncio
    async def test_zero_pages(self):
        """Test an empty registry gives an empty report."""
        report = await TokenHealthReporter(MemoryPageRegistry()).check_all_token_health()
        assert report.total_pages == 0
        assert report.healthy == [] and report.expiring_soon == [] and report.expired == [] and report.unknown == []
        data = report.to_json_dict()
        assert data["totalPages"] == 0
        assert data["expiringSoon"] == []
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_expiring_soon_sorted(self):
        """Test expiring pages come out ordered by days left."""
        registry = MemoryPageRegistry([
            generate_page("1", expires_in_days=6),
            generate_page("2", expires_in_days=2),
            generate_page("3", expires_in_days=4),
        ])
        report = await TokenHealthReporter(registry).check_all_token_health()
        assert [e.days_until_expiry for e in report.expiring_soon] == [2, 4, 6]
        assert [e.page_id for e in report.expiring_soon] == ["2", "3", "1"]

    @pytest.mark.asyncio
    async def test_classification(self):
        """Test healthy, expiring, expired and unknown-expiry pages."""
        registry = MemoryPageRegistry([
            generate_page("healthy", expires_in_days=40),
            generate_page("soon", expires_in_days=3),
            generate_page("gone", expires_in_days=-2),
            generate_page("noexp", expires_in_days=None),
            generate_page("inactive", expires_in_days=-2, status=TokenStatus.EXPIRED),
        ])
        report = await TokenHealthReporter(registry).check_all_token_health()
        assert report.total_pages == 4
        assert [e.page_id for e in report.healthy] == ["healthy"]
        assert [e.page_id for e in report.expired] == ["gone"]
        assert report.expired[0].days_until_expiry == -2
        assert sorted(e.page_id for e in report.expiring_soon) == ["noexp", "soon"]
        assert report.unknown == []

    @pytest.mark.asyncio
    async def test_failing_page_goes_to_unknown(self):
        """Test a page whose expiry read throws is reported with its error."""
        registry = MemoryPageRegistry([
            generate_page("ok", expires_in_days=30),
            generate_page("broken", expires_in_days=30),
        ])
        registry.expiry_errors["broken"] = RuntimeError("registry read timed out")
        report = await TokenHealthReporter(registry).check_all_token_health()
        assert [e.page_id for e in report.healthy] == ["ok"]
        assert len(report.unknown) == 1
        assert report.unknown[0].page_id == "broken"
        assert report.unknown[0].error == "registry read timed out"

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self):
        """Test a registry outage fails the whole report."""
        registry = MemoryPageRegistry()
        registry.list_error = ConnectionError("mongo down")
        with pytest.raises(ConnectionError):
            await TokenHealthReporter(registry).check_all_token_health()


class TestMonitorTokenHealth:
    """Tests for monitor_token_health."""

    @pytest.mark.asyncio
    async def test_warns_expiring_pages(self):
        """Test one warning mail per expiring page."""
        registry = MemoryPageRegistry([
            generate_page("soon", expires_in_days=3),
            generate_page("fine", expires_in_days=50),
        ])
        mailer = MockAlertSender()
        report = await monitor_token_health(TokenHealthReporter(registry), mailer)
        assert len(report.expiring_soon) == 1
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["details"]["pageId"] == "soon"

    @pytest.mark.asyncio
    async def test_mail_failure_swallowed(self):
        """Test failing mail does not fail the monitor."""
        registry = MemoryPageRegistry([generate_page("soon", expires_in_days=1)])
        mailer = MockAlertSender(fail=True)
        report = await monitor_token_health(TokenHealthReporter(registry), mailer)
        assert mailer.attempts == 1
        assert report.total_pages == 1
