"""
Tests for AlertMailer with Resend patched out.
"""

import pytest
import resend

from eventagg_kit.ekit_mail import AlertDeliveryError, AlertMailer, format_alert_html


@pytest.fixture
def sent(monkeypatch):
    calls = []

    def fake_send(params):
        calls.append(params)
        return {"id": "email-1"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return calls


class TestAlertMailer:
    """Tests for AlertMailer."""

    @pytest.mark.asyncio
    async def test_not_configured(self, sent):
        """Test sending without an API key raises and calls nothing."""
        mailer = AlertMailer(None, "alerts@test")
        with pytest.raises(AlertDeliveryError):
            await mailer.send_alert("s", "b")
        assert sent == []

    @pytest.mark.asyncio
    async def test_default_recipient(self, sent):
        """Test alerts go to the admin address by default."""
        mailer = AlertMailer("re_key", "alerts@test", "ops@test", "https://app.test")
        await mailer.send_alert("Subject", "Body text")
        assert sent[0]["to"] == ["ops@test"]
        assert sent[0]["from"] == "alerts@test"
        assert sent[0]["text"] == "Body text"
        assert "https://app.test" in sent[0]["html"]

    @pytest.mark.asyncio
    async def test_refresh_failed(self, sent):
        """Test the refresh failure alert names the page."""
        mailer = AlertMailer("re_key", "alerts@test", "ops@test")
        await mailer.send_token_refresh_failed_alert("123", "boom")
        assert sent[0]["subject"] == "Token Refresh Failed - Page 123"
        assert "boom" in sent[0]["html"]

    @pytest.mark.asyncio
    async def test_expiry_warning_rounds_days_up(self, sent):
        """Test partial days count as a whole day."""
        mailer = AlertMailer("re_key", "alerts@test", "ops@test")
        await mailer.send_token_expiry_warning("123", 86400 * 2 + 60)
        assert sent[0]["subject"] == "Token Expiry Warning - Page 123 expires in 3 days"

    @pytest.mark.asyncio
    async def test_sync_failed(self, sent):
        """Test the sync failure alert carries its context."""
        mailer = AlertMailer("re_key", "alerts@test", "ops@test")
        await mailer.send_event_sync_failed_alert("mongo down", {"source": "scheduler"})
        assert sent[0]["subject"] == "Event Sync Failed"
        assert "scheduler" in sent[0]["html"]


class TestFormatAlertHtml:
    """Tests for format_alert_html."""

    def test_escapes(self):
        """Test user supplied text is escaped."""
        out = format_alert_html("Label", "<script>x</script>", {"k": "<b>"}, "https://app.test")
        assert "<script>" not in out
        assert "&lt;script&gt;" in out
        assert "&lt;b&gt;" in out
