import asyncio
import html
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import resend


logger = logging.getLogger("mail")


DEFAULT_ADMIN_EMAIL = "admin@eventagg.dev"
DEFAULT_WEB_APP_URL = "https://eventagg.dev"

ALERT_LABELS = {
    "token_refresh_failed": "Token Refresh Failed",
    "token_expiry_warning": "Token Expiry Warning",
    "event_sync_failed": "Event Sync Failed",
}


class AlertDeliveryError(Exception):
    pass


def format_alert_html(label: str, text: str, details: Optional[Dict[str, Any]], web_app_url: str) -> str:
    timestamp = datetime.now(timezone.utc).isoformat()
    details_html = ""
    if details:
        details_html = (
            "<h3>Details:</h3>\n"
            '<pre style="background: #f5f5f5; padding: 10px; border-radius: 4px; overflow-x: auto;">'
            f"{html.escape(json.dumps(details, indent=2, default=str))}</pre>"
        )
    return f"""<!DOCTYPE html>
<html>
  <head>
    <style>
      body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; color: #333; line-height: 1.6; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ border-bottom: 3px solid #dc2626; padding-bottom: 10px; margin-bottom: 20px; }}
      h1 {{ margin: 0; color: #dc2626; font-size: 24px; }}
      .timestamp {{ color: #666; font-size: 12px; margin-top: 5px; }}
      .footer {{ margin-top: 30px; padding-top: 20px; border-top: 1px solid #eee; color: #666; font-size: 12px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header">
        <h1>{html.escape(label)}</h1>
        <div class="timestamp">{timestamp}</div>
      </div>
      <div class="content">
        <p>{html.escape(text)}</p>
        {details_html}
      </div>
      <div class="footer">
        <p>This is an automated alert from Event Aggregator.<br>
        <a href="{html.escape(web_app_url, quote=True)}">View Dashboard</a></p>
      </div>
    </div>
  </body>
</html>
"""


class AlertMailer:
    """
    Operator alerts through Resend. send_alert() raises AlertDeliveryError,
    callers decide whether that matters (for alerts it never does).
    """

    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        admin_email: Optional[str] = None,
        web_app_url: Optional[str] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.admin_email = admin_email or DEFAULT_ADMIN_EMAIL
        self.web_app_url = web_app_url or DEFAULT_WEB_APP_URL
        if api_key:
            resend.api_key = api_key
        else:
            logger.warning("mail not configured: RESEND_API_KEY not set, alerts will only be logged")

    async def send_alert(
        self,
        subject: str,
        body: str,
        recipient: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        alert_type: str = "",
    ) -> None:
        to = recipient or self.admin_email
        if not self.api_key:
            raise AlertDeliveryError("Email service not configured")
        params: resend.Emails.SendParams = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": format_alert_html(ALERT_LABELS.get(alert_type, subject), body, details, self.web_app_url),
            "text": body,
        }
        try:
            r = await asyncio.to_thread(resend.Emails.send, params)
        except resend.exceptions.ResendError as e:
            logger.error("resend send error to %s: %s", to, e)
            raise AlertDeliveryError(f"Email send failed: {e}") from e
        logger.info("sent alert %s to %s subject %r", r["id"], to, subject)

    async def send_token_refresh_failed_alert(self, page_id: str, error: str) -> None:
        await self.send_alert(
            subject=f"Token Refresh Failed - Page {page_id}",
            body=f"Facebook token refresh failed for page {page_id}. Manual intervention may be required.",
            details={"pageId": page_id, "error": error, "timestamp": datetime.now(timezone.utc).isoformat()},
            alert_type="token_refresh_failed",
        )

    async def send_token_expiry_warning(self, page_id: str, expires_in_seconds: int) -> None:
        days = math.ceil(expires_in_seconds / 86400)
        await self.send_alert(
            subject=f"Token Expiry Warning - Page {page_id} expires in {days} days",
            body=f"Facebook token for page {page_id} will expire in {days} days. Consider refreshing soon.",
            details={
                "pageId": page_id,
                "expiresIn": expires_in_seconds,
                "expiresInDays": days,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            alert_type="token_expiry_warning",
        )

    async def send_event_sync_failed_alert(self, error: str, context: Optional[Dict[str, Any]] = None) -> None:
        await self.send_alert(
            subject="Event Sync Failed",
            body=f"Event synchronization failed: {error}",
            details={"error": error, **(context or {}), "timestamp": datetime.now(timezone.utc).isoformat()},
            alert_type="event_sync_failed",
        )
