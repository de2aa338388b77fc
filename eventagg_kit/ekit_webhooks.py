import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from eventagg_kit.ekit_config import WEBHOOK_WINDOW_MS
from eventagg_kit.ekit_event_sync import EventSyncer
from eventagg_kit.ekit_limiter import SlidingWindowLimiter
from eventagg_kit.ekit_ports import CamelModel, EventStorePort


logger = logging.getLogger("webhooks")


PROCESSED_EVENT_TYPES = {
    "event.create",
    "event.update",
    "event.delete",
}

VERB_ACTIONS = {
    "add": "created",
    "create": "created",
    "edit": "updated",
    "update": "updated",
    "delete": "deleted",
    "remove": "deleted",
}

VERB_EVENT_TYPES = {
    "add": "event.create",
    "create": "event.create",
    "edit": "event.update",
    "update": "event.update",
    "delete": "event.delete",
    "remove": "event.delete",
}


class WebhookValidationError(Exception):
    def __init__(self, message: str, status: int = 400):
        self.status = status
        super().__init__(message)


class WebhookChange(BaseModel):
    field: str
    value: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="allow")


class WebhookEntry(BaseModel):
    id: StrictStr
    time: Optional[int] = None
    changes: List[WebhookChange] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")


class WebhookPayload(BaseModel):
    object: Literal["page", "user"]
    entry: List[WebhookEntry]
    model_config = ConfigDict(extra="allow")


class NormalizedWebhookChange(BaseModel):
    page_id: str
    event_id: Optional[str] = None
    timestamp_ms: int
    action: Literal["created", "updated", "deleted", "unknown"]
    event_type: str
    story: Optional[str] = None


class WebhookResult(CamelModel):
    success: bool = True
    events_processed: int = 0
    events_failed: int = 0


def verify_subscription(params: Mapping[str, str], expected_token: str) -> str:
    """
    Facebook's GET handshake when the subscription is set up. Returns the
    challenge to echo back.
    """
    mode = params.get("hub.mode")
    challenge = params.get("hub.challenge")
    token = params.get("hub.verify_token")
    if not mode or not challenge or not token:
        raise WebhookValidationError("Missing required webhook validation parameters")
    if mode != "subscribe":
        raise WebhookValidationError("Invalid hub.mode")
    if not hmac.compare_digest(token, expected_token):
        raise WebhookValidationError("Invalid verify token", status=403)
    return challenge


def verify_signature(raw_body: bytes, signature_header: Optional[str], app_secret: str) -> bool:
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len("sha256="):], expected)


def _first_id(value: Dict[str, Any]) -> Optional[str]:
    candidates = [value.get(k) for k in ("id", "event_id", "eventId", "parent_id", "parentId")]
    for nested in ("event", "object"):
        obj = value.get(nested)
        if isinstance(obj, dict):
            candidates.append(obj.get("id"))
    for c in candidates:
        if isinstance(c, str) and c:
            return c
    return None


def normalize_change(page_id: str, change: WebhookChange) -> NormalizedWebhookChange:
    value = change.value or {}
    verb = value.get("verb")
    verb = verb.lower() if isinstance(verb, str) else "unknown"
    published = value.get("published")
    if not isinstance(published, (int, float)) or isinstance(published, bool):
        published = int(time.time())
    story = value.get("story")
    return NormalizedWebhookChange(
        page_id=page_id,
        event_id=_first_id(value),
        timestamp_ms=int(published * 1000),
        action=VERB_ACTIONS.get(verb, "unknown"),
        event_type=VERB_EVENT_TYPES.get(verb, change.field),
        story=story if isinstance(story, str) else None,
    )


def event_changes(entry: WebhookEntry) -> List[WebhookChange]:
    return [c for c in entry.changes if c.field == "events"]


class WebhookProcessor:
    """
    Applies signature-verified webhook payloads. Deleted events are removed
    directly, created or updated events trigger a sync of their page.
    Delivery is at-least-once, both paths are idempotent.
    """

    def __init__(self, syncer: EventSyncer, events: EventStorePort, limiter: Optional[SlidingWindowLimiter] = None):
        self.syncer = syncer
        self.events = events
        self.limiter = limiter or SlidingWindowLimiter("facebook-webhooks", 1, WEBHOOK_WINDOW_MS / 1000)

    async def process_payload(self, payload: WebhookPayload) -> WebhookResult:
        result = WebhookResult()
        for entry in payload.entry:
            try:
                processed, failed = await self._process_entry(entry)
            except Exception as e:
                logger.error("webhook entry for page %s failed: %s %s", entry.id, type(e).__name__, e)
                processed, failed = 0, 1
            result.events_processed += processed
            result.events_failed += failed
        logger.info("webhook processed=%d failed=%d", result.events_processed, result.events_failed)
        return result

    async def _process_entry(self, entry: WebhookEntry):
        page_id = entry.id
        if not self.limiter.check(page_id):
            logger.debug("webhook rate limited for page %s", page_id)
            return 0, 0
        changes = event_changes(entry)
        if not changes:
            logger.debug("no event changes in webhook for page %s", page_id)
            return 0, 0

        processed = 0
        failed = 0
        upserts = 0
        for change in changes:
            norm = normalize_change(page_id, change)
            if norm.event_type not in PROCESSED_EVENT_TYPES:
                logger.debug("skipping webhook event type %s for page %s", norm.event_type, page_id)
                continue
            if not norm.event_id:
                logger.warning("webhook change for page %s has no event id, keys %s", page_id, sorted(change.value.keys()))
                failed += 1
                continue
            if norm.action == "deleted":
                await self.events.delete_event(page_id, norm.event_id)
                logger.info("deleted event %s of page %s from webhook", norm.event_id, page_id)
                processed += 1
            else:
                upserts += 1

        if upserts:
            sync = await self.syncer.sync_page_by_id(page_id)
            if sync.error is not None:
                logger.error("webhook triggered sync of page %s failed: %s", page_id, sync.error)
                failed += upserts
            else:
                processed += upserts
        return processed, failed
