import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pymongo import ASCENDING, UpdateOne
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from eventagg_kit.integrations.facebook.models import EventData, NormalizedEvent
from eventagg_kit.integrations.facebook.utils import parse_fb_time


logger = logging.getLogger("mongo")


PAGES_COLLECTION = "pages"
EVENTS_COLLECTION = "events"


class TokenStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    INVALID = "invalid"


class Page(BaseModel):
    page_id: str
    page_name: str = ""
    token_status: TokenStatus = TokenStatus.ACTIVE
    token_expires_at: Optional[datetime] = None
    token_secret_ref: Optional[str] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(extra="ignore")

    @property
    def is_syncable(self) -> bool:
        return self.token_status == TokenStatus.ACTIVE and self.token_secret_ref is not None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Page":
        doc = dict(doc)
        doc.pop("_id", None)
        expires_at = doc.get("token_expires_at")
        if isinstance(expires_at, datetime) and expires_at.tzinfo is None:
            doc["token_expires_at"] = expires_at.replace(tzinfo=timezone.utc)
        return cls.model_validate(doc)


class StoredEvent(BaseModel):
    page_id: str
    event_id: str
    event_data: EventData
    event_start: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "StoredEvent":
        doc = dict(doc)
        doc.pop("_id", None)
        for k in ("event_start", "created_at", "updated_at"):
            v = doc.get(k)
            if isinstance(v, datetime) and v.tzinfo is None:
                doc[k] = v.replace(tzinfo=timezone.utc)
        return cls.model_validate(doc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PageRegistry:
    def __init__(self, collection: AsyncCollection):
        self.collection = collection

    @classmethod
    def from_db(cls, db: AsyncDatabase) -> "PageRegistry":
        return cls(db[PAGES_COLLECTION])

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("page_id", ASCENDING)], unique=True)
        await self.collection.create_index([("token_status", ASCENDING)])

    async def list_active(self) -> List[Page]:
        cursor = self.collection.find({
            "token_status": TokenStatus.ACTIVE.value,
            "token_secret_ref": {"$ne": None},
        })
        return [Page.from_document(doc) async for doc in cursor]

    async def get_page(self, page_id: str) -> Optional[Page]:
        doc = await self.collection.find_one({"page_id": str(page_id)})
        return Page.from_document(doc) if doc else None

    async def get_token_expiry(self, page_id: str) -> Optional[datetime]:
        doc = await self.collection.find_one({"page_id": str(page_id)}, {"token_expires_at": 1})
        if doc is None:
            raise LookupError(f"page {page_id} is not registered")
        expires_at = doc.get("token_expires_at")
        if isinstance(expires_at, datetime) and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at

    async def update_token_status(self, page_id: str, status: TokenStatus, expires_at: Optional[datetime] = None) -> None:
        update: Dict[str, Any] = {"token_status": TokenStatus(status).value, "updated_at": _utcnow()}
        if expires_at is not None:
            update["token_expires_at"] = expires_at
        await self.collection.update_one({"page_id": str(page_id)}, {"$set": update})
        logger.info("page %s token status -> %s", page_id, TokenStatus(status).value)

    async def mark_expired(self, page_id: str) -> None:
        await self.update_token_status(page_id, TokenStatus.EXPIRED)

    async def save_page(self, page_id: str, page_name: str, token_secret_ref: str, expires_at: datetime) -> None:
        now = _utcnow()
        await self.collection.update_one(
            {"page_id": str(page_id)},
            {
                "$set": {
                    "page_name": page_name,
                    "token_status": TokenStatus.ACTIVE.value,
                    "token_expires_at": expires_at,
                    "token_secret_ref": token_secret_ref,
                    "updated_at": now,
                },
                "$setOnInsert": {"page_id": str(page_id), "created_at": now},
            },
            upsert=True,
        )
        logger.info("saved page %s %r", page_id, page_name)


class EventStore:
    """
    Normalized events keyed by (page_id, event_id). The event start time is
    also kept as a top-level datetime so cleanup can range-query it.
    """

    def __init__(self, collection: AsyncCollection):
        self.collection = collection

    @classmethod
    def from_db(cls, db: AsyncDatabase) -> "EventStore":
        return cls(db[EVENTS_COLLECTION])

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("page_id", ASCENDING), ("event_id", ASCENDING)], unique=True)
        await self.collection.create_index([("event_start", ASCENDING)])
        await self.collection.create_index([("page_id", ASCENDING), ("event_start", ASCENDING)])

    async def batch_upsert(self, events: List[NormalizedEvent]) -> int:
        if not events:
            return 0
        now = _utcnow()
        ops = []
        for ev in events:
            doc = ev.to_document()
            doc["event_start"] = parse_fb_time(ev.event_data.start_time)
            doc["updated_at"] = now
            ops.append(UpdateOne(
                {"page_id": ev.page_id, "event_id": ev.event_id},
                {"$set": doc, "$setOnInsert": {"created_at": now}},
                upsert=True,
            ))
        result = await self.collection.bulk_write(ops, ordered=False)
        logger.info("upserted %d events: inserted=%d modified=%d", len(ops), result.upserted_count, result.modified_count)
        return len(ops)

    async def list_events(
        self,
        limit: int,
        page_id: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_after: Optional[datetime] = None,
    ) -> List[StoredEvent]:
        """
        Events ordered by start time, at most `limit` of them. `start_from` is
        inclusive, `start_after` exclusive and used as the paging cursor.
        """
        query: Dict[str, Any] = {}
        if page_id:
            query["page_id"] = str(page_id)
        start: Dict[str, Any] = {}
        if start_from is not None:
            start["$gte"] = start_from
        if start_after is not None:
            start["$gt"] = start_after
        if start:
            query["event_start"] = start
        cursor = self.collection.find(query, sort=[("event_start", ASCENDING)], limit=limit)
        return [StoredEvent.from_document(doc) async for doc in cursor]

    async def delete_event(self, page_id: str, event_id: str) -> bool:
        result = await self.collection.delete_one({"page_id": str(page_id), "event_id": str(event_id)})
        return result.deleted_count > 0

    async def delete_older_than(self, before: datetime, dry_run: bool = False) -> int:
        query = {"event_start": {"$lt": before}}
        if dry_run:
            return await self.collection.count_documents(query)
        result = await self.collection.delete_many(query)
        return result.deleted_count
