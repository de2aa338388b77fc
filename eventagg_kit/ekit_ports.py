"""
Collaborator interfaces the orchestrators are constructed with.

Production implementations live in ekit_vault, ekit_mongo, ekit_images,
ekit_mail and integrations.facebook; in-memory ones in eventagg_kit.testing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from eventagg_kit.integrations.facebook.models import FacebookEvent, FacebookPage, NormalizedEvent


@dataclass
class ImageUpload:
    file_name: str
    url: str


class CamelModel(BaseModel):
    """Run results and reports, serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TokenStore(Protocol):
    async def get(self, page_id: str) -> Optional[str]: ...

    async def put(self, page_id: str, secret: str, ttl_days: int) -> str: ...

    async def delete(self, page_id: str) -> None: ...


class PageRegistryPort(Protocol):
    async def list_active(self) -> List[Any]: ...

    async def get_page(self, page_id: str) -> Optional[Any]: ...

    async def get_token_expiry(self, page_id: str) -> Optional[datetime]: ...

    async def update_token_status(self, page_id: str, status: Any, expires_at: Optional[datetime] = None) -> None: ...

    async def mark_expired(self, page_id: str) -> None: ...

    async def save_page(self, page_id: str, page_name: str, token_secret_ref: str, expires_at: datetime) -> None: ...


class EventStorePort(Protocol):
    async def batch_upsert(self, events: List[NormalizedEvent]) -> int: ...

    async def list_events(
        self,
        limit: int,
        page_id: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_after: Optional[datetime] = None,
    ) -> List[Any]: ...

    async def delete_event(self, page_id: str, event_id: str) -> bool: ...

    async def delete_older_than(self, before: datetime, dry_run: bool = False) -> int: ...


class FacebookPort(Protocol):
    async def exchange_for_long_lived_token(self, short_token: str, app_id: str, app_secret: str) -> str: ...

    async def exchange_code_for_token(self, code: str, app_id: str, app_secret: str, redirect_uri: str) -> str: ...

    async def get_user_pages(self, user_token: str) -> List[FacebookPage]: ...

    async def get_all_relevant_events(self, page_id: str, token: str, days_back: int = 30) -> List[FacebookEvent]: ...


class ImageStoragePort(Protocol):
    async def download_and_upload(self, source_url: str, bucket: str, path: str, content_type: Optional[str] = None) -> ImageUpload: ...


class AlertSenderPort(Protocol):
    async def send_alert(self, subject: str, body: str, recipient: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None: ...

    async def send_token_refresh_failed_alert(self, page_id: str, error: str) -> None: ...

    async def send_token_expiry_warning(self, page_id: str, expires_in_seconds: int) -> None: ...

    async def send_event_sync_failed_alert(self, error: str, context: Optional[Dict[str, Any]] = None) -> None: ...
