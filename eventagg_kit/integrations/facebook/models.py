from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
class FacebookPlaceLocation(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    street: Optional[str] = None
    zip: Optional[str] = None
    model_config = ConfigDict(extra="allow")
class FacebookPlace(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[FacebookPlaceLocation] = None
    model_config = ConfigDict(extra="allow")
class FacebookCover(BaseModel):
    id: Optional[str] = None
    source: Optional[str] = None
    model_config = ConfigDict(extra="allow")
class FacebookEvent(BaseModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    place: Optional[FacebookPlace] = None
    cover: Optional[FacebookCover] = None
    model_config = ConfigDict(extra="allow")
    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)
class FacebookPage(BaseModel):
    id: str
    name: str = ""
    access_token: Optional[str] = None
    model_config = ConfigDict(extra="allow")
    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)
class Paging(BaseModel):
    next: Optional[str] = None
    previous: Optional[str] = None
    cursors: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="allow")
class PaginatedEvents(BaseModel):
    data: List[FacebookEvent] = Field(default_factory=list)
    paging: Optional[Paging] = None
class PaginatedPages(BaseModel):
    data: List[FacebookPage] = Field(default_factory=list)
    paging: Optional[Paging] = None
class EventCover(BaseModel):
    source: str
    id: Optional[str] = None
class EventData(BaseModel):
    id: str
    name: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    place: Optional[FacebookPlace] = None
    cover: Optional[EventCover] = None
class NormalizedEvent(BaseModel):
    page_id: str
    event_id: str
    event_data: EventData
    def to_document(self) -> Dict[str, Any]:
        return {
            "page_id": self.page_id,
            "event_id": self.event_id,
            "event_data": self.event_data.model_dump(exclude_none=True),
        }
