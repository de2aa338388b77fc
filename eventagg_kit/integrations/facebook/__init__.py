"""
Facebook Graph API integration for event sync.

Only what the sync flow needs: token exchange, managed page listing,
page event listing and event details.

Usage:
    from eventagg_kit.integrations.facebook import FacebookGraphClient

    fb = FacebookGraphClient()
    events = await fb.get_all_relevant_events(page_id, page_token, days_back=30)
"""

from .client import FacebookGraphClient
from .models import (
    FacebookEvent,
    FacebookPage,
    FacebookCover,
    FacebookPlace,
    NormalizedEvent,
    EventData,
)
from .exceptions import (
    FacebookError,
    FacebookAPIError,
    FacebookAuthError,
    FacebookTimeoutError,
    FacebookValidationError,
)
from .utils import (
    normalize_event,
    is_token_invalid_error,
    cover_image_path,
)

__all__ = [
    "FacebookGraphClient",
    "FacebookEvent",
    "FacebookPage",
    "FacebookCover",
    "FacebookPlace",
    "NormalizedEvent",
    "EventData",
    "FacebookError",
    "FacebookAPIError",
    "FacebookAuthError",
    "FacebookTimeoutError",
    "FacebookValidationError",
    "normalize_event",
    "is_token_invalid_error",
    "cover_image_path",
]
