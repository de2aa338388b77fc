"""
Event Aggregator Testing Utilities

In-memory token store, page registry, event store, image storage and alert
sender, plus generators for pages, config and fully wired services.
"""

from .mocks import (
    generate_page,
    generate_config,
    generate_services,
    MemoryTokenStore,
    MemoryPageRegistry,
    MemoryEventStore,
    MockImageStorage,
    MockAlertSender,
)

__all__ = [
    "generate_page",
    "generate_config",
    "generate_services",
    "MemoryTokenStore",
    "MemoryPageRegistry",
    "MemoryEventStore",
    "MockImageStorage",
    "MockAlertSender",
]
