"""
Facebook Graph Testing Utilities

Provides mock data generators and a mock client for Facebook integration testing.
"""

from .mocks import (
    generate_mock_event,
    generate_mock_page,
    graph_error_body,
    MockFacebookClient,
)

__all__ = [
    "generate_mock_event",
    "generate_mock_page",
    "graph_error_body",
    "MockFacebookClient",
]
