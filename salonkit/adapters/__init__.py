"""
Adapters layer - External integrations (customer portal backend).
"""

from .http import PortalHttpClient, RequestCredentials
from .mock_portal_client import MockPortalBackend, build_mock_portal_client
from .portal_client import CustomerPortalClient

__all__ = [
    "CustomerPortalClient",
    "MockPortalBackend",
    "PortalHttpClient",
    "RequestCredentials",
    "build_mock_portal_client",
]
