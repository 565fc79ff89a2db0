"""
Control-plane transports and the Edge DNS client.

This package contains the HTTP transport for the real control plane and an
in-memory mock used for demonstrations and tests.
"""

from .base_provider import ControlPlaneTransport
from .dns_client import EdgeDNSClient, build_client, get_transport
from .http_transport import HTTPTransport
from .mock_provider import MockControlPlane, MockResolver

__all__ = [
    "ControlPlaneTransport",
    "EdgeDNSClient",
    "HTTPTransport",
    "MockControlPlane",
    "MockResolver",
    "build_client",
    "get_transport",
]
