"""
Edge DNS Client - Logical endpoints of the zone control plane

This module maps the changelist workflow (create, add-change, submit,
discard) and the zone status reads onto transport requests, and selects a
transport from configuration.
"""

import logging
from typing import Dict, List, Optional

from .base_provider import ControlPlaneTransport
from .http_transport import HTTPTransport
from .mock_provider import MockControlPlane

logger = logging.getLogger(__name__)

API_ROOT = "/config-dns/v2"

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class EdgeDNSClient:
    """Edge DNS API client built on an authenticated transport."""

    def __init__(self, transport: ControlPlaneTransport):
        self.transport = transport

    # Changelists

    def get_changelist(self, zone: str) -> Dict:
        """Changelist metadata; raises NotFound when the zone has none."""
        return self.transport.request(f"{API_ROOT}/changelists/{zone}", "GET")

    def create_changelist(self, zone: str) -> Dict:
        return self.transport.request(
            f"{API_ROOT}/changelists",
            "POST",
            headers=JSON_HEADERS,
            query_params={"zone": zone},
        )

    def discard_changelist(self, zone: str) -> Dict:
        return self.transport.request(f"{API_ROOT}/changelists/{zone}", "DELETE")

    def add_change(self, zone: str, change: Dict) -> Dict:
        return self.transport.request(
            f"{API_ROOT}/changelists/{zone}/recordsets/add-change",
            "POST",
            headers=JSON_HEADERS,
            body=change,
        )

    def list_staged_recordsets(self, zone: str) -> List[Dict]:
        response = self.transport.request(
            f"{API_ROOT}/changelists/{zone}/recordsets", "GET"
        )
        return response.get("recordsets", [])

    def submit_changelist(
        self,
        zone: str,
        comment: str,
        bypass_safety_checks: bool = False,
        skip_sign_and_serve_safety_check: bool = False,
        validate_only: bool = False,
    ) -> Dict:
        return self.transport.request(
            f"{API_ROOT}/changelists/{zone}/submit",
            "POST",
            headers=JSON_HEADERS,
            body={
                "comment": comment,
                "bypassSafetyChecks": bypass_safety_checks,
                "skipSignAndServeSafetyCheck": skip_sign_and_serve_safety_check,
                "validateOnly": validate_only,
            },
        )

    # Zones

    def get_zone_status(self, zone: str) -> Dict:
        return self.transport.request(f"{API_ROOT}/zones/{zone}/status", "GET")

    def get_recordset(self, zone: str, name: str, record_type: str) -> Dict:
        return self.transport.request(
            f"{API_ROOT}/zones/{zone}/names/{name}/types/{record_type}", "GET"
        )

    def list_recordsets(self, zone: str) -> List[Dict]:
        response = self.transport.request(
            f"{API_ROOT}/zones/{zone}/recordsets",
            "GET",
            query_params={"showAll": "true"},
        )
        return response.get("recordsets", [])


def get_transport(config: Dict, auth=None) -> ControlPlaneTransport:
    """Get the control-plane transport based on configuration."""
    provider_name = config.get("default_provider", "mock")
    provider_config = (config.get("dns_providers") or {}).get(provider_name) or {}

    if provider_name == "edgedns":
        return HTTPTransport(
            base_url=provider_config.get("base_url", ""),
            auth=auth,
            timeout=provider_config.get("timeout"),
            headers=provider_config.get("headers"),
        )
    elif provider_name == "mock":
        return MockControlPlane(provider_config)
    else:
        logger.warning(f"Unknown provider '{provider_name}', using mock control plane")
        return MockControlPlane()


def build_client(config: Dict, auth=None, transport: Optional[ControlPlaneTransport] = None) -> EdgeDNSClient:
    """Build an EdgeDNSClient from configuration or an explicit transport."""
    return EdgeDNSClient(transport or get_transport(config, auth=auth))
