"""
Base control-plane transport interface.

This module defines the abstract base class every transport must implement.
A transport is an already-authenticated request function: it sends one
request and returns the parsed JSON body, or raises one of the API errors
from ``zone_change_orchestrator.errors``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ControlPlaneTransport(ABC):
    """Abstract base class for control-plane transports."""

    @abstractmethod
    def request(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Dict:
        """Send a request and return the decoded JSON body ({} when empty).

        Raises:
            TransientError: network failure, timeout, 429 or 5xx
            NotFound: 404
            ConflictError: 409
            ValidationError: any other 4xx
        """
        pass
