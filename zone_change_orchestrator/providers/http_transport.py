"""
HTTP transport for the Edge DNS control plane.

Request signing is delegated to a ``requests`` auth object supplied by the
caller; this module only sends requests and maps responses onto the error
taxonomy.
"""

import logging
from typing import Any, Dict, Optional

import requests

from ..errors import ConflictError, NotFound, TransientError, ValidationError
from .base_provider import ControlPlaneTransport

logger = logging.getLogger(__name__)


class HTTPTransport(ControlPlaneTransport):
    """Control-plane transport backed by a ``requests.Session``."""

    DEFAULT_TIMEOUT = (10, 60)

    def __init__(
        self,
        base_url: str,
        auth: Optional[requests.auth.AuthBase] = None,
        timeout=None,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("HTTPTransport requires a base_url")
        self.base_url = base_url.rstrip("/")
        if isinstance(timeout, list):
            timeout = tuple(timeout)
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.session = session or requests.Session()
        if auth is not None:
            self.session.auth = auth
        self.session.headers.update({"Accept": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def request(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Dict:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                params=query_params,
                json=body,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"{method} {path} failed: {e}") from e

        return self._parse_response(method, path, response)

    def _parse_response(self, method: str, path: str, response: requests.Response) -> Dict:
        status = response.status_code
        payload = self._decode_body(response)

        if status < 400:
            if payload is None:
                if response.content:
                    raise TransientError(
                        f"{method} {path} returned a non-JSON body", status=status
                    )
                return {}
            return payload

        message = f"{method} {path} returned {status}: {self._describe(payload, response)}"
        if status == 404:
            raise NotFound(message, status=status, body=payload)
        if status == 409:
            raise ConflictError(message, status=status, body=payload)
        if status == 429 or status >= 500:
            raise TransientError(
                message,
                status=status,
                body=payload,
                retry_after=self._retry_after(response),
            )
        raise ValidationError(message, status=status, body=payload)

    @staticmethod
    def _decode_body(response: requests.Response) -> Optional[Any]:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _describe(payload, response: requests.Response) -> str:
        if isinstance(payload, dict):
            return payload.get("detail") or payload.get("title") or str(payload)
        return response.text[:200]

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None
