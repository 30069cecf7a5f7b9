"""
Shared REST plumbing for exchange connectors.

Every failure of a whole call (network, timeout, HTTP status, undecodable
body) surfaces as TransportError, which is the unit of retry upstream.
"""

import logging
from typing import Any, Dict, Optional

import requests

from deltazones import config
from deltazones.errors import TransportError

logger = logging.getLogger(__name__)


class HttpClient:
    """Thin requests.Session wrapper bound to one venue"""

    def __init__(self, exchange: str, base_url: str, timeout: float = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            exchange: Venue name used in error messages
            base_url: API root, e.g. https://api.binance.com
            timeout: Request timeout in seconds
            session: Pre-built session (tests inject fakes here)
        """
        self.exchange = exchange
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout or config.HTTP_TIMEOUT

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config.USER_AGENT,
            'Accept': 'application/json'
        })

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document.

        Raises:
            TransportError: on any failure of the request as a whole
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(self.exchange, f"request to {path} failed: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                self.exchange,
                f"HTTP {response.status_code} from {path}: {response.text[:200]}",
                status=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(self.exchange, f"invalid JSON from {path}: {e}") from e

    def close(self):
        self.session.close()
