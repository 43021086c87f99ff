"""
Client for the bundle relay that forwards signed bundles to the block engine.
"""

import asyncio
import json
from typing import Any, Dict

import requests
from loguru import logger

from bundlebot.config import RELAY_SERVER_URL, REQUEST_TIMEOUT
from bundlebot.errors import ConfigurationError, RelayRejected, RelayUnreachable
from bundlebot.solana.models import Bundle, RelayAck

SEND_ENDPOINT = "/api/transactions/send"


class BundleRelayClient:
    """
    Submits signed bundles to the relay.

    Callers are expected to acquire a rate limiter slot before each send.
    """

    def __init__(self, base_url: str = RELAY_SERVER_URL, timeout: int = REQUEST_TIMEOUT):
        self.base_url = (base_url or "").rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'BundleBot-Relay-Client/1.0'
        })

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{SEND_ENDPOINT}"

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise RelayUnreachable(f"Connection error: {str(e)}") from e
        except requests.exceptions.Timeout as e:
            raise RelayUnreachable(f"Request timeout: {str(e)}") from e
        except requests.exceptions.RequestException as e:
            raise RelayUnreachable(f"Request error: {str(e)}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise RelayUnreachable(f"HTTP {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            raise RelayRejected(
                f"HTTP {response.status_code}: {response.text}",
                code=response.status_code
            )

        if not isinstance(payload, dict):
            payload = {"success": response.ok, "result": payload}

        if response.status_code >= 400 or payload.get("success") is False:
            raise RelayRejected(
                str(payload.get("error") or f"HTTP {response.status_code}"),
                code=response.status_code,
                details=payload.get("details")
            )

        return payload

    async def send(self, bundle: Bundle) -> RelayAck:
        """
        Submit one signed bundle.

        Args:
            bundle: Signed, encoded transactions

        Returns:
            Relay acknowledgement

        Raises:
            ConfigurationError: If no relay URL is configured
            RelayUnreachable: On network errors, timeouts, 429 or any 5xx
            RelayRejected: If the relay refuses the bundle
        """
        if not self.base_url:
            raise ConfigurationError("Bundle relay URL is not configured")

        logger.info(f"Sending bundle with {len(bundle)} transaction(s)")

        payload = await asyncio.to_thread(self._post, {"transactions": list(bundle)})

        logger.info("Bundle accepted by relay", extra={"result": payload.get("result")})
        return RelayAck(result=payload.get("result"), raw=payload)
