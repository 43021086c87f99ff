"""
Client for the remote transaction builder.

The builder returns partially prepared (unsigned) transactions grouped into
bundles. Several reply shapes are in use across builder versions; they are
normalized here into a list of bundles.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from bundlebot.config import (
    DEFAULT_SLIPPAGE_BPS,
    DEFAULT_TRANSACTION_FEE_SOL,
    LAMPORTS_PER_SOL,
    REQUEST_TIMEOUT,
    TRADING_SERVER_URL,
)
from bundlebot.errors import (
    ConfigurationError,
    MalformedResponse,
    UpstreamRejected,
    UpstreamUnavailable,
)
from bundlebot.solana.models import Bundle, TradeIntent

BUY_ENDPOINT = "/api/tokens/buy"
SELL_ENDPOINT = "/api/tokens/sell"


class ResponseShape(Enum):
    """Reply shapes accepted from the builder, in matching order."""
    BARE_ARRAY = "bare_array"
    BUNDLES = "bundles"
    TRANSACTIONS = "transactions"
    NESTED_DATA = "nested_data"


def detect_shape(payload: Any) -> Optional[ResponseShape]:
    """
    Identify which accepted shape a builder reply has.

    Args:
        payload: Decoded JSON reply

    Returns:
        Matching shape, or None if the reply matches none of them
    """
    if isinstance(payload, list):
        return ResponseShape.BARE_ARRAY

    if not isinstance(payload, dict):
        return None

    if isinstance(payload.get("bundles"), list):
        return ResponseShape.BUNDLES
    if isinstance(payload.get("transactions"), list):
        return ResponseShape.TRANSACTIONS

    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("transactions"), list):
        return ResponseShape.NESTED_DATA

    return None


def normalize_bundles(payload: Any) -> List[Bundle]:
    """
    Convert a builder reply into a list of bundles.

    Args:
        payload: Decoded JSON reply

    Returns:
        List of bundles, each a list of encoded transactions

    Raises:
        UpstreamRejected: If the reply reports failure
        MalformedResponse: If the reply matches no accepted shape
    """
    shape = detect_shape(payload)

    if shape is ResponseShape.BARE_ARRAY:
        return [list(payload)]

    if isinstance(payload, dict) and payload.get("success") is False:
        error = payload.get("error") or payload.get("message") or "Failed to prepare transactions"
        raise UpstreamRejected(str(error))

    if shape is ResponseShape.BUNDLES:
        bundles = []
        for item in payload["bundles"]:
            if isinstance(item, dict) and isinstance(item.get("transactions"), list):
                bundles.append(list(item["transactions"]))
            elif isinstance(item, list):
                bundles.append(list(item))
            else:
                raise MalformedResponse(f"Unexpected bundle entry of type {type(item).__name__}")
        return bundles

    if shape is ResponseShape.TRANSACTIONS:
        return [list(payload["transactions"])]

    if shape is ResponseShape.NESTED_DATA:
        return [list(payload["data"]["transactions"])]

    raise MalformedResponse("Invalid response format from transaction builder")


class BundlePreparationClient:
    """
    Requests unsigned bundles from the transaction builder.
    """

    def __init__(self, base_url: str = TRADING_SERVER_URL, timeout: int = REQUEST_TIMEOUT):
        """
        Initialize the preparation client.

        Args:
            base_url: Base URL of the transaction builder
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or "").rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'BundleBot-Builder-Client/1.0'
        })

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def build_request(
        self,
        wallet_addresses: List[str],
        intent: TradeIntent,
        amounts: Optional[List[float]] = None
    ) -> Dict[str, Any]:
        """
        Build the request body for a preparation call.

        Args:
            wallet_addresses: Addresses of the wallets to trade with
            intent: Trade intent
            amounts: Per-wallet override amounts for these wallets

        Returns:
            JSON request body
        """
        body: Dict[str, Any] = {
            "walletAddresses": list(wallet_addresses),
            "tokenAddress": intent.token_address,
            "protocol": intent.protocol,
        }

        if intent.is_buy:
            body["solAmount"] = intent.sol_amount
        else:
            body["sellPercent"] = intent.sell_percent

        if amounts is not None:
            body["amounts"] = list(amounts)

        slippage = intent.slippage_bps if intent.slippage_bps is not None else DEFAULT_SLIPPAGE_BPS
        if slippage is not None:
            body["slippageBps"] = slippage

        if intent.jito_tip_lamports is not None:
            body["jitoTipLamports"] = intent.jito_tip_lamports
        else:
            body["jitoTipLamports"] = int(round(DEFAULT_TRANSACTION_FEE_SOL * LAMPORTS_PER_SOL))

        return body

    def _post(self, endpoint: str, body: Dict[str, Any]) -> Any:
        """
        Send a POST request to the builder.

        Raises:
            UpstreamUnavailable: On network errors, timeouts, 5xx and 429
            UpstreamRejected: On other 4xx replies
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise UpstreamUnavailable(f"Connection error: {str(e)}") from e
        except requests.exceptions.Timeout as e:
            raise UpstreamUnavailable(f"Request timeout: {str(e)}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Request error: {str(e)}") from e

        logger.debug(f"Builder POST {endpoint} - Status: {response.status_code}")

        if response.status_code == 429 or response.status_code >= 500:
            raise UpstreamUnavailable(f"HTTP {response.status_code}: {response.text}")

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            if response.status_code >= 400:
                raise UpstreamRejected(f"HTTP {response.status_code}: {response.text}")
            raise MalformedResponse(f"Non-JSON response from transaction builder: {response.text[:200]}")

        if response.status_code >= 400:
            if isinstance(payload, dict):
                error = payload.get("error") or payload.get("message") or response.text
            else:
                error = response.text
            raise UpstreamRejected(f"HTTP {response.status_code}: {error}")

        return payload

    async def prepare(
        self,
        wallet_addresses: List[str],
        intent: TradeIntent,
        amounts: Optional[List[float]] = None
    ) -> List[Bundle]:
        """
        Request unsigned bundles for the given wallets.

        Args:
            wallet_addresses: Addresses of the wallets to trade with
            intent: Trade intent
            amounts: Per-wallet override amounts for these wallets

        Returns:
            List of unsigned bundles

        Raises:
            ConfigurationError: If no builder URL is configured
            UpstreamUnavailable: If the builder cannot be reached
            UpstreamRejected: If the builder reports a failure
            MalformedResponse: If the reply has an unknown shape
        """
        if not self.base_url:
            raise ConfigurationError("Transaction builder URL is not configured")

        endpoint = BUY_ENDPOINT if intent.is_buy else SELL_ENDPOINT
        body = self.build_request(wallet_addresses, intent, amounts)

        logger.info(
            f"Preparing {intent.side.value} transactions for {len(wallet_addresses)} wallet(s)",
            extra={"token": intent.token_address, "protocol": intent.protocol}
        )

        payload = await asyncio.to_thread(self._post, endpoint, body)
        bundles = normalize_bundles(payload)

        logger.debug(f"Builder returned {len(bundles)} bundle(s)")
        return bundles
