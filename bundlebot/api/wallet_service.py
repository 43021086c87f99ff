"""
Wallet validation and balance lookup for volume sessions.

Uses the remote wallet service when it is configured and reachable, and
falls back to local key decoding otherwise.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from bundlebot.config import REQUEST_TIMEOUT, WALLET_SERVICE_URL
from bundlebot.solana.models import decode_private_key

VALIDATE_ENDPOINT = "/api/volume/validate-wallets"
BALANCES_ENDPOINT = "/api/volume/wallet-balances"


class WalletServiceError(Exception):
    """Raised when the wallet service cannot answer a request."""
    pass


@dataclass
class WalletValidation:
    """Private keys split into usable and unusable ones."""
    valid: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    source: str = "remote"


@dataclass
class WalletBalance:
    """SOL balance of one wallet. sol_balance is None when unknown."""
    public_key: str
    sol_balance: Optional[float] = None


def derive_address(private_key: str) -> Optional[str]:
    """
    Derive the public address of a private key.

    Returns:
        Base58 address, or None if the key cannot be decoded
    """
    try:
        return str(decode_private_key(private_key).pubkey())
    except Exception:
        return None


class WalletServiceClient:
    """
    Client for the wallet service endpoints used by volume sessions.
    """

    def __init__(self, base_url: str = WALLET_SERVICE_URL, timeout: int = REQUEST_TIMEOUT):
        self.base_url = (base_url or "").rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})

    def _post(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError, ValueError) as e:
            raise WalletServiceError(str(e)) from e

        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            raise WalletServiceError(error or "Wallet service reported failure")

        return data

    async def validate_wallets(self, private_keys: List[str]) -> WalletValidation:
        """
        Split private keys into valid and invalid ones.

        Args:
            private_keys: Private keys to check

        Returns:
            WalletValidation with the keys partitioned
        """
        if self.base_url:
            try:
                data = await asyncio.to_thread(
                    self._post, VALIDATE_ENDPOINT, {"wallets": list(private_keys)}
                )
                return WalletValidation(
                    valid=list(data.get("validWallets") or []),
                    invalid=list(data.get("invalidWallets") or []),
                    source="remote"
                )
            except WalletServiceError as e:
                logger.warning(f"Wallet service validation failed, validating locally: {e}")

        validation = WalletValidation(source="local")
        for key in private_keys:
            if derive_address(key) is None:
                validation.invalid.append(key)
            else:
                validation.valid.append(key)
        return validation

    async def get_wallet_balances(self, private_keys: List[str]) -> List[WalletBalance]:
        """
        Look up SOL balances for the given wallets.

        Without a reachable service, addresses are derived locally and
        balances are reported as None. Undecodable keys are skipped.

        Args:
            private_keys: Private keys of the wallets

        Returns:
            One WalletBalance per wallet
        """
        if self.base_url:
            try:
                data = await asyncio.to_thread(
                    self._post, BALANCES_ENDPOINT, {"wallets": list(private_keys)}
                )
                return [
                    WalletBalance(
                        public_key=item.get("publicKey", ""),
                        sol_balance=item.get("solBalance")
                    )
                    for item in data.get("balances") or []
                ]
            except WalletServiceError as e:
                logger.warning(f"Wallet service balance lookup failed, using local addresses: {e}")

        balances = []
        for key in private_keys:
            address = derive_address(key)
            if address is not None:
                balances.append(WalletBalance(public_key=address))
        return balances
