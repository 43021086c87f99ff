from typing import Any, Dict, List, Optional, Tuple

from bundlebot.config import SUPPORTED_PROTOCOLS
from bundlebot.solana.models import BundleMode, TradeIntent, WalletCredential


def validate_trade_inputs(
    wallets: List[WalletCredential],
    intent: TradeIntent,
    balances: Optional[Dict[str, float]] = None
) -> Tuple[bool, Optional[str]]:
    """
    Validate a trade intent against the wallets taking part in it.

    Args:
        wallets: Wallets that will trade
        intent: Trade intent
        balances: Optional SOL balances keyed by wallet address. When given,
            every wallet of a buy must hold at least its amount.

    Returns:
        A tuple of (is_valid, error_message)
    """
    if not intent.token_address:
        return False, "Invalid token address"

    if not intent.protocol:
        return False, "Protocol is required"

    if intent.protocol not in SUPPORTED_PROTOCOLS:
        return False, (
            f"Unsupported protocol: {intent.protocol}. "
            f"Supported protocols: {', '.join(SUPPORTED_PROTOCOLS)}"
        )

    if intent.is_buy and intent.amounts is None:
        if intent.sol_amount is None or intent.sol_amount <= 0:
            return False, "Invalid SOL amount"

    if intent.amounts is not None:
        if len(intent.amounts) != len(wallets):
            return False, "Custom amounts array length must match wallets array length"
        if any(amount <= 0 for amount in intent.amounts):
            return False, "All custom amounts must be positive numbers"

    if intent.slippage_bps is not None and intent.slippage_bps < 0:
        return False, "Invalid slippage value"

    if not wallets:
        return False, "No wallets provided"

    for index, wallet in enumerate(wallets):
        if not wallet.address or not wallet.private_key:
            return False, "Invalid wallet data"

        if balances is None or not intent.is_buy:
            continue

        balance = balances.get(wallet.address, 0)
        required = intent.amounts[index] if intent.amounts is not None else intent.sol_amount
        if balance < required:
            return False, f"Wallet {wallet.address[:6]}... has insufficient balance"

    return True, None


def create_trade_intent(**kwargs: Any) -> TradeIntent:
    """
    Build a trade intent with the usual defaults filled in.

    Protocol defaults to 'auto' and bundle mode to 'batch'.
    """
    kwargs.setdefault("protocol", "auto")
    kwargs.setdefault("bundle_mode", BundleMode.BATCH.value)
    return TradeIntent(**kwargs)
