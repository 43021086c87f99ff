import pytest
from pydantic import ValidationError

from bundlebot.solana.models import BundleMode, TradeSide, WalletCredential
from bundlebot.utils.validation_utils import create_trade_intent, validate_trade_inputs

WALLETS = [
    WalletCredential(address="WalletAAA111", private_key="key1"),
    WalletCredential(address="WalletBBB222", private_key="key2"),
]


def test_create_trade_intent_fills_defaults():
    intent = create_trade_intent(token_address="Mint111", sol_amount=0.1)

    assert intent.protocol == "auto"
    assert intent.bundle_mode == BundleMode.BATCH.value
    assert intent.side == TradeSide.BUY


def test_create_trade_intent_rejects_missing_amount():
    with pytest.raises(ValidationError):
        create_trade_intent(token_address="Mint111")

    with pytest.raises(ValidationError):
        create_trade_intent(token_address="Mint111", side=TradeSide.SELL, sell_percent=150)


def test_valid_trade_passes():
    intent = create_trade_intent(token_address="Mint111", protocol="pumpfun", sol_amount=0.1)

    assert validate_trade_inputs(WALLETS, intent) == (True, None)


def test_unsupported_protocol_fails():
    intent = create_trade_intent(token_address="Mint111", protocol="uniswap", sol_amount=0.1)

    valid, error = validate_trade_inputs(WALLETS, intent)

    assert not valid
    assert "Unsupported protocol: uniswap" in error


def test_mismatched_amounts_fail():
    intent = create_trade_intent(token_address="Mint111", amounts=[0.1])

    valid, error = validate_trade_inputs(WALLETS, intent)

    assert not valid
    assert "length" in error


def test_non_positive_amounts_fail():
    intent = create_trade_intent(token_address="Mint111", amounts=[0.1, 0])

    assert validate_trade_inputs(WALLETS, intent) == (False, "All custom amounts must be positive numbers")


def test_negative_slippage_fails():
    intent = create_trade_intent(token_address="Mint111", sol_amount=0.1, slippage_bps=-1)

    assert validate_trade_inputs(WALLETS, intent) == (False, "Invalid slippage value")


def test_no_wallets_fail():
    intent = create_trade_intent(token_address="Mint111", sol_amount=0.1)

    assert validate_trade_inputs([], intent) == (False, "No wallets provided")


def test_insufficient_balance_fails_for_buys():
    intent = create_trade_intent(token_address="Mint111", amounts=[0.1, 0.5])
    balances = {"WalletAAA111": 1.0, "WalletBBB222": 0.2}

    valid, error = validate_trade_inputs(WALLETS, intent, balances)

    assert not valid
    assert error == "Wallet Wallet... has insufficient balance"


def test_balances_are_not_checked_for_sells():
    intent = create_trade_intent(token_address="Mint111", side=TradeSide.SELL, sell_percent=50)

    assert validate_trade_inputs(WALLETS, intent, balances={}) == (True, None)
