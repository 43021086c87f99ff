"""
Bundle dispatch for Solana tokens.

This package contains the pieces that turn a trade intent into relayed
bundles: rate limiting, local signing and bundle splitting. The dispatch
orchestrator and volume scheduler live in bundlebot.solana.dispatcher and
bundlebot.solana.scheduler.
"""

from bundlebot.solana.models import (
    BundleMode,
    DispatchResult,
    DispatchUnitResult,
    RelayAck,
    TradeIntent,
    TradeSide,
    VolumeConfig,
    VolumeStats,
    WalletCredential,
)
from bundlebot.solana.rate_limiter import RateLimiter
from bundlebot.solana.signer import LocalSigner, SidePaymentSigner
from bundlebot.solana.splitter import split_bundles
