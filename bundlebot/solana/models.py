"""
Models for bundle dispatch and volume sessions.
"""
import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import base58
from pydantic import BaseModel, ConfigDict, Field, model_validator
from solders.keypair import Keypair

from bundlebot.config import (
    BUY_PROBABILITY,
    MIN_TRADE_SOL,
    RETRY_MAX_ATTEMPTS,
    SELL_PERCENT_MAX,
    SELL_PERCENT_MIN,
    VOLUME_TRADE_DELAY_MS,
    WARMUP_DELAY_SEC,
)

# A transaction blob as exchanged with the builder and relay services
TxBlob = Union[str, bytes]
Bundle = List[TxBlob]


class TradeSide(str, Enum):
    """Direction of a trade."""
    BUY = "buy"
    SELL = "sell"


class BundleMode(str, Enum):
    """Execution topologies supported by the dispatcher."""
    SINGLE = "single"
    BATCH = "batch"
    ALL_IN_ONE = "all-in-one"


def decode_private_key(private_key: str) -> Keypair:
    """
    Decode a private key into a Keypair.

    Accepts a base58 string (64-byte secret or 32-byte seed) or a JSON array
    of byte values as exported by the Solana CLI.

    Raises:
        ValueError: If the key cannot be decoded
    """
    text = private_key.strip()
    if text.startswith("["):
        raw = bytes(json.loads(text))
    else:
        raw = base58.b58decode(text)

    if len(raw) == 64:
        return Keypair.from_bytes(raw)
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    raise ValueError(f"Invalid private key length: {len(raw)} bytes")


class WalletCredential(BaseModel):
    """Address and private key of a wallet taking part in a dispatch."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    address: str
    private_key: str = Field(alias="privateKey", repr=False)

    def keypair(self) -> Keypair:
        """Decode the private key into a signing keypair."""
        return decode_private_key(self.private_key)


class TradeIntent(BaseModel):
    """What to trade and how to bundle it."""
    model_config = ConfigDict(populate_by_name=True)

    token_address: str
    protocol: str = "auto"
    side: TradeSide = TradeSide.BUY
    sol_amount: Optional[float] = None    # quantity to spend (buy)
    sell_percent: Optional[float] = None  # percentage to liquidate (sell)
    amounts: Optional[List[float]] = None  # per-wallet override, same length as wallets
    slippage_bps: Optional[int] = None
    jito_tip_lamports: Optional[int] = None
    bundle_mode: str = BundleMode.BATCH.value
    batch_delay_ms: Optional[int] = None
    single_delay_ms: Optional[int] = None

    @model_validator(mode="after")
    def _check_amounts(self) -> "TradeIntent":
        if self.side == TradeSide.BUY:
            if self.amounts is None and (self.sol_amount is None or self.sol_amount <= 0):
                raise ValueError("Buy intents require a positive sol_amount")
        else:
            if self.sell_percent is None or not (0 < self.sell_percent <= 100):
                raise ValueError("Sell intents require sell_percent between 0 and 100")
        return self

    @property
    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY


class VolumeConfig(BaseModel):
    """Template for a volume trading session."""
    model_config = ConfigDict(populate_by_name=True)

    token_address: str
    wallets: List[WalletCredential]
    protocol: str = "auto"
    min_amount: float = Field(ge=MIN_TRADE_SOL)  # amounts are rounded to 4 decimals
    max_amount: float = Field(ge=MIN_TRADE_SOL)
    interval_min: float = Field(default=1.0, ge=0)  # seconds
    interval_max: float = Field(default=5.0, ge=0)  # seconds
    duration: float = Field(default=0, ge=0)        # seconds, 0 runs until stopped
    slippage_bps: Optional[int] = None
    jito_tip_lamports: Optional[int] = None
    sell_percent: Optional[float] = Field(default=None, gt=0, le=100)
    buy_probability: float = Field(default=BUY_PROBABILITY, ge=0, le=1)
    sell_percent_min: float = Field(default=SELL_PERCENT_MIN, gt=0, le=100)
    sell_percent_max: float = Field(default=SELL_PERCENT_MAX, gt=0, le=100)
    warmup_delay: float = Field(default=WARMUP_DELAY_SEC, ge=0)
    max_attempts: int = Field(default=RETRY_MAX_ATTEMPTS, ge=1)
    trade_delay_ms: int = VOLUME_TRADE_DELAY_MS

    @model_validator(mode="after")
    def _check_ranges(self) -> "VolumeConfig":
        if not self.wallets:
            raise ValueError("Volume sessions need at least one wallet")
        if self.min_amount > self.max_amount:
            raise ValueError("min_amount cannot exceed max_amount")
        if self.interval_min > self.interval_max:
            raise ValueError("interval_min cannot exceed interval_max")
        if self.sell_percent_min > self.sell_percent_max:
            raise ValueError("sell_percent_min cannot exceed sell_percent_max")
        return self


@dataclass
class RelayAck:
    """Acknowledgement returned by the relay for one bundle."""
    result: Any
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchUnitResult:
    """Outcome of one unit of dispatch (a wallet, a batch or a bundle)."""
    unit: str
    success: bool
    responses: List[RelayAck] = field(default_factory=list)
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)


@dataclass
class DispatchResult:
    """Aggregate outcome of a dispatch call."""
    success: bool
    units: List[DispatchUnitResult] = field(default_factory=list)
    error: Optional[str] = None
    succeeded: int = 0
    failed: int = 0

    @property
    def responses(self) -> List[RelayAck]:
        """All relay acknowledgements in submission order."""
        return [ack for unit in self.units for ack in unit.responses]

    def first_exception(self) -> Optional[BaseException]:
        """Return the exception behind the first failed unit, if any."""
        for unit in self.units:
            if not unit.success and unit.exception is not None:
                return unit.exception
        return None


@dataclass
class VolumeStats:
    """Running counters for a volume session."""
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_volume: float = 0.0
    total_buys: int = 0
    total_sells: int = 0
    start_time: Optional[float] = None
    is_running: bool = False

    @property
    def success_rate(self) -> float:
        """Percentage of successful trades."""
        if self.total_trades == 0:
            return 0.0
        return self.successful_trades / self.total_trades * 100

    def copy(self) -> "VolumeStats":
        return replace(self)


@dataclass
class VolumeSession:
    """State of the running volume session."""
    session_id: str
    config: VolumeConfig
    is_running: bool = True
    last_wallet_index: Optional[int] = None
    last_side: Optional[TradeSide] = None
    stats: VolumeStats = field(default_factory=VolumeStats)
    start_time: float = field(default_factory=time.time)
