"""
Configuration for the bundle dispatch engine and volume scheduler.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Remote service configuration
TRADING_SERVER_URL = os.getenv("TRADING_SERVER_URL", "").rstrip("/")
RELAY_SERVER_URL = os.getenv("RELAY_SERVER_URL", TRADING_SERVER_URL).rstrip("/")
WALLET_SERVICE_URL = os.getenv("WALLET_SERVICE_URL", TRADING_SERVER_URL).rstrip("/")
RPC_ENDPOINT = os.getenv("RPC_ENDPOINT", "")

# Timeout configuration
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "30"))  # seconds

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Trade defaults applied when an intent leaves them unset
_slippage = os.getenv("DEFAULT_SLIPPAGE_BPS")
DEFAULT_SLIPPAGE_BPS = int(_slippage) if _slippage else None
DEFAULT_TRANSACTION_FEE_SOL = float(os.getenv("DEFAULT_TRANSACTION_FEE_SOL", "0.005"))

LAMPORTS_PER_SOL = 1_000_000_000

# Bundle limits
MAX_BUNDLES_PER_SECOND = 10
MAX_TX_PER_BUNDLE = 5

# Dispatch topology defaults
BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_MS = 1000
DEFAULT_SINGLE_DELAY_MS = 200
ALL_IN_ONE_STAGGER_MS = 100

# Side-payment (developer fee) configuration
SIDE_PAYMENT_WALLET = os.getenv("SIDE_PAYMENT_WALLET", "7R3TvRRf6m88tJRNQ8nr9kiZq2q224scucBjXxVb26do")
SIDE_PAYMENT_SOL = float(os.getenv("SIDE_PAYMENT_SOL", "0.03"))
SIDE_PAYMENT_PROTOCOLS = ("pumpfun", "bonk")

SUPPORTED_PROTOCOLS = (
    "pumpfun",
    "moonshot",
    "launchpad",
    "raydium",
    "pumpswap",
    "auto",
    "boopfun",
    "meteora",
    "bonk",
)

# Volume session tuning (product values, kept overridable per session)
BUY_PROBABILITY = 0.6
SELL_PERCENT_MIN = 10
SELL_PERCENT_MAX = 50
MIN_TRADE_SOL = 0.0001
WARMUP_DELAY_SEC = 0.5
VOLUME_TRADE_DELAY_MS = 100

# Retry configuration
RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 5000
