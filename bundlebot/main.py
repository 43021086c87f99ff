#!/usr/bin/env python
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient

from bundlebot.api.bundle_client import BundlePreparationClient
from bundlebot.api.relay_client import BundleRelayClient
from bundlebot.api.wallet_service import WalletServiceClient
from bundlebot.config import (
    LOG_LEVEL,
    RELAY_SERVER_URL,
    RPC_ENDPOINT,
    SUPPORTED_PROTOCOLS,
    TRADING_SERVER_URL,
    WALLET_SERVICE_URL,
)
from bundlebot.errors import BundleBotError
from bundlebot.solana.dispatcher import DispatchOrchestrator
from bundlebot.solana.models import BundleMode, TradeSide, VolumeConfig, WalletCredential
from bundlebot.solana.rate_limiter import RateLimiter
from bundlebot.solana.scheduler import VolumeScheduler
from bundlebot.solana.signer import LocalSigner, SidePaymentSigner
from bundlebot.utils.validation_utils import create_trade_intent, validate_trade_inputs


def setup_logging():
    """Configure structured logging with loguru."""
    logger.remove()  # Remove default handler
    logger.add(
        "logs/bundlebot_{time}.log",
        rotation="1 day",
        retention="14 days",
        level=LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        serialize=True,  # JSON formatting for structured logs
    )

    # Also send logs to stdout
    logger.add(
        lambda msg: print(msg, end=""),
        level=LOG_LEVEL,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
    )

    # Redirect requests/urllib3 and solana loggers to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def load_wallets(path: str) -> List[WalletCredential]:
    """
    Load wallet credentials from a JSON file.

    The file holds a list of {"address": ..., "privateKey": ...} objects.
    """
    with open(path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError(f"Wallet file {path} must contain a JSON list")

    return [WalletCredential(**item) for item in data]


def build_orchestrator(rpc_client: Optional[AsyncClient] = None) -> DispatchOrchestrator:
    """Create an orchestrator wired to the configured services."""
    return DispatchOrchestrator(
        preparation_client=BundlePreparationClient(TRADING_SERVER_URL),
        signer=SidePaymentSigner(LocalSigner(), rpc_client=rpc_client),
        relay_client=BundleRelayClient(RELAY_SERVER_URL),
        rate_limiter=RateLimiter()
    )


async def run_dispatch(args: argparse.Namespace) -> int:
    wallets = load_wallets(args.wallets)
    intent = create_trade_intent(
        token_address=args.token,
        protocol=args.protocol,
        side=TradeSide(args.side),
        sol_amount=args.amount,
        sell_percent=args.sell_percent,
        slippage_bps=args.slippage,
        jito_tip_lamports=args.tip,
        bundle_mode=args.mode,
        batch_delay_ms=args.batch_delay,
        single_delay_ms=args.single_delay
    )

    valid, error = validate_trade_inputs(wallets, intent)
    if not valid:
        logger.error(f"Invalid trade: {error}")
        return 2

    rpc_client = AsyncClient(RPC_ENDPOINT) if RPC_ENDPOINT else None
    try:
        result = await build_orchestrator(rpc_client).dispatch(wallets, intent)
    finally:
        if rpc_client is not None:
            await rpc_client.close()

    print(json.dumps({
        "success": result.success,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "error": result.error,
        "results": [ack.result for ack in result.responses],
    }, indent=2, default=str))
    return 0 if result.success else 1


async def run_volume(args: argparse.Namespace) -> int:
    wallets = load_wallets(args.wallets)

    wallet_service = WalletServiceClient(WALLET_SERVICE_URL)
    validation = await wallet_service.validate_wallets([w.private_key for w in wallets])
    if validation.invalid:
        logger.warning(f"Skipping {len(validation.invalid)} invalid wallet(s)")

    valid_keys = set(validation.valid)
    wallets = [w for w in wallets if w.private_key in valid_keys]
    if not wallets:
        logger.error("No valid wallets for volume session")
        return 2

    config = VolumeConfig(
        token_address=args.token,
        wallets=wallets,
        protocol=args.protocol,
        min_amount=args.min_amount,
        max_amount=args.max_amount,
        interval_min=args.interval_min,
        interval_max=args.interval_max,
        duration=args.duration,
        slippage_bps=args.slippage,
        sell_percent=args.sell_percent
    )

    rpc_client = AsyncClient(RPC_ENDPOINT) if RPC_ENDPOINT else None
    scheduler = VolumeScheduler(build_orchestrator(rpc_client))

    try:
        scheduler.start(config)
        while scheduler.is_active():
            await asyncio.sleep(1)
    finally:
        scheduler.stop()
        if rpc_client is not None:
            await rpc_client.close()

        stats = scheduler.get_stats()
        print(json.dumps({
            "total_trades": stats.total_trades,
            "successful_trades": stats.successful_trades,
            "failed_trades": stats.failed_trades,
            "total_buys": stats.total_buys,
            "total_sells": stats.total_sells,
            "total_volume": stats.total_volume,
            "success_rate": round(stats.success_rate, 2),
        }, indent=2))

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana bundle dispatcher and volume bot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    dispatch = subparsers.add_parser("dispatch", help="Buy or sell across a set of wallets")
    dispatch.add_argument("--wallets", required=True, help="JSON file with wallet credentials")
    dispatch.add_argument("--token", required=True, help="Token mint address")
    dispatch.add_argument("--side", choices=[s.value for s in TradeSide], default=TradeSide.BUY.value)
    dispatch.add_argument("--amount", type=float, help="SOL to spend per wallet (buy)")
    dispatch.add_argument("--sell-percent", type=float, help="Percentage of holdings to sell (sell)")
    dispatch.add_argument("--protocol", choices=SUPPORTED_PROTOCOLS, default="auto")
    dispatch.add_argument("--mode", choices=[m.value for m in BundleMode], default=BundleMode.BATCH.value)
    dispatch.add_argument("--slippage", type=int, help="Slippage in basis points")
    dispatch.add_argument("--tip", type=int, help="Jito tip in lamports")
    dispatch.add_argument("--batch-delay", type=int, help="Delay between batches in ms")
    dispatch.add_argument("--single-delay", type=int, help="Delay between wallets in ms")

    volume = subparsers.add_parser("volume", help="Run a volume trading session")
    volume.add_argument("--wallets", required=True, help="JSON file with wallet credentials")
    volume.add_argument("--token", required=True, help="Token mint address")
    volume.add_argument("--protocol", choices=SUPPORTED_PROTOCOLS, default="auto")
    volume.add_argument("--min-amount", type=float, required=True, help="Minimum SOL per buy")
    volume.add_argument("--max-amount", type=float, required=True, help="Maximum SOL per buy")
    volume.add_argument("--interval-min", type=float, default=1.0, help="Minimum seconds between trades")
    volume.add_argument("--interval-max", type=float, default=5.0, help="Maximum seconds between trades")
    volume.add_argument("--duration", type=float, default=0, help="Session length in seconds, 0 runs until Ctrl-C")
    volume.add_argument("--slippage", type=int, help="Slippage in basis points")
    volume.add_argument("--sell-percent", type=float, help="Fixed percentage per sell")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments and run the selected command."""
    args = build_parser().parse_args(argv)

    # Setup logging first for observability
    setup_logging()

    try:
        if args.command == "dispatch":
            return await run_dispatch(args)
        return await run_volume(args)
    except BundleBotError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 2


if __name__ == '__main__':
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
