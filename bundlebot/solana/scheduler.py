"""
Volume trading scheduler.

Runs one volume session at a time: after a warm-up delay it places a random
buy or sell from a rotating wallet, waits a random interval and repeats until
stopped or the session duration elapses.
"""

import asyncio
import random
import time
import uuid
from typing import Optional, Set

from loguru import logger

from bundlebot.config import DEFAULT_SLIPPAGE_BPS, RETRY_BASE_DELAY_MS, RETRY_MAX_DELAY_MS
from bundlebot.errors import AlreadyRunning, BundleBotError, ConfigurationError
from bundlebot.solana.dispatcher import DispatchOrchestrator
from bundlebot.solana.models import (
    BundleMode,
    DispatchResult,
    TradeIntent,
    TradeSide,
    VolumeConfig,
    VolumeSession,
    VolumeStats,
)
from bundlebot.utils.retry_utils import with_retry


class VolumeScheduler:
    """
    Timer-driven loop of randomized single-wallet trades.
    """

    def __init__(self, orchestrator: DispatchOrchestrator, rng: Optional[random.Random] = None):
        """
        Initialize the scheduler.

        Args:
            orchestrator: Orchestrator used to place each trade
            rng: Optional random source, seeded in tests
        """
        self.orchestrator = orchestrator
        self.rng = rng if rng else random.Random()
        self.session: Optional[VolumeSession] = None
        self.stats = VolumeStats()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._trade_handle: Optional[asyncio.TimerHandle] = None
        self._duration_handle: Optional[asyncio.TimerHandle] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None

    def is_active(self) -> bool:
        return self.session is not None and self.session.is_running

    def get_stats(self) -> VolumeStats:
        """Return a snapshot of the current statistics."""
        return self.stats.copy()

    def start(self, config: VolumeConfig) -> str:
        """
        Start a volume session. Must be called from a running event loop.

        Args:
            config: Session template

        Returns:
            The new session ID

        Raises:
            AlreadyRunning: If a session is already active
            ConfigurationError: If the relay endpoint is not configured
        """
        if self.is_active():
            raise AlreadyRunning("Volume bot is already running")

        if not self.orchestrator.relay_configured:
            raise ConfigurationError("Bundle relay URL is not configured")

        self._loop = asyncio.get_running_loop()

        session_id = str(uuid.uuid4())
        now = time.time()
        self.session = VolumeSession(session_id=session_id, config=config, start_time=now)
        self.stats = VolumeStats(start_time=now, is_running=True)
        self.session.stats = self.stats

        self._trade_handle = self._loop.call_later(config.warmup_delay, self._fire, session_id)
        if config.duration > 0:
            self._duration_handle = self._loop.call_later(config.duration, self.stop)

        logger.info(
            f"Volume session {session_id} started with {len(config.wallets)} wallet(s)",
            extra={
                "token": config.token_address,
                "protocol": config.protocol,
                "duration": config.duration,
            }
        )
        return session_id

    def stop(self) -> None:
        """
        Stop the active session. Safe to call when idle.

        Pending timers are cancelled. A trade already in flight is left to
        finish and its result is discarded.
        """
        if not self.is_active():
            return

        for handle in (self._trade_handle, self._duration_handle):
            if handle is not None:
                handle.cancel()
        self._trade_handle = None
        self._duration_handle = None

        session = self.session
        session.is_running = False
        self.stats.is_running = False
        self.session = None

        logger.info(
            f"Volume session {session.session_id} stopped",
            extra={
                "total_trades": self.stats.total_trades,
                "successful_trades": self.stats.successful_trades,
                "failed_trades": self.stats.failed_trades,
                "total_volume": self.stats.total_volume,
            }
        )

    def _is_current(self, session_id: str) -> bool:
        return self.is_active() and self.session.session_id == session_id

    def _fire(self, session_id: str) -> None:
        self._trade_handle = None
        if not self._is_current(session_id):
            return

        task = self._loop.create_task(self._run_cycle(session_id))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def _schedule_next(self, session_id: str) -> None:
        config = self.session.config
        delay = self.rng.uniform(config.interval_min, config.interval_max)
        logger.debug(f"Next volume trade in {delay:.2f}s")
        self._trade_handle = self._loop.call_later(delay, self._fire, session_id)

    def _choose_side(self, last_side: Optional[TradeSide], buy_probability: float) -> TradeSide:
        """
        Pick the direction of the next trade.

        A sell is always followed by a buy, otherwise buys are favoured with
        buy_probability.
        """
        if last_side != TradeSide.BUY:
            return TradeSide.BUY
        return TradeSide.BUY if self.rng.random() < buy_probability else TradeSide.SELL

    def _choose_wallet_index(self, pool_size: int, last_index: Optional[int]) -> int:
        """Pick a wallet, never the previous one unless the pool has only one."""
        if pool_size <= 1:
            return 0
        candidates = [i for i in range(pool_size) if i != last_index]
        return self.rng.choice(candidates)

    def _build_intent(self, config: VolumeConfig, side: TradeSide) -> TradeIntent:
        if side == TradeSide.BUY:
            amount = round(self.rng.uniform(config.min_amount, config.max_amount), 4)
            sell_percent = None
        else:
            amount = None
            if config.sell_percent is not None:
                sell_percent = config.sell_percent
            else:
                sell_percent = self.rng.uniform(config.sell_percent_min, config.sell_percent_max)

        return TradeIntent(
            token_address=config.token_address,
            protocol=config.protocol,
            side=side,
            sol_amount=amount,
            sell_percent=sell_percent,
            slippage_bps=config.slippage_bps if config.slippage_bps is not None else DEFAULT_SLIPPAGE_BPS,
            jito_tip_lamports=config.jito_tip_lamports,
            bundle_mode=BundleMode.SINGLE.value,
            single_delay_ms=config.trade_delay_ms
        )

    async def _run_cycle(self, session_id: str) -> None:
        if not self._is_current(session_id):
            return

        try:
            await self._trade(session_id)
        finally:
            if self._is_current(session_id):
                self._schedule_next(session_id)

    async def _trade(self, session_id: str) -> None:
        session = self.session
        config = session.config

        side = self._choose_side(session.last_side, config.buy_probability)
        wallet_index = self._choose_wallet_index(len(config.wallets), session.last_wallet_index)
        wallet = config.wallets[wallet_index]
        session.last_side = side
        session.last_wallet_index = wallet_index

        intent = None
        succeeded = False
        try:
            intent = self._build_intent(config, side)

            async def attempt() -> DispatchResult:
                result = await self.orchestrator.dispatch([wallet], intent)
                if not result.success:
                    raise result.first_exception() or BundleBotError(result.error or "Trade failed")
                return result

            logger.info(
                f"Volume trade: {side.value} with wallet {wallet_index + 1}/{len(config.wallets)}",
                extra={
                    "session_id": session_id,
                    "amount": intent.sol_amount if side == TradeSide.BUY else intent.sell_percent,
                }
            )

            await with_retry(
                attempt,
                max_attempts=config.max_attempts,
                base_delay_ms=RETRY_BASE_DELAY_MS,
                max_delay_ms=RETRY_MAX_DELAY_MS
            )
            succeeded = True
        except Exception as e:
            logger.error(f"Volume trade failed in session {session_id}: {str(e)}")

        if not self._is_current(session_id):
            logger.debug(f"Discarding result of trade from stopped session {session_id}")
            return

        self.stats.total_trades += 1
        if succeeded:
            self.stats.successful_trades += 1
            if side == TradeSide.BUY:
                self.stats.total_buys += 1
                self.stats.total_volume += intent.sol_amount
            else:
                self.stats.total_sells += 1
        else:
            self.stats.failed_trades += 1
