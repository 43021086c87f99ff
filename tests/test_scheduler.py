import asyncio
import random
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from bundlebot.errors import AlreadyRunning, ConfigurationError, RelayRejected
from bundlebot.solana.models import (
    BundleMode,
    DispatchResult,
    DispatchUnitResult,
    TradeSide,
    VolumeConfig,
    WalletCredential,
)
from bundlebot.solana.scheduler import VolumeScheduler


class FakeOrchestrator:
    """Records dispatch calls and returns a fixed result."""

    def __init__(self, result: Optional[DispatchResult] = None, relay_configured: bool = True):
        self.result = result or DispatchResult(
            success=True,
            units=[DispatchUnitResult(unit="wallet 1/1", success=True)],
            succeeded=1
        )
        self.relay_configured = relay_configured
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def dispatch(self, wallets, intent):
        self.calls.append((list(wallets), intent))
        if self.gate is not None:
            await self.gate.wait()
        return self.result


class StubRandom:
    """Deterministic random source: fixed random(), lower bound for uniform()."""

    def __init__(self, value: float):
        self.value = value

    def random(self):
        return self.value

    def uniform(self, a, b):
        return a

    def choice(self, seq):
        return seq[0]


def make_config(wallet_count=3, **kwargs) -> VolumeConfig:
    values = {
        "token_address": "Mint111",
        "wallets": [WalletCredential(address=f"Wallet{i}", private_key=f"key{i}") for i in range(wallet_count)],
        "protocol": "pumpfun",
        "min_amount": 0.01,
        "max_amount": 0.05,
        "interval_min": 10,
        "interval_max": 10,
        "warmup_delay": 0,
    }
    values.update(kwargs)
    return VolumeConfig(**values)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def test_start_and_stop_lifecycle():
    scheduler = VolumeScheduler(FakeOrchestrator())

    session_id = scheduler.start(make_config(warmup_delay=10))

    assert scheduler.is_active()
    assert scheduler.session_id == session_id
    assert scheduler.get_stats().is_running is True

    scheduler.stop()

    assert not scheduler.is_active()
    assert scheduler.session_id is None
    assert scheduler.get_stats().is_running is False


async def test_start_while_running_raises():
    scheduler = VolumeScheduler(FakeOrchestrator())
    scheduler.start(make_config(warmup_delay=10))

    with pytest.raises(AlreadyRunning):
        scheduler.start(make_config())

    scheduler.stop()


async def test_start_without_relay_endpoint_raises():
    scheduler = VolumeScheduler(FakeOrchestrator(relay_configured=False))

    with pytest.raises(ConfigurationError):
        scheduler.start(make_config())

    assert not scheduler.is_active()


async def test_stop_is_idempotent():
    scheduler = VolumeScheduler(FakeOrchestrator())
    scheduler.stop()

    scheduler.start(make_config(warmup_delay=10))
    scheduler.stop()
    scheduler.stop()

    assert not scheduler.is_active()


async def test_restart_gets_new_session_and_fresh_stats():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator)

    first = scheduler.start(make_config())
    await wait_for(lambda: scheduler.get_stats().total_trades == 1)
    scheduler.stop()

    second = scheduler.start(make_config(warmup_delay=10))

    assert second != first
    assert scheduler.get_stats().total_trades == 0
    scheduler.stop()


async def test_first_trade_is_single_wallet_buy():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator, rng=random.Random(7))
    config = make_config(trade_delay_ms=150, slippage_bps=500)

    scheduler.start(config)
    await wait_for(lambda: scheduler.get_stats().total_trades == 1)
    scheduler.stop()

    wallets, intent = orchestrator.calls[0]
    assert len(wallets) == 1
    assert intent.side == TradeSide.BUY
    assert intent.bundle_mode == BundleMode.SINGLE.value
    assert intent.single_delay_ms == 150
    assert intent.slippage_bps == 500
    assert 0.01 <= intent.sol_amount <= 0.05
    assert intent.sol_amount == round(intent.sol_amount, 4)

    stats = scheduler.get_stats()
    assert stats.successful_trades == 1
    assert stats.total_buys == 1
    assert stats.total_volume == pytest.approx(intent.sol_amount)


async def test_sell_is_always_followed_by_buy():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator, rng=StubRandom(0.99))

    scheduler.start(make_config(interval_min=0.01, interval_max=0.01))
    await wait_for(lambda: scheduler.get_stats().total_trades >= 3)
    scheduler.stop()

    sides = [intent.side for _, intent in orchestrator.calls[:3]]
    assert sides == [TradeSide.BUY, TradeSide.SELL, TradeSide.BUY]
    assert orchestrator.calls[1][1].sell_percent == 10

    stats = scheduler.get_stats()
    assert stats.total_sells >= 1
    assert stats.total_volume == pytest.approx(0.01 * stats.total_buys)


async def test_configured_sell_percent_is_used():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator, rng=StubRandom(0.99))

    scheduler.start(make_config(interval_min=0.01, interval_max=0.01, sell_percent=75))
    await wait_for(lambda: len(orchestrator.calls) >= 2)
    scheduler.stop()

    assert orchestrator.calls[1][1].sell_percent == 75


async def test_wallets_rotate_between_trades():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator, rng=random.Random(3))

    scheduler.start(make_config(wallet_count=3, interval_min=0.005, interval_max=0.01))
    await wait_for(lambda: len(orchestrator.calls) >= 6)
    scheduler.stop()

    addresses = [wallets[0].address for wallets, _ in orchestrator.calls]
    assert all(a != b for a, b in zip(addresses, addresses[1:]))


async def test_failed_trade_is_counted_without_retrying_rejections():
    failure = DispatchResult(
        success=False,
        units=[DispatchUnitResult(unit="wallet 1/1", success=False, error="rejected",
                                  exception=RelayRejected("rejected"))],
        error="1 wallets failed, 0 succeeded",
        failed=1
    )
    orchestrator = FakeOrchestrator(result=failure)
    scheduler = VolumeScheduler(orchestrator)

    scheduler.start(make_config())
    await wait_for(lambda: scheduler.get_stats().total_trades == 1)
    scheduler.stop()

    stats = scheduler.get_stats()
    assert stats.failed_trades == 1
    assert stats.successful_trades == 0
    assert stats.total_volume == 0
    assert len(orchestrator.calls) == 1


async def test_result_arriving_after_stop_is_discarded():
    orchestrator = FakeOrchestrator()
    orchestrator.gate = asyncio.Event()
    scheduler = VolumeScheduler(orchestrator)

    scheduler.start(make_config(interval_min=0.01, interval_max=0.01))
    await wait_for(lambda: len(orchestrator.calls) == 1)
    scheduler.stop()
    orchestrator.gate.set()
    await asyncio.sleep(0.05)

    assert scheduler.get_stats().total_trades == 0
    assert len(orchestrator.calls) == 1


async def test_duration_timer_stops_session():
    scheduler = VolumeScheduler(FakeOrchestrator())

    scheduler.start(make_config(warmup_delay=10, duration=0.05))
    await wait_for(lambda: not scheduler.is_active())

    assert scheduler.get_stats().is_running is False


def test_choose_side_bias():
    scheduler = VolumeScheduler(FakeOrchestrator(), rng=StubRandom(0.5))

    assert scheduler._choose_side(None, 0.6) == TradeSide.BUY
    assert scheduler._choose_side(TradeSide.SELL, 0.0) == TradeSide.BUY
    assert scheduler._choose_side(TradeSide.BUY, 0.6) == TradeSide.BUY
    assert scheduler._choose_side(TradeSide.BUY, 0.4) == TradeSide.SELL


def test_choose_wallet_index_never_repeats_previous():
    scheduler = VolumeScheduler(FakeOrchestrator(), rng=random.Random(11))

    last = None
    for _ in range(200):
        index = scheduler._choose_wallet_index(4, last)
        assert 0 <= index < 4
        assert index != last
        last = index

    assert scheduler._choose_wallet_index(1, 0) == 0


async def test_cycle_keeps_running_when_intent_cannot_be_built():
    orchestrator = FakeOrchestrator()
    scheduler = VolumeScheduler(orchestrator)
    build_intent = scheduler._build_intent
    attempts = []

    def flaky_build_intent(config, side):
        attempts.append(side)
        if len(attempts) == 1:
            raise ValueError("Buy intents require a positive sol_amount")
        return build_intent(config, side)

    scheduler._build_intent = flaky_build_intent

    scheduler.start(make_config(interval_min=0.01, interval_max=0.01))
    await wait_for(lambda: scheduler.get_stats().successful_trades >= 1)
    scheduler.stop()

    stats = scheduler.get_stats()
    assert stats.failed_trades == 1
    assert stats.total_trades >= 2
    assert len(attempts) >= 2
    assert len(orchestrator.calls) == stats.total_trades - 1


async def test_cycle_rearms_when_dispatch_raises():
    orchestrator = FakeOrchestrator()
    results = iter([RuntimeError("unexpected")])

    def dispatch(wallets, intent):
        outcome = next(results, orchestrator.result)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    orchestrator.dispatch = AsyncMock(side_effect=dispatch)
    scheduler = VolumeScheduler(orchestrator)

    scheduler.start(make_config(interval_min=0.01, interval_max=0.01, max_attempts=1))
    await wait_for(lambda: scheduler.get_stats().successful_trades >= 1)
    scheduler.stop()

    assert scheduler.get_stats().failed_trades == 1


@pytest.mark.parametrize("overrides", [
    {"min_amount": 0.00001, "max_amount": 0.00004},
    {"sell_percent_min": 120, "sell_percent_max": 150},
    {"sell_percent_min": 0, "sell_percent_max": 50},
])
def test_config_rejects_values_that_cannot_form_an_intent(overrides):
    with pytest.raises(ValidationError):
        make_config(**overrides)


def test_smallest_amount_still_forms_a_buy_intent():
    config = make_config(min_amount=0.0001, max_amount=0.0001)
    scheduler = VolumeScheduler(FakeOrchestrator())

    intent = scheduler._build_intent(config, TradeSide.BUY)

    assert intent.sol_amount == 0.0001
