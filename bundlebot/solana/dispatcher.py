"""
Dispatch orchestrator.

Turns a trade intent for a set of wallets into signed bundles and relays
them using one of three execution topologies:

- single: one wallet at a time, in order
- batch: fixed-size groups of consecutive wallets, in order
- all-in-one: one preparation call for every wallet, sub-bundles relayed
  concurrently with a staggered start
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from loguru import logger
from solders.keypair import Keypair

from bundlebot.api.bundle_client import BundlePreparationClient
from bundlebot.api.relay_client import BundleRelayClient
from bundlebot.config import (
    ALL_IN_ONE_STAGGER_MS,
    BATCH_SIZE,
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_SINGLE_DELAY_MS,
    MAX_TX_PER_BUNDLE,
)
from bundlebot.errors import ConfigurationError, InvalidConfiguration, UpstreamRejected
from bundlebot.solana.models import (
    Bundle,
    BundleMode,
    DispatchResult,
    DispatchUnitResult,
    RelayAck,
    TradeIntent,
    WalletCredential,
)
from bundlebot.solana.rate_limiter import RateLimiter
from bundlebot.solana.signer import LocalSigner, SidePaymentSigner
from bundlebot.solana.splitter import split_bundles

NO_TRANSACTIONS_ERROR = "No transactions generated."

UNIT_NAMES = {
    BundleMode.SINGLE: ("wallet", "wallets"),
    BundleMode.BATCH: ("batch", "batches"),
    BundleMode.ALL_IN_ONE: ("bundle", "bundles"),
}


class DispatchOrchestrator:
    """
    Prepares, signs, splits and relays bundles for a set of wallets.
    """

    def __init__(
        self,
        preparation_client: Optional[BundlePreparationClient] = None,
        signer=None,
        relay_client: Optional[BundleRelayClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        batch_size: int = BATCH_SIZE,
        stagger_ms: int = ALL_IN_ONE_STAGGER_MS,
        max_tx_per_bundle: int = MAX_TX_PER_BUNDLE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize the orchestrator.

        Args:
            preparation_client: Optional builder client. If None, creates a new one.
            signer: Optional signer. If None, a LocalSigner wrapped with the
                side-payment decorator is used.
            relay_client: Optional relay client. If None, creates a new one.
            rate_limiter: Optional shared rate limiter. If None, creates a new one.
            batch_size: Wallets per group in batch mode
            stagger_ms: Start offset between concurrent submissions in all-in-one mode
            max_tx_per_bundle: Maximum transactions per relayed bundle
            sleep: Sleep function used for deliberate delays
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.preparation_client = preparation_client if preparation_client else BundlePreparationClient()
        self.signer = signer if signer else SidePaymentSigner(LocalSigner())
        self.relay_client = relay_client if relay_client else BundleRelayClient()
        self.rate_limiter = rate_limiter if rate_limiter else RateLimiter()
        self.batch_size = batch_size
        self.stagger_ms = stagger_ms
        self.max_tx_per_bundle = max_tx_per_bundle
        self._sleep = sleep

    @property
    def relay_configured(self) -> bool:
        return bool(getattr(self.relay_client, "is_configured", True))

    @property
    def builder_configured(self) -> bool:
        return bool(getattr(self.preparation_client, "is_configured", True))

    def _check_dispatch(self, wallets: Sequence[WalletCredential], intent: TradeIntent) -> BundleMode:
        """
        Validate a dispatch before any network call.

        Raises:
            InvalidConfiguration: On an unknown mode, no wallets or a
                mismatched override list
            ConfigurationError: If an endpoint is not configured
        """
        try:
            mode = BundleMode(intent.bundle_mode)
        except ValueError:
            raise InvalidConfiguration(
                f"Unsupported bundle mode: {intent.bundle_mode}. "
                f"Supported modes: {', '.join(m.value for m in BundleMode)}"
            )

        if not wallets:
            raise InvalidConfiguration("No wallets provided")

        if intent.amounts is not None and len(intent.amounts) != len(wallets):
            raise InvalidConfiguration(
                f"Custom amounts length ({len(intent.amounts)}) must match wallet count ({len(wallets)})"
            )

        if not self.builder_configured:
            raise ConfigurationError("Transaction builder URL is not configured")
        if not self.relay_configured:
            raise ConfigurationError("Bundle relay URL is not configured")

        return mode

    async def dispatch(self, wallets: Sequence[WalletCredential], intent: TradeIntent) -> DispatchResult:
        """
        Execute a trade intent across the given wallets.

        Args:
            wallets: Wallets taking part, in order
            intent: Trade intent

        Returns:
            Aggregate DispatchResult

        Raises:
            InvalidConfiguration: If the intent cannot be dispatched as given
            ConfigurationError: If an endpoint is not configured
        """
        mode = self._check_dispatch(wallets, intent)

        logger.info(
            f"Dispatching {intent.side.value} for {len(wallets)} wallet(s) in {mode.value} mode",
            extra={"token": intent.token_address, "protocol": intent.protocol}
        )

        if mode == BundleMode.SINGLE:
            units = await self._dispatch_single(wallets, intent)
        elif mode == BundleMode.BATCH:
            units = await self._dispatch_batch(wallets, intent)
        else:
            result = await self._dispatch_all_in_one(wallets, intent)
            if isinstance(result, DispatchResult):
                return result
            units = result

        return self._aggregate(units, UNIT_NAMES[mode])

    def _aggregate(self, units: List[DispatchUnitResult], unit_names: Tuple[str, str]) -> DispatchResult:
        unit_name, unit_plural = unit_names
        succeeded = sum(1 for unit in units if unit.success)
        failed = len(units) - succeeded

        error = None
        if failed > 0:
            error = f"{failed} {unit_plural} failed, {succeeded} succeeded"

        result = DispatchResult(
            success=succeeded > 0,
            units=units,
            error=error,
            succeeded=succeeded,
            failed=failed
        )

        if result.success:
            logger.info(f"Dispatch finished: {succeeded} {unit_name}(s) succeeded, {failed} failed")
        else:
            logger.error(f"Dispatch failed: {error or 'no units succeeded'}")
        return result

    async def _run_unit(self, label: str, operation: Callable[[], Awaitable[List[RelayAck]]]) -> DispatchUnitResult:
        """
        Run one unit of work, converting its failure into a unit result.

        ConfigurationError is not a unit failure and propagates.
        """
        try:
            responses = await operation()
            return DispatchUnitResult(unit=label, success=True, responses=responses)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Error processing {label}: {str(e)}")
            return DispatchUnitResult(unit=label, success=False, error=str(e), exception=e)

    async def _submit(self, bundle: Bundle) -> RelayAck:
        await self.rate_limiter.acquire()
        return await self.relay_client.send(bundle)

    async def _sign(self, bundle: Bundle, keypairs: Sequence[Keypair], intent: TradeIntent) -> List[Bundle]:
        """Sign one sub-bundle and re-split it in case transactions were added."""
        signed = await self.signer.sign(bundle, keypairs, intent)
        return split_bundles([signed], self.max_tx_per_bundle)

    async def _prepare_sign_submit(
        self,
        wallets: Sequence[WalletCredential],
        intent: TradeIntent,
        amounts: Optional[List[float]]
    ) -> List[RelayAck]:
        """
        Sequential pipeline for one unit: prepare, split, sign, relay in order.
        """
        keypairs = [wallet.keypair() for wallet in wallets]

        bundles = await self.preparation_client.prepare([w.address for w in wallets], intent, amounts)
        bundles = split_bundles(bundles, self.max_tx_per_bundle)
        if not bundles:
            raise UpstreamRejected(NO_TRANSACTIONS_ERROR)

        signed: List[Bundle] = []
        for bundle in bundles:
            signed.extend(await self._sign(bundle, keypairs, intent))

        responses = []
        for bundle in signed:
            responses.append(await self._submit(bundle))
        return responses

    async def _dispatch_single(self, wallets: Sequence[WalletCredential], intent: TradeIntent) -> List[DispatchUnitResult]:
        delay_ms = intent.single_delay_ms if intent.single_delay_ms is not None else DEFAULT_SINGLE_DELAY_MS
        units = []

        for index, wallet in enumerate(wallets):
            amounts = [intent.amounts[index]] if intent.amounts is not None else None
            label = f"wallet {index + 1}/{len(wallets)} ({wallet.address[:8]})"

            units.append(await self._run_unit(
                label,
                lambda: self._prepare_sign_submit([wallet], intent, amounts)
            ))

            if index < len(wallets) - 1 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)

        return units

    async def _dispatch_batch(self, wallets: Sequence[WalletCredential], intent: TradeIntent) -> List[DispatchUnitResult]:
        delay_ms = intent.batch_delay_ms if intent.batch_delay_ms is not None else DEFAULT_BATCH_DELAY_MS
        groups = [wallets[i:i + self.batch_size] for i in range(0, len(wallets), self.batch_size)]
        units = []

        for index, group in enumerate(groups):
            start = index * self.batch_size
            amounts = intent.amounts[start:start + len(group)] if intent.amounts is not None else None
            label = f"batch {index + 1}/{len(groups)}"

            logger.info(f"Processing {label} with {len(group)} wallet(s)")
            units.append(await self._run_unit(
                label,
                lambda: self._prepare_sign_submit(group, intent, amounts)
            ))

            if index < len(groups) - 1 and delay_ms > 0:
                await self._sleep(delay_ms / 1000)

        return units

    async def _dispatch_all_in_one(self, wallets: Sequence[WalletCredential], intent: TradeIntent):
        """
        Prepare once for all wallets and relay every sub-bundle concurrently.

        Returns:
            A list of unit results, or a finished DispatchResult when nothing
            could be prepared
        """
        try:
            keypairs = [wallet.keypair() for wallet in wallets]
            bundles = await self.preparation_client.prepare(
                [w.address for w in wallets], intent, intent.amounts
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Error preparing all-in-one bundles: {str(e)}")
            unit = DispatchUnitResult(unit="prepare", success=False, error=str(e), exception=e)
            return DispatchResult(success=False, units=[unit], error=str(e), failed=1)

        bundles = split_bundles(bundles, self.max_tx_per_bundle)
        if not bundles:
            logger.error(NO_TRANSACTIONS_ERROR)
            return DispatchResult(success=False, error=NO_TRANSACTIONS_ERROR)

        failed_signing: List[DispatchUnitResult] = []
        signed: List[Tuple[str, Bundle]] = []

        for index, bundle in enumerate(bundles):
            label = f"bundle {index + 1}/{len(bundles)}"
            try:
                for part, sub_bundle in enumerate(await self._sign(bundle, keypairs, intent)):
                    signed.append((label if part == 0 else f"{label}.{part + 1}", sub_bundle))
            except Exception as e:
                logger.error(f"Error signing {label}: {str(e)}")
                failed_signing.append(DispatchUnitResult(unit=label, success=False, error=str(e), exception=e))

        async def submit_staggered(position: int, bundle: Bundle) -> List[RelayAck]:
            if position > 0 and self.stagger_ms > 0:
                await self._sleep(self.stagger_ms * position / 1000)
            return [await self._submit(bundle)]

        results = await asyncio.gather(
            *(submit_staggered(position, bundle) for position, (_, bundle) in enumerate(signed)),
            return_exceptions=True
        )

        units = list(failed_signing)
        for (label, _), outcome in zip(signed, results):
            if isinstance(outcome, ConfigurationError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Error relaying {label}: {str(outcome)}")
                units.append(DispatchUnitResult(unit=label, success=False, error=str(outcome), exception=outcome))
            else:
                units.append(DispatchUnitResult(unit=label, success=True, responses=outcome))

        return units
