"""
Shared fixtures: real solders keypairs and transaction templates, plus fakes
for the builder, signer and relay collaborators.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from bundlebot.errors import RelayRejected, SigningError
from bundlebot.solana.models import RelayAck, WalletCredential

TEMPLATE_BLOCKHASH = Hash(bytes([7] * 32))


def build_template(
    signers: List[Keypair],
    blockhash: Hash = TEMPLATE_BLOCKHASH,
    signatures: Optional[List[Signature]] = None
) -> VersionedTransaction:
    """Unsigned transaction requiring every keypair in signers, payer first."""
    recipient = Keypair().pubkey()
    instructions = [
        transfer(TransferParams(from_pubkey=kp.pubkey(), to_pubkey=recipient, lamports=1000))
        for kp in signers
    ]
    message = MessageV0.try_compile(signers[0].pubkey(), instructions, [], blockhash)
    num_signers = message.header.num_required_signatures
    return VersionedTransaction.populate(message, signatures or [Signature.default()] * num_signers)


def encode(tx: VersionedTransaction) -> str:
    return base58.b58encode(bytes(tx)).decode("utf-8")


def decode(blob: str) -> VersionedTransaction:
    return VersionedTransaction.from_bytes(base58.b58decode(blob))


def credential(kp: Keypair) -> WalletCredential:
    return WalletCredential(address=str(kp.pubkey()), private_key=str(kp))


@pytest.fixture
def make_wallets() -> Callable[[int], List[WalletCredential]]:
    def _make(n: int) -> List[WalletCredential]:
        return [credential(Keypair()) for _ in range(n)]
    return _make


@dataclass
class FakePreparationClient:
    """Returns one bundle per call, one transaction per wallet address."""
    bundles: Optional[List[List[str]]] = None
    error: Optional[Exception] = None
    is_configured: bool = True
    calls: List[dict] = field(default_factory=list)

    async def prepare(self, wallet_addresses, intent, amounts=None):
        self.calls.append({"addresses": list(wallet_addresses), "intent": intent, "amounts": amounts})
        if self.error is not None:
            raise self.error
        if self.bundles is not None:
            return [list(b) for b in self.bundles]
        return [[f"tx-{address}" for address in wallet_addresses]]


@dataclass
class FakeSigner:
    """Marks transactions as signed, optionally adding extra transactions."""
    extra: int = 0
    fail_on: Optional[str] = None
    calls: List[Any] = field(default_factory=list)

    async def sign(self, bundle, keypairs, intent):
        self.calls.append((list(bundle), list(keypairs)))
        if self.fail_on is not None and self.fail_on in bundle:
            raise SigningError(f"cannot sign {self.fail_on}")
        return [f"fee-{i}" for i in range(self.extra)] + [f"signed:{tx}" for tx in bundle]


@dataclass
class FakeRelayClient:
    """Accepts every bundle unless told to reject it."""
    reject: Callable[[List[str]], bool] = lambda bundle: False
    error_factory: Callable[[], Exception] = lambda: RelayRejected("Bundle rejected", code=400)
    is_configured: bool = True
    sent: List[List[str]] = field(default_factory=list)

    async def send(self, bundle):
        self.sent.append(list(bundle))
        if self.reject(bundle):
            raise self.error_factory()
        return RelayAck(result=f"bundle-{len(self.sent)}", raw={"success": True})


class SleepRecorder:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
