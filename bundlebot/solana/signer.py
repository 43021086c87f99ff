"""
Local signing of partially prepared bundles.
"""

import base64
import binascii
from typing import Dict, Iterable, Optional, Sequence

import base58
from loguru import logger
from solana.rpc.async_api import AsyncClient
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from bundlebot.config import (
    LAMPORTS_PER_SOL,
    SIDE_PAYMENT_PROTOCOLS,
    SIDE_PAYMENT_SOL,
    SIDE_PAYMENT_WALLET,
)
from bundlebot.errors import SigningError
from bundlebot.solana.models import Bundle, TradeIntent, TxBlob


def decode_transaction(blob: TxBlob) -> VersionedTransaction:
    """
    Decode and deserialize a transaction blob.

    Strings are tried as base58 first and as base64 second. Raw bytes are
    deserialized directly.

    Args:
        blob: Encoded transaction

    Returns:
        Deserialized transaction

    Raises:
        SigningError: If neither encoding yields a valid transaction
    """
    if isinstance(blob, (bytes, bytearray)):
        try:
            return VersionedTransaction.from_bytes(bytes(blob))
        except Exception as e:
            raise SigningError(f"Could not deserialize transaction: {e}") from e

    errors = []
    for name, decoder in (("base58", base58.b58decode), ("base64", _b64decode)):
        try:
            return VersionedTransaction.from_bytes(decoder(blob))
        except Exception as e:
            errors.append(f"{name}: {e}")

    raise SigningError(f"Could not decode transaction ({'; '.join(errors)})")


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e


def encode_transaction(tx: VersionedTransaction) -> str:
    """Serialize a transaction to base58."""
    return base58.b58encode(bytes(tx)).decode("utf-8")


class LocalSigner:
    """
    Completes partially prepared transactions with locally held keys.
    """

    def sign_transaction(self, blob: TxBlob, keypairs: Dict[Pubkey, Keypair]) -> str:
        """
        Sign one transaction template.

        Only the keys in the message's required-signer slots are considered,
        and each owned keypair signs at most once. Signatures already present
        in other slots are preserved. A template none of the owned keys has
        to sign is returned as is.

        Args:
            blob: Encoded transaction template
            keypairs: Owned keypairs indexed by public key

        Returns:
            Fully signed transaction, base58 encoded

        Raises:
            SigningError: If the template cannot be decoded or reassembled
        """
        tx = decode_transaction(blob)
        message = tx.message

        num_signers = message.header.num_required_signatures
        signer_keys = list(message.account_keys)[:num_signers]

        signatures = list(tx.signatures)
        if len(signatures) < num_signers:
            signatures.extend([Signature.default()] * (num_signers - len(signatures)))

        message_bytes = to_bytes_versioned(message)
        used = set()

        for index, key in enumerate(signer_keys):
            keypair = keypairs.get(key)
            if keypair is None or key in used:
                continue
            signatures[index] = keypair.sign_message(message_bytes)
            used.add(key)

        if not used:
            logger.debug("No wallet key is a required signer, passing transaction through unchanged")
            return encode_transaction(tx)

        try:
            signed = VersionedTransaction.populate(message, signatures[:num_signers])
        except Exception as e:
            raise SigningError(f"Could not assemble signed transaction: {e}") from e

        return encode_transaction(signed)

    def sign_bundle(self, bundle: Bundle, keypairs: Sequence[Keypair]) -> Bundle:
        """
        Sign every transaction of a bundle.

        A single failing transaction aborts the whole bundle.

        Args:
            bundle: Transaction templates
            keypairs: Keypairs of the wallets involved

        Returns:
            Signed bundle in the same order

        Raises:
            SigningError: If any transaction fails to sign
        """
        by_pubkey = {kp.pubkey(): kp for kp in keypairs}
        signed = []

        for index, blob in enumerate(bundle):
            try:
                signed.append(self.sign_transaction(blob, by_pubkey))
            except SigningError as e:
                logger.error(f"Error signing transaction {index + 1}/{len(bundle)}: {e}")
                raise
            except Exception as e:
                logger.error(f"Error signing transaction {index + 1}/{len(bundle)}: {e}")
                raise SigningError(str(e)) from e

        return signed

    async def sign(self, bundle: Bundle, keypairs: Sequence[Keypair], intent: TradeIntent) -> Bundle:
        """Sign a bundle for the given intent."""
        return self.sign_bundle(bundle, keypairs)


def create_side_payment_transaction(
    payer: Keypair,
    recipient: Pubkey,
    lamports: int,
    recent_blockhash: Hash
) -> str:
    """
    Build and sign a SOL transfer used as the operator fee.

    Args:
        payer: Wallet paying the fee
        recipient: Fee collection address
        lamports: Fee amount in lamports
        recent_blockhash: Blockhash to compile the message against

    Returns:
        Signed transaction, base58 encoded
    """
    instruction = transfer(
        TransferParams(
            from_pubkey=payer.pubkey(),
            to_pubkey=recipient,
            lamports=lamports
        )
    )
    message = MessageV0.try_compile(payer.pubkey(), [instruction], [], recent_blockhash)
    return encode_transaction(VersionedTransaction(message, [payer]))


class SidePaymentSigner:
    """
    Signer decorator that prepends a fixed operator fee to buy bundles.

    The fee is best effort: if it cannot be built, the signed bundle from
    the wrapped signer is returned unchanged.
    """

    def __init__(
        self,
        inner,
        fee_wallet: str = SIDE_PAYMENT_WALLET,
        fee_sol: float = SIDE_PAYMENT_SOL,
        protocols: Iterable[str] = SIDE_PAYMENT_PROTOCOLS,
        rpc_client: Optional[AsyncClient] = None
    ):
        """
        Initialize the side-payment signer.

        Args:
            inner: Signer producing the main signed transactions
            fee_wallet: Address receiving the fee
            fee_sol: Fee amount in SOL
            protocols: Protocols whose buys carry the fee
            rpc_client: Optional RPC client used to fetch a fresh blockhash.
                Without it the blockhash of the bundle's first template is used.
        """
        self.inner = inner
        self.fee_wallet = fee_wallet
        self.fee_lamports = int(round(fee_sol * LAMPORTS_PER_SOL))
        self.protocols = frozenset(protocols)
        self.rpc_client = rpc_client

    def applies_to(self, intent: TradeIntent) -> bool:
        return intent.is_buy and intent.protocol in self.protocols

    async def sign(self, bundle: Bundle, keypairs: Sequence[Keypair], intent: TradeIntent) -> Bundle:
        """
        Sign a bundle and, for eligible buys, prepend the fee transaction.

        Args:
            bundle: Transaction templates
            keypairs: Keypairs of the wallets involved, primary wallet first
            intent: Trade intent being dispatched

        Returns:
            Signed bundle, fee transaction first when injected
        """
        signed = await self.inner.sign(bundle, keypairs, intent)

        if not signed or not keypairs or not self.applies_to(intent):
            return signed

        try:
            blockhash = await self._get_blockhash(bundle)
            fee_tx = create_side_payment_transaction(
                payer=keypairs[0],
                recipient=Pubkey.from_string(self.fee_wallet),
                lamports=self.fee_lamports,
                recent_blockhash=blockhash
            )
        except Exception as e:
            logger.error(f"Error adding side-payment transaction to {intent.protocol} buy, continuing without it: {e}")
            return signed

        logger.info(
            f"Added {self.fee_lamports / LAMPORTS_PER_SOL} SOL side-payment to {intent.protocol} buy bundle",
            extra={"fee_wallet": self.fee_wallet, "payer": str(keypairs[0].pubkey())}
        )
        return [fee_tx] + list(signed)

    async def _get_blockhash(self, bundle: Bundle) -> Hash:
        if self.rpc_client is not None:
            resp = await self.rpc_client.get_latest_blockhash()
            return resp.value.blockhash
        return decode_transaction(bundle[0]).message.recent_blockhash
