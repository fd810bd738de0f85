"""
Avian wallet service.

Ties the engine together for one or more single-address wallets:
- spend path: fetch UTXOs, select, reserve, build and sign, broadcast, persist
- observe path: scan address history, resolve inputs, classify, persist
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

from loguru import logger

from avnwallet.backends.base import BlockchainBackend
from avnwallet.config import AVIAN_MAINNET, NetworkParams
from avnwallet.constants import (
    COIN,
    DEFAULT_DUST_THRESHOLD,
    DEFAULT_FEE,
    DEFAULT_MAX_INPUTS,
    DEFAULT_MIN_CONFIRMATIONS,
)
from avnwallet.errors import ValidationFailure, WalletError
from avnwallet.storage import WalletStore
from avnwallet.wallet.builder import TransactionBuilder
from avnwallet.wallet.classifier import PreviousTransactionCache, classify, resolve_inputs
from avnwallet.wallet.keys import WalletKey
from avnwallet.wallet.models import (
    UTXO,
    CoinSelectionStrategy,
    InsufficientFunds,
    SelectionOptions,
    SelectionResult,
    SignedTransaction,
    TransactionDetails,
    TransactionRecord,
    TransactionType,
)
from avnwallet.wallet.ownership import OwnedAddresses
from avnwallet.wallet.reservation import UTXOReservations
from avnwallet.wallet.selection import recommend_strategy, select_utxos, validate_selection
from avnwallet.wallet.signing import SigningContext


def calculate_confirmations(height: int | None, tip_height: int) -> int:
    """Confirmations for an item mined at height; 0 while unconfirmed."""
    if height is None or height <= 0:
        return 0
    return max(0, tip_height - height + 1)


class WalletService:
    """
    Wallet operations over a blockchain backend and a wallet store.

    Selection defaults (fee, dust threshold, input cap, confirmations) apply to
    every send unless overridden per call.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        store: WalletStore,
        params: NetworkParams = AVIAN_MAINNET,
        reservations: UTXOReservations | None = None,
        fee: int = DEFAULT_FEE,
        dust_threshold: int = DEFAULT_DUST_THRESHOLD,
        max_inputs: int = DEFAULT_MAX_INPUTS,
        min_confirmations: int = DEFAULT_MIN_CONFIRMATIONS,
    ):
        self.backend = backend
        self.store = store
        self.params = params
        self.reservations = reservations or UTXOReservations()
        self.fee = fee
        self.dust_threshold = dust_threshold
        self.max_inputs = max_inputs
        self.min_confirmations = min_confirmations

    def ownership_snapshot(self) -> OwnedAddresses:
        return OwnedAddresses.from_wallets(self.store.get_all_wallets())

    async def get_utxos(self, address: str) -> list[UTXO]:
        """UTXOs of an address with confirmations derived from the current tip."""
        utxos = await self.backend.get_utxos(address)
        tip_height = await self.backend.get_block_height()
        return [
            UTXO(
                txid=u.txid,
                vout=u.vout,
                value=u.value,
                address=u.address or address,
                scriptpubkey=u.scriptpubkey,
                height=u.height,
                confirmations=calculate_confirmations(u.height, tip_height),
            )
            for u in utxos
        ]

    async def get_balance(self, address: str) -> int:
        utxos = await self.backend.get_utxos(address)
        return sum(u.value for u in utxos)

    async def resolve_outpoints(self, address: str, outpoints: list[str]) -> list[UTXO]:
        """
        Look up "txid:vout" outpoints among the address's unspent outputs.

        Order follows the given list. Raises ValueError for any outpoint that is
        unknown or already spent.
        """
        by_outpoint = {u.outpoint: u for u in await self.get_utxos(address)}
        missing = [o for o in outpoints if o not in by_outpoint]
        if missing:
            raise ValueError(f"Not unspent outputs of {address}: {', '.join(missing)}")
        return [by_outpoint[o] for o in outpoints]

    async def recommend_strategy(
        self, address: str, amount: int, consolidate_dust: bool = False
    ) -> CoinSelectionStrategy:
        utxos = [
            u.annotate(self.dust_threshold, self.min_confirmations)
            for u in await self.get_utxos(address)
        ]
        strategy, _ = recommend_strategy(amount, utxos, consolidate_dust=consolidate_dust)
        logger.info(f"Recommended {strategy.value} for {amount} over {len(utxos)} UTXOs")
        return strategy

    def selection_options(
        self,
        target: int,
        strategy: CoinSelectionStrategy = CoinSelectionStrategy.BEST_FIT,
        include_dust: bool = False,
        allow_unconfirmed: bool = False,
        manual_selection: list[UTXO] | None = None,
        self_address: str | None = None,
    ) -> SelectionOptions:
        """Options with this service's defaults. A manual list always means MANUAL."""
        if manual_selection and strategy != CoinSelectionStrategy.MANUAL:
            logger.debug(f"Manual selection given with {strategy.value}, using manual")
            strategy = CoinSelectionStrategy.MANUAL
        return SelectionOptions(
            target=target,
            strategy=strategy,
            fee=self.fee,
            include_dust=include_dust,
            max_inputs=self.max_inputs,
            min_confirmations=self.min_confirmations,
            dust_threshold=self.dust_threshold,
            allow_unconfirmed=allow_unconfirmed,
            manual_selection=manual_selection,
            self_address=self_address,
        )

    async def select(
        self, address: str, options: SelectionOptions
    ) -> SelectionResult | InsufficientFunds:
        """Select from the address's UTXOs, skipping outpoints held by an in-flight send."""
        utxos = await self.get_utxos(address)
        reserved = self.reservations.reserved(address)
        if reserved:
            logger.debug(f"Excluding {len(reserved)} reserved outpoints for {address}")
        available = [u for u in utxos if u.outpoint not in reserved]

        if options.manual_selection is not None:
            clash = [u.outpoint for u in options.manual_selection if u.outpoint in reserved]
            if clash:
                return InsufficientFunds(
                    required=options.required,
                    available=0,
                    reason=f"manually selected outpoints in flight: {', '.join(clash)}",
                )

        return select_utxos(available, options)

    async def send(
        self,
        key: WalletKey,
        destination: str,
        amount: int,
        strategy: CoinSelectionStrategy = CoinSelectionStrategy.BEST_FIT,
        change_address: str | None = None,
        include_dust: bool = False,
        allow_unconfirmed: bool = False,
        manual_selection: list[UTXO] | None = None,
    ) -> SignedTransaction:
        """
        Pay amount to destination from the key's address.

        Raises:
            InsufficientFundsError: Selection cannot cover amount + fee
            SigningFailure: A previous output could not be fetched or signed
            ValidationFailure: The selection or the built transaction failed its check
            BroadcastRejected: The backend refused the transaction
        """
        sender = key.address
        options = self.selection_options(
            amount,
            strategy=strategy,
            include_dust=include_dust,
            allow_unconfirmed=allow_unconfirmed,
            manual_selection=manual_selection,
            self_address=change_address or sender,
        )

        selection = await self.select(sender, options)
        if isinstance(selection, InsufficientFunds):
            logger.warning(
                f"Insufficient funds for {amount} + fee {options.fee}: "
                f"{selection.available} available"
            )
            raise selection.to_error()
        if not validate_selection(selection, amount):
            raise ValidationFailure(
                f"Selection does not balance: inputs {selection.total_input}, "
                f"amount {amount}, fee {selection.fee}, change {selection.change}"
            )

        outpoints = [u.outpoint for u in selection.selected]
        self.reservations.reserve(sender, outpoints)
        try:
            builder = TransactionBuilder(self.backend, SigningContext.for_key(key))
            signed = await builder.build(
                selection.selected,
                destination,
                amount,
                change=selection.change,
                change_address=options.self_address,
            )

            broadcast_txid = await self.backend.broadcast_transaction(signed.tx_hex)
            if broadcast_txid and broadcast_txid != signed.txid:
                logger.warning(f"Backend reported txid {broadcast_txid}, built {signed.txid}")

            self.store.save_transaction(
                TransactionRecord(
                    txid=signed.txid,
                    amount=Decimal(amount) / COIN,
                    address=destination,
                    from_address=sender,
                    wallet_address=sender,
                    type="send",
                    confirmations=0,
                )
            )
            logger.info(f"Sent {amount} to {destination} in {signed.txid}")
            return signed
        finally:
            self.reservations.release(sender, outpoints)

    async def scan_history(self, address: str, only_new: bool = False) -> list[TransactionRecord]:
        """
        Classify the address's history and persist the results.

        Ownership is snapshotted once per scan. A failure on one transaction is
        logged and the scan moves on. Returns the records that were written.
        """
        ownership = self.ownership_snapshot()
        cache = PreviousTransactionCache(self.backend)

        tip_height = await self.backend.get_block_height()
        history = await self.backend.get_transaction_history(address)
        existing = {r.key: r for r in self.store.get_transaction_history(address)}
        known_txids = {key[0] for key in existing}

        logger.info(f"Scanning {len(history)} transactions for {address}")
        written: list[TransactionRecord] = []

        for item in history:
            # one transaction at a time, yielding between items
            await asyncio.sleep(0)
            confirmations = calculate_confirmations(item.height, tip_height)

            if only_new and item.tx_hash in known_txids:
                for key, record in existing.items():
                    if key[0] == item.tx_hash:
                        refreshed = _refresh(record, confirmations, item.height)
                        if refreshed is not None:
                            self.store.save_transaction(refreshed)
                            written.append(refreshed)
                continue

            try:
                verbose = await self.backend.get_transaction(item.tx_hash, verbose=True)
                details = await resolve_inputs(TransactionDetails.from_verbose(verbose), cache)
                result = classify(details, address, ownership)
                if result is None:
                    logger.debug(f"{item.tx_hash} does not concern {address}")
                    continue

                key = (item.tx_hash, result.type.value, address)
                record = existing.get(key)
                if record is not None:
                    record = _refresh(record, confirmations, item.height)
                else:
                    received = result.type == TransactionType.RECEIVE
                    record = TransactionRecord(
                        txid=item.tx_hash,
                        amount=Decimal(result.amount) / COIN,
                        address=result.counterparty,
                        from_address=result.counterparty if received else address,
                        wallet_address=address,
                        type=result.type.value,
                        timestamp=_timestamp(details.timestamp),
                        confirmations=confirmations,
                        block_height=item.height,
                    )

                if record is not None:
                    self.store.save_transaction(record)
                    written.append(record)
            except (WalletError, KeyError, TypeError, ValueError) as e:
                logger.error(f"Failed to process transaction {item.tx_hash}: {e}")

        logger.info(
            f"History scan for {address} complete: {len(written)} records written, "
            f"{cache.lookups} previous transactions fetched"
        )
        return written

    def cleanup_misclassified_transactions(self, address: str) -> int:
        """Drop receive records that duplicate a send of the same transaction."""
        records = self.store.get_transaction_history(address)
        sent = {r.txid for r in records if r.type == "send"}
        removed = 0
        for record in records:
            if record.type == "receive" and record.txid in sent:
                if self.store.remove_transaction(record.txid, "receive", address):
                    removed += 1
        if removed:
            logger.info(f"Removed {removed} misclassified receive records for {address}")
        return removed

    async def close(self) -> None:
        """Close backend connection"""
        await self.backend.close()


def _refresh(
    record: TransactionRecord, confirmations: int, block_height: int | None
) -> TransactionRecord | None:
    """Copy with updated confirmation data, None when nothing changed."""
    if record.confirmations == confirmations and record.block_height == block_height:
        return None
    return record.model_copy(
        update={"confirmations": confirmations, "block_height": block_height}
    )


def _timestamp(value: int | None) -> datetime:
    if value:
        return datetime.fromtimestamp(value, UTC)
    return datetime.now(UTC)
