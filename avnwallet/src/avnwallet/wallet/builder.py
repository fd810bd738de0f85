"""
Transaction builder for single-key P2PKH payments.

Builds the transaction from:
- Selected UTXOs of the signing key's address
- A destination output and an optional change output
- The previous transactions fetched from the backend, one per distinct txid
"""

from __future__ import annotations

from loguru import logger

from avnwallet.backends.base import BlockchainBackend
from avnwallet.errors import SigningFailure, ValidationFailure
from avnwallet.wallet.address import address_to_scriptpubkey, p2pkh_script
from avnwallet.wallet.models import UTXO, SignedTransaction
from avnwallet.wallet.signing import SigningContext, sign_p2pkh_input
from avnwallet.wallet.transaction import (
    Transaction,
    TransactionParseError,
    TxIn,
    TxOut,
)


class TransactionBuilder:
    """
    Builds and signs payment transactions.

    The transaction structure:
    - Inputs: selected UTXOs in selection order, sequence final
    - Outputs: destination, then change back to the sender when change > 0
    """

    def __init__(self, backend: BlockchainBackend, context: SigningContext):
        self.backend = backend
        self.context = context

    def build_unsigned(
        self,
        utxos: list[UTXO],
        destination: str,
        amount: int,
        change: int = 0,
        change_address: str | None = None,
    ) -> Transaction:
        if not utxos:
            raise ValidationFailure("No inputs to spend")
        if amount <= 0:
            raise ValidationFailure(f"Amount must be positive: {amount}")
        if change < 0:
            raise ValidationFailure(f"Change must not be negative: {change}")

        params = self.context.params
        try:
            outputs = [TxOut(amount, address_to_scriptpubkey(destination, params))]
            if change > 0:
                change_to = change_address or self.context.key.address
                outputs.append(TxOut(change, address_to_scriptpubkey(change_to, params)))
        except ValueError as e:
            raise ValidationFailure(f"Invalid output address: {e}") from e

        inputs = [TxIn(u.txid, u.vout) for u in utxos]
        return Transaction(inputs, outputs)

    async def _fetch_prev_scripts(self, utxos: list[UTXO]) -> list[bytes]:
        """Output script of every spent outpoint, from the previous transactions."""
        prev_txs: dict[str, Transaction] = {}
        scripts = []

        for utxo in utxos:
            prev_tx = prev_txs.get(utxo.txid)
            if prev_tx is None:
                raw = await self.backend.get_transaction(utxo.txid, verbose=False)
                try:
                    prev_tx = Transaction.from_hex(raw)
                except (TransactionParseError, TypeError) as e:
                    raise SigningFailure(f"Cannot parse previous transaction {utxo.txid}: {e}") from e
                if prev_tx.txid != utxo.txid:
                    raise SigningFailure(
                        f"Previous transaction id mismatch: expected {utxo.txid}, got {prev_tx.txid}"
                    )
                prev_txs[utxo.txid] = prev_tx

            if utxo.vout >= len(prev_tx.outputs):
                raise SigningFailure(f"Output {utxo.outpoint} does not exist")
            scripts.append(prev_tx.outputs[utxo.vout].script_pubkey)

        return scripts

    def sign(self, tx: Transaction, prev_scripts: list[bytes]) -> Transaction:
        expected = p2pkh_script(self.context.key.pubkey_hash)
        signed_inputs = []

        for index, script in enumerate(prev_scripts):
            if script != expected:
                raise SigningFailure(
                    f"Input {index} is not a P2PKH output of {self.context.key.address}"
                )
            script_sig = sign_p2pkh_input(tx, index, script, self.context)
            inp = tx.inputs[index]
            signed_inputs.append(TxIn(inp.txid, inp.vout, script_sig, inp.sequence))

        return Transaction(signed_inputs, list(tx.outputs), tx.version, tx.locktime)

    async def build(
        self,
        utxos: list[UTXO],
        destination: str,
        amount: int,
        change: int = 0,
        change_address: str | None = None,
    ) -> SignedTransaction:
        """
        Build, sign and self-check a payment.

        The fee is whatever the inputs leave after amount and change.

        Raises:
            SigningFailure: A previous output could not be fetched or signed
            ValidationFailure: The assembled transaction failed its self-check
        """
        total_input = sum(u.value for u in utxos)
        fee = total_input - amount - change
        if fee < 0:
            raise ValidationFailure(
                f"Inputs {total_input} do not cover amount {amount} plus change {change}"
            )

        unsigned = self.build_unsigned(utxos, destination, amount, change, change_address)
        prev_scripts = await self._fetch_prev_scripts(utxos)
        signed = self.sign(unsigned, prev_scripts)

        tx_hex = signed.to_hex()
        txid = signed.txid
        validate_signed_transaction(tx_hex, txid, len(utxos), len(unsigned.outputs))

        logger.info(
            f"Built transaction {txid}: {len(utxos)} inputs, "
            f"{len(unsigned.outputs)} outputs, fee {fee}"
        )
        return SignedTransaction(
            tx_hex=tx_hex,
            txid=txid,
            fee=fee,
            total_input=total_input,
            change=change,
            selected=list(utxos),
        )


def validate_signed_transaction(
    tx_hex: str, expected_txid: str, input_count: int, output_count: int
) -> Transaction:
    """Re-parse serialized output and check its structure. Raises ValidationFailure."""
    try:
        parsed = Transaction.from_hex(tx_hex)
    except TransactionParseError as e:
        raise ValidationFailure(f"Built transaction does not parse: {e}") from e

    if len(parsed.inputs) != input_count:
        raise ValidationFailure(f"Expected {input_count} inputs, found {len(parsed.inputs)}")
    if len(parsed.outputs) != output_count:
        raise ValidationFailure(f"Expected {output_count} outputs, found {len(parsed.outputs)}")

    for index, inp in enumerate(parsed.inputs):
        if not inp.script_sig:
            raise ValidationFailure(f"Input {index} has an empty script-sig")

    if parsed.txid != expected_txid:
        raise ValidationFailure(f"Txid mismatch: built {expected_txid}, parsed {parsed.txid}")

    return parsed
