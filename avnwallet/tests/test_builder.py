"""
Tests for the payment transaction builder.
"""

from __future__ import annotations

import pytest
from coincurve import PublicKey

from avnwallet.errors import BackendError, SigningFailure, ValidationFailure
from avnwallet.wallet.address import address_to_scriptpubkey, p2pkh_script
from avnwallet.wallet.builder import TransactionBuilder, validate_signed_transaction
from avnwallet.wallet.signing import SigningContext
from avnwallet.wallet.transaction import Transaction, legacy_signature_digest


@pytest.fixture
def prev_tx(key, funding_transaction) -> Transaction:
    return funding_transaction(key, [50_000, 30_000])


@pytest.fixture
def utxos(prev_tx, make_utxo):
    return [
        make_utxo(50_000, 0, txid=prev_tx.txid),
        make_utxo(30_000, 1, txid=prev_tx.txid),
    ]


@pytest.fixture
def builder(backend, key, prev_tx) -> TransactionBuilder:
    backend.get_transaction.return_value = prev_tx.to_hex()
    return TransactionBuilder(backend, SigningContext.for_key(key))


class TestBuildUnsigned:
    def test_destination_then_change(self, builder, utxos, key, other_key):
        tx = builder.build_unsigned(utxos, other_key.address, 60_000, change=10_000)

        assert [(i.txid, i.vout) for i in tx.inputs] == [(u.txid, u.vout) for u in utxos]
        assert all(i.sequence == 0xFFFFFFFF for i in tx.inputs)
        assert tx.outputs[0].value == 60_000
        assert tx.outputs[0].script_pubkey == address_to_scriptpubkey(other_key.address)
        assert tx.outputs[1].value == 10_000
        assert tx.outputs[1].script_pubkey == p2pkh_script(key.pubkey_hash)
        assert tx.version == 2
        assert tx.locktime == 0

    def test_no_change_output_when_zero(self, builder, utxos, other_key):
        tx = builder.build_unsigned(utxos, other_key.address, 70_000)
        assert len(tx.outputs) == 1

    def test_change_to_explicit_address(self, builder, utxos, other_key):
        tx = builder.build_unsigned(
            utxos, other_key.address, 60_000, change=10_000, change_address=other_key.address
        )
        assert tx.outputs[1].script_pubkey == p2pkh_script(other_key.pubkey_hash)

    def test_rejects_empty_inputs(self, builder, other_key):
        with pytest.raises(ValidationFailure):
            builder.build_unsigned([], other_key.address, 1000)

    def test_rejects_invalid_destination(self, builder, utxos):
        with pytest.raises(ValidationFailure):
            builder.build_unsigned(utxos, "not-an-address", 1000)

    def test_rejects_non_positive_amount(self, builder, utxos, other_key):
        with pytest.raises(ValidationFailure):
            builder.build_unsigned(utxos, other_key.address, 0)


class TestBuild:
    @pytest.mark.asyncio
    async def test_signed_payment(self, builder, backend, utxos, key, other_key, prev_tx):
        signed = await builder.build(utxos, other_key.address, 60_000, change=10_000)

        assert signed.fee == 10_000
        assert signed.total_input == 80_000
        assert signed.change == 10_000
        assert signed.selected == utxos

        # one fetch per distinct previous transaction
        backend.get_transaction.assert_awaited_once_with(prev_tx.txid, verbose=False)

        tx = Transaction.from_hex(signed.tx_hex)
        assert tx.txid == signed.txid
        assert sum(out.value for out in tx.outputs) == 70_000

        prev_script = p2pkh_script(key.pubkey_hash)
        public_key = PublicKey(key.public_key_bytes)
        for index, inp in enumerate(tx.inputs):
            sig_len = inp.script_sig[0]
            signature = inp.script_sig[1 : 1 + sig_len]
            assert signature[-1] == 0x41
            digest = legacy_signature_digest(tx, index, prev_script, 0x41)
            assert public_key.verify(signature[:-1], digest, hasher=None)
            assert inp.script_sig.endswith(key.public_key_bytes)

    @pytest.mark.asyncio
    async def test_inputs_short_of_amount(self, builder, utxos, other_key):
        with pytest.raises(ValidationFailure):
            await builder.build(utxos, other_key.address, 75_000, change=10_000)

    @pytest.mark.asyncio
    async def test_missing_output_index(self, builder, prev_tx, other_key, make_utxo):
        utxos = [make_utxo(50_000, 2, txid=prev_tx.txid)]
        with pytest.raises(SigningFailure):
            await builder.build(utxos, other_key.address, 40_000)

    @pytest.mark.asyncio
    async def test_txid_mismatch(self, builder, other_key, make_utxo):
        utxos = [make_utxo(50_000, 0, txid="cd" * 32)]
        with pytest.raises(SigningFailure):
            await builder.build(utxos, other_key.address, 40_000)

    @pytest.mark.asyncio
    async def test_unparseable_previous_transaction(
        self, builder, backend, other_key, make_utxo
    ):
        backend.get_transaction.return_value = "deadbeef"
        with pytest.raises(SigningFailure):
            await builder.build([make_utxo(50_000, 0)], other_key.address, 40_000)

    @pytest.mark.asyncio
    async def test_foreign_output_refused(
        self, backend, key, other_key, make_utxo, funding_transaction
    ):
        foreign = funding_transaction(other_key, [50_000])
        backend.get_transaction.return_value = foreign.to_hex()
        builder = TransactionBuilder(backend, SigningContext.for_key(key))

        with pytest.raises(SigningFailure):
            await builder.build(
                [make_utxo(50_000, 0, txid=foreign.txid)], other_key.address, 40_000
            )

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, builder, backend, utxos, other_key):
        backend.get_transaction.side_effect = BackendError("connection lost")
        with pytest.raises(BackendError):
            await builder.build(utxos, other_key.address, 60_000)


class TestValidateSignedTransaction:
    def test_rejects_unsigned_input(self, builder, utxos, other_key):
        tx = builder.build_unsigned(utxos, other_key.address, 60_000)
        with pytest.raises(ValidationFailure, match="empty script-sig"):
            validate_signed_transaction(tx.to_hex(), tx.txid, 2, 1)

    def test_rejects_count_mismatch(self, builder, utxos, other_key):
        tx = builder.build_unsigned(utxos, other_key.address, 60_000)
        with pytest.raises(ValidationFailure):
            validate_signed_transaction(tx.to_hex(), tx.txid, 3, 1)

    def test_rejects_garbage(self):
        with pytest.raises(ValidationFailure):
            validate_signed_transaction("00", "00" * 32, 1, 1)
