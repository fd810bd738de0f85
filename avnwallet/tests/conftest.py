"""
Shared fixtures for wallet engine tests.
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from avnwallet.backends.base import BlockchainBackend
from avnwallet.wallet.address import p2pkh_script
from avnwallet.wallet.keys import WalletKey
from avnwallet.wallet.models import UTXO
from avnwallet.wallet.transaction import Transaction, TxIn, TxOut


@pytest.fixture
def make_utxo() -> Callable[..., UTXO]:
    """Factory for confirmed UTXOs; the txid defaults to one derived from index."""

    def _make(value: int, index: int = 0, confirmations: int = 10, txid: str | None = None) -> UTXO:
        return UTXO(
            txid=txid or f"{index + 1:064x}",
            vout=index,
            value=value,
            confirmations=confirmations,
        )

    return _make


@pytest.fixture
def funding_transaction() -> Callable[[WalletKey, list[int]], Transaction]:
    """Factory for a previous transaction paying each value to a key's P2PKH script."""

    def _make(key: WalletKey, values: list[int]) -> Transaction:
        script = p2pkh_script(key.pubkey_hash)
        return Transaction(
            inputs=[TxIn("ab" * 32, 0, b"\x51")],
            outputs=[TxOut(value, script) for value in values],
        )

    return _make


@pytest.fixture
def key() -> WalletKey:
    return WalletKey.from_secret((1).to_bytes(32, "big"))


@pytest.fixture
def other_key() -> WalletKey:
    return WalletKey.from_secret((2).to_bytes(32, "big"))


@pytest.fixture
def backend() -> AsyncMock:
    return AsyncMock(spec=BlockchainBackend)


@pytest.fixture
def temp_data_dir() -> Generator[Path]:
    """Create a temporary data directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
