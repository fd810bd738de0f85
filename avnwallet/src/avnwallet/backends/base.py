"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from avnwallet.wallet.models import UTXO, HistoryItem


class BlockchainBackend(ABC):
    """
    Abstract blockchain data source.

    Implementations supply UTXO sets, raw and verbose transactions, address
    history and broadcast. Errors surface to the caller; no retries happen here.
    """

    @abstractmethod
    async def get_utxos(self, address: str) -> list[UTXO]:
        """Get unspent outputs for an address. height is None while unconfirmed."""

    @abstractmethod
    async def get_block_height(self) -> int:
        """Get current blockchain height"""

    @abstractmethod
    async def get_transaction(self, txid: str, verbose: bool = False) -> Any:
        """Raw hex when verbose is False, a decoded dict otherwise"""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid. Raises BroadcastRejected."""

    @abstractmethod
    async def get_transaction_history(self, address: str) -> list[HistoryItem]:
        """Transactions touching an address, oldest first"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
