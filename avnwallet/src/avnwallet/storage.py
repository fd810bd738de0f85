"""
Wallet and transaction history persistence.

JsonWalletStore keeps two files in a data directory: wallets.json with wallet
metadata and transactions.json with history records. Writes go through a
temporary file and an atomic rename.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from avnwallet.errors import WalletError
from avnwallet.wallet.models import TransactionRecord, WalletRecord

_WALLETS = TypeAdapter(list[WalletRecord])
_TRANSACTIONS = TypeAdapter(list[TransactionRecord])


class StorageError(WalletError):
    pass


class WalletStore(ABC):
    @abstractmethod
    def save_transaction(self, record: TransactionRecord) -> None:
        """Insert, or replace the record with the same txid, type and wallet."""

    @abstractmethod
    def get_transaction_history(self, address: str) -> list[TransactionRecord]:
        """Records owned by address, newest first"""

    @abstractmethod
    def remove_transaction(self, txid: str, type: str, wallet_address: str) -> bool:
        """Remove one record; returns whether it existed"""

    @abstractmethod
    def get_all_wallets(self) -> list[WalletRecord]:
        pass

    @abstractmethod
    def get_active_wallet(self) -> WalletRecord | None:
        pass

    @abstractmethod
    def add_wallet(self, wallet: WalletRecord) -> None:
        pass

    @abstractmethod
    def set_active_wallet(self, address: str) -> None:
        pass


class JsonWalletStore(WalletStore):
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.wallets_file = self.data_dir / "wallets.json"
        self.transactions_file = self.data_dir / "transactions.json"

    def _read(self, path: Path, adapter: TypeAdapter) -> list:
        if not path.exists():
            return []
        try:
            return adapter.validate_json(path.read_bytes())
        except ValidationError as e:
            raise StorageError(f"Corrupt data in {path}: {e}") from e

    def _write(self, path: Path, adapter: TypeAdapter, items: list) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        data = adapter.dump_python(items, mode="json")
        tmp.write_text(json.dumps(data, indent=2))
        os.chmod(tmp, 0o600)
        tmp.replace(path)

    def _transactions(self) -> list[TransactionRecord]:
        return self._read(self.transactions_file, _TRANSACTIONS)

    def _wallets(self) -> list[WalletRecord]:
        return self._read(self.wallets_file, _WALLETS)

    def save_transaction(self, record: TransactionRecord) -> None:
        records = [r for r in self._transactions() if r.key != record.key]
        records.append(record)
        self._write(self.transactions_file, _TRANSACTIONS, records)
        logger.debug(f"Saved {record.type} record {record.txid} for {record.wallet_address}")

    def get_transaction_history(self, address: str) -> list[TransactionRecord]:
        records = [r for r in self._transactions() if r.wallet_address == address]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    def remove_transaction(self, txid: str, type: str, wallet_address: str) -> bool:
        records = self._transactions()
        kept = [r for r in records if r.key != (txid, type, wallet_address)]
        if len(kept) == len(records):
            return False
        self._write(self.transactions_file, _TRANSACTIONS, kept)
        return True

    def get_all_wallets(self) -> list[WalletRecord]:
        return self._wallets()

    def get_active_wallet(self) -> WalletRecord | None:
        for wallet in self._wallets():
            if wallet.is_active:
                return wallet
        return None

    def add_wallet(self, wallet: WalletRecord) -> None:
        wallets = self._wallets()
        if any(w.address == wallet.address for w in wallets):
            raise StorageError(f"Wallet {wallet.address} already exists")

        if wallet.is_active or not wallets:
            wallets = [w.model_copy(update={"is_active": False}) for w in wallets]
            wallet = wallet.model_copy(update={"is_active": True})

        wallets.append(wallet)
        self._write(self.wallets_file, _WALLETS, wallets)
        logger.info(f"Added wallet {wallet.name} ({wallet.address})")

    def set_active_wallet(self, address: str) -> None:
        wallets = self._wallets()
        if not any(w.address == address for w in wallets):
            raise StorageError(f"Unknown wallet {address}")
        wallets = [w.model_copy(update={"is_active": w.address == address}) for w in wallets]
        self._write(self.wallets_file, _WALLETS, wallets)
