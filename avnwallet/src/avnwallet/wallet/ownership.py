"""
Address ownership capability.

Classification and change handling take an explicit ownership object rather
than consulting the store, so one operation always sees one consistent set.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from avnwallet.wallet.models import WalletRecord


class AddressOwnership(Protocol):
    def is_owned(self, address: str) -> bool: ...


class OwnedAddresses:
    """Immutable snapshot of the addresses held locally."""

    def __init__(self, addresses: Iterable[str] = ()):
        self._addresses = frozenset(addresses)

    @classmethod
    def from_wallets(cls, wallets: Iterable[WalletRecord]) -> OwnedAddresses:
        return cls(w.address for w in wallets)

    def is_owned(self, address: str) -> bool:
        return address in self._addresses

    def __contains__(self, address: object) -> bool:
        return address in self._addresses

    def __len__(self) -> int:
        return len(self._addresses)

    def __repr__(self) -> str:
        return f"OwnedAddresses({sorted(self._addresses)!r})"
