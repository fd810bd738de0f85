"""
In-flight UTXO reservations.

Outpoints picked for an outgoing build stay reserved until the build is
broadcast, fails, or the reservation times out, so back-to-back sends from one
wallet never select the same coins.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

from loguru import logger

DEFAULT_RESERVATION_TTL = 600.0


class UTXOReservations:
    def __init__(
        self,
        ttl: float = DEFAULT_RESERVATION_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        # wallet address -> outpoint -> expiry
        self._reserved: dict[str, dict[str, float]] = {}

    def _expire(self, wallet: str) -> dict[str, float]:
        now = self._clock()
        entries = self._reserved.get(wallet, {})
        live = {outpoint: expiry for outpoint, expiry in entries.items() if expiry > now}
        if len(live) != len(entries):
            logger.debug(f"Expired {len(entries) - len(live)} reservations for {wallet}")
        if live:
            self._reserved[wallet] = live
        else:
            self._reserved.pop(wallet, None)
        return live

    def reserved(self, wallet: str) -> frozenset[str]:
        return frozenset(self._expire(wallet))

    def is_reserved(self, wallet: str, outpoint: str) -> bool:
        return outpoint in self._expire(wallet)

    def reserve(self, wallet: str, outpoints: Iterable[str]) -> None:
        """Reserve outpoints; raises ValueError if any is already held."""
        live = self._expire(wallet)
        outpoints = list(outpoints)
        clash = [o for o in outpoints if o in live]
        if clash:
            raise ValueError(f"Outpoints already reserved: {', '.join(clash)}")

        expiry = self._clock() + self.ttl
        self._reserved.setdefault(wallet, {}).update({o: expiry for o in outpoints})
        logger.debug(f"Reserved {len(outpoints)} outpoints for {wallet}")

    def release(self, wallet: str, outpoints: Iterable[str]) -> None:
        entries = self._reserved.get(wallet)
        if entries is None:
            return
        for outpoint in outpoints:
            entries.pop(outpoint, None)
        if not entries:
            del self._reserved[wallet]
