"""
Wallet engine exceptions.
"""

from __future__ import annotations


class WalletError(Exception):
    pass


class InsufficientFundsError(WalletError):
    """Selection could not cover target + fee under the active filters."""

    def __init__(self, required: int, available: int, reason: str = ""):
        self.required = required
        self.available = available
        self.reason = reason
        message = f"Insufficient funds: need {required}, have {available}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class SigningFailure(WalletError):
    pass


class ValidationFailure(WalletError):
    """A freshly assembled transaction failed its structural self-check."""


class BroadcastRejected(WalletError):
    def __init__(self, message: str, tx_hex: str = ""):
        self.tx_hex = tx_hex
        super().__init__(message)


class LookupFailure(WalletError):
    """A previous output could not be resolved during classification."""

    def __init__(self, txid: str, vout: int | None, message: str):
        self.txid = txid
        self.vout = vout
        super().__init__(f"Lookup of {txid}:{vout} failed: {message}")


class BackendError(WalletError):
    pass
