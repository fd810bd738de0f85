"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from avnwallet.constants import (
    COIN,
    DEFAULT_DUST_THRESHOLD,
    DEFAULT_FEE,
    DEFAULT_MAX_INPUTS,
    DEFAULT_MIN_CONFIRMATIONS,
)
from avnwallet.errors import InsufficientFundsError


def to_units(value: Any) -> int:
    """Convert a display-unit amount (float, str or Decimal) to integer units."""
    return int((Decimal(str(value)) * COIN).to_integral_value())


def to_display(units: int) -> Decimal:
    return Decimal(units) / COIN


class CoinSelectionStrategy(str, Enum):
    SMALLEST_FIRST = "smallest_first"
    LARGEST_FIRST = "largest_first"
    BEST_FIT = "best_fit"
    CONSOLIDATE_DUST = "consolidate_dust"
    PRIVACY_FOCUSED = "privacy_focused"
    MANUAL = "manual"


@dataclass(frozen=True)
class UTXO:
    """An unspent output. Derived flags are filled in by annotate()."""

    txid: str
    vout: int
    value: int
    address: str = ""
    scriptpubkey: str = ""
    height: int | None = None
    confirmations: int = 0
    is_dust: bool = False
    is_confirmed: bool = False

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def annotate(self, dust_threshold: int, min_confirmations: int) -> UTXO:
        return replace(
            self,
            is_dust=self.value <= dust_threshold,
            is_confirmed=self.confirmations >= min_confirmations,
        )


@dataclass
class SelectionOptions:
    target: int
    strategy: CoinSelectionStrategy = CoinSelectionStrategy.BEST_FIT
    fee: int = DEFAULT_FEE
    include_dust: bool = False
    max_inputs: int = DEFAULT_MAX_INPUTS
    min_confirmations: int = DEFAULT_MIN_CONFIRMATIONS
    dust_threshold: int = DEFAULT_DUST_THRESHOLD
    allow_unconfirmed: bool = False
    manual_selection: list[UTXO] | None = None
    self_address: str | None = None

    def __post_init__(self) -> None:
        if self.target <= 0:
            raise ValueError(f"Target must be positive: {self.target}")
        if self.fee < 0:
            raise ValueError(f"Fee must not be negative: {self.fee}")
        if self.max_inputs < 1:
            raise ValueError(f"max_inputs must be at least 1: {self.max_inputs}")
        if self.strategy == CoinSelectionStrategy.MANUAL and not self.manual_selection:
            raise ValueError("Manual strategy needs a non-empty manual_selection")

    @property
    def required(self) -> int:
        return self.target + self.fee


@dataclass
class SelectionResult:
    """Chosen inputs. total_input == target + fee + change always holds."""

    selected: list[UTXO]
    total_input: int
    change: int
    fee: int
    strategy: CoinSelectionStrategy
    efficiency: float


@dataclass(frozen=True)
class InsufficientFunds:
    required: int
    available: int
    reason: str = ""

    def to_error(self) -> InsufficientFundsError:
        return InsufficientFundsError(self.required, self.available, self.reason)


@dataclass
class SignedTransaction:
    tx_hex: str
    txid: str
    fee: int
    total_input: int
    change: int
    selected: list[UTXO] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryItem:
    tx_hash: str
    height: int | None = None


@dataclass(frozen=True)
class DetailedInput:
    txid: str | None
    vout: int | None
    addresses: tuple[str, ...] = ()
    value: int | None = None
    coinbase: bool = False

    @classmethod
    def from_verbose(cls, data: dict[str, Any]) -> DetailedInput:
        if "coinbase" in data:
            return cls(txid=None, vout=None, coinbase=True)

        addresses: tuple[str, ...] = ()
        if data.get("address"):
            addresses = (data["address"],)
        elif (data.get("scriptSig") or {}).get("addresses"):
            addresses = tuple(data["scriptSig"]["addresses"])

        value = None
        if data.get("valueSat") is not None:
            value = int(data["valueSat"])
        elif data.get("value") is not None:
            value = to_units(data["value"])

        return cls(txid=data.get("txid"), vout=data.get("vout"), addresses=addresses, value=value)


@dataclass(frozen=True)
class DetailedOutput:
    n: int
    value: int
    addresses: tuple[str, ...] = ()

    @classmethod
    def from_verbose(cls, data: dict[str, Any], index: int) -> DetailedOutput:
        if data.get("valueSat") is not None:
            value = int(data["valueSat"])
        else:
            value = to_units(data.get("value", 0))
        return cls(n=data.get("n", index), value=value, addresses=output_addresses(data))


def output_addresses(output: dict[str, Any]) -> tuple[str, ...]:
    """Addresses of a verbose output, from scriptPubKey.addresses or .address."""
    script = output.get("scriptPubKey") or {}
    if script.get("addresses"):
        return tuple(script["addresses"])
    if script.get("address"):
        return (script["address"],)
    return ()


@dataclass(frozen=True)
class TransactionDetails:
    """A verbose transaction as needed for classification."""

    txid: str
    inputs: tuple[DetailedInput, ...]
    outputs: tuple[DetailedOutput, ...]
    confirmations: int = 0
    block_height: int | None = None
    timestamp: int | None = None

    @classmethod
    def from_verbose(cls, data: dict[str, Any]) -> TransactionDetails:
        return cls(
            txid=data["txid"],
            inputs=tuple(DetailedInput.from_verbose(vin) for vin in data.get("vin", [])),
            outputs=tuple(
                DetailedOutput.from_verbose(vout, i) for i, vout in enumerate(data.get("vout", []))
            ),
            confirmations=data.get("confirmations") or 0,
            block_height=data.get("height"),
            timestamp=data.get("blocktime") or data.get("time"),
        )

    @property
    def fee(self) -> int | None:
        """Input minus output value, None unless every input value is known."""
        spending = [inp for inp in self.inputs if not inp.coinbase]
        if not spending or any(inp.value is None for inp in spending):
            return None
        total_in = sum(inp.value for inp in spending if inp.value is not None)
        return total_in - sum(out.value for out in self.outputs)


class TransactionType(str, Enum):
    SEND = "send"
    RECEIVE = "receive"


@dataclass(frozen=True)
class ClassificationResult:
    type: TransactionType
    amount: int
    counterparty: str
    owner: str


class TransactionRecord(BaseModel):
    """A persisted history entry. Only confirmations and block_height change later."""

    txid: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    amount: Decimal = Field(..., ge=0)
    address: str = Field(..., description="Counterparty address or placeholder")
    from_address: str | None = None
    wallet_address: str
    type: Literal["send", "receive"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    confirmations: int = Field(default=0, ge=0)
    block_height: int | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.txid, self.type, self.wallet_address)


class WalletRecord(BaseModel):
    """Wallet metadata. Key material is never stored here."""

    name: str = Field(..., min_length=1)
    address: str
    is_active: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
