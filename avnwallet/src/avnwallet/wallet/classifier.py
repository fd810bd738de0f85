"""
Transaction classification relative to one wallet address.

Classification runs in two steps. resolve_inputs() fills in the spending
addresses of inputs the server did not annotate, by looking one hop back at
the previous transaction. classify() is then a pure function of the resolved
transaction, the target address and an ownership snapshot.

The decision table is a heuristic: for transactions touching three or more
owned addresses, the first matching rule wins even where another reading is
possible.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from loguru import logger

from avnwallet.backends.base import BlockchainBackend
from avnwallet.constants import (
    COUNTERPARTY_COINBASE,
    COUNTERPARTY_EXTERNAL,
    COUNTERPARTY_FEE_BURN,
)
from avnwallet.errors import BackendError, LookupFailure
from avnwallet.wallet.models import (
    ClassificationResult,
    DetailedInput,
    TransactionDetails,
    TransactionType,
    output_addresses,
    to_units,
)
from avnwallet.wallet.ownership import AddressOwnership


class PreviousTransactionCache:
    """Verbose previous transactions for one scan, keyed by txid."""

    def __init__(self, backend: BlockchainBackend):
        self.backend = backend
        self._transactions: dict[str, dict[str, Any]] = {}
        self.lookups = 0

    async def get(self, txid: str) -> dict[str, Any]:
        cached = self._transactions.get(txid)
        if cached is not None:
            return cached

        self.lookups += 1
        tx = await self.backend.get_transaction(txid, verbose=True)
        if not isinstance(tx, dict):
            raise BackendError(f"Unexpected verbose transaction for {txid}")
        self._transactions[txid] = tx
        return tx

    def __len__(self) -> int:
        return len(self._transactions)


async def resolve_input(inp: DetailedInput, cache: PreviousTransactionCache) -> DetailedInput:
    """
    Fill in an input's addresses and value from the output it spends.

    Raises:
        LookupFailure: The previous transaction or its output is unavailable
    """
    if inp.coinbase or inp.addresses or inp.txid is None or inp.vout is None:
        return inp

    try:
        prev_tx = await cache.get(inp.txid)
    except BackendError as e:
        raise LookupFailure(inp.txid, inp.vout, str(e)) from e

    outputs = prev_tx.get("vout") or []
    if inp.vout >= len(outputs):
        raise LookupFailure(inp.txid, inp.vout, "output index out of range")

    prev_output = outputs[inp.vout]
    value = inp.value
    if value is None:
        if prev_output.get("valueSat") is not None:
            value = int(prev_output["valueSat"])
        elif prev_output.get("value") is not None:
            value = to_units(prev_output["value"])

    return replace(inp, addresses=output_addresses(prev_output), value=value)


async def resolve_inputs(
    details: TransactionDetails, cache: PreviousTransactionCache
) -> TransactionDetails:
    """Resolve every input; a failed lookup leaves that input unresolved."""
    resolved = []
    for inp in details.inputs:
        try:
            resolved.append(await resolve_input(inp, cache))
        except LookupFailure as e:
            logger.warning(f"{e}; input left unresolved in {details.txid}")
            resolved.append(inp)
    return replace(details, inputs=tuple(resolved))


def classify(
    details: TransactionDetails,
    target: str,
    ownership: AddressOwnership,
) -> ClassificationResult | None:
    """Classify a resolved transaction from the point of view of target."""
    input_from_target = False
    other_owned_input: str | None = None
    input_addresses: list[str] = []

    for inp in details.inputs:
        if inp.coinbase:
            continue
        for address in inp.addresses:
            input_addresses.append(address)
            if address == target:
                input_from_target = True
            elif other_owned_input is None and ownership.is_owned(address):
                other_owned_input = address

    to_target = 0
    has_output_to_target = False
    to_external = 0
    first_external: str | None = None
    first_other_owned: str | None = None
    to_other_owned = 0

    for out in details.outputs:
        if not out.addresses:
            continue
        if target in out.addresses:
            has_output_to_target = True
            to_target += out.value
        elif any(ownership.is_owned(a) for a in out.addresses):
            to_other_owned += out.value
            if first_other_owned is None:
                first_other_owned = out.addresses[0]
        else:
            to_external += out.value
            if first_external is None:
                first_external = out.addresses[0]

    # 1. spend from target with change back to it
    if input_from_target and has_output_to_target and to_external > 0:
        return ClassificationResult(
            TransactionType.SEND, to_external, first_external or COUNTERPARTY_EXTERNAL, target
        )

    # 2. consolidation: everything stays on target
    if input_from_target and has_output_to_target:
        return ClassificationResult(TransactionType.RECEIVE, to_target, target, target)

    # 3. transfer in from another owned address
    if other_owned_input is not None and has_output_to_target:
        return ClassificationResult(TransactionType.RECEIVE, to_target, other_owned_input, target)

    # 4. spend from target, nothing comes back
    if input_from_target:
        if first_external is not None:
            return ClassificationResult(TransactionType.SEND, to_external, first_external, target)
        if first_other_owned is not None:
            return ClassificationResult(
                TransactionType.SEND, to_other_owned, first_other_owned, target
            )
        return ClassificationResult(
            TransactionType.SEND, max(details.fee or 0, 0), COUNTERPARTY_FEE_BURN, target
        )

    # 5. plain receive
    if has_output_to_target:
        if input_addresses:
            counterparty = input_addresses[0]
        elif details.inputs and details.inputs[0].coinbase:
            counterparty = COUNTERPARTY_COINBASE
        else:
            counterparty = COUNTERPARTY_EXTERNAL
        return ClassificationResult(TransactionType.RECEIVE, to_target, counterparty, target)

    return None
