"""
UTXO selection strategies.

select_utxos() is pure: it never raises for lack of funds, it returns an
InsufficientFunds value instead. All arithmetic is in integer units.
"""

from __future__ import annotations

import math

from loguru import logger

from avnwallet.constants import BEST_FIT_MAX_COMBINATION_INPUTS
from avnwallet.wallet.models import (
    UTXO,
    CoinSelectionStrategy,
    InsufficientFunds,
    SelectionOptions,
    SelectionResult,
)

PRIVACY_MIN_INPUTS = 3
PRIVACY_MAX_INPUTS = 5
DUST_RECOMMENDATION_COUNT = 5


def select_utxos(
    available: list[UTXO], options: SelectionOptions
) -> SelectionResult | InsufficientFunds:
    """
    Select inputs covering options.target + options.fee.

    Manual selection validates the caller's list as given. Every other strategy
    runs over the annotated, filtered set.
    """
    if options.strategy == CoinSelectionStrategy.MANUAL:
        return _manual(options)

    annotated = [u.annotate(options.dust_threshold, options.min_confirmations) for u in available]
    eligible = filter_utxos(annotated, options)

    if not eligible:
        return InsufficientFunds(
            required=options.required,
            available=0,
            reason=f"no eligible UTXOs among {len(available)} after filtering",
        )

    if options.strategy == CoinSelectionStrategy.SMALLEST_FIRST:
        selected = _smallest_first(eligible, options)
    elif options.strategy == CoinSelectionStrategy.LARGEST_FIRST:
        selected = _greedy(sorted(eligible, key=lambda u: u.value, reverse=True), options)
    elif options.strategy == CoinSelectionStrategy.CONSOLIDATE_DUST:
        selected = _consolidate_dust(eligible, options)
    elif options.strategy == CoinSelectionStrategy.PRIVACY_FOCUSED:
        selected = _privacy_focused(eligible, options)
    else:
        selected = _best_fit(eligible, options)

    total = sum(u.value for u in selected)
    if total < options.required:
        available_total = sum(u.value for u in eligible)
        logger.debug(
            f"{options.strategy.value} selection short: need {options.required}, "
            f"gathered {total} of {available_total} eligible"
        )
        return InsufficientFunds(
            required=options.required,
            available=available_total,
            reason=f"{options.strategy.value} could not cover target and fee",
        )

    return _result(selected, options, options.strategy)


def filter_utxos(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    """Drop dust unless included, and unconfirmed outputs unless allowed."""
    eligible = []
    for utxo in utxos:
        if utxo.is_dust and not options.include_dust:
            continue
        if not utxo.is_confirmed and not options.allow_unconfirmed:
            continue
        eligible.append(utxo)
    return eligible


def _result(
    selected: list[UTXO], options: SelectionOptions, strategy: CoinSelectionStrategy
) -> SelectionResult:
    total = sum(u.value for u in selected)
    return SelectionResult(
        selected=selected,
        total_input=total,
        change=total - options.required,
        fee=options.fee,
        strategy=strategy,
        efficiency=options.target / total,
    )


def _manual(options: SelectionOptions) -> SelectionResult | InsufficientFunds:
    selected = options.manual_selection or []
    total = sum(u.value for u in selected)
    if total < options.required:
        return InsufficientFunds(
            required=options.required,
            available=total,
            reason="manual selection does not cover target and fee",
        )
    return _result(selected, options, CoinSelectionStrategy.MANUAL)


def _greedy(ordered: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    selected: list[UTXO] = []
    total = 0
    for utxo in ordered:
        if total >= options.required or len(selected) >= options.max_inputs:
            break
        selected.append(utxo)
        total += utxo.value
    return selected


def _smallest_first(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    return _greedy(sorted(utxos, key=lambda u: u.value), options)


def _find_exact_match(utxos: list[UTXO], required: int, max_inputs: int) -> list[UTXO] | None:
    for utxo in utxos:
        if utxo.value == required:
            return [utxo]

    if max_inputs < 2:
        return None

    for i, first in enumerate(utxos):
        for second in utxos[i + 1 :]:
            if first.value + second.value == required:
                return [first, second]
    return None


def _find_best_combination(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO] | None:
    """Search combinations of up to four inputs, largest first, for minimal change."""
    required = options.required
    ordered = sorted(utxos, key=lambda u: u.value, reverse=True)
    values = [u.value for u in ordered]
    max_size = min(BEST_FIT_MAX_COMBINATION_INPUTS, options.max_inputs, len(ordered))

    best: list[UTXO] | None = None
    best_change: int | None = None

    for size in range(1, max_size + 1):
        found = _search_combination(values, required, size, best_change)
        if found is None:
            continue
        indices, change = found
        best, best_change = [ordered[i] for i in indices], change
        # within 5% of the requirement is close enough
        if change * 20 < required:
            break

    return best


def _search_combination(
    values: list[int], required: int, size: int, bound: int | None
) -> tuple[list[int], int] | None:
    """
    Find the size-combination of descending values with the least change.

    Only changes strictly below bound count. Ties keep the first combination in
    lexicographic index order. Branches are cut by value: a prefix whose largest
    reachable total misses required ends the scan at that depth, and a candidate
    whose smallest reachable total cannot beat the best change is skipped.
    """
    n = len(values)
    best_indices: list[int] | None = None
    best_change = bound
    chosen: list[int] = []

    def visit(start: int, total: int, remaining: int) -> bool:
        nonlocal best_indices, best_change
        tail = sum(values[n - remaining + 1 :]) if remaining > 1 else 0

        for i in range(start, n - remaining + 1):
            if total + sum(values[i : i + remaining]) < required:
                return False
            lowest = total + values[i] + tail
            if best_change is not None and lowest - required >= best_change:
                continue

            chosen.append(i)
            if remaining == 1:
                best_indices, best_change = list(chosen), total + values[i] - required
            elif visit(i + 1, total + values[i], remaining - 1):
                return True
            chosen.pop()

            if best_change == 0:
                return True
        return False

    visit(0, 0, size)
    if best_indices is None or best_change is None:
        return None
    return best_indices, best_change


def _best_fit(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    exact = _find_exact_match(utxos, options.required, options.max_inputs)
    if exact is not None:
        return exact

    combo = _find_best_combination(utxos, options)
    if combo is not None:
        return combo

    return _smallest_first(utxos, options)


def _consolidate_dust(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    non_dust = sorted((u for u in utxos if not u.is_dust), key=lambda u: u.value, reverse=True)
    dust = sorted((u for u in utxos if u.is_dust), key=lambda u: u.value, reverse=True)

    selected = _greedy(non_dust, options)

    # Each extra input roughly costs a tenth of the flat fee
    marginal_cost = options.fee // 10
    for utxo in dust:
        if len(selected) >= options.max_inputs:
            break
        if utxo.value > marginal_cost:
            selected.append(utxo)

    return selected


def _privacy_focused(utxos: list[UTXO], options: SelectionOptions) -> list[UTXO]:
    """Spread 3-5 inputs across the value distribution, then top up."""
    ordered = sorted(utxos, key=lambda u: u.value, reverse=True)
    count = min(
        max(PRIVACY_MIN_INPUTS, math.ceil(len(ordered) / 4)),
        options.max_inputs,
        PRIVACY_MAX_INPUTS,
    )
    step = max(1, len(ordered) // count)

    picked: list[int] = []
    total = 0
    for i in range(0, len(ordered), step):
        if len(picked) >= count:
            break
        if total >= options.required and len(picked) >= PRIVACY_MIN_INPUTS:
            break
        picked.append(i)
        total += ordered[i].value

    if total < options.required:
        for i, utxo in enumerate(ordered):
            if i in picked:
                continue
            if len(picked) >= options.max_inputs:
                break
            picked.append(i)
            total += utxo.value
            if total >= options.required:
                break

    return [ordered[i] for i in picked]


def recommend_strategy(
    target: int,
    utxos: list[UTXO],
    prioritize_fees: bool = False,
    prioritize_privacy: bool = False,
    consolidate_dust: bool = False,
) -> tuple[CoinSelectionStrategy, bool]:
    """
    Suggest a strategy for a payment.

    Returns (strategy, use_self_address). Dust consolidation suggests paying back
    to the wallet's own address.
    """
    total = sum(u.value for u in utxos)
    dust_count = sum(1 for u in utxos if u.is_dust)

    if consolidate_dust and dust_count > DUST_RECOMMENDATION_COUNT:
        return CoinSelectionStrategy.CONSOLIDATE_DUST, True
    if prioritize_privacy:
        return CoinSelectionStrategy.PRIVACY_FOCUSED, False
    # amount above 80% of what is available
    if prioritize_fees or total == 0 or target * 5 > total * 4:
        return CoinSelectionStrategy.SMALLEST_FIRST, False
    return CoinSelectionStrategy.BEST_FIT, False


def validate_selection(result: SelectionResult, target: int) -> bool:
    total = sum(u.value for u in result.selected)
    return (
        total == result.total_input
        and total >= target + result.fee
        and result.change == total - target - result.fee
    )
