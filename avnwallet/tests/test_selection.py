"""
Tests for UTXO selection strategies.
"""

from __future__ import annotations

import pytest

from avnwallet.wallet.models import (
    UTXO,
    CoinSelectionStrategy,
    InsufficientFunds,
    SelectionOptions,
    SelectionResult,
)
from avnwallet.wallet.selection import (
    filter_utxos,
    recommend_strategy,
    select_utxos,
    validate_selection,
)


def coin(value: int, index: int = 0, confirmations: int = 10) -> UTXO:
    return UTXO(txid=f"{index + 1:064x}", vout=index, value=value, confirmations=confirmations)


def utxos_of(*values: int, confirmations: int = 10) -> list[UTXO]:
    return [coin(v, i, confirmations) for i, v in enumerate(values)]


def values(result: SelectionResult) -> list[int]:
    return [u.value for u in result.selected]


class TestSelectionOutcomes:
    def test_best_fit_exact_single_match(self):
        """5000 alone covers 4000 + 1000 with no change."""
        result = select_utxos(
            utxos_of(5000, 3000, 2000),
            SelectionOptions(target=4000, fee=1000, strategy=CoinSelectionStrategy.BEST_FIT),
        )
        assert isinstance(result, SelectionResult)
        assert values(result) == [5000]
        assert result.change == 0
        assert result.fee == 1000
        assert result.efficiency == pytest.approx(0.8)

    def test_consolidate_dust_skips_filtered_dust(self):
        """Dust is filtered out by default, only the 9000 output is spent."""
        result = select_utxos(
            utxos_of(500, 500, 500, 9000),
            SelectionOptions(
                target=8000, fee=1000, strategy=CoinSelectionStrategy.CONSOLIDATE_DUST
            ),
        )
        assert isinstance(result, SelectionResult)
        assert values(result) == [9000]
        assert result.change == 0

    @pytest.mark.parametrize("strategy", [s for s in CoinSelectionStrategy if s.value != "manual"])
    def test_insufficient_funds_for_every_strategy(self, strategy):
        result = select_utxos(
            utxos_of(1000), SelectionOptions(target=5000, fee=1000, strategy=strategy)
        )
        assert isinstance(result, InsufficientFunds)
        assert result.required == 6000

    def test_insufficient_funds_with_dust_included(self):
        result = select_utxos(
            utxos_of(1000),
            SelectionOptions(target=5000, fee=1000, include_dust=True),
        )
        assert isinstance(result, InsufficientFunds)
        assert result.required == 6000
        assert result.available == 1000


class TestInvariants:
    UTXO_VALUES = (25_000, 12_000, 8_000, 5_500, 3_000, 2_500, 1_200, 60_000)

    @pytest.mark.parametrize("strategy", [s for s in CoinSelectionStrategy if s.value != "manual"])
    @pytest.mark.parametrize("target", [1_000, 7_000, 20_000, 50_000, 100_000])
    def test_totals_are_consistent(self, strategy, target):
        options = SelectionOptions(target=target, fee=1_000, strategy=strategy)
        result = select_utxos(utxos_of(*self.UTXO_VALUES), options)

        if isinstance(result, InsufficientFunds):
            assert sum(self.UTXO_VALUES) < target + 1_000 or strategy in (
                CoinSelectionStrategy.PRIVACY_FOCUSED,
                CoinSelectionStrategy.CONSOLIDATE_DUST,
            )
            return

        assert result.total_input == sum(values(result))
        assert result.total_input >= target + 1_000
        assert result.change == result.total_input - target - 1_000
        assert result.change >= 0
        assert len(result.selected) <= options.max_inputs
        assert validate_selection(result, target)

    def test_no_utxo_selected_twice(self):
        result = select_utxos(
            utxos_of(*self.UTXO_VALUES),
            SelectionOptions(target=90_000, fee=1_000, strategy=CoinSelectionStrategy.PRIVACY_FOCUSED),
        )
        assert isinstance(result, SelectionResult)
        outpoints = [u.outpoint for u in result.selected]
        assert len(outpoints) == len(set(outpoints))


class TestFiltering:
    def test_unconfirmed_dropped_by_default(self):
        utxos = [coin(50_000, 0, confirmations=2), coin(20_000, 1, confirmations=6)]
        result = select_utxos(utxos, SelectionOptions(target=10_000, fee=1_000))
        assert isinstance(result, SelectionResult)
        assert values(result) == [20_000]

    def test_allow_unconfirmed_lifts_threshold(self):
        utxos = [coin(50_000, 0, confirmations=0)]
        options = SelectionOptions(target=10_000, fee=1_000, allow_unconfirmed=True)
        result = select_utxos(utxos, options)
        assert isinstance(result, SelectionResult)
        assert values(result) == [50_000]

    def test_empty_after_filtering_fails(self):
        utxos = [coin(50_000, 0, confirmations=1)]
        result = select_utxos(utxos, SelectionOptions(target=10_000, fee=1_000))
        assert isinstance(result, InsufficientFunds)
        assert result.available == 0

    def test_annotation_flags(self):
        options = SelectionOptions(target=1, include_dust=True, allow_unconfirmed=True)
        annotated = [
            u.annotate(options.dust_threshold, options.min_confirmations)
            for u in [coin(1000, 0, 6), coin(1001, 1, 5)]
        ]
        assert annotated[0].is_dust and annotated[0].is_confirmed
        assert not annotated[1].is_dust and not annotated[1].is_confirmed
        assert filter_utxos(annotated, options) == annotated

    def test_input_utxos_not_mutated(self):
        utxos = utxos_of(5000, 3000)
        select_utxos(utxos, SelectionOptions(target=4000, fee=1000))
        assert all(not u.is_confirmed for u in utxos)


class TestGreedyStrategies:
    def test_smallest_first(self):
        result = select_utxos(
            utxos_of(5000, 3000, 2000),
            SelectionOptions(target=3000, fee=1000, strategy=CoinSelectionStrategy.SMALLEST_FIRST),
        )
        assert values(result) == [2000, 3000]
        assert result.change == 1000

    def test_largest_first(self):
        result = select_utxos(
            utxos_of(2000, 5000, 3000),
            SelectionOptions(target=3000, fee=1000, strategy=CoinSelectionStrategy.LARGEST_FIRST),
        )
        assert values(result) == [5000]
        assert result.change == 1000

    def test_max_inputs_cap_fails_instead_of_short_selection(self):
        result = select_utxos(
            utxos_of(2000, 3000, 5000),
            SelectionOptions(
                target=3000,
                fee=1000,
                max_inputs=1,
                strategy=CoinSelectionStrategy.SMALLEST_FIRST,
            ),
        )
        assert isinstance(result, InsufficientFunds)
        assert result.available == 10_000


class TestBestFit:
    def test_exact_pair_match(self):
        result = select_utxos(
            utxos_of(7000, 3000, 2000, 10_000),
            SelectionOptions(target=4000, fee=1000),
        )
        assert values(result) == [3000, 2000]
        assert result.change == 0

    def test_combination_minimises_change(self):
        result = select_utxos(
            utxos_of(10_000, 6_000, 4_000),
            SelectionOptions(target=8000, fee=1000),
        )
        assert values(result) == [10_000]
        assert result.change == 1000

    def test_prefers_combination_with_less_change(self):
        result = select_utxos(
            utxos_of(50_000, 6_000, 4_500),
            SelectionOptions(target=9_000, fee=1_000),
        )
        # 6000 + 4500 leaves 500 change, 50000 alone leaves 40000
        assert sorted(values(result)) == [4_500, 6_000]
        assert result.change == 500
        assert result.strategy == CoinSelectionStrategy.BEST_FIT

    def test_small_close_fit_behind_many_large_coins(self):
        result = select_utxos(
            utxos_of(*[100_000] * 45, 16_000),
            SelectionOptions(target=5_000, fee=10_000),
        )
        assert values(result) == [16_000]
        assert result.change == 1_000

    def test_exact_triple_behind_many_large_coins(self):
        result = select_utxos(
            utxos_of(*[100_000] * 41, 5_000, 5_000, 5_000),
            SelectionOptions(target=5_000, fee=10_000),
        )
        assert values(result) == [5_000, 5_000, 5_000]
        assert result.change == 0

    def test_combination_respects_max_inputs(self):
        result = select_utxos(
            utxos_of(*[100_000] * 10, 5_000, 5_000, 5_000),
            SelectionOptions(target=5_000, fee=10_000, max_inputs=2),
        )
        assert values(result) == [100_000]
        assert result.change == 85_000


class TestConsolidateDust:
    def test_adds_dust_above_marginal_cost(self):
        utxos = utxos_of(9000, 800, 600, 50)
        options = SelectionOptions(
            target=8000,
            fee=1000,
            include_dust=True,
            strategy=CoinSelectionStrategy.CONSOLIDATE_DUST,
        )
        result = select_utxos(utxos, options)
        # 50 is below fee // 10 and is left alone
        assert values(result) == [9000, 800, 600]
        assert result.change == 1400

    def test_respects_input_budget(self):
        options = SelectionOptions(
            target=8000,
            fee=1000,
            include_dust=True,
            max_inputs=2,
            strategy=CoinSelectionStrategy.CONSOLIDATE_DUST,
        )
        result = select_utxos(utxos_of(9000, 800, 600), options)
        assert values(result) == [9000, 800]


class TestPrivacyFocused:
    def test_stride_sampling(self):
        utxos = utxos_of(2000, 3000, 4000, 5000, 6000, 7000, 8000, 9000)
        options = SelectionOptions(
            target=3000, fee=1000, strategy=CoinSelectionStrategy.PRIVACY_FOCUSED
        )
        result = select_utxos(utxos, options)
        assert values(result) == [9000, 7000, 5000]
        assert result.change == 17_000

    def test_tops_up_when_sample_is_short(self):
        utxos = utxos_of(2000, 3000, 4000, 5000, 6000, 7000, 8000, 9000)
        options = SelectionOptions(
            target=35_000, fee=1000, strategy=CoinSelectionStrategy.PRIVACY_FOCUSED
        )
        result = select_utxos(utxos, options)
        assert isinstance(result, SelectionResult)
        assert values(result)[:3] == [9000, 7000, 5000]
        assert result.total_input >= 36_000


class TestManualSelection:
    def test_returns_caller_list_unmodified(self):
        chosen = utxos_of(4000, 2000, confirmations=0)
        options = SelectionOptions(
            target=5000,
            fee=1000,
            strategy=CoinSelectionStrategy.MANUAL,
            manual_selection=chosen,
        )
        result = select_utxos(utxos_of(100_000), options)
        assert isinstance(result, SelectionResult)
        assert result.selected == chosen
        assert all(a is b for a, b in zip(result.selected, chosen, strict=True))
        assert result.change == 0
        assert result.strategy == CoinSelectionStrategy.MANUAL

    def test_fails_when_short(self):
        options = SelectionOptions(
            target=5000,
            fee=1000,
            strategy=CoinSelectionStrategy.MANUAL,
            manual_selection=utxos_of(4000),
        )
        result = select_utxos(utxos_of(100_000), options)
        assert isinstance(result, InsufficientFunds)
        assert result.available == 4000


class TestOptions:
    def test_defaults(self):
        options = SelectionOptions(target=1)
        assert options.strategy == CoinSelectionStrategy.BEST_FIT
        assert options.fee == 10_000
        assert options.max_inputs == 20
        assert options.min_confirmations == 6
        assert options.dust_threshold == 1_000
        assert options.include_dust is False
        assert options.allow_unconfirmed is False

    def test_rejects_non_positive_target(self):
        with pytest.raises(ValueError):
            SelectionOptions(target=0)

    @pytest.mark.parametrize("manual", [None, []])
    def test_manual_strategy_needs_a_list(self, manual):
        with pytest.raises(ValueError, match="manual_selection"):
            SelectionOptions(
                target=1000, strategy=CoinSelectionStrategy.MANUAL, manual_selection=manual
            )


class TestRecommendStrategy:
    def test_consolidate_when_many_dust(self):
        utxos = [
            u.annotate(1000, 6) for u in utxos_of(500, 500, 500, 500, 500, 500, 90_000)
        ]
        strategy, use_self = recommend_strategy(1000, utxos, consolidate_dust=True)
        assert strategy == CoinSelectionStrategy.CONSOLIDATE_DUST
        assert use_self is True

    def test_privacy(self):
        strategy, _ = recommend_strategy(1000, utxos_of(90_000), prioritize_privacy=True)
        assert strategy == CoinSelectionStrategy.PRIVACY_FOCUSED

    def test_large_share_of_balance(self):
        strategy, _ = recommend_strategy(85_000, utxos_of(90_000, 10_000))
        assert strategy == CoinSelectionStrategy.SMALLEST_FIRST

    def test_default_best_fit(self):
        strategy, use_self = recommend_strategy(10_000, utxos_of(90_000))
        assert strategy == CoinSelectionStrategy.BEST_FIT
        assert use_self is False


class TestValidateSelection:
    def test_detects_tampered_total(self):
        result = select_utxos(utxos_of(5000, 3000), SelectionOptions(target=4000, fee=1000))
        assert validate_selection(result, 4000)
        result.total_input += 1
        assert not validate_selection(result, 4000)
