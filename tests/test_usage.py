"""Tests for usage extraction and per-session aggregation."""

import pytest

from streammux.usage import UsageAggregator, UsageSnapshot, extract_usage


class TestExtractUsage:
    def test_top_level_wins_over_nested(self) -> None:
        snapshot = extract_usage(
            {
                "input_tokens": 10,
                "usage": {"input_tokens": 20, "output_tokens": 7},
                "result": {"usage": {"output_tokens": 99}},
            }
        )
        assert snapshot.input_tokens == 10
        assert snapshot.output_tokens == 7

    def test_falls_back_to_result_usage(self) -> None:
        snapshot = extract_usage({"result": {"usage": {"input_tokens": 3, "output_tokens": 4}}})
        assert (snapshot.input_tokens, snapshot.output_tokens) == (3, 4)

    def test_zero_values_fall_through(self) -> None:
        snapshot = extract_usage({"input_tokens": 0, "usage": {"input_tokens": 42}})
        assert snapshot.input_tokens == 42

    def test_cache_tokens_and_context_used(self) -> None:
        snapshot = extract_usage(
            {
                "usage": {
                    "input_tokens": 100,
                    "output_tokens": 50,
                    "cache_read_input_tokens": 1000,
                    "cache_creation_input_tokens": 200,
                }
            }
        )
        assert snapshot.cache_read_tokens == 1000
        assert snapshot.cache_creation_tokens == 200
        assert snapshot.context_used == 1350

    def test_cost(self) -> None:
        assert extract_usage({"total_cost_usd": 0.02}).cost_usd == pytest.approx(0.02)

    def test_reported_context_window(self) -> None:
        snapshot = extract_usage(
            {"modelUsage": {"claude-x": {"contextWindow": 1_000_000}}},
            default_context_window=200_000,
        )
        assert snapshot.context_window == 1_000_000

    def test_default_context_window(self) -> None:
        assert extract_usage({}, default_context_window=123).context_window == 123

    def test_non_numeric_values_ignored(self) -> None:
        snapshot = extract_usage({"input_tokens": "12", "output_tokens": True, "total_cost_usd": None})
        assert snapshot.is_empty

    def test_context_fraction(self) -> None:
        snapshot = UsageSnapshot(context_window=200_000, context_used=50_000)
        assert snapshot.context_fraction == pytest.approx(0.25)
        assert UsageSnapshot().context_fraction is None


class TestUsageAggregator:
    def test_turns_are_additive(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=10, output_tokens=5, cost_usd=0.01))
        total = agg.add("a", UsageSnapshot(input_tokens=7, output_tokens=3, cost_usd=0.02))
        assert total.input_tokens == 17
        assert total.output_tokens == 8
        assert total.cost_usd == pytest.approx(0.03)
        assert agg.get("a") == total

    def test_totals_never_decrease(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=10, cost_usd=0.5))
        total = agg.add("a", UsageSnapshot(input_tokens=-4, cost_usd=-1.0))
        assert total.input_tokens == 10
        assert total.cost_usd == pytest.approx(0.5)

    def test_context_figures_are_replaced_not_summed(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=1, context_window=200_000, context_used=5_000))
        total = agg.add("a", UsageSnapshot(input_tokens=1, context_window=1_000_000, context_used=8_000))
        assert total.context_window == 1_000_000
        assert total.context_used == 8_000

    def test_zero_context_used_keeps_previous(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=1, context_used=5_000))
        total = agg.add("a", UsageSnapshot(cost_usd=0.1))
        assert total.context_used == 5_000

    def test_sessions_are_isolated(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=10))
        agg.add("b", UsageSnapshot(input_tokens=1))
        assert agg.get("a").input_tokens == 10
        assert agg.get("b").input_tokens == 1

    def test_reset(self) -> None:
        agg = UsageAggregator()
        agg.add("a", UsageSnapshot(input_tokens=10))
        agg.add("b", UsageSnapshot(input_tokens=1))
        agg.reset("a")
        assert agg.get("a").is_empty
        assert agg.get("b").input_tokens == 1
        agg.reset_all()
        assert agg.get("b").is_empty


class TestIsEmpty:
    """Test which snapshots count as carrying usage."""

    def test_cache_only_snapshot_is_not_empty(self) -> None:
        """Cache tokens alone are usage worth aggregating."""
        assert not extract_usage({"usage": {"cache_read_input_tokens": 5000}}).is_empty
        assert not UsageSnapshot(cache_creation_tokens=1).is_empty

    def test_context_window_alone_is_empty(self) -> None:
        """A default context window is not usage."""
        assert UsageSnapshot(context_window=200_000).is_empty
