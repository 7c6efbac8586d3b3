"""Tests for vc_forecast.reserves — greedy reserve optimizer and sufficiency."""
from __future__ import annotations

import pytest

from vc_forecast.forecast import ForecastResult, run_forecast
from vc_forecast.fund import FundInputs
from vc_forecast.reserves import (
    FULLY_FUNDED,
    NO_EXPECTED_RETURN,
    NO_NEED,
    PARTIALLY_FUNDED,
    POOL_EXHAUSTED,
    ReserveOptimizer,
)


class TestReserveOptimizer:
    def test_pool_bound(self, multi_stage_inputs: FundInputs, multi_stage_forecast: ForecastResult):
        optimizer = ReserveOptimizer(multi_stage_inputs)
        result = optimizer.optimize(multi_stage_forecast.portfolio)
        pool = multi_stage_inputs.fund_size_usd * multi_stage_inputs.total_reserve_ratio
        assert result.total_reserve_pool == pytest.approx(pool)
        assert result.total_reserves_allocated <= pool + 1e-6

    @pytest.mark.parametrize("ratio", [0.0, 0.001, 0.05, 0.3])
    def test_pool_bound_any_ratio(self, multi_stage_inputs, multi_stage_forecast, ratio):
        result = ReserveOptimizer(multi_stage_inputs, total_reserve_ratio=ratio).optimize(
            multi_stage_forecast.portfolio
        )
        total = sum(a.recommended_reserve for a in result.allocations)
        assert total <= multi_stage_inputs.fund_size_usd * ratio + 1e-6

    def test_zero_pool_recommends_nothing(self, multi_stage_inputs, multi_stage_forecast):
        result = ReserveOptimizer(multi_stage_inputs, total_reserve_ratio=0.0).optimize(
            multi_stage_forecast.portfolio
        )
        assert all(a.recommended_reserve == 0.0 for a in result.allocations)
        assert result.total_reserves_allocated == 0.0
        assert result.expected_returns == 0.0

    def test_only_active_companies(self, multi_stage_inputs, multi_stage_forecast):
        result = ReserveOptimizer(multi_stage_inputs).optimize(multi_stage_forecast.portfolio)
        active = {c.id for c in multi_stage_forecast.portfolio if c.is_active}
        assert {a.company_id for a in result.allocations} == active

    def test_ranked_by_probability_adjusted_return(self, multi_stage_inputs, multi_stage_forecast):
        result = ReserveOptimizer(multi_stage_inputs).optimize(multi_stage_forecast.portfolio)
        scores = [a.probability_adjusted_return for a in result.allocations]
        assert scores == sorted(scores, reverse=True)

    def test_allocation_never_exceeds_need(self, multi_stage_inputs, multi_stage_forecast):
        result = ReserveOptimizer(multi_stage_inputs).optimize(multi_stage_forecast.portfolio)
        for a in result.allocations:
            assert a.recommended_reserve <= a.reserve_need + 1e-9

    def test_rationales(self, multi_stage_inputs, multi_stage_forecast):
        valid = {FULLY_FUNDED, PARTIALLY_FUNDED, POOL_EXHAUSTED, NO_NEED, NO_EXPECTED_RETURN}
        result = ReserveOptimizer(multi_stage_inputs, total_reserve_ratio=0.01).optimize(
            multi_stage_forecast.portfolio
        )
        assert {a.allocation_rationale for a in result.allocations} <= valid
        assert sum(1 for a in result.allocations if a.allocation_rationale == PARTIALLY_FUNDED) <= 1

    def test_negative_ratio_rejected(self, multi_stage_inputs):
        with pytest.raises(ValueError):
            ReserveOptimizer(multi_stage_inputs, total_reserve_ratio=-0.1)

    def test_to_frame(self, multi_stage_inputs, multi_stage_forecast):
        result = ReserveOptimizer(multi_stage_inputs).optimize(multi_stage_forecast.portfolio)
        df = result.to_frame()
        assert len(df) == len(result.allocations)
        if len(df):
            assert isinstance(df["current_stage"].iloc[0], str)


class TestReserveSufficiency:
    def test_ratio_definition(self, multi_stage_inputs, multi_stage_forecast):
        analysis = ReserveOptimizer(multi_stage_inputs).analyze_sufficiency(
            multi_stage_forecast.portfolio
        )
        if analysis.total_reserves_needed > 0:
            assert analysis.sufficiency_ratio == pytest.approx(
                analysis.total_reserves_allocated / analysis.total_reserves_needed
            )
        else:
            assert analysis.sufficiency_ratio == 1.0
        assert analysis.reserve_shortfall == pytest.approx(
            max(analysis.total_reserves_needed - analysis.total_reserves_allocated, 0.0)
        )

    def test_stage_breakdown_covers_strategies(self, multi_stage_inputs, multi_stage_forecast):
        analysis = ReserveOptimizer(multi_stage_inputs).analyze_sufficiency(
            multi_stage_forecast.portfolio
        )
        assert [s.stage for s in analysis.stage_breakdown] == [
            s.stage for s in multi_stage_inputs.stage_strategies
        ]
        assert sum(s.companies_count for s in analysis.stage_breakdown) == len(
            multi_stage_forecast.portfolio
        )

    def test_nothing_needed_when_all_finished(self, all_fail_inputs, seed_fund_inputs):
        result = run_forecast(all_fail_inputs)
        analysis = ReserveOptimizer(seed_fund_inputs).analyze_sufficiency(
            [c for c in result.portfolio if not c.is_active]
        )
        assert analysis.total_reserves_needed == 0.0
        assert analysis.sufficiency_ratio == 1.0
