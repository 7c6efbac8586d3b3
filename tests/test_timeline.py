"""Tests for vc_forecast.timeline — quarterly simulation loop."""
from __future__ import annotations

import numpy as np
import pytest

from vc_forecast.forecast import ForecastResult, run_forecast
from vc_forecast.fund import FeeBasis, FundInputs
from vc_forecast.portfolio import generate_cohort
from vc_forecast.stages import default_exit_matrix
from vc_forecast.timeline import TimelineEngine, timeline_frame
from vc_forecast.transitions import SimulationMode, make_transition_model


def _engine_run(inputs: FundInputs):
    model = make_transition_model(
        SimulationMode.EXPECTED_VALUE,
        inputs.graduation_matrix,
        inputs.effective_exit_matrix(),
        inputs.timing,
    )
    return TimelineEngine(inputs, model).run(generate_cohort(inputs))


class TestSeedScenario:
    def test_forty_quarters(self, seed_forecast: ForecastResult):
        assert len(seed_forecast.timeline) == 40
        assert [r.quarter for r in seed_forecast.timeline] == list(range(40))

    def test_fees_only_during_investment_period(self, seed_forecast: ForecastResult):
        for record in seed_forecast.timeline:
            if record.quarter < 20:
                assert record.management_fees == pytest.approx(50_000_000 * 0.02 / 4)
            else:
                assert record.management_fees == 0.0

    def test_no_deployment_after_investment_period(self, seed_forecast: ForecastResult):
        assert all(r.capital_deployed == 0.0 for r in seed_forecast.timeline[20:])

    def test_first_label(self, seed_forecast: ForecastResult):
        assert seed_forecast.timeline[0].quarter_label == "Q1 2024"


class TestMonotonicity:
    @pytest.mark.parametrize("fixture", ["seed_forecast", "multi_stage_forecast"])
    def test_cumulative_series_non_decreasing(self, fixture, request):
        result: ForecastResult = request.getfixturevalue(fixture)
        invested = np.array([r.total_invested for r in result.timeline])
        distributed = np.array([r.total_distributed for r in result.timeline])
        called = np.array([r.total_called for r in result.timeline])
        assert np.all(np.diff(invested) >= 0)
        assert np.all(np.diff(distributed) >= 0)
        assert np.all(np.diff(called) >= 0)

    def test_stochastic_run_also_monotone(self, multi_stage_inputs: FundInputs):
        result = run_forecast(multi_stage_inputs, SimulationMode.STOCHASTIC, np.random.default_rng(1))
        distributed = np.array([r.total_distributed for r in result.timeline])
        assert np.all(np.diff(distributed) >= 0)


class TestRecordIdentities:
    def test_ratios(self, multi_stage_forecast: ForecastResult):
        for r in multi_stage_forecast.timeline:
            if r.total_called > 0:
                assert r.dpi == pytest.approx(r.total_distributed / r.total_called)
                assert r.tvpi == pytest.approx(r.dpi + r.rvpi)

    def test_called_is_deployed_plus_fees(self, multi_stage_forecast: ForecastResult):
        for r in multi_stage_forecast.timeline:
            assert r.capital_called == pytest.approx(r.capital_deployed + r.management_fees)

    def test_cumulative_cash_flow(self, multi_stage_forecast: ForecastResult):
        running = 0.0
        for r in multi_stage_forecast.timeline:
            running += r.net_cash_flow
            assert r.cumulative_cash_flow == pytest.approx(running)

    def test_irr_same_on_every_record(self, multi_stage_forecast: ForecastResult):
        irrs = {r.net_irr for r in multi_stage_forecast.timeline}
        assert len(irrs) == 1


class TestFollowOns:
    def test_follow_ons_within_reserve_pools(self, multi_stage_inputs: FundInputs):
        run = _engine_run(multi_stage_inputs)
        for strategy in multi_stage_inputs.stage_strategies:
            pool = multi_stage_inputs.fund_size_usd * strategy.allocation_percent * strategy.reserve_ratio
            used = sum(c.follow_on_invested for c in run.companies if c.entry_stage == strategy.stage)
            assert used <= pool + 1e-6
            assert run.reserve_pools_remaining[strategy.stage] == pytest.approx(pool - used)

    def test_follow_ons_only_in_investment_period(self, multi_stage_inputs: FundInputs):
        run = _engine_run(multi_stage_inputs)
        for company in run.companies:
            for inv in company.investments:
                assert inv.quarter < multi_stage_inputs.investment_period_quarters


class TestAllFail:
    def test_no_distributions(self, all_fail_inputs: FundInputs):
        result = run_forecast(all_fail_inputs)
        assert all(r.distributions == 0.0 for r in result.timeline)
        assert all(r.dpi == 0.0 for r in result.timeline)
        assert result.waterfall.total_distributions == 0.0
        assert result.waterfall.gp_distributions == 0.0

    def test_committed_fee_basis(self, seed_fund_inputs: FundInputs):
        result = run_forecast(seed_fund_inputs.with_overrides(fee_basis=FeeBasis.COMMITTED))
        assert all(r.management_fees == pytest.approx(250_000) for r in result.timeline)


class TestFrame:
    def test_timeline_frame(self, seed_forecast: ForecastResult):
        df = timeline_frame(seed_forecast.timeline)
        assert len(df) == 40
        assert {"quarter", "nav", "dpi", "tvpi", "net_irr"} <= set(df.columns)

    def test_exit_matrix_default_untouched(self, seed_fund_inputs: FundInputs):
        assert seed_fund_inputs.effective_exit_matrix() == default_exit_matrix()
