"""Tests for vc_forecast.montecarlo — perturbation, aggregation and convergence."""
from __future__ import annotations

import warnings

import numpy as np
import pytest

from vc_forecast.errors import ConfigurationError, ConvergenceWarning
from vc_forecast.fund import FundInputs
from vc_forecast.montecarlo import (
    STATISTICS,
    MonteCarloConfig,
    MonteCarloParameter,
    MonteCarloResult,
    MonteCarloSimulator,
    batch_running_means,
    check_parameter_bounds,
    perturb_inputs,
    run_monte_carlo,
)


@pytest.fixture(scope="module")
def parameters() -> tuple[MonteCarloParameter, ...]:
    return (
        MonteCarloParameter("carry_rate", "uniform", min=0.15, max=0.25),
        MonteCarloParameter("management_fee_rate", "normal", min=0.015, max=0.025, mean=0.02, std_dev=0.002),
        MonteCarloParameter("appreciation.annual_rate", "lognormal", min=0.0, max=0.4, mean=0.15, std_dev=0.05),
    )


@pytest.fixture(scope="module")
def mc_result(multi_stage_inputs: FundInputs, parameters) -> MonteCarloResult:
    config = MonteCarloConfig(iterations=40, parameters=parameters, seed=7, batch_size=10, tolerance=1.0)
    return run_monte_carlo(multi_stage_inputs, config)


class TestParameterValidation:
    def test_min_above_max(self):
        with pytest.raises(ConfigurationError, match="exceeds max"):
            MonteCarloParameter("carry_rate", "uniform", min=0.3, max=0.2).validate()

    @pytest.mark.parametrize("distribution", ["normal", "lognormal"])
    def test_missing_moments(self, distribution):
        with pytest.raises(ConfigurationError, match="mean and std_dev"):
            MonteCarloParameter("carry_rate", distribution, min=0.1, max=0.3, mean=0.2).validate()

    @pytest.mark.parametrize("name", ["fund_name", "no_such_field", "timing.nope", "stage_strategies"])
    def test_unknown_or_non_numeric_name(self, name):
        with pytest.raises(ConfigurationError):
            MonteCarloParameter(name, "uniform", min=0.0, max=1.0).validate()

    def test_unknown_distribution(self):
        with pytest.raises(ConfigurationError, match="unknown distribution"):
            MonteCarloParameter("carry_rate", "beta", min=0.0, max=1.0).validate()  # type: ignore[arg-type]

    def test_run_rejects_bad_config_before_work(self, multi_stage_inputs: FundInputs):
        config = MonteCarloConfig(
            iterations=5,
            parameters=(MonteCarloParameter("hurdle_rate", "normal", min=0.0, max=0.1),),
        )
        with pytest.raises(ConfigurationError):
            run_monte_carlo(multi_stage_inputs, config)

    def test_bounds_checked_against_inputs_before_any_iteration(self, multi_stage_inputs, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "vc_forecast.montecarlo.run_forecast", lambda *args, **kwargs: calls.append(args)
        )
        config = MonteCarloConfig(
            iterations=50,
            seed=3,
            parameters=(MonteCarloParameter("investment_period_quarters", "uniform", min=12, max=60),),
        )
        config.validate()
        with pytest.raises(ConfigurationError, match="investment_period_quarters"):
            run_monte_carlo(multi_stage_inputs, config)
        assert calls == []

    def test_bounds_checked_in_combination(self, multi_stage_inputs):
        parameters = (
            MonteCarloParameter("investment_period_quarters", "uniform", min=12, max=36),
            MonteCarloParameter("fund_life_quarters", "uniform", min=32, max=60),
        )
        with pytest.raises(ConfigurationError, match="cannot exceed"):
            check_parameter_bounds(multi_stage_inputs, parameters)

    def test_rate_bound_outside_unit_interval(self, multi_stage_inputs):
        parameters = (MonteCarloParameter("carry_rate", "uniform", min=0.1, max=1.5),)
        with pytest.raises(ConfigurationError, match="carry_rate"):
            check_parameter_bounds(multi_stage_inputs, parameters)

    def test_valid_bounds_pass(self, multi_stage_inputs, parameters):
        wider = parameters + (
            MonteCarloParameter("investment_period_quarters", "uniform", min=12, max=24),
            MonteCarloParameter("fund_life_quarters", "uniform", min=32, max=48),
        )
        check_parameter_bounds(multi_stage_inputs, wider)

    def test_duplicate_parameter(self):
        p = MonteCarloParameter("carry_rate", "uniform", min=0.1, max=0.2)
        with pytest.raises(ConfigurationError, match="only once"):
            MonteCarloConfig(parameters=(p, p)).validate()

    @pytest.mark.parametrize("changes", [{"iterations": 0}, {"batch_size": 0}, {"tolerance": 0.0}, {"max_workers": 0}])
    def test_config_bounds(self, changes):
        with pytest.raises(ConfigurationError):
            MonteCarloConfig(**changes).validate()

    def test_parameters_accept_mappings(self):
        config = MonteCarloConfig(parameters=({"name": "carry_rate", "distribution": "uniform", "min": 0.1, "max": 0.2},))
        assert isinstance(config.parameters[0], MonteCarloParameter)


class TestPerturbation:
    def test_draws_within_bounds(self, multi_stage_inputs, parameters):
        rng = np.random.default_rng(0)
        for _ in range(50):
            perturbed = perturb_inputs(multi_stage_inputs, parameters, rng)
            assert 0.15 <= perturbed.carry_rate <= 0.25
            assert 0.015 <= perturbed.management_fee_rate <= 0.025
            assert 0.0 <= perturbed.appreciation.annual_rate <= 0.4

    def test_original_untouched(self, multi_stage_inputs, parameters):
        before = multi_stage_inputs.to_dict()
        perturb_inputs(multi_stage_inputs, parameters, np.random.default_rng(0))
        assert multi_stage_inputs.to_dict() == before

    def test_clipping(self, multi_stage_inputs):
        p = MonteCarloParameter("hurdle_rate", "normal", min=0.0, max=0.1, mean=5.0, std_dev=0.01)
        perturbed = perturb_inputs(multi_stage_inputs, (p,), np.random.default_rng(1))
        assert perturbed.hurdle_rate == 0.1

    def test_integer_fields_rounded(self, multi_stage_inputs):
        p = MonteCarloParameter("timing.lockup_quarters", "uniform", min=8, max=16)
        perturbed = perturb_inputs(multi_stage_inputs, (p,), np.random.default_rng(2))
        assert isinstance(perturbed.timing.lockup_quarters, int)
        assert 8 <= perturbed.timing.lockup_quarters <= 16


class TestAggregation:
    def test_iteration_count(self, mc_result: MonteCarloResult):
        assert mc_result.iterations == 40
        assert len(mc_result.results) == 40
        assert not mc_result.cancelled

    def test_percentiles_ordered(self, mc_result: MonteCarloResult):
        for name in STATISTICS:
            s = mc_result.statistics[name]
            assert s.p10 <= s.p25 <= s.p50 <= s.p75 <= s.p90
            assert s.min <= s.p10 and s.p90 <= s.max

    def test_representatives_ordered_by_net_irr(self, mc_result: MonteCarloResult):
        reps = mc_result.percentiles
        assert set(reps) == {"p10", "p25", "p50", "p75", "p90"}
        irrs = [reps[k].irr.net for k in ("p10", "p25", "p50", "p75", "p90")]
        finite = [v for v in irrs if np.isfinite(v)]
        assert finite == sorted(finite)
        assert all(any(r is rep for r in mc_result.results) for rep in reps.values())

    def test_reproducible_with_seed(self, multi_stage_inputs, parameters, mc_result):
        config = MonteCarloConfig(iterations=40, parameters=parameters, seed=7, batch_size=10, tolerance=1.0)
        again = run_monte_carlo(multi_stage_inputs, config)
        for name in STATISTICS:
            np.testing.assert_array_equal(again.values(name), mc_result.values(name))

    def test_different_seed_differs(self, multi_stage_inputs, parameters, mc_result):
        config = MonteCarloConfig(iterations=40, parameters=parameters, seed=8, batch_size=10, tolerance=1.0)
        other = run_monte_carlo(multi_stage_inputs, config)
        assert not np.array_equal(other.values("tvpi"), mc_result.values("tvpi"))

    def test_frames(self, mc_result: MonteCarloResult):
        assert len(mc_result.to_frame()) == 40
        assert list(mc_result.summary_frame()["metric"]) == list(STATISTICS)

    def test_seed_recorded_without_explicit_seed(self, multi_stage_inputs):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            result = run_monte_carlo(multi_stage_inputs, MonteCarloConfig(iterations=2))
        assert result.seed is not None


class TestConvergence:
    def test_running_means(self):
        means = batch_running_means(np.array([1.0, 3.0, 5.0, np.nan, 7.0]), batch_size=2)
        assert means == pytest.approx((2.0, 3.0, 4.0))

    def test_loose_tolerance_converges(self, mc_result: MonteCarloResult):
        assert mc_result.convergence_achieved
        assert len(mc_result.running_means) == 4

    def test_tight_tolerance_warns(self, multi_stage_inputs, parameters):
        config = MonteCarloConfig(iterations=20, parameters=parameters, seed=3, batch_size=5, tolerance=1e-15)
        with pytest.warns(ConvergenceWarning):
            result = run_monte_carlo(multi_stage_inputs, config)
        assert result.convergence_achieved is False
        assert result.iterations == 20

    def test_single_batch_cannot_converge(self, multi_stage_inputs):
        config = MonteCarloConfig(iterations=3, seed=1, batch_size=10)
        with pytest.warns(ConvergenceWarning):
            result = run_monte_carlo(multi_stage_inputs, config)
        assert not result.convergence_achieved


class TestCancellation:
    def test_cancel_before_run_returns_empty(self, multi_stage_inputs):
        simulator = MonteCarloSimulator(multi_stage_inputs, MonteCarloConfig(iterations=10, seed=1))
        simulator.cancel()
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            result = simulator.run()
        assert result.cancelled
        assert result.iterations == 0
        assert result.percentiles == {}

    def test_cancel_mid_run_keeps_completed(self, multi_stage_inputs):
        class CancelAfterThree(MonteCarloSimulator):
            def _run_sequential(self, tasks):
                completed = {}
                for task in tasks:
                    if len(completed) == 3:
                        self.cancel()
                    if self.cancelled:
                        break
                    completed.update(super()._run_sequential([task]))
                return completed

        result = CancelAfterThree(multi_stage_inputs, MonteCarloConfig(iterations=10, seed=1)).run()
        assert result.cancelled
        assert result.iterations == 3

    def test_parallel_matches_sequential(self, multi_stage_inputs):
        config = MonteCarloConfig(iterations=6, seed=12, batch_size=3)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            full = run_monte_carlo(multi_stage_inputs, config)
            parallel = run_monte_carlo(multi_stage_inputs, MonteCarloConfig(iterations=6, seed=12, batch_size=3, max_workers=2))
        np.testing.assert_array_equal(full.values("tvpi"), parallel.values("tvpi"))
