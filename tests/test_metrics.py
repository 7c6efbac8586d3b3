"""Tests for vc_forecast.metrics — pure math functions."""
from __future__ import annotations

import math

import numpy as np
import pytest

from vc_forecast.metrics import (
    calc_capital_weighted_years,
    calc_dpi,
    calc_irr,
    calc_management_fee,
    calc_moic,
    calc_npv,
    calc_rvpi,
    calc_tvpi,
    quarterly_irr,
    summarize_distribution,
)


# ---------------------------------------------------------------------------
# IRR tests
# ---------------------------------------------------------------------------

class TestCalcIrr:
    def test_simple_doubling(self):
        """$1 invested, $2 returned after 1 year → 100% IRR."""
        cashflows = np.array([-1.0, 2.0])
        assert calc_irr(cashflows) == pytest.approx(1.0, rel=1e-4)

    def test_standard_vc_fund(self):
        cashflows = np.array([-100.0, -50.0, 0.0, 50.0, 150.0, 200.0])
        irr = calc_irr(cashflows)
        assert 0.15 < irr < 0.50

    def test_negative_irr(self):
        cashflows = np.array([-100.0, 30.0, 30.0])
        assert calc_irr(cashflows) < 0

    def test_no_sign_change_returns_nan(self):
        assert math.isnan(calc_irr(np.array([-100.0, -50.0])))

    def test_custom_periods(self):
        cashflows = np.array([-1.0, 1.5])
        periods = np.array([0.0, 0.5])
        # -1 + 1.5/(1+r)^0.5 = 0 → r = 1.25
        assert calc_irr(cashflows, periods=periods) == pytest.approx(1.25, rel=1e-4)

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            calc_irr(np.array([-1.0, 2.0]), periods=np.array([0.0, 1.0, 2.0]))

    def test_irr_zeroes_npv(self):
        cashflows = np.array([-100.0, -50.0, 20.0, 80.0, 150.0])
        irr = calc_irr(cashflows)
        assert calc_npv(cashflows, irr) == pytest.approx(0.0, abs=1e-4)

    def test_irr_zeroes_npv_on_quarterly_periods(self):
        cashflows = np.array([-100.0, -50.0, 20.0, 80.0, 150.0])
        periods = np.arange(5, dtype=np.float64) / 4.0
        irr = calc_irr(cashflows, periods=periods)
        assert irr == pytest.approx(quarterly_irr(cashflows))
        assert calc_npv(cashflows, irr, periods) == pytest.approx(0.0, abs=1e-4)


class TestQuarterlyIrr:
    def test_four_quarters_is_one_year(self):
        """Doubling over four quarters is 100% annualised."""
        assert quarterly_irr([-1.0, 0.0, 0.0, 0.0, 2.0]) == pytest.approx(1.0, rel=1e-4)

    def test_all_outflows_nan(self):
        assert math.isnan(quarterly_irr([-1.0, -1.0, 0.0]))


# ---------------------------------------------------------------------------
# Multiples
# ---------------------------------------------------------------------------

class TestMultiples:
    def test_tvpi(self):
        assert calc_tvpi(100.0, 60.0, 90.0) == pytest.approx(1.5)

    def test_dpi(self):
        assert calc_dpi(100.0, 40.0) == pytest.approx(0.4)

    def test_rvpi(self):
        assert calc_rvpi(100.0, 60.0) == pytest.approx(0.6)

    def test_tvpi_is_dpi_plus_rvpi(self):
        assert calc_tvpi(80.0, 30.0, 50.0) == pytest.approx(
            calc_dpi(80.0, 50.0) + calc_rvpi(80.0, 30.0)
        )

    def test_moic(self):
        assert calc_moic(10.0, 35.0) == pytest.approx(3.5)

    @pytest.mark.parametrize("func,args", [
        (calc_tvpi, (0.0, 10.0, 10.0)),
        (calc_dpi, (0.0, 10.0)),
        (calc_rvpi, (0.0, 10.0)),
        (calc_moic, (0.0, 10.0)),
    ])
    def test_zero_paid_in_is_zero(self, func, args):
        assert func(*args) == 0.0


# ---------------------------------------------------------------------------
# Fees and capital age
# ---------------------------------------------------------------------------

class TestManagementFee:
    def test_committed_basis_during_investment_period(self):
        fee = calc_management_fee(50e6, 10e6, 0.02, quarter=3, investment_period_quarters=20)
        assert fee == pytest.approx(250_000)

    def test_invested_basis_after_investment_period(self):
        fee = calc_management_fee(50e6, 10e6, 0.02, quarter=20, investment_period_quarters=20)
        assert fee == pytest.approx(50_000)

    def test_committed_basis_whole_life(self):
        fee = calc_management_fee(
            50e6, 10e6, 0.02, quarter=30, investment_period_quarters=20, fee_basis="committed"
        )
        assert fee == pytest.approx(250_000)

    def test_investment_period_only(self):
        fee = calc_management_fee(
            50e6, 10e6, 0.02, quarter=20, investment_period_quarters=20,
            fee_basis="investment_period_only",
        )
        assert fee == 0.0


class TestCapitalWeightedYears:
    def test_single_call(self):
        calls = np.array([100.0, 0.0, 0.0, 0.0])
        assert calc_capital_weighted_years(calls, 3) == pytest.approx(1.0)

    def test_weighted(self):
        calls = np.array([100.0, 100.0])
        # ages at end of quarter 1: 0.5y and 0.25y
        assert calc_capital_weighted_years(calls, 1) == pytest.approx(0.375)

    def test_nothing_called(self):
        assert calc_capital_weighted_years(np.zeros(4), 3) == 0.0


# ---------------------------------------------------------------------------
# Distribution summary
# ---------------------------------------------------------------------------

class TestSummarizeDistribution:
    def test_keys_and_order(self):
        rng = np.random.default_rng(0)
        summary = summarize_distribution(rng.normal(0.1, 0.05, 500))
        assert summary["p10"] <= summary["p25"] <= summary["p50"] <= summary["p75"] <= summary["p90"]
        assert summary["min"] <= summary["p10"]
        assert summary["p90"] <= summary["max"]
        assert summary["median"] == pytest.approx(summary["p50"])

    def test_ignores_nan(self):
        summary = summarize_distribution([1.0, float("nan"), 3.0])
        assert summary["mean"] == pytest.approx(2.0)

    def test_empty_is_nan(self):
        summary = summarize_distribution([float("nan")])
        assert all(math.isnan(v) for v in summary.values())

    def test_single_value_zero_spread(self):
        assert summarize_distribution([2.0])["std_dev"] == 0.0
