"""Smoke tests for vc_forecast.visualization figure factories."""
from __future__ import annotations

import warnings

import plotly.graph_objects as go
import pytest

from vc_forecast.errors import ConvergenceWarning
from vc_forecast.montecarlo import MonteCarloConfig, MonteCarloParameter, run_monte_carlo
from vc_forecast.reserves import ReserveOptimizer
from vc_forecast.visualization import (
    plot_monte_carlo_distribution,
    plot_portfolio_breakdown,
    plot_reserve_allocations,
    plot_timeline,
    plot_waterfall,
)


@pytest.fixture(scope="module")
def small_mc(multi_stage_inputs):
    config = MonteCarloConfig(
        iterations=12,
        parameters=(MonteCarloParameter("carry_rate", "uniform", min=0.15, max=0.25),),
        seed=5,
        batch_size=4,
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        return run_monte_carlo(multi_stage_inputs, config)


def test_timeline(seed_forecast):
    fig = plot_timeline(seed_forecast)
    assert isinstance(fig, go.Figure)
    assert len(fig.data) == 4
    assert len(plot_timeline(seed_forecast, show_cash_flows=False).data) == 3


def test_waterfall(seed_forecast):
    fig = plot_waterfall(seed_forecast.waterfall)
    assert [t.name for t in fig.data] == ["LP", "GP"]


def test_reserve_allocations(multi_stage_inputs, multi_stage_forecast):
    optimization = ReserveOptimizer(multi_stage_inputs).optimize(multi_stage_forecast.portfolio)
    fig = plot_reserve_allocations(optimization, top_n=5)
    assert isinstance(fig, go.Figure)
    if optimization.allocations:
        assert len(fig.data[0].y) == min(5, len(optimization.allocations))


def test_portfolio_breakdown(multi_stage_forecast):
    fig = plot_portfolio_breakdown(multi_stage_forecast)
    assert isinstance(fig.data[0], go.Treemap)
    assert len(fig.data) >= 2


@pytest.mark.parametrize("metric", ["net_irr", "net_moic", "dpi", "tvpi"])
def test_monte_carlo_distribution(small_mc, metric):
    fig = plot_monte_carlo_distribution(small_mc, metric=metric)
    assert isinstance(fig, go.Figure)
    if fig.data:
        assert isinstance(fig.data[0], go.Histogram)
