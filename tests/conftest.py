"""
conftest.py — Shared pytest fixtures for vc_forecast test suite.
"""
from __future__ import annotations

import pytest

from vc_forecast.forecast import ForecastResult, run_forecast
from vc_forecast.fund import CheckSize, FeeBasis, FundInputs, StageStrategy, default_fund_inputs
from vc_forecast.stages import DEFAULT_GRADUATION_ROWS, FundStage


@pytest.fixture(scope="session")
def seed_strategy() -> StageStrategy:
    """Single Seed strategy: ten $1M checks."""
    return StageStrategy(
        stage=FundStage.SEED,
        allocation_percent=1.0,
        check_size=CheckSize(1_000_000, 1_000_000, 1_000_000),
        target_ownership=0.10,
        target_companies=10,
        follow_on_percent=0.5,
        reserve_ratio=0.3,
        entry_valuation=10_000_000,
    )


@pytest.fixture(scope="session")
def seed_fund_inputs(seed_strategy: StageStrategy) -> FundInputs:
    """$50M fund, 5-year investment period, 10-year life, 2 and 20 with an 8% hurdle."""
    return FundInputs(
        fund_size_usd=50_000_000,
        vintage_year=2024,
        stage_strategies=(seed_strategy,),
        management_fee_rate=0.02,
        carry_rate=0.20,
        hurdle_rate=0.08,
        investment_period_quarters=20,
        fund_life_quarters=40,
        fee_basis=FeeBasis.INVESTMENT_PERIOD_ONLY,
        fund_name="Seed Fund I",
    )


@pytest.fixture(scope="session")
def seed_forecast(seed_fund_inputs: FundInputs) -> ForecastResult:
    return run_forecast(seed_fund_inputs)


@pytest.fixture(scope="session")
def multi_stage_inputs() -> FundInputs:
    return default_fund_inputs(vintage_year=2024)


@pytest.fixture(scope="session")
def multi_stage_forecast(multi_stage_inputs: FundInputs) -> ForecastResult:
    return run_forecast(multi_stage_inputs)


@pytest.fixture(scope="session")
def all_fail_exit_rows() -> dict[str, dict[str, float]]:
    """Every exit lands in the fail bucket."""
    return {stage: {"fail": 1.0} for stage in DEFAULT_GRADUATION_ROWS}


@pytest.fixture(scope="session")
def all_fail_inputs(
    seed_fund_inputs: FundInputs,
    all_fail_exit_rows: dict[str, dict[str, float]],
) -> FundInputs:
    return seed_fund_inputs.with_overrides(exit_probability_matrix=all_fail_exit_rows)
