"""
forecast.py — Forecast pipeline, result aggregate, and engine strategy interface.

Depends on: fund.py, portfolio.py, transitions.py, timeline.py, waterfall.py,
reserves.py, analysis.py

Pipeline: FundInputs -> cohort -> timeline (transition model each quarter)
-> {waterfall, reserve optimizer} -> ForecastResult.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, NamedTuple, Optional

import numpy as np
import pandas as pd

from vc_forecast.analysis import (
    PacingAnalysis,
    StageExitAnalysis,
    analyze_pacing,
    analyze_stage_exits,
)
from vc_forecast.errors import ConfigurationError
from vc_forecast.fund import FundInputs, WaterfallStyle
from vc_forecast.metrics import calc_capital_weighted_years
from vc_forecast.portfolio import (
    CompanySnapshot,
    CompanyStatus,
    Investment,
    generate_cohort,
    initial_invested,
    portfolio_breakdown,
)
from vc_forecast.reserves import (
    ReserveOptimizationResult,
    ReserveOptimizer,
    ReserveSufficiencyAnalysis,
)
from vc_forecast.stages import ExitBucket, FundStage
from vc_forecast.timeline import TimelineEngine, TimelineMetrics, timeline_frame
from vc_forecast.transitions import SimulationMode, make_transition_model
from vc_forecast.waterfall import WaterfallDistributor, WaterfallSummary

logger = logging.getLogger(__name__)


class ReturnPair(NamedTuple):
    gross: float
    net: float


@dataclass(frozen=True)
class FundMetrics:
    capital_called: float
    capital_distributed: float
    capital_remaining: float
    dry_powder: float
    total_value: float
    net_asset_value: float
    total_management_fees: float
    total_carried_interest: float
    lp_net_proceeds: float
    gp_total_compensation: float


@dataclass(frozen=True)
class ForecastResult:
    """
    Everything one forecast run produces.

    Immutable: downstream analyses read it and never recompute stored metrics.
    """

    portfolio: tuple[CompanySnapshot, ...]
    timeline: tuple[TimelineMetrics, ...]
    waterfall: WaterfallSummary
    irr: ReturnPair
    moic: ReturnPair
    dpi: float
    rvpi: float
    tvpi: float
    total_invested: float
    initial_invested: float
    total_distributed: float
    portfolio_value: float
    management_fees: float
    carried_interest: float
    fund_metrics: FundMetrics

    def timeline_frame(self) -> pd.DataFrame:
        return timeline_frame(self.timeline)

    def portfolio_frame(self) -> pd.DataFrame:
        return portfolio_breakdown(self.portfolio)

    def summary(self) -> dict[str, float]:
        """Headline metrics, flat."""
        return {
            "gross_irr": self.irr.gross,
            "net_irr": self.irr.net,
            "gross_moic": self.moic.gross,
            "net_moic": self.moic.net,
            "dpi": self.dpi,
            "rvpi": self.rvpi,
            "tvpi": self.tvpi,
            "total_invested": self.total_invested,
            "total_distributed": self.total_distributed,
            "portfolio_value": self.portfolio_value,
            "management_fees": self.management_fees,
            "carried_interest": self.carried_interest,
        }

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "portfolio":
                value = [_company_to_dict(c) for c in value]
            elif f.name == "timeline":
                value = [r.to_dict() for r in value]
            elif f.name == "waterfall":
                value = {**asdict(value), "style": value.style.value}
            elif isinstance(value, ReturnPair):
                value = value._asdict()
            elif f.name == "fund_metrics":
                value = asdict(value)
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForecastResult":
        waterfall = dict(data["waterfall"])
        waterfall["style"] = WaterfallStyle(waterfall["style"])
        return cls(
            portfolio=tuple(_company_from_dict(c) for c in data["portfolio"]),
            timeline=tuple(TimelineMetrics(**r) for r in data["timeline"]),
            waterfall=WaterfallSummary(**waterfall),
            irr=ReturnPair(**data["irr"]),
            moic=ReturnPair(**data["moic"]),
            dpi=data["dpi"],
            rvpi=data["rvpi"],
            tvpi=data["tvpi"],
            total_invested=data["total_invested"],
            initial_invested=data["initial_invested"],
            total_distributed=data["total_distributed"],
            portfolio_value=data["portfolio_value"],
            management_fees=data["management_fees"],
            carried_interest=data["carried_interest"],
            fund_metrics=FundMetrics(**data["fund_metrics"]),
        )

    def to_json(self, **kwargs: Any) -> str:
        """
        Strict JSON. Non-finite floats (an IRR with no sign change is nan) are
        written as the strings "NaN", "Infinity" and "-Infinity".
        """
        return json.dumps(_encode_non_finite(self.to_dict()), allow_nan=False, **kwargs)

    @classmethod
    def from_json(cls, payload: str) -> "ForecastResult":
        return cls.from_dict(_decode_non_finite(json.loads(payload)))


_NON_FINITE = {"NaN": float("nan"), "Infinity": float("inf"), "-Infinity": float("-inf")}


def _encode_non_finite(value: Any) -> Any:
    if isinstance(value, float) and not np.isfinite(value):
        if np.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, dict):
        return {k: _encode_non_finite(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_non_finite(v) for v in value]
    return value


def _decode_non_finite(value: Any) -> Any:
    if isinstance(value, str):
        return _NON_FINITE.get(value, value)
    if isinstance(value, dict):
        return {k: _decode_non_finite(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode_non_finite(v) for v in value]
    return value


def _company_to_dict(company: CompanySnapshot) -> dict[str, Any]:
    return {
        "id": company.id,
        "name": company.name,
        "entry_stage": company.entry_stage.value,
        "current_stage": company.current_stage.value,
        "entry_quarter": company.entry_quarter,
        "current_valuation": company.current_valuation,
        "investments": [
            {
                "round": inv.round.value,
                "amount": inv.amount,
                "date": inv.date.isoformat(),
                "quarter": inv.quarter,
                "ownership": inv.ownership,
                "valuation": inv.valuation,
                "post_money": inv.post_money,
                "follow_on": inv.follow_on,
            }
            for inv in company.investments
        ],
        "status": company.status.value,
        "exit_value": company.exit_value,
        "exit_date": company.exit_date.isoformat() if company.exit_date else None,
        "exit_quarter": company.exit_quarter,
        "exit_multiple": company.exit_multiple,
        "exit_bucket": company.exit_bucket.value if company.exit_bucket else None,
    }


def _company_from_dict(data: Mapping[str, Any]) -> CompanySnapshot:
    return CompanySnapshot(
        id=data["id"],
        name=data["name"],
        entry_stage=FundStage(data["entry_stage"]),
        current_stage=FundStage(data["current_stage"]),
        entry_quarter=data["entry_quarter"],
        current_valuation=data["current_valuation"],
        investments=tuple(
            Investment(
                round=FundStage(inv["round"]),
                amount=inv["amount"],
                date=dt.date.fromisoformat(inv["date"]),
                quarter=inv["quarter"],
                ownership=inv["ownership"],
                valuation=inv["valuation"],
                post_money=inv["post_money"],
                follow_on=inv["follow_on"],
            )
            for inv in data["investments"]
        ),
        status=CompanyStatus(data["status"]),
        exit_value=data["exit_value"],
        exit_date=dt.date.fromisoformat(data["exit_date"]) if data["exit_date"] else None,
        exit_quarter=data["exit_quarter"],
        exit_multiple=data["exit_multiple"],
        exit_bucket=ExitBucket(data["exit_bucket"]) if data["exit_bucket"] else None,
    )


# ---------------------------------------------------------------------------
# Strategy interface
# ---------------------------------------------------------------------------

class ForecastStrategy(ABC):
    """The three engine capabilities: forecast, optimize reserves, distribute."""

    name: str

    @abstractmethod
    def forecast(self, inputs: FundInputs) -> ForecastResult:
        ...

    @abstractmethod
    def optimize(self, inputs: FundInputs, result: ForecastResult) -> ReserveOptimizationResult:
        ...

    @abstractmethod
    def distribute(
        self,
        inputs: FundInputs,
        total_distributions: float,
        capital_called: float,
        effective_years: float,
    ) -> WaterfallSummary:
        ...


class CohortForecastStrategy(ForecastStrategy):
    """
    Synthetic-cohort forecast.

    Parameters
    ----------
    mode:
        Expected-value (deterministic) or stochastic transitions.
    rng:
        Generator for stochastic mode; ignored in expected-value mode.
    total_reserve_ratio:
        Reserve pool override for the optimizer.
    """

    name = "cohort"

    def __init__(
        self,
        mode: SimulationMode = SimulationMode.EXPECTED_VALUE,
        rng: Optional[np.random.Generator] = None,
        total_reserve_ratio: Optional[float] = None,
    ) -> None:
        self.mode = SimulationMode(mode)
        self.rng = rng
        self.total_reserve_ratio = total_reserve_ratio

    def forecast(self, inputs: FundInputs) -> ForecastResult:
        inputs.validate()
        exits = inputs.effective_exit_matrix()
        companies = generate_cohort(inputs)
        model = make_transition_model(
            self.mode, inputs.graduation_matrix, exits, inputs.timing, rng=self.rng
        )
        logger.info(
            "Running %s forecast for %s: %d companies, %d quarters",
            self.mode.value,
            inputs.fund_name,
            len(companies),
            inputs.fund_life_quarters,
        )
        run = TimelineEngine(inputs, model).run(companies)
        final = run.final

        called = np.array([r.capital_called for r in run.records], dtype=np.float64)
        waterfall = self.distribute(
            inputs,
            final.total_distributed,
            final.total_called,
            calc_capital_weighted_years(called, len(called) - 1),
        )
        portfolio = tuple(c.snapshot() for c in run.companies)
        fees = float(sum(r.management_fees for r in run.records))
        capital_remaining = max(inputs.fund_size_usd - final.total_called, 0.0)
        reserves_left = float(sum(run.reserve_pools_remaining.values()))

        return ForecastResult(
            portfolio=portfolio,
            timeline=run.records,
            waterfall=waterfall,
            irr=ReturnPair(final.gross_irr, final.net_irr),
            moic=ReturnPair(final.gross_moic, final.net_moic),
            dpi=final.dpi,
            rvpi=final.rvpi,
            tvpi=final.tvpi,
            total_invested=final.total_invested,
            initial_invested=initial_invested(portfolio),
            total_distributed=final.total_distributed,
            portfolio_value=final.nav,
            management_fees=fees,
            carried_interest=waterfall.carry_paid,
            fund_metrics=FundMetrics(
                capital_called=final.total_called,
                capital_distributed=final.total_distributed,
                capital_remaining=capital_remaining,
                dry_powder=max(capital_remaining - reserves_left, 0.0),
                total_value=final.total_distributed + final.nav,
                net_asset_value=final.nav,
                total_management_fees=fees,
                total_carried_interest=waterfall.carry_paid,
                lp_net_proceeds=waterfall.lp_distributions,
                gp_total_compensation=fees + waterfall.carry_paid,
            ),
        )

    def optimize(self, inputs: FundInputs, result: ForecastResult) -> ReserveOptimizationResult:
        return ReserveOptimizer(inputs, self.total_reserve_ratio).optimize(result.portfolio)

    def distribute(
        self,
        inputs: FundInputs,
        total_distributions: float,
        capital_called: float,
        effective_years: float,
    ) -> WaterfallSummary:
        return WaterfallDistributor.from_inputs(inputs).distribute(
            total_distributions, capital_called, effective_years
        )


STRATEGIES: dict[str, type[ForecastStrategy]] = {
    CohortForecastStrategy.name: CohortForecastStrategy,
}


def build_strategy(name: str = "cohort", **options: Any) -> ForecastStrategy:
    """Instantiate a registered strategy by name."""
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown forecast strategy {name!r}; expected one of {sorted(STRATEGIES)}"
        ) from None
    return strategy_cls(**options)


class ForecastEngine:
    """
    Caller-owned entry point wrapping one strategy.

    Usage:
        engine = ForecastEngine.from_config("cohort", mode=SimulationMode.EXPECTED_VALUE)
        result = engine.run(inputs)
        reserves = engine.optimize_reserves(inputs, result)
    """

    def __init__(self, strategy: Optional[ForecastStrategy] = None) -> None:
        self.strategy = strategy or CohortForecastStrategy()

    @classmethod
    def from_config(cls, name: str = "cohort", **options: Any) -> "ForecastEngine":
        return cls(build_strategy(name, **options))

    def run(self, inputs: FundInputs) -> ForecastResult:
        return self.strategy.forecast(inputs)

    def optimize_reserves(self, inputs: FundInputs, result: ForecastResult) -> ReserveOptimizationResult:
        return self.strategy.optimize(inputs, result)

    def analyze_reserve_sufficiency(
        self, inputs: FundInputs, result: ForecastResult
    ) -> ReserveSufficiencyAnalysis:
        return ReserveOptimizer(inputs).analyze_sufficiency(result.portfolio)

    def analyze_pacing(
        self,
        inputs: FundInputs,
        result: ForecastResult,
        target_quarters: Optional[int] = None,
    ) -> PacingAnalysis:
        return analyze_pacing(inputs, result, target_quarters)

    def analyze_stage_exits(self, result: ForecastResult) -> tuple[StageExitAnalysis, ...]:
        return analyze_stage_exits(result)


def run_forecast(
    inputs: FundInputs,
    mode: SimulationMode = SimulationMode.EXPECTED_VALUE,
    rng: Optional[np.random.Generator] = None,
) -> ForecastResult:
    """
    Run the full single-scenario pipeline.

    Raises
    ------
    ConfigurationError
        If stage allocations or any probability row do not sum to 1.0 ± 1e-3,
        or the investment period exceeds the fund life.
    """
    return CohortForecastStrategy(mode=mode, rng=rng).forecast(inputs)
