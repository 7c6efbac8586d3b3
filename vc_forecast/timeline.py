"""
timeline.py — Quarter-by-quarter fund simulation.

Depends on: metrics.py, fund.py, portfolio.py, transitions.py, waterfall.py

Each quarter runs, in order: deployment, fees, transitions, distributions,
NAV, ratios. Every record is built from cumulative state up to and including
its own quarter; only the IRR pair is filled in afterwards, from the full
cash-flow series.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Sequence

import numpy as np
import pandas as pd

from vc_forecast.fund import FundInputs
from vc_forecast.metrics import (
    calc_capital_weighted_years,
    calc_dpi,
    calc_management_fee,
    calc_moic,
    calc_rvpi,
    calc_tvpi,
    quarterly_irr,
)
from vc_forecast.portfolio import (
    Investment,
    PortfolioCompany,
    quarter_date,
    quarter_label,
)
from vc_forecast.stages import FundStage
from vc_forecast.transitions import TransitionEvent, TransitionModel
from vc_forecast.waterfall import WaterfallDistributor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineMetrics:
    """
    Fund state for one quarter.

    Flow fields (``capital_deployed``, ``capital_called``, ``distributions``,
    ``management_fees``) are for the quarter; ``total_*`` fields are
    cumulative. ``carried_interest`` is carry accrued to date on a
    hypothetical liquidation of distributions so far.
    """

    quarter: int
    quarter_label: str
    capital_deployed: float
    capital_called: float
    distributions: float
    net_cash_flow: float
    cumulative_cash_flow: float
    total_invested: float
    total_called: float
    total_distributed: float
    nav: float
    dpi: float
    rvpi: float
    tvpi: float
    gross_moic: float
    net_moic: float
    management_fees: float
    carried_interest: float
    gross_irr: float = float("nan")
    net_irr: float = float("nan")

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class TimelineRun:
    """Output of one engine run: the records plus final portfolio state."""

    records: tuple[TimelineMetrics, ...]
    companies: list[PortfolioCompany]
    events: list[TransitionEvent] = field(default_factory=list)
    reserve_pools_remaining: dict[FundStage, float] = field(default_factory=dict)

    @property
    def final(self) -> TimelineMetrics:
        return self.records[-1]


def timeline_frame(records: Sequence[TimelineMetrics]) -> pd.DataFrame:
    """One row per quarter, one column per TimelineMetrics field."""
    return pd.DataFrame([r.to_dict() for r in records])


class TimelineEngine:
    """
    Drives the quarterly simulation loop.

    Usage:
        model = make_transition_model(SimulationMode.EXPECTED_VALUE, ...)
        run = TimelineEngine(inputs, model).run(generate_cohort(inputs))
    """

    def __init__(self, inputs: FundInputs, model: TransitionModel) -> None:
        self.inputs = inputs
        self.model = model
        self.distributor = WaterfallDistributor.from_inputs(inputs)

    # ------------------------------------------------------------------
    # Reserve pools and follow-ons
    # ------------------------------------------------------------------

    def _initial_reserve_pools(self) -> dict[FundStage, float]:
        size = self.inputs.fund_size_usd
        return {
            s.stage: size * s.allocation_percent * s.reserve_ratio
            for s in self.inputs.stage_strategies
        }

    def _follow_on_request(self, company: PortfolioCompany) -> float:
        strategy = self.inputs.strategy_for(company.entry_stage)
        if strategy is None:
            return 0.0
        return company.initial_investment * strategy.follow_on_percent

    def _deploy_follow_on(
        self,
        company: PortfolioCompany,
        quarter: int,
        pools: dict[FundStage, float],
    ) -> float:
        if not company.is_active:
            return 0.0
        amount = min(self._follow_on_request(company), pools.get(company.entry_stage, 0.0))
        if amount <= 0:
            return 0.0
        pools[company.entry_stage] -= amount
        ownership = company.investments[0].ownership
        company.add_investment(
            Investment(
                round=company.current_stage,
                amount=amount,
                date=quarter_date(self.inputs.vintage_year, quarter),
                quarter=quarter,
                ownership=ownership,
                valuation=company.current_valuation / (1 + ownership),
                post_money=company.current_valuation,
                follow_on=True,
            )
        )
        return amount

    # ------------------------------------------------------------------
    # Simulation loop
    # ------------------------------------------------------------------

    def run(self, companies: list[PortfolioCompany]) -> TimelineRun:
        inputs = self.inputs
        n = inputs.fund_life_quarters
        ip = inputs.investment_period_quarters
        appreciation = inputs.appreciation

        deployed = np.zeros(n, dtype=np.float64)
        fees = np.zeros(n, dtype=np.float64)
        called = np.zeros(n, dtype=np.float64)
        distributions = np.zeros(n, dtype=np.float64)
        nav = np.zeros(n, dtype=np.float64)
        carry = np.zeros(n, dtype=np.float64)

        pools = self._initial_reserve_pools()
        pending_follow_ons: list[PortfolioCompany] = []
        all_events: list[TransitionEvent] = []
        records: list[TimelineMetrics] = []
        by_id = {c.id: c for c in companies}

        for q in range(n):
            # 1. Deployment
            if q < ip:
                deployed[q] += sum(c.initial_investment for c in companies if c.entry_quarter == q)
                for company in pending_follow_ons:
                    deployed[q] += self._deploy_follow_on(company, q, pools)
            pending_follow_ons = []

            # 2. Fees
            net_invested = sum(
                c.invested_amount for c in companies if c.is_active and c.has_entered(q)
            )
            fees[q] = calc_management_fee(
                committed=inputs.fund_size_usd,
                net_invested=net_invested,
                fee_rate=inputs.management_fee_rate,
                quarter=q,
                investment_period_quarters=ip,
                fee_basis=inputs.fee_basis.value,
            )
            called[q] = deployed[q] + fees[q]

            # 3. Transitions
            events = self.model.step(companies, q)
            all_events.extend(events)

            # 4. Distributions
            graduated: set[str] = set()
            for event in events:
                company = by_id[event.company_id]
                if event.outcome == "exit":
                    company.exit_value = company.invested_amount * (event.exit_multiple or 0.0)
                    company.exit_date = quarter_date(inputs.vintage_year, q)
                    distributions[q] += company.exit_value
                elif event.outcome == "fail":
                    company.exit_date = quarter_date(inputs.vintage_year, q)
                else:
                    graduated.add(company.id)
                    if q + 1 < ip:
                        pending_follow_ons.append(company)

            # 5. NAV
            for company in companies:
                if not company.is_active or company.entry_quarter >= q:
                    continue
                company.current_valuation *= appreciation.quarterly_factor
                if company.id in graduated:
                    company.current_valuation *= appreciation.graduation_step_up
            nav[q] = sum(c.holding_value for c in companies if c.has_entered(q))

            # 6. Ratios
            total_invested = float(deployed[: q + 1].sum())
            total_called = float(called[: q + 1].sum())
            total_distributed = float(distributions[: q + 1].sum())
            carry[q] = self.distributor.distribute(
                total_distributed,
                total_called,
                calc_capital_weighted_years(called, q),
            ).carry_paid

            records.append(
                TimelineMetrics(
                    quarter=q,
                    quarter_label=quarter_label(inputs.vintage_year, q),
                    capital_deployed=float(deployed[q]),
                    capital_called=float(called[q]),
                    distributions=float(distributions[q]),
                    net_cash_flow=float(distributions[q] - called[q]),
                    cumulative_cash_flow=total_distributed - total_called,
                    total_invested=total_invested,
                    total_called=total_called,
                    total_distributed=total_distributed,
                    nav=float(nav[q]),
                    dpi=calc_dpi(total_called, total_distributed),
                    rvpi=calc_rvpi(total_called, float(nav[q])),
                    tvpi=calc_tvpi(total_called, float(nav[q]), total_distributed),
                    gross_moic=calc_moic(total_invested, total_distributed + float(nav[q])),
                    net_moic=calc_moic(
                        total_called, total_distributed + float(nav[q]) - float(carry[q])
                    ),
                    management_fees=float(fees[q]),
                    carried_interest=float(carry[q]),
                )
            )

        gross_irr, net_irr = self._irr_pair(deployed, called, distributions, nav, carry)
        records = [replace(r, gross_irr=gross_irr, net_irr=net_irr) for r in records]

        logger.info(
            "Timeline complete: %d quarters, invested=%.0f, distributed=%.0f, nav=%.0f",
            n,
            deployed.sum(),
            distributions.sum(),
            nav[-1] if n else 0.0,
        )
        return TimelineRun(
            records=tuple(records),
            companies=companies,
            events=all_events,
            reserve_pools_remaining=pools,
        )

    @staticmethod
    def _irr_pair(
        deployed: np.ndarray,
        called: np.ndarray,
        distributions: np.ndarray,
        nav: np.ndarray,
        carry: np.ndarray,
    ) -> tuple[float, float]:
        """
        Gross IRR: deployments against distributions plus terminal NAV.
        Net IRR: LP calls (incl. fees) against distributions net of carry
        plus terminal NAV.
        """
        if len(nav) == 0:
            return float("nan"), float("nan")
        gross = distributions - deployed
        gross[-1] += nav[-1]
        carry_increments = np.diff(carry, prepend=0.0)
        net = distributions - carry_increments - called
        net[-1] += nav[-1]
        return quarterly_irr(gross), quarterly_irr(net)
