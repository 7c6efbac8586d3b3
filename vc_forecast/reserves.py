"""
reserves.py — Reserve allocation optimizer and reserve sufficiency analysis.

Depends on: fund.py, portfolio.py, stages.py

The optimizer is a greedy knapsack relaxation: companies are ranked by
probability-adjusted return on reserves and funded in order until the pool
runs out, with the last company pro-rated. It is not an exact optimum.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import pandas as pd

from vc_forecast.fund import FundInputs
from vc_forecast.portfolio import CompanySnapshot
from vc_forecast.stages import FundStage

logger = logging.getLogger(__name__)

FULLY_FUNDED = "fully-funded"
PARTIALLY_FUNDED = "partially-funded"
POOL_EXHAUSTED = "pool-exhausted"
NO_NEED = "no-remaining-need"
NO_EXPECTED_RETURN = "no-expected-return"


@dataclass(frozen=True)
class ReserveAllocation:
    company_id: str
    company_name: str
    current_stage: FundStage
    reserve_need: float
    recommended_reserve: float
    exit_moic_on_reserves: float
    probability_adjusted_return: float
    allocation_rationale: str


@dataclass(frozen=True)
class ReserveOptimizationResult:
    allocations: tuple[ReserveAllocation, ...]
    total_reserve_pool: float
    total_reserves_allocated: float
    expected_returns: float
    baseline_returns: float
    improvement_over_baseline: float
    recommendations: tuple[str, ...]

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for a in self.allocations:
            row = asdict(a)
            row["current_stage"] = a.current_stage.value
            rows.append(row)
        return pd.DataFrame(rows)


@dataclass(frozen=True)
class StageReserveAnalysis:
    stage: FundStage
    reserves_needed: float
    reserves_allocated: float
    sufficiency: float
    companies_count: int


@dataclass(frozen=True)
class ReserveSufficiencyAnalysis:
    """
    Unmet follow-on need of active companies against unused reserve pools.

    ``sufficiency_ratio`` is allocated / needed, and 1.0 when nothing is needed.
    """

    total_reserves_needed: float
    total_reserves_allocated: float
    sufficiency_ratio: float
    companies_needing_reserves: int
    reserve_shortfall: float
    recommended_reserve_ratio: float
    stage_breakdown: tuple[StageReserveAnalysis, ...]


def _ratio(allocated: float, needed: float) -> float:
    return allocated / needed if needed > 0 else 1.0


class ReserveOptimizer:
    """
    Recommends follow-on reserves per active company.

    Parameters
    ----------
    inputs:
        Fund inputs the forecast was run with.
    total_reserve_ratio:
        Fraction of fund size available as the reserve pool. Defaults to the
        allocation-weighted reserve ratio of the stage strategies.
    """

    def __init__(self, inputs: FundInputs, total_reserve_ratio: Optional[float] = None) -> None:
        self.inputs = inputs
        self.total_reserve_ratio = (
            inputs.total_reserve_ratio if total_reserve_ratio is None else total_reserve_ratio
        )
        if self.total_reserve_ratio < 0:
            raise ValueError("total_reserve_ratio must be non-negative")
        self.exits = inputs.effective_exit_matrix()

    @property
    def reserve_pool(self) -> float:
        return self.inputs.fund_size_usd * self.total_reserve_ratio

    def reserve_need(self, company: CompanySnapshot) -> float:
        """Follow-on the strategy intends for ``company`` less what it already received."""
        if not company.is_active:
            return 0.0
        strategy = self.inputs.strategy_for(company.entry_stage)
        if strategy is None:
            return 0.0
        target = company.initial_investment * strategy.follow_on_percent
        return max(target - company.follow_on_invested, 0.0)

    def score(self, company: CompanySnapshot) -> tuple[float, float]:
        """
        Returns
        -------
        (exit_moic_on_reserves, probability_adjusted_return)
        """
        strategy = self.inputs.strategy_for(company.entry_stage)
        follow_on_percent = strategy.follow_on_percent if strategy else 0.0
        stage = company.current_stage
        exit_moic = self.exits.expected_multiple(stage) * follow_on_percent
        graduation = self.inputs.graduation_matrix
        p_favourable = graduation.graduation_probability(stage) + (
            graduation.exit_probability(stage) * self.exits.favourable_probability(stage)
        )
        return exit_moic, exit_moic * p_favourable

    def optimize(self, portfolio: Sequence[CompanySnapshot]) -> ReserveOptimizationResult:
        pool = self.reserve_pool
        active = [c for c in portfolio if c.is_active]
        scored = []
        for company in active:
            exit_moic, par = self.score(company)
            scored.append((company, self.reserve_need(company), exit_moic, par))
        # stable sort keeps portfolio order among ties
        scored.sort(key=lambda item: item[3], reverse=True)

        remaining = pool
        allocations: list[ReserveAllocation] = []
        for company, need, exit_moic, par in scored:
            if need <= 0:
                amount, rationale = 0.0, NO_NEED
            elif par <= 0:
                amount, rationale = 0.0, NO_EXPECTED_RETURN
            elif remaining <= 0:
                amount, rationale = 0.0, POOL_EXHAUSTED
            elif need <= remaining:
                amount, rationale = need, FULLY_FUNDED
            else:
                amount, rationale = remaining, PARTIALLY_FUNDED
            remaining = max(remaining - amount, 0.0)
            allocations.append(
                ReserveAllocation(
                    company_id=company.id,
                    company_name=company.name,
                    current_stage=company.current_stage,
                    reserve_need=need,
                    recommended_reserve=amount,
                    exit_moic_on_reserves=exit_moic,
                    probability_adjusted_return=par,
                    allocation_rationale=rationale,
                )
            )

        total_allocated = float(sum(a.recommended_reserve for a in allocations))
        expected = float(sum(a.recommended_reserve * a.probability_adjusted_return for a in allocations))
        baseline = self._baseline_returns(scored, pool)
        improvement = (expected - baseline) / baseline if baseline > 0 else 0.0

        result = ReserveOptimizationResult(
            allocations=tuple(allocations),
            total_reserve_pool=pool,
            total_reserves_allocated=total_allocated,
            expected_returns=expected,
            baseline_returns=baseline,
            improvement_over_baseline=improvement,
            recommendations=tuple(self._recommendations(allocations, pool)),
        )
        logger.debug(
            "Reserve optimization: pool=%.0f allocated=%.0f across %d companies",
            pool,
            total_allocated,
            sum(1 for a in allocations if a.recommended_reserve > 0),
        )
        return result

    @staticmethod
    def _baseline_returns(scored: list[tuple[CompanySnapshot, float, float, float]], pool: float) -> float:
        """Returns if the pool were spread pro-rata to need regardless of score."""
        total_need = sum(need for _, need, _, _ in scored)
        if total_need <= 0:
            return 0.0
        fill = min(1.0, pool / total_need)
        return float(sum(need * fill * par for _, need, _, par in scored))

    @staticmethod
    def _recommendations(allocations: list[ReserveAllocation], pool: float) -> list[str]:
        notes = []
        total_need = sum(a.reserve_need for a in allocations)
        funded = [a for a in allocations if a.recommended_reserve > 0]
        if total_need > pool:
            notes.append(
                f"Reserve pool of ${pool:,.0f} covers {pool / total_need:.0%} of "
                f"${total_need:,.0f} follow-on need; lowest-ranked companies go unfunded."
            )
        elif total_need > 0:
            notes.append(
                f"Reserve pool exceeds follow-on need by ${pool - total_need:,.0f}; "
                "consider recycling the surplus into new investments."
            )
        if funded:
            top = funded[0]
            notes.append(
                f"Prioritise {top.company_name} ({top.current_stage.value}): "
                f"probability-adjusted return {top.probability_adjusted_return:.2f}x on reserves."
            )
        starved = [a for a in allocations if a.allocation_rationale == POOL_EXHAUSTED]
        if starved:
            notes.append(f"{len(starved)} companies with remaining need receive no reserves.")
        return notes

    # ------------------------------------------------------------------
    # Sufficiency
    # ------------------------------------------------------------------

    def analyze_sufficiency(self, portfolio: Sequence[CompanySnapshot]) -> ReserveSufficiencyAnalysis:
        inputs = self.inputs
        breakdown = []
        total_needed = 0.0
        total_allocated = 0.0
        needing = 0
        follow_on_used = 0.0

        for strategy in inputs.stage_strategies:
            cohort = [c for c in portfolio if c.entry_stage == strategy.stage]
            used = sum(c.follow_on_invested for c in cohort)
            pool = inputs.fund_size_usd * strategy.allocation_percent * strategy.reserve_ratio
            allocated = max(pool - used, 0.0)
            needs = [self.reserve_need(c) for c in cohort]
            needed = float(sum(needs))

            breakdown.append(
                StageReserveAnalysis(
                    stage=strategy.stage,
                    reserves_needed=needed,
                    reserves_allocated=allocated,
                    sufficiency=_ratio(allocated, needed),
                    companies_count=len(cohort),
                )
            )
            total_needed += needed
            total_allocated += allocated
            needing += sum(1 for need in needs if need > 0)
            follow_on_used += used

        shortfall = max(total_needed - total_allocated, 0.0)
        if shortfall > 0:
            logger.warning("Reserve shortfall of %.0f against unmet follow-on need", shortfall)
        return ReserveSufficiencyAnalysis(
            total_reserves_needed=total_needed,
            total_reserves_allocated=total_allocated,
            sufficiency_ratio=_ratio(total_allocated, total_needed),
            companies_needing_reserves=needing,
            reserve_shortfall=shortfall,
            recommended_reserve_ratio=(follow_on_used + total_needed) / inputs.fund_size_usd,
            stage_breakdown=tuple(breakdown),
        )
