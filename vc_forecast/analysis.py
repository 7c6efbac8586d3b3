"""
analysis.py — Read-only analyses over a finished forecast.

Depends on: fund.py, portfolio.py, stages.py, forecast.py (types only)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np
import pandas as pd

from vc_forecast.fund import FundInputs
from vc_forecast.portfolio import CompanySnapshot, CompanyStatus
from vc_forecast.stages import ExitBucket, FundStage

if TYPE_CHECKING:
    from vc_forecast.forecast import ForecastResult


@dataclass(frozen=True)
class PacingAnalysis:
    total_invested: float
    avg_quarterly_deployment: float
    pacing_score: float
    deployment_variance: float
    front_loading_ratio: float
    deployment_efficiency: float
    quarterly_deployments: tuple[float, ...]
    recommended_pacing: tuple[float, ...]
    deployment_rate: float
    projected_deployment_completion: Optional[int]
    deployment_by_stage: dict[str, float]


@dataclass(frozen=True)
class StageExitAnalysis:
    stage: FundStage
    total_companies: int
    exited_companies: int
    written_off_companies: int
    exit_rate: float
    average_exit_multiple: float
    average_years_to_exit: float
    performance_breakdown: dict[str, int]


def analyze_pacing(
    inputs: FundInputs,
    result: "ForecastResult",
    target_quarters: Optional[int] = None,
) -> PacingAnalysis:
    """
    Compare actual deployment with an even schedule over ``target_quarters``.

    ``pacing_score`` is 1.0 for perfectly even deployment and falls towards
    0.0 as deployment concentrates. ``deployment_variance`` is the coefficient
    of variation of quarterly deployment.
    """
    n = target_quarters or inputs.investment_period_quarters
    if n <= 0:
        raise ValueError("target_quarters must be positive")
    deployments = np.array(
        [r.capital_deployed for r in result.timeline[:n]], dtype=np.float64
    )
    total = float(deployments.sum())
    avg = total / n
    recommended = np.full(n, avg, dtype=np.float64)

    padded = np.zeros(n, dtype=np.float64)
    padded[: len(deployments)] = deployments
    if total > 0:
        score = max(0.0, 1.0 - float(np.abs(padded - recommended).sum()) / (2.0 * total))
        cv = float(padded.std() / avg)
        front = float(padded[: (n + 1) // 2].sum() / total)
    else:
        score, cv, front = 0.0, 0.0, 0.0

    cumulative = np.cumsum([r.capital_deployed for r in result.timeline])
    completion = None
    if result.total_invested > 0:
        reached = np.nonzero(cumulative >= 0.9 * result.total_invested)[0]
        completion = int(reached[0]) if len(reached) else None

    investable = inputs.fund_size_usd - result.management_fees
    by_stage: dict[str, float] = {}
    for company in result.portfolio:
        key = company.entry_stage.value
        by_stage[key] = by_stage.get(key, 0.0) + company.invested_amount

    return PacingAnalysis(
        total_invested=total,
        avg_quarterly_deployment=avg,
        pacing_score=score,
        deployment_variance=cv,
        front_loading_ratio=front,
        deployment_efficiency=result.total_invested / investable if investable > 0 else 0.0,
        quarterly_deployments=tuple(float(d) for d in padded),
        recommended_pacing=tuple(float(d) for d in recommended),
        deployment_rate=result.total_invested / inputs.fund_size_usd,
        projected_deployment_completion=completion,
        deployment_by_stage=by_stage,
    )


def _exit_bucket(company: CompanySnapshot) -> ExitBucket:
    if company.status is CompanyStatus.WRITTEN_OFF:
        return ExitBucket.FAIL
    if company.exit_bucket is not None:
        return company.exit_bucket
    return ExitBucket.classify(company.exit_multiple or 0.0)


def analyze_stage_exits(result: "ForecastResult") -> tuple[StageExitAnalysis, ...]:
    """Exit statistics for each entry-stage cohort present in the portfolio."""
    analyses = []
    for stage in FundStage:
        cohort = [c for c in result.portfolio if c.entry_stage == stage]
        if not cohort:
            continue
        exited = [c for c in cohort if c.status is CompanyStatus.EXITED]
        written_off = [c for c in cohort if c.status is CompanyStatus.WRITTEN_OFF]
        breakdown = {bucket.value: 0 for bucket in ExitBucket}
        for company in exited + written_off:
            breakdown[_exit_bucket(company).value] += 1

        analyses.append(
            StageExitAnalysis(
                stage=stage,
                total_companies=len(cohort),
                exited_companies=len(exited),
                written_off_companies=len(written_off),
                exit_rate=len(exited) / len(cohort),
                average_exit_multiple=(
                    float(np.mean([c.exit_multiple or 0.0 for c in exited])) if exited else 0.0
                ),
                average_years_to_exit=(
                    float(np.mean([(c.exit_quarter - c.entry_quarter) / 4.0 for c in exited]))
                    if exited
                    else 0.0
                ),
                performance_breakdown=breakdown,
            )
        )
    return tuple(analyses)


def stage_exit_frame(analyses: Sequence[StageExitAnalysis]) -> pd.DataFrame:
    rows = []
    for a in analyses:
        row = {
            "stage": a.stage.value,
            "total_companies": a.total_companies,
            "exited_companies": a.exited_companies,
            "written_off_companies": a.written_off_companies,
            "exit_rate": a.exit_rate,
            "average_exit_multiple": a.average_exit_multiple,
            "average_years_to_exit": a.average_years_to_exit,
        }
        row.update({f"bucket_{k}": v for k, v in a.performance_breakdown.items()})
        rows.append(row)
    return pd.DataFrame(rows)
