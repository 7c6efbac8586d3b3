"""
portfolio.py — Portfolio companies and the cohort generator.

Depends on: errors.py, stages.py, fund.py
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

import pandas as pd

from vc_forecast.errors import ConfigurationError
from vc_forecast.fund import FundInputs
from vc_forecast.stages import ExitBucket, FundStage

logger = logging.getLogger(__name__)


class CompanyStatus(str, Enum):
    ACTIVE = "active"
    EXITED = "exited"
    WRITTEN_OFF = "written-off"


def quarter_date(vintage_year: int, quarter: int) -> dt.date:
    """First day of fund quarter ``quarter`` counted from January of the vintage year."""
    return dt.date(vintage_year + quarter // 4, 3 * (quarter % 4) + 1, 1)


def quarter_label(vintage_year: int, quarter: int) -> str:
    return f"Q{quarter % 4 + 1} {vintage_year + quarter // 4}"


@dataclass(frozen=True)
class Investment:
    """
    A single financing round the fund participated in.

    ``valuation`` is the round's pre-money (entry) valuation; ``post_money`` is
    the basis against which the holding is marked.
    """

    round: FundStage
    amount: float
    date: dt.date
    quarter: int
    ownership: float
    valuation: float
    post_money: float
    follow_on: bool = False


@dataclass
class PortfolioCompany:
    """
    Mutable simulation record for one company.

    Stage and status change only through a transition model; valuation only
    through the timeline's appreciation step. Exited and written-off
    companies stay in the portfolio.
    """

    id: str
    name: str
    entry_stage: FundStage
    current_stage: FundStage
    entry_quarter: int
    current_valuation: float
    investments: list[Investment] = field(default_factory=list)
    status: CompanyStatus = CompanyStatus.ACTIVE
    stage_entered_quarter: int = 0
    exit_value: Optional[float] = None
    exit_date: Optional[dt.date] = None
    exit_quarter: Optional[int] = None
    exit_multiple: Optional[float] = None
    exit_bucket: Optional[ExitBucket] = None

    @property
    def is_active(self) -> bool:
        return self.status is CompanyStatus.ACTIVE

    def has_entered(self, quarter: int) -> bool:
        return quarter >= self.entry_quarter

    @property
    def initial_investment(self) -> float:
        return self.investments[0].amount if self.investments else 0.0

    @property
    def invested_amount(self) -> float:
        return float(sum(inv.amount for inv in self.investments))

    @property
    def follow_on_invested(self) -> float:
        return float(sum(inv.amount for inv in self.investments if inv.follow_on))

    @property
    def holding_value(self) -> float:
        """Mark-to-market value of the fund's position (zero once realised)."""
        if not self.is_active:
            return 0.0
        return float(
            sum(inv.amount * self.current_valuation / inv.post_money for inv in self.investments)
        )

    def quarters_held(self, quarter: int) -> int:
        return quarter - self.entry_quarter

    def quarters_in_stage(self, quarter: int) -> int:
        return quarter - self.stage_entered_quarter

    def add_investment(self, investment: Investment) -> "PortfolioCompany":
        self.investments.append(investment)
        return self

    def snapshot(self) -> "CompanySnapshot":
        return CompanySnapshot(
            id=self.id,
            name=self.name,
            entry_stage=self.entry_stage,
            current_stage=self.current_stage,
            entry_quarter=self.entry_quarter,
            current_valuation=self.current_valuation,
            investments=tuple(self.investments),
            status=self.status,
            exit_value=self.exit_value,
            exit_date=self.exit_date,
            exit_quarter=self.exit_quarter,
            exit_multiple=self.exit_multiple,
            exit_bucket=self.exit_bucket,
        )


@dataclass(frozen=True)
class CompanySnapshot:
    """Read-only view of a company after a simulation run."""

    id: str
    name: str
    entry_stage: FundStage
    current_stage: FundStage
    entry_quarter: int
    current_valuation: float
    investments: tuple[Investment, ...]
    status: CompanyStatus
    exit_value: Optional[float] = None
    exit_date: Optional[dt.date] = None
    exit_quarter: Optional[int] = None
    exit_multiple: Optional[float] = None
    exit_bucket: Optional[ExitBucket] = None

    @property
    def is_active(self) -> bool:
        return self.status is CompanyStatus.ACTIVE

    @property
    def initial_investment(self) -> float:
        return self.investments[0].amount if self.investments else 0.0

    @property
    def invested_amount(self) -> float:
        return float(sum(inv.amount for inv in self.investments))

    @property
    def follow_on_invested(self) -> float:
        return float(sum(inv.amount for inv in self.investments if inv.follow_on))

    @property
    def holding_value(self) -> float:
        if not self.is_active:
            return 0.0
        return float(
            sum(inv.amount * self.current_valuation / inv.post_money for inv in self.investments)
        )


# ---------------------------------------------------------------------------
# Cohort generation
# ---------------------------------------------------------------------------

class CohortGenerator:
    """
    Builds the initial synthetic portfolio from the stage strategies.

    Deterministic: the same inputs always give the same companies, entry
    quarters and ids. Entry quarters are spread over the investment period by
    inverting the cumulative pacing curve, so each stage's cohort follows the
    fund's deployment shape.
    """

    def __init__(self, inputs: FundInputs) -> None:
        self.inputs = inputs

    def generate(self) -> list[PortfolioCompany]:
        inputs = self.inputs
        for strategy in inputs.stage_strategies:
            if strategy.allocation_percent > 0 and strategy.company_count == 0:
                raise ConfigurationError(
                    f"{strategy.stage.value}: target_companies={strategy.target_companies} "
                    f"rounds to zero but allocation is {strategy.allocation_percent:.1%}"
                )

        companies: list[PortfolioCompany] = []
        next_id = 1
        for strategy in inputs.stage_strategies:
            n = strategy.company_count
            check = strategy.check_size.target
            post_money = strategy.entry_valuation * (1 + strategy.target_ownership)
            for i in range(n):
                entry = inputs.pacing.entry_quarter(
                    (i + 0.5) / n, inputs.investment_period_quarters
                )
                company = PortfolioCompany(
                    id=f"company-{next_id}",
                    name=f"{strategy.stage.value} Company {i + 1}",
                    entry_stage=strategy.stage,
                    current_stage=strategy.stage,
                    entry_quarter=entry,
                    current_valuation=post_money,
                    stage_entered_quarter=entry,
                )
                company.add_investment(
                    Investment(
                        round=strategy.stage,
                        amount=check,
                        date=quarter_date(inputs.vintage_year, entry),
                        quarter=entry,
                        ownership=strategy.target_ownership,
                        valuation=strategy.entry_valuation,
                        post_money=post_money,
                    )
                )
                companies.append(company)
                next_id += 1

        logger.debug(
            "Generated cohort of %d companies, $%.0f initial checks",
            len(companies),
            sum(c.initial_investment for c in companies),
        )
        return companies


def generate_cohort(inputs: FundInputs) -> list[PortfolioCompany]:
    return CohortGenerator(inputs).generate()


# ---------------------------------------------------------------------------
# Portfolio views
# ---------------------------------------------------------------------------

def initial_invested(companies: Iterable[CompanySnapshot | PortfolioCompany]) -> float:
    return float(sum(c.initial_investment for c in companies))


def portfolio_breakdown(companies: Sequence[CompanySnapshot]) -> pd.DataFrame:
    """Company-level breakdown of a portfolio snapshot."""
    if not companies:
        return pd.DataFrame()
    return pd.DataFrame(
        [
            {
                "id": c.id,
                "company": c.name,
                "entry_stage": c.entry_stage.value,
                "current_stage": c.current_stage.value,
                "status": c.status.value,
                "entry_quarter": c.entry_quarter,
                "invested": c.invested_amount,
                "follow_on": c.follow_on_invested,
                "holding_value": c.holding_value,
                "exit_quarter": c.exit_quarter,
                "exit_multiple": c.exit_multiple,
                "exit_value": c.exit_value,
            }
            for c in companies
        ]
    )
