"""
transitions.py — Stage/exit transition model.

Depends on: stages.py, fund.py, portfolio.py

One ``TransitionModel`` capability with two implementations, picked by
``SimulationMode``:

* ``ExpectedValueTransitionModel`` splits each stage's eligible companies
  across outcomes in proportion to the graduation row (deterministic).
* ``StochasticTransitionModel`` makes one weighted draw per eligible company
  from an injected ``np.random.Generator``.
"""
from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, Sequence

import numpy as np
import numpy.typing as npt

from vc_forecast.fund import TransitionTiming
from vc_forecast.portfolio import CompanyStatus, PortfolioCompany
from vc_forecast.stages import (
    N_STAGES,
    ExitBucket,
    ExitProbabilityMatrix,
    FundStage,
    GraduationMatrix,
)

logger = logging.getLogger(__name__)

EXIT_COLUMN = GraduationMatrix.EXIT_COLUMN
FAIL_COLUMN = GraduationMatrix.FAIL_COLUMN


class SimulationMode(str, Enum):
    EXPECTED_VALUE = "expected_value"
    STOCHASTIC = "stochastic"


@dataclass(frozen=True)
class TransitionEvent:
    """Outcome applied to one company in one quarter."""

    company_id: str
    quarter: int
    from_stage: FundStage
    outcome: Literal["graduate", "exit", "fail"]
    to_stage: Optional[FundStage] = None
    exit_multiple: Optional[float] = None
    exit_bucket: Optional[ExitBucket] = None


@dataclass(frozen=True)
class _Decision:
    company: PortfolioCompany
    column: int
    exit_multiple: Optional[float] = None
    exit_bucket: Optional[ExitBucket] = None


class TransitionModel(ABC):
    """
    Advances active companies by one quarter.

    Subclasses only decide *which* outcome each eligible company gets; state
    changes are applied here so both modes mutate companies identically.
    """

    mode: SimulationMode

    def __init__(
        self,
        graduation: GraduationMatrix,
        exits: ExitProbabilityMatrix,
        timing: TransitionTiming,
    ) -> None:
        self.graduation = graduation
        self.exits = exits
        self.timing = timing

    def is_eligible(self, company: PortfolioCompany, quarter: int) -> bool:
        return (
            company.is_active
            and company.has_entered(quarter)
            and company.quarters_in_stage(quarter) >= self.timing.min_quarters_in_stage
        )

    def can_exit(self, company: PortfolioCompany, quarter: int) -> bool:
        return company.quarters_held(quarter) >= self.timing.lockup_quarters

    def step(
        self,
        companies: Sequence[PortfolioCompany],
        quarter: int,
    ) -> list[TransitionEvent]:
        """
        Apply one quarter of transitions to ``companies`` in place.

        Returns
        -------
        list of TransitionEvent, one per company whose stage or status changed.
        """
        candidates = [c for c in companies if self.is_eligible(c, quarter)]
        if not candidates:
            return []

        events = []
        for decision in self._decide(candidates, quarter):
            event = self._apply(decision, quarter)
            if event is not None:
                events.append(event)
        if events:
            logger.debug("Quarter %d: %d transitions", quarter, len(events))
        return events

    @abstractmethod
    def _decide(
        self,
        candidates: list[PortfolioCompany],
        quarter: int,
    ) -> list[_Decision]:
        ...

    def _apply(self, decision: _Decision, quarter: int) -> Optional[TransitionEvent]:
        company = decision.company
        from_stage = company.current_stage

        if decision.column == EXIT_COLUMN:
            if not self.can_exit(company, quarter):
                return None
            if decision.exit_bucket is ExitBucket.FAIL or not decision.exit_multiple:
                # an exit that returns nothing is a write-off
                company.status = CompanyStatus.WRITTEN_OFF
                company.exit_quarter = quarter
                company.exit_value = 0.0
                company.exit_multiple = 0.0
                company.exit_bucket = ExitBucket.FAIL
                return TransitionEvent(
                    company.id,
                    quarter,
                    from_stage,
                    "fail",
                    exit_multiple=0.0,
                    exit_bucket=ExitBucket.FAIL,
                )
            company.status = CompanyStatus.EXITED
            company.exit_quarter = quarter
            company.exit_multiple = decision.exit_multiple
            company.exit_bucket = decision.exit_bucket
            return TransitionEvent(
                company.id,
                quarter,
                from_stage,
                "exit",
                exit_multiple=decision.exit_multiple,
                exit_bucket=decision.exit_bucket,
            )

        if decision.column == FAIL_COLUMN:
            company.status = CompanyStatus.WRITTEN_OFF
            company.exit_quarter = quarter
            company.exit_value = 0.0
            company.exit_multiple = 0.0
            return TransitionEvent(company.id, quarter, from_stage, "fail")

        to_stage = GraduationMatrix.column_label(decision.column)
        company.current_stage = to_stage
        company.stage_entered_quarter = quarter
        return TransitionEvent(company.id, quarter, from_stage, "graduate", to_stage=to_stage)


class ExpectedValueTransitionModel(TransitionModel):
    """
    Deterministic population-fraction transitions.

    Each quarter, ``event_rate`` of each stage's eligible companies move, and
    the movers are split across outcomes in proportion to the graduation row.
    Fractional companies are carried to the next quarter (error diffusion), so
    long-run counts match the matrix without any random draw. Exits pay the
    stage's expected multiple.
    """

    mode = SimulationMode.EXPECTED_VALUE

    def __init__(
        self,
        graduation: GraduationMatrix,
        exits: ExitProbabilityMatrix,
        timing: TransitionTiming,
    ) -> None:
        super().__init__(graduation, exits, timing)
        self._event_carry = np.zeros(N_STAGES, dtype=np.float64)
        self._outcome_carry = np.zeros_like(graduation.table)

    def _decide(
        self,
        candidates: list[PortfolioCompany],
        quarter: int,
    ) -> list[_Decision]:
        decisions: list[_Decision] = []
        for stage in FundStage:
            group = [c for c in candidates if c.current_stage == stage]
            if not group:
                continue
            group.sort(key=lambda c: c.stage_entered_quarter)

            i = stage.index
            mass = self.timing.event_rate * len(group) + self._event_carry[i]
            k = min(len(group), int(math.floor(mass + 1e-9)))
            self._event_carry[i] = min(max(mass - k, 0.0), 1.0)
            if k == 0:
                continue

            counts = self._apportion(i, k, self.graduation.row(stage))
            movers = sorted(group[:k], key=lambda c: not self.can_exit(c, quarter))
            columns = (
                [EXIT_COLUMN] * int(counts[EXIT_COLUMN])
                + [c for c in range(N_STAGES) for _ in range(int(counts[c]))]
                + [FAIL_COLUMN] * int(counts[FAIL_COLUMN])
            )
            expected = self.exits.expected_multiple(stage)
            for company, column in zip(movers, columns):
                decisions.append(
                    _Decision(
                        company,
                        column,
                        exit_multiple=expected if column == EXIT_COLUMN else None,
                    )
                )
        return decisions

    def _apportion(
        self,
        stage_index: int,
        k: int,
        row: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.int64]:
        """Largest-remainder split of ``k`` movers with carried fractional parts."""
        share = k * row + self._outcome_carry[stage_index]
        counts = np.floor(np.clip(share, 0.0, None) + 1e-9)
        remainder = int(k - counts.sum())
        if remainder > 0:
            order = np.argsort(-(share - counts), kind="stable")
            counts[order[:remainder]] += 1
        elif remainder < 0:
            order = [c for c in np.argsort(share - counts, kind="stable") if counts[c] > 0]
            counts[order[:-remainder]] -= 1
        self._outcome_carry[stage_index] = share - counts
        return counts.astype(np.int64)


class StochasticTransitionModel(TransitionModel):
    """One weighted random draw per eligible company per quarter."""

    mode = SimulationMode.STOCHASTIC

    def __init__(
        self,
        graduation: GraduationMatrix,
        exits: ExitProbabilityMatrix,
        timing: TransitionTiming,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        super().__init__(graduation, exits, timing)
        self._rng: np.random.Generator = rng if rng is not None else np.random.default_rng()

    def _decide(
        self,
        candidates: list[PortfolioCompany],
        quarter: int,
    ) -> list[_Decision]:
        decisions = []
        for company in candidates:
            if self._rng.random() >= self.timing.event_rate:
                continue
            row = self.graduation.row(company.current_stage)
            column = int(self._rng.choice(len(row), p=row / row.sum()))
            if column != EXIT_COLUMN:
                decisions.append(_Decision(company, column))
                continue
            exit_row = self.exits.row(company.current_stage)
            b = int(self._rng.choice(len(exit_row), p=exit_row / exit_row.sum()))
            decisions.append(
                _Decision(
                    company,
                    column,
                    exit_multiple=float(self.exits.multiples[b]),
                    exit_bucket=list(ExitBucket)[b],
                )
            )
        return decisions


def make_transition_model(
    mode: SimulationMode,
    graduation: GraduationMatrix,
    exits: ExitProbabilityMatrix,
    timing: TransitionTiming,
    rng: Optional[np.random.Generator] = None,
) -> TransitionModel:
    mode = SimulationMode(mode)
    if mode is SimulationMode.STOCHASTIC:
        return StochasticTransitionModel(graduation, exits, timing, rng=rng)
    return ExpectedValueTransitionModel(graduation, exits, timing)
