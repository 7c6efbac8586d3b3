"""
fund.py — Fund configuration: inputs, stage strategies, and simulation policies.

Depends on: errors.py, stages.py
"""
from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional, Union

import numpy as np
import numpy.typing as npt

from vc_forecast.errors import ConfigurationError, InvalidProbabilityMatrix
from vc_forecast.stages import (
    PROBABILITY_TOLERANCE,
    ExitBucket,
    ExitProbabilityMatrix,
    FundStage,
    GraduationMatrix,
    default_exit_matrix,
    default_graduation_matrix,
)

logger = logging.getLogger(__name__)


class FeeBasis(str, Enum):
    """Capital base management fees are charged on after the investment period."""

    COMMITTED_THEN_INVESTED = "committed_then_invested"
    COMMITTED = "committed"
    INVESTMENT_PERIOD_ONLY = "investment_period_only"


class WaterfallStyle(str, Enum):
    AMERICAN = "american"
    EUROPEAN = "european"


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PacingPolicy:
    """
    Shape of the deployment curve over the investment period.

    Weight for quarter q of n is
    ``(1 + front_load * (1 - 2q / (n - 1))) * (1 + amplitude * sin(frequency * q))``,
    normalised to sum to one: linearly front-loaded with a sinusoidal wobble
    to model lumpy capital calls.
    """

    front_load: float = 0.5
    amplitude: float = 0.2
    frequency: float = 0.5

    def weights(self, n_quarters: int) -> npt.NDArray[np.float64]:
        if n_quarters <= 0:
            return np.zeros(0, dtype=np.float64)
        if n_quarters == 1:
            return np.ones(1, dtype=np.float64)
        q = np.arange(n_quarters, dtype=np.float64)
        slope = 1.0 - 2.0 * q / (n_quarters - 1)
        raw = (1.0 + self.front_load * slope) * (1.0 + self.amplitude * np.sin(self.frequency * q))
        raw = np.clip(raw, 1e-9, None)
        return raw / raw.sum()

    def entry_quarter(self, position: float, n_quarters: int) -> int:
        """Quarter at which cumulative pacing weight first reaches ``position`` in [0, 1]."""
        cumulative = np.cumsum(self.weights(n_quarters))
        q = int(np.searchsorted(cumulative, position, side="left"))
        return min(max(q, 0), n_quarters - 1)


@dataclass(frozen=True)
class AppreciationPolicy:
    """Mark-up of active holdings: steady annual growth plus a step-up on each new round."""

    annual_rate: float = 0.15
    graduation_step_up: float = 1.5

    @property
    def quarterly_factor(self) -> float:
        return (1.0 + self.annual_rate) ** 0.25


@dataclass(frozen=True)
class TransitionTiming:
    """
    When companies are allowed to move.

    A company becomes eligible for a financing or exit event after
    ``min_quarters_in_stage`` quarters in its current stage; each eligible
    quarter an event happens with probability ``event_rate``. No exit may
    happen before ``lockup_quarters`` quarters after the company's entry.
    """

    event_rate: float = 0.15
    min_quarters_in_stage: int = 4
    lockup_quarters: int = 12


# ---------------------------------------------------------------------------
# Stage strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckSize:
    min: float
    target: float
    max: float

    @classmethod
    def coerce(cls, value: Union["CheckSize", Mapping[str, float], float]) -> "CheckSize":
        if isinstance(value, CheckSize):
            return value
        if isinstance(value, Mapping):
            target = float(value["target"])
            return cls(float(value.get("min", target)), target, float(value.get("max", target)))
        amount = float(value)
        return cls(amount, amount, amount)


@dataclass(frozen=True)
class StageStrategy:
    """One funding stage's investment policy."""

    stage: FundStage
    allocation_percent: float
    check_size: CheckSize
    target_ownership: float
    target_companies: float
    follow_on_percent: float = 0.5
    reserve_ratio: float = 0.5
    entry_valuation: float = 10_000_000
    exit_probabilities: Optional[Mapping[str, float]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage", FundStage.parse(self.stage))
        object.__setattr__(self, "check_size", CheckSize.coerce(self.check_size))
        if self.exit_probabilities is not None:
            object.__setattr__(
                self,
                "exit_probabilities",
                {ExitBucket.parse(k).value: float(v) for k, v in self.exit_probabilities.items()},
            )

    @property
    def company_count(self) -> int:
        """``target_companies`` rounded half-up."""
        return int(math.floor(self.target_companies + 0.5))

    def validate(self) -> None:
        name = self.stage.value
        if not 0.0 <= self.allocation_percent <= 1.0:
            raise ConfigurationError(f"{name}: allocation_percent must be in [0, 1]")
        cs = self.check_size
        if not 0 < cs.min <= cs.target <= cs.max:
            raise ConfigurationError(
                f"{name}: check size must satisfy 0 < min <= target <= max, got {cs}"
            )
        if self.target_companies < 0:
            raise ConfigurationError(f"{name}: target_companies must be non-negative")
        if not 0.0 < self.target_ownership <= 1.0:
            raise ConfigurationError(f"{name}: target_ownership must be in (0, 1]")
        if self.follow_on_percent < 0:
            raise ConfigurationError(f"{name}: follow_on_percent must be non-negative")
        if not 0.0 <= self.reserve_ratio <= 1.0:
            raise ConfigurationError(f"{name}: reserve_ratio must be in [0, 1]")
        if self.entry_valuation <= 0:
            raise ConfigurationError(f"{name}: entry_valuation must be positive")
        if self.exit_probabilities is not None:
            total = float(sum(self.exit_probabilities.values()))
            if any(p < 0 for p in self.exit_probabilities.values()):
                raise InvalidProbabilityMatrix(
                    self.stage, total, "exit", detail="negative probability"
                )
            if abs(total - 1.0) > PROBABILITY_TOLERANCE:
                raise InvalidProbabilityMatrix(self.stage, total, "exit")


# ---------------------------------------------------------------------------
# Fund inputs
# ---------------------------------------------------------------------------

_RATE_FIELDS = (
    "management_fee_rate",
    "carry_rate",
    "hurdle_rate",
    "gp_commitment_rate",
    "catch_up_rate",
)


@dataclass(frozen=True)
class FundInputs:
    """
    Immutable configuration of a fund forecast.

    ``graduation_matrix`` and ``exit_probability_matrix`` accept either matrix
    objects or plain ``{stage: {outcome: probability}}`` mappings; mappings are
    converted (and validated) on construction.
    """

    fund_size_usd: float
    vintage_year: int
    stage_strategies: tuple[StageStrategy, ...]
    management_fee_rate: float = 0.02
    carry_rate: float = 0.20
    hurdle_rate: float = 0.08
    gp_commitment_rate: float = 0.02
    catch_up_rate: float = 1.0
    investment_period_quarters: int = 20
    fund_life_quarters: int = 40
    graduation_matrix: GraduationMatrix = field(default_factory=default_graduation_matrix)
    exit_probability_matrix: ExitProbabilityMatrix = field(default_factory=default_exit_matrix)
    fund_name: str = "Fund I"
    fee_basis: FeeBasis = FeeBasis.COMMITTED_THEN_INVESTED
    waterfall_style: WaterfallStyle = WaterfallStyle.AMERICAN
    pacing: PacingPolicy = field(default_factory=PacingPolicy)
    appreciation: AppreciationPolicy = field(default_factory=AppreciationPolicy)
    timing: TransitionTiming = field(default_factory=TransitionTiming)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage_strategies", tuple(self.stage_strategies))
        if not isinstance(self.graduation_matrix, GraduationMatrix):
            object.__setattr__(self, "graduation_matrix", GraduationMatrix(self.graduation_matrix))
        if not isinstance(self.exit_probability_matrix, ExitProbabilityMatrix):
            object.__setattr__(
                self, "exit_probability_matrix", ExitProbabilityMatrix(self.exit_probability_matrix)
            )
        object.__setattr__(self, "fee_basis", FeeBasis(self.fee_basis))
        object.__setattr__(self, "waterfall_style", WaterfallStyle(self.waterfall_style))

    @property
    def fund_life_years(self) -> float:
        return self.fund_life_quarters / 4.0

    @property
    def total_allocation(self) -> float:
        return float(sum(s.allocation_percent for s in self.stage_strategies))

    @property
    def total_reserve_ratio(self) -> float:
        """Allocation-weighted reserve ratio across stages."""
        return float(sum(s.allocation_percent * s.reserve_ratio for s in self.stage_strategies))

    def strategy_for(self, stage: FundStage) -> Optional[StageStrategy]:
        for strategy in self.stage_strategies:
            if strategy.stage == stage:
                return strategy
        return None

    def effective_exit_matrix(self) -> ExitProbabilityMatrix:
        """Fund-level exit matrix with per-strategy exit rows applied."""
        overrides = {
            s.stage: s.exit_probabilities
            for s in self.stage_strategies
            if s.exit_probabilities is not None
        }
        if not overrides:
            return self.exit_probability_matrix
        return self.exit_probability_matrix.with_rows(overrides)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> "FundInputs":
        """
        Check structural invariants; raise ConfigurationError on the first violation.

        Returns
        -------
        self (for chaining)
        """
        if self.fund_size_usd <= 0:
            raise ConfigurationError("fund_size_usd must be positive")
        for name in _RATE_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
        if self.investment_period_quarters < 1 or self.fund_life_quarters < 1:
            raise ConfigurationError("investment period and fund life must be at least one quarter")
        if self.investment_period_quarters > self.fund_life_quarters:
            raise ConfigurationError(
                f"investment_period_quarters ({self.investment_period_quarters}) cannot "
                f"exceed fund_life_quarters ({self.fund_life_quarters})"
            )
        if not self.stage_strategies:
            raise ConfigurationError("at least one stage strategy is required")

        stages = [s.stage for s in self.stage_strategies]
        if len(set(stages)) != len(stages):
            raise ConfigurationError("each stage may appear in only one stage strategy")

        total = self.total_allocation
        if abs(total - 1.0) > PROBABILITY_TOLERANCE:
            raise ConfigurationError(f"stage allocations must sum to 1.0, got {total:.6f}")
        for strategy in self.stage_strategies:
            strategy.validate()

        timing = self.timing
        if not 0.0 <= timing.event_rate <= 1.0:
            raise ConfigurationError("timing.event_rate must be in [0, 1]")
        if timing.min_quarters_in_stage < 0 or timing.lockup_quarters < 0:
            raise ConfigurationError("timing quarters must be non-negative")
        if self.appreciation.graduation_step_up <= 0 or self.appreciation.annual_rate <= -1:
            raise ConfigurationError("appreciation policy must keep valuations positive")
        if not 0.0 <= self.pacing.front_load < 1.0 or not 0.0 <= self.pacing.amplitude < 1.0:
            raise ConfigurationError("pacing front_load and amplitude must be in [0, 1)")

        logger.debug(
            "Validated inputs for %s: $%.0f, %d strategies",
            self.fund_name,
            self.fund_size_usd,
            len(self.stage_strategies),
        )
        return self

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "stage_strategies":
                value = [_strategy_to_dict(s) for s in value]
            elif f.name == "exit_probability_matrix":
                value = {"rows": value.to_dict(), "multiples": value.multiples_dict()}
            elif isinstance(value, GraduationMatrix):
                value = value.to_dict()
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (PacingPolicy, AppreciationPolicy, TransitionTiming)):
                value = {pf.name: getattr(value, pf.name) for pf in fields(value)}
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FundInputs":
        kwargs = dict(data)
        kwargs["stage_strategies"] = tuple(
            s if isinstance(s, StageStrategy) else StageStrategy(**_strategy_kwargs(s))
            for s in kwargs["stage_strategies"]
        )
        exit_data = kwargs.get("exit_probability_matrix")
        if isinstance(exit_data, Mapping) and "rows" in exit_data:
            kwargs["exit_probability_matrix"] = ExitProbabilityMatrix(
                exit_data["rows"], multiples=exit_data.get("multiples")
            )
        for name, policy in (
            ("pacing", PacingPolicy),
            ("appreciation", AppreciationPolicy),
            ("timing", TransitionTiming),
        ):
            if isinstance(kwargs.get(name), Mapping):
                kwargs[name] = policy(**kwargs[name])
        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> "FundInputs":
        return replace(self, **changes)


def _strategy_to_dict(strategy: StageStrategy) -> dict[str, Any]:
    return {
        "stage": strategy.stage.value,
        "allocation_percent": strategy.allocation_percent,
        "check_size": {
            "min": strategy.check_size.min,
            "target": strategy.check_size.target,
            "max": strategy.check_size.max,
        },
        "target_ownership": strategy.target_ownership,
        "target_companies": strategy.target_companies,
        "follow_on_percent": strategy.follow_on_percent,
        "reserve_ratio": strategy.reserve_ratio,
        "entry_valuation": strategy.entry_valuation,
        "exit_probabilities": (
            dict(strategy.exit_probabilities) if strategy.exit_probabilities is not None else None
        ),
    }


def _strategy_kwargs(data: Mapping[str, Any]) -> dict[str, Any]:
    kwargs = dict(data)
    kwargs["check_size"] = CheckSize.coerce(kwargs["check_size"])
    return kwargs


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def default_fund_inputs(vintage_year: Optional[int] = None) -> FundInputs:
    """A $50M multi-stage fund: 10-year life, 5-year investment period, 2 and 20."""
    strategies = (
        StageStrategy(
            stage=FundStage.PRE_SEED,
            allocation_percent=0.15,
            check_size=CheckSize(250_000, 500_000, 750_000),
            target_ownership=0.08,
            target_companies=9,
            follow_on_percent=0.5,
            reserve_ratio=0.4,
            entry_valuation=5_000_000,
        ),
        StageStrategy(
            stage=FundStage.SEED,
            allocation_percent=0.35,
            check_size=CheckSize(1_000_000, 1_500_000, 2_000_000),
            target_ownership=0.12,
            target_companies=6,
            follow_on_percent=0.6,
            reserve_ratio=0.5,
            entry_valuation=15_000_000,
        ),
        StageStrategy(
            stage=FundStage.SERIES_A,
            allocation_percent=0.35,
            check_size=CheckSize(2_000_000, 3_000_000, 4_000_000),
            target_ownership=0.10,
            target_companies=3,
            follow_on_percent=0.7,
            reserve_ratio=0.5,
            entry_valuation=40_000_000,
        ),
        StageStrategy(
            stage=FundStage.SERIES_B,
            allocation_percent=0.15,
            check_size=CheckSize(2_000_000, 2_500_000, 3_000_000),
            target_ownership=0.08,
            target_companies=2,
            follow_on_percent=0.8,
            reserve_ratio=0.3,
            entry_valuation=100_000_000,
        ),
    )
    return FundInputs(
        fund_size_usd=50_000_000,
        vintage_year=vintage_year if vintage_year is not None else dt.date.today().year,
        stage_strategies=strategies,
        management_fee_rate=0.02,
        carry_rate=0.20,
        hurdle_rate=0.08,
        gp_commitment_rate=0.02,
        investment_period_quarters=20,
        fund_life_quarters=40,
        fund_name="Default Venture Fund I",
    )
