"""
montecarlo.py — Monte Carlo orchestration over the full forecast pipeline.

Depends on: errors.py, fund.py, metrics.py, forecast.py, transitions.py

Each iteration redraws the configured FundInputs parameters, then runs the
pipeline in stochastic mode with its own random stream. Streams are spawned
from one ``SeedSequence`` so iteration i sees the same numbers whatever order
(or process) it runs in.
"""
from __future__ import annotations

import itertools
import logging
import math
import threading
import warnings
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal, Mapping, Optional, Sequence

import numpy as np
import numpy.typing as npt
import pandas as pd

from vc_forecast.errors import ConfigurationError, ConvergenceWarning
from vc_forecast.forecast import ForecastResult, run_forecast
from vc_forecast.fund import AppreciationPolicy, FundInputs, PacingPolicy, TransitionTiming
from vc_forecast.metrics import PERCENTILES, summarize_distribution
from vc_forecast.transitions import SimulationMode

logger = logging.getLogger(__name__)

Distribution = Literal["uniform", "normal", "lognormal"]
DISTRIBUTIONS = ("uniform", "normal", "lognormal")

STATISTICS = ("net_irr", "net_moic", "dpi", "tvpi")

_FLOAT_FIELDS = {
    "fund_size_usd",
    "management_fee_rate",
    "carry_rate",
    "hurdle_rate",
    "gp_commitment_rate",
    "catch_up_rate",
}
_INT_FIELDS = {"investment_period_quarters", "fund_life_quarters"}
_POLICIES = {
    "pacing": PacingPolicy,
    "appreciation": AppreciationPolicy,
    "timing": TransitionTiming,
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _is_integer_field(name: str) -> bool:
    """
    Resolve a perturbable parameter name.

    Top-level numeric FundInputs fields are addressed by name, policy fields
    with a dotted path (``"timing.event_rate"``).

    Raises
    ------
    ConfigurationError
        If the name does not address a numeric field.
    """
    if name in _FLOAT_FIELDS:
        return False
    if name in _INT_FIELDS:
        return True
    policy_name, _, attr = name.partition(".")
    policy = _POLICIES.get(policy_name)
    if policy is not None and attr:
        for f in fields(policy):
            if f.name == attr:
                return isinstance(f.default, int)
    raise ConfigurationError(f"{name!r} is not a numeric FundInputs parameter")


@dataclass(frozen=True)
class MonteCarloParameter:
    """
    One perturbed input.

    Draws are clipped to ``[min, max]``. For ``normal`` and ``lognormal``,
    ``mean`` and ``std_dev`` describe the drawn value itself (the lognormal's
    underlying normal is derived from them).
    """

    name: str
    distribution: Distribution
    min: float
    max: float
    mean: Optional[float] = None
    std_dev: Optional[float] = None

    def validate(self) -> None:
        _is_integer_field(self.name)
        if self.distribution not in DISTRIBUTIONS:
            raise ConfigurationError(
                f"{self.name}: unknown distribution {self.distribution!r}; "
                f"expected one of {DISTRIBUTIONS}"
            )
        if self.min > self.max:
            raise ConfigurationError(f"{self.name}: min ({self.min}) exceeds max ({self.max})")
        if self.distribution != "uniform":
            if self.mean is None or self.std_dev is None:
                raise ConfigurationError(
                    f"{self.name}: {self.distribution} distribution requires mean and std_dev"
                )
            if self.std_dev < 0:
                raise ConfigurationError(f"{self.name}: std_dev must be non-negative")
        if self.distribution == "lognormal" and (self.mean <= 0 or self.min < 0):
            raise ConfigurationError(
                f"{self.name}: lognormal requires a positive mean and non-negative bounds"
            )

    def draw(self, rng: np.random.Generator) -> float:
        if self.distribution == "uniform":
            value = rng.uniform(self.min, self.max)
        elif self.distribution == "normal":
            value = rng.normal(self.mean, self.std_dev)
        else:
            sigma2 = math.log1p((self.std_dev / self.mean) ** 2)
            mu = math.log(self.mean) - 0.5 * sigma2
            value = rng.lognormal(mu, math.sqrt(sigma2))
        return float(np.clip(value, self.min, self.max))


@dataclass(frozen=True)
class MonteCarloConfig:
    """
    Parameters
    ----------
    iterations:
        Number of pipeline runs.
    parameters:
        Perturbed inputs; each name may appear once.
    seed:
        Root seed. ``None`` draws fresh entropy (recorded on the result).
    batch_size:
        Iterations per convergence batch.
    tolerance:
        Largest change in the running mean of net IRR between the last two
        batches that still counts as converged.
    max_workers:
        Worker processes; values above 1 run on a ProcessPoolExecutor.
    """

    iterations: int = 1_000
    parameters: tuple[MonteCarloParameter, ...] = ()
    seed: Optional[int] = None
    batch_size: int = 100
    tolerance: float = 0.001
    max_workers: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "parameters",
            tuple(
                p if isinstance(p, MonteCarloParameter) else MonteCarloParameter(**p)
                for p in self.parameters
            ),
        )

    def validate(self) -> "MonteCarloConfig":
        if self.iterations < 1:
            raise ConfigurationError("iterations must be at least 1")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.tolerance <= 0:
            raise ConfigurationError("tolerance must be positive")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        names = [p.name for p in self.parameters]
        if len(set(names)) != len(names):
            raise ConfigurationError("each parameter may be perturbed only once")
        for parameter in self.parameters:
            parameter.validate()
        return self


def perturb_inputs(
    inputs: FundInputs,
    parameters: Sequence[MonteCarloParameter],
    rng: np.random.Generator,
) -> FundInputs:
    """Private copy of ``inputs`` with every parameter redrawn, in declaration order."""
    return _with_values(inputs, {p.name: p.draw(rng) for p in parameters})


def _with_values(inputs: FundInputs, values: Mapping[str, float]) -> FundInputs:
    top: dict[str, Any] = {}
    nested: dict[str, dict[str, Any]] = {}
    for name, value in values.items():
        if _is_integer_field(name):
            value = int(round(value))
        policy_name, _, attr = name.partition(".")
        if attr:
            nested.setdefault(policy_name, {})[attr] = value
        else:
            top[name] = value
    for policy_name, changes in nested.items():
        top[policy_name] = replace(getattr(inputs, policy_name), **changes)
    return replace(inputs, **top) if top else inputs


def check_parameter_bounds(
    inputs: FundInputs,
    parameters: Sequence[MonteCarloParameter],
) -> None:
    """
    Validate ``inputs`` at every corner of the parameter bounds.

    Every FundInputs rule is an interval or a linear inequality between fields,
    so inputs valid at all corners are valid for any draw inside the bounds.

    Raises
    ------
    ConfigurationError
        Naming the first corner that produces invalid inputs.
    """
    names = [p.name for p in parameters]
    extremes = [sorted({p.min, p.max}) for p in parameters]
    for corner in itertools.product(*extremes):
        values = dict(zip(names, corner))
        try:
            _with_values(inputs, values).validate()
        except ConfigurationError as exc:
            raise ConfigurationError(
                f"parameter bounds admit invalid inputs at {values}: {exc}"
            ) from exc


# ---------------------------------------------------------------------------
# Worker (module-level for ProcessPoolExecutor compatibility)
# ---------------------------------------------------------------------------

def _run_iteration(
    args: tuple[FundInputs, tuple[MonteCarloParameter, ...], np.random.SeedSequence, int],
) -> tuple[int, ForecastResult]:
    inputs, parameters, seed_seq, index = args
    rng = np.random.default_rng(seed_seq)
    perturbed = perturb_inputs(inputs, parameters, rng)
    return index, run_forecast(perturbed, SimulationMode.STOCHASTIC, rng)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatisticalSummary:
    mean: float
    median: float
    std_dev: float
    min: float
    max: float
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "StatisticalSummary":
        return cls(**summarize_distribution(values))


def _metric(result: ForecastResult, name: str) -> float:
    if name == "net_irr":
        return result.irr.net
    if name == "net_moic":
        return result.moic.net
    return float(getattr(result, name))


@dataclass(frozen=True)
class MonteCarloResult:
    """
    Aggregate of a Monte Carlo run.

    ``results`` are in iteration order. ``percentiles`` maps ``"p10"``..``"p90"``
    to the iteration whose net IRR sits at that rank.
    """

    iterations: int
    results: tuple[ForecastResult, ...]
    statistics: dict[str, StatisticalSummary]
    percentiles: dict[str, ForecastResult]
    convergence_achieved: bool
    cancelled: bool = False
    seed: Optional[int] = None
    running_means: tuple[float, ...] = field(default_factory=tuple)

    def to_frame(self) -> pd.DataFrame:
        """One row per iteration with the headline metrics."""
        return pd.DataFrame(
            [{"iteration": i, **r.summary()} for i, r in enumerate(self.results)]
        )

    def summary_frame(self) -> pd.DataFrame:
        """Rows are statistics, columns are summary fields."""
        rows = []
        for name, summary in self.statistics.items():
            rows.append({"metric": name, **{f.name: getattr(summary, f.name) for f in fields(summary)}})
        return pd.DataFrame(rows)

    def values(self, metric: str) -> npt.NDArray[np.float64]:
        return np.array([_metric(r, metric) for r in self.results], dtype=np.float64)


def _representatives(results: Sequence[ForecastResult]) -> dict[str, ForecastResult]:
    if not results:
        return {}
    # nan IRRs (no sign change) rank lowest
    keys = np.array([_metric(r, "net_irr") for r in results], dtype=np.float64)
    keys = np.where(np.isfinite(keys), keys, -np.inf)
    order = np.argsort(keys, kind="stable")
    last = len(results) - 1
    return {f"p{p}": results[int(order[int(round(p / 100 * last))])] for p in PERCENTILES}


def batch_running_means(values: npt.NDArray[np.float64], batch_size: int) -> tuple[float, ...]:
    """Running mean of the finite values after each complete or trailing batch."""
    means = []
    for end in range(batch_size, len(values) + batch_size, batch_size):
        window = values[: min(end, len(values))]
        finite = window[np.isfinite(window)]
        means.append(float(finite.mean()) if finite.size else float("nan"))
    return tuple(means)


def _converged(means: Sequence[float], tolerance: float) -> bool:
    if len(means) < 2:
        return False
    a, b = means[-2], means[-1]
    return bool(np.isfinite(a) and np.isfinite(b) and abs(b - a) < tolerance)


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------

class MonteCarloSimulator:
    """
    Runs the pipeline once per iteration and aggregates the outcomes.

    Usage:
        simulator = MonteCarloSimulator(inputs, MonteCarloConfig(iterations=500, seed=7))
        result = simulator.run()
        result.statistics["net_irr"].p50

    ``cancel()`` may be called from another thread; the run stops once the
    iterations already in flight have finished and returns what it has.
    """

    def __init__(self, inputs: FundInputs, config: Optional[MonteCarloConfig] = None) -> None:
        self.inputs = inputs
        self.config = config or MonteCarloConfig()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> MonteCarloResult:
        config = self.config.validate()
        self.inputs.validate()
        check_parameter_bounds(self.inputs, config.parameters)

        root = np.random.SeedSequence(config.seed)
        children = root.spawn(config.iterations)
        tasks = [
            (self.inputs, config.parameters, child, i) for i, child in enumerate(children)
        ]
        logger.info(
            "Monte Carlo: %d iterations, %d parameters, %d worker(s), entropy=%s",
            config.iterations,
            len(config.parameters),
            config.max_workers,
            root.entropy,
        )

        if config.max_workers > 1:
            completed = self._run_parallel(tasks, config.max_workers)
        else:
            completed = self._run_sequential(tasks)

        results = tuple(completed[i] for i in sorted(completed))
        return self._aggregate(results, root.entropy)

    def _run_sequential(self, tasks: list) -> dict[int, ForecastResult]:
        completed: dict[int, ForecastResult] = {}
        for task in tasks:
            if self._cancel.is_set():
                break
            index, result = _run_iteration(task)
            completed[index] = result
        return completed

    def _run_parallel(self, tasks: list, max_workers: int) -> dict[int, ForecastResult]:
        completed: dict[int, ForecastResult] = {}
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            pending: set[Future] = {executor.submit(_run_iteration, task) for task in tasks}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    if future.cancelled():
                        continue
                    if future.exception() is not None:
                        # pending iterations are dropped once one fails
                        for other in pending:
                            other.cancel()
                    index, result = future.result()
                    completed[index] = result
                if self._cancel.is_set():
                    for future in pending:
                        future.cancel()
                    # collect whatever was already running
                    done, _ = wait(pending)
                    for future in done:
                        if not future.cancelled():
                            index, result = future.result()
                            completed[index] = result
                    pending = set()
        return completed

    def _aggregate(self, results: tuple[ForecastResult, ...], entropy: int) -> MonteCarloResult:
        config = self.config
        cancelled = self._cancel.is_set()
        statistics = {
            name: StatisticalSummary.from_values([_metric(r, name) for r in results])
            for name in STATISTICS
        }
        net_irrs = np.array([_metric(r, "net_irr") for r in results], dtype=np.float64)
        means = batch_running_means(net_irrs, config.batch_size)
        converged = _converged(means, config.tolerance)

        if not converged:
            message = (
                f"Net IRR running mean did not stabilise within {config.tolerance} "
                f"after {len(results)} iterations"
            )
            if cancelled:
                logger.info("%s (run cancelled)", message)
            else:
                warnings.warn(message, ConvergenceWarning, stacklevel=3)
        logger.info(
            "Monte Carlo complete: %d/%d iterations, converged=%s, cancelled=%s",
            len(results),
            config.iterations,
            converged,
            cancelled,
        )
        return MonteCarloResult(
            iterations=len(results),
            results=results,
            statistics=statistics,
            percentiles=_representatives(results),
            convergence_achieved=converged,
            cancelled=cancelled,
            seed=config.seed if config.seed is not None else entropy,
            running_means=means,
        )


def run_monte_carlo(inputs: FundInputs, config: MonteCarloConfig) -> MonteCarloResult:
    """
    Run ``config.iterations`` stochastic forecasts over perturbed inputs.

    Raises
    ------
    ConfigurationError
        On invalid bounds (min > max), a normal or lognormal parameter missing
        mean or std_dev, an unknown parameter name, or bounds under which the
        perturbed inputs would fail validation. All checks run before the
        first iteration.
    """
    return MonteCarloSimulator(inputs, config).run()
