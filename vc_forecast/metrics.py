"""
metrics.py — Pure mathematical functions for fund forecasting.

No imports from within this library. All functions are stateless and
have no side effects. Safe to import from any module.
"""
from __future__ import annotations

from typing import Literal, Optional, Sequence

import numpy as np
import numpy.typing as npt
from scipy import optimize

PERCENTILES: tuple[int, ...] = (10, 25, 50, 75, 90)

FeeBasisName = Literal["committed_then_invested", "committed", "investment_period_only"]


# ---------------------------------------------------------------------------
# IRR
# ---------------------------------------------------------------------------

def calc_irr(
    cashflows: npt.NDArray[np.float64],
    periods: Optional[npt.NDArray[np.float64]] = None,
    guess: float = 0.10,
    tol: float = 1e-8,
) -> float:
    """
    Compute Internal Rate of Return using Newton-Raphson with Brent fallback.

    Parameters
    ----------
    cashflows:
        Array of cash flows. Negative = outflows, positive = inflows.
    periods:
        Time of each cash flow in years. If None, assumes [0, 1, 2, ...].
    guess:
        Initial guess for Newton-Raphson.
    tol:
        Convergence tolerance.

    Returns
    -------
    float
        Annual IRR as a decimal (e.g. 0.25 = 25%). Returns nan if no solution found.
    """
    cashflows = np.asarray(cashflows, dtype=np.float64)
    if periods is None:
        periods = np.arange(len(cashflows), dtype=np.float64)
    else:
        periods = np.asarray(periods, dtype=np.float64)

    if len(cashflows) != len(periods):
        raise ValueError("cashflows and periods must have the same length")

    # Need at least one sign change
    if not (np.any(cashflows > 0) and np.any(cashflows < 0)):
        return float("nan")

    def npv_func(r: float) -> float:
        return calc_npv(cashflows, r, periods)

    def dnpv_func(r: float) -> float:
        return float(np.sum(-periods * cashflows / (1 + r) ** (periods + 1)))

    try:
        result = optimize.newton(
            npv_func, x0=guess, fprime=dnpv_func, tol=tol, maxiter=500
        )
        if -1 < result < 100 and abs(npv_func(result)) < 1e-6 * np.abs(cashflows).sum():
            return float(result)
    except (RuntimeError, ValueError, OverflowError, ZeroDivisionError):
        pass

    # Brent fallback over a bracketing search
    lo, hi = -0.999, 100.0
    try:
        if npv_func(lo) * npv_func(hi) < 0:
            return float(optimize.brentq(npv_func, lo, hi, xtol=tol, maxiter=1000))
    except (ValueError, OverflowError):
        pass

    return float("nan")


def quarterly_irr(cashflows: Sequence[float]) -> float:
    """Annual IRR of a quarterly cash-flow series (quarter q sits at q / 4 years)."""
    flows = np.asarray(cashflows, dtype=np.float64)
    return calc_irr(flows, periods=np.arange(len(flows), dtype=np.float64) / 4.0)


def calc_npv(
    cashflows: npt.NDArray[np.float64],
    rate: float,
    periods: Optional[npt.NDArray[np.float64]] = None,
) -> float:
    """Net Present Value at given discount rate."""
    cashflows = np.asarray(cashflows, dtype=np.float64)
    if periods is None:
        periods = np.arange(len(cashflows), dtype=np.float64)
    else:
        periods = np.asarray(periods, dtype=np.float64)
    return float(np.sum(cashflows / (1 + rate) ** periods))


# ---------------------------------------------------------------------------
# Return multiples
#
# Before any capital is paid in every multiple is 0.0 rather than nan so that
# quarter-by-quarter series stay plottable from the first quarter.
# ---------------------------------------------------------------------------

def calc_tvpi(paid_in: float, nav: float, distributions: float) -> float:
    """Total Value to Paid-In: (NAV + cumulative distributions) / paid-in."""
    if paid_in <= 0:
        return 0.0
    return (nav + distributions) / paid_in


def calc_dpi(paid_in: float, distributions: float) -> float:
    """Distributions to Paid-In capital (DPI)."""
    if paid_in <= 0:
        return 0.0
    return distributions / paid_in


def calc_rvpi(paid_in: float, nav: float) -> float:
    """Residual Value to Paid-In capital (RVPI)."""
    if paid_in <= 0:
        return 0.0
    return nav / paid_in


def calc_moic(invested: float, total_value: float) -> float:
    """Multiple on Invested Capital."""
    if invested <= 0:
        return 0.0
    return total_value / invested


# ---------------------------------------------------------------------------
# Fees and capital age
# ---------------------------------------------------------------------------

def calc_management_fee(
    committed: float,
    net_invested: float,
    fee_rate: float,
    quarter: int,
    investment_period_quarters: int,
    fee_basis: FeeBasisName = "committed_then_invested",
) -> float:
    """
    Management fee charged in a single quarter.

    The quarterly rate is ``fee_rate / 4``. During the investment period the
    basis is committed capital. Afterwards it depends on ``fee_basis``:

    * ``committed_then_invested`` — capital still invested in active companies
    * ``committed`` — committed capital for the whole fund life
    * ``investment_period_only`` — no fee
    """
    quarterly_rate = fee_rate / 4.0
    if quarter < investment_period_quarters or fee_basis == "committed":
        return committed * quarterly_rate
    if fee_basis == "investment_period_only":
        return 0.0
    return max(net_invested, 0.0) * quarterly_rate


def calc_capital_weighted_years(
    calls: npt.NDArray[np.float64],
    as_of_quarter: int,
) -> float:
    """
    Average age in years of called capital at the end of ``as_of_quarter``.

    ``calls[q]`` is the capital called in quarter q; capital called in quarter
    q is one quarter old at the end of that quarter.
    """
    calls = np.asarray(calls[: as_of_quarter + 1], dtype=np.float64)
    total = float(calls.sum())
    if total <= 0:
        return 0.0
    ages = (as_of_quarter + 1 - np.arange(len(calls), dtype=np.float64)) / 4.0
    return float(np.sum(calls * ages) / total)


# ---------------------------------------------------------------------------
# Distribution statistics
# ---------------------------------------------------------------------------

def summarize_distribution(values: Sequence[float]) -> dict[str, float]:
    """
    Summary statistics of a sample, ignoring nan entries.

    Returns
    -------
    dict with keys mean, median, std_dev, min, max, p10, p25, p50, p75, p90.
    All values are nan when the sample has no finite entries.
    """
    arr = np.asarray(values, dtype=np.float64)
    arr = arr[np.isfinite(arr)]
    keys = ["mean", "median", "std_dev", "min", "max"] + [f"p{p}" for p in PERCENTILES]
    if arr.size == 0:
        return {key: float("nan") for key in keys}

    percentiles = np.percentile(arr, PERCENTILES)
    summary = {
        "mean": float(arr.mean()),
        "median": float(np.median(arr)),
        "std_dev": float(arr.std(ddof=1)) if arr.size > 1 else 0.0,
        "min": float(arr.min()),
        "max": float(arr.max()),
    }
    for p, value in zip(PERCENTILES, percentiles):
        summary[f"p{p}"] = float(value)
    return summary
