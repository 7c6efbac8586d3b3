"""
waterfall.py — GP/LP distribution waterfall.

Depends on: fund.py

The waterfall is evaluated once against aggregate totals (tier by tier, not
cash flow by cash flow):

1. Return of capital to LPs
2. Preferred return on LP capital
3. GP catch-up
4. Residual split

A tier that cannot be fully funded pays out what is left and ends the
waterfall. ``WaterfallStyle.EUROPEAN`` uses the whole commitment as the capital
tier, so no carry accrues until the entire fund plus preferred return has
been returned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import pandas as pd

from vc_forecast.fund import FundInputs, WaterfallStyle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaterfallTerms:
    carry_rate: float = 0.20
    hurdle_rate: float = 0.08
    gp_commitment_rate: float = 0.02
    catch_up_rate: float = 1.0
    committed_capital: float = 0.0
    style: WaterfallStyle = WaterfallStyle.AMERICAN

    @classmethod
    def from_inputs(cls, inputs: FundInputs) -> "WaterfallTerms":
        return cls(
            carry_rate=inputs.carry_rate,
            hurdle_rate=inputs.hurdle_rate,
            gp_commitment_rate=inputs.gp_commitment_rate,
            catch_up_rate=inputs.catch_up_rate,
            committed_capital=inputs.fund_size_usd,
            style=inputs.waterfall_style,
        )


@dataclass(frozen=True)
class WaterfallSummary:
    """Split of total distributions between LPs and the GP."""

    total_distributions: float
    lp_distributions: float
    gp_distributions: float
    return_of_capital: float
    preferred_return: float
    catch_up_tier: float  # total paid through the catch-up tier, LP and GP
    catch_up_paid: float  # GP portion of the catch-up tier
    carry_paid: float
    lp_share: float
    gp_share: float
    effective_carry: float
    style: WaterfallStyle = WaterfallStyle.AMERICAN

    @property
    def residual(self) -> float:
        return self.total_distributions - (
            self.return_of_capital + self.preferred_return + self.catch_up_tier
        )

    def to_frame(self) -> pd.DataFrame:
        """Tier-by-tier table with the LP and GP amount of each tier."""
        gp_residual = self.carry_paid - self.catch_up_paid
        return pd.DataFrame(
            [
                {"tier": "return_of_capital", "lp": self.return_of_capital, "gp": 0.0},
                {"tier": "preferred_return", "lp": self.preferred_return, "gp": 0.0},
                {
                    "tier": "catch_up",
                    "lp": self.catch_up_tier - self.catch_up_paid,
                    "gp": self.catch_up_paid,
                },
                {"tier": "residual_split", "lp": self.residual - gp_residual, "gp": gp_residual},
            ]
        )


class WaterfallDistributor:
    """
    Splits aggregate distributions between LPs and the GP.

    Usage:
        distributor = WaterfallDistributor.from_inputs(inputs)
        summary = distributor.distribute(
            total_distributions=120e6, capital_called=50e6, effective_years=6.5
        )
    """

    def __init__(self, terms: WaterfallTerms) -> None:
        self.terms = terms

    @classmethod
    def from_inputs(cls, inputs: FundInputs) -> "WaterfallDistributor":
        return cls(WaterfallTerms.from_inputs(inputs))

    def capital_base(self, capital_called: float) -> float:
        """Capital that must be returned before any profit tier, LP share only."""
        t = self.terms
        base = t.committed_capital if t.style is WaterfallStyle.EUROPEAN else capital_called
        return max(base, 0.0) * (1.0 - t.gp_commitment_rate)

    def distribute(
        self,
        total_distributions: float,
        capital_called: float,
        effective_years: float,
    ) -> WaterfallSummary:
        """
        Run the four tiers against ``total_distributions``.

        Parameters
        ----------
        total_distributions:
            Aggregate proceeds to split (non-negative).
        capital_called:
            Total paid-in capital (investments plus fees).
        effective_years:
            Years over which the preferred return accrues.

        Returns
        -------
        WaterfallSummary with ``lp_distributions + gp_distributions == total_distributions``.
        """
        if total_distributions < 0:
            raise ValueError("total_distributions must be non-negative")
        t = self.terms
        remaining = float(total_distributions)
        lp_capital = self.capital_base(capital_called)

        # Tier 1: return of capital
        return_of_capital = min(remaining, lp_capital)
        remaining -= return_of_capital

        # Tier 2: preferred return
        preferred_return = 0.0
        if remaining > 0:
            preferred_return = min(remaining, lp_capital * t.hurdle_rate * max(effective_years, 0.0))
            remaining -= preferred_return

        # Tier 3: GP catch-up, only reachable when the GP's share of the tier
        # exceeds the carry rate
        catch_up_tier = 0.0
        gp_catch_up = 0.0
        if remaining > 0 and t.carry_rate > 0 and t.catch_up_rate > t.carry_rate:
            full_tier = t.carry_rate * preferred_return / (t.catch_up_rate - t.carry_rate)
            catch_up_tier = min(remaining, full_tier)
            gp_catch_up = t.catch_up_rate * catch_up_tier
            remaining -= catch_up_tier

        # Tier 4: residual split
        gp_residual = t.carry_rate * remaining if remaining > 0 else 0.0

        gp_distributions = gp_catch_up + gp_residual
        lp_distributions = float(total_distributions) - gp_distributions
        profit = float(total_distributions) - lp_capital

        summary = WaterfallSummary(
            total_distributions=float(total_distributions),
            lp_distributions=lp_distributions,
            gp_distributions=gp_distributions,
            return_of_capital=return_of_capital,
            preferred_return=preferred_return,
            catch_up_tier=catch_up_tier,
            catch_up_paid=gp_catch_up,
            carry_paid=gp_distributions,
            lp_share=lp_distributions / total_distributions if total_distributions > 0 else 0.0,
            gp_share=gp_distributions / total_distributions if total_distributions > 0 else 0.0,
            effective_carry=gp_distributions / profit if profit > 0 else 0.0,
            style=t.style,
        )
        logger.debug(
            "Waterfall: total=%.0f lp=%.0f gp=%.0f", total_distributions, lp_distributions, gp_distributions
        )
        return summary
