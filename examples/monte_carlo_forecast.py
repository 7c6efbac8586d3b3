"""
monte_carlo_forecast.py — Distribution of fund outcomes under uncertain terms.

Run:
    python examples/monte_carlo_forecast.py
"""
from __future__ import annotations

import logging

from vc_forecast import MonteCarloConfig, MonteCarloParameter, default_fund_inputs, run_monte_carlo
from vc_forecast import visualization as viz


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    inputs = default_fund_inputs(vintage_year=2024)

    # -------------------------------------------------------------------
    # 1. Perturbed inputs
    # -------------------------------------------------------------------
    config = MonteCarloConfig(
        iterations=500,
        seed=42,
        batch_size=50,
        tolerance=0.002,
        max_workers=4,
        parameters=(
            MonteCarloParameter("management_fee_rate", "uniform", min=0.015, max=0.025),
            MonteCarloParameter(
                "appreciation.annual_rate", "lognormal", min=0.0, max=0.5, mean=0.15, std_dev=0.06
            ),
            MonteCarloParameter(
                "timing.event_rate", "normal", min=0.05, max=0.3, mean=0.15, std_dev=0.04
            ),
        ),
    )

    # -------------------------------------------------------------------
    # 2. Run and summarise
    # -------------------------------------------------------------------
    mc = run_monte_carlo(inputs, config)
    print(f"{mc.iterations} iterations, converged={mc.convergence_achieved}, seed={mc.seed}")
    print(mc.summary_frame().to_string(index=False, float_format=lambda x: f"{x:,.3f}"))

    p50 = mc.percentiles["p50"]
    print(f"\nMedian path: net IRR {p50.irr.net:.1%}, TVPI {p50.tvpi:.2f}x, DPI {p50.dpi:.2f}x")

    # -------------------------------------------------------------------
    # 3. Visualize
    # -------------------------------------------------------------------
    viz.plot_monte_carlo_distribution(mc, metric="net_irr").show()
    viz.plot_monte_carlo_distribution(mc, metric="tvpi").show()


if __name__ == "__main__":
    main()
