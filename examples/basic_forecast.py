"""
basic_forecast.py — Runs a single expected-value forecast of the default fund.

Run:
    python examples/basic_forecast.py
"""
from __future__ import annotations

import logging

from vc_forecast import ForecastEngine, analyze_pacing, analyze_stage_exits, default_fund_inputs
from vc_forecast import visualization as viz
from vc_forecast.analysis import stage_exit_frame


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # -------------------------------------------------------------------
    # 1. Configure a $50M multi-stage fund
    # -------------------------------------------------------------------
    inputs = default_fund_inputs(vintage_year=2024).with_overrides(
        fund_name="Acme Ventures Fund I",
        carry_rate=0.20,
        hurdle_rate=0.08,
    )

    # -------------------------------------------------------------------
    # 2. Run the forecast
    # -------------------------------------------------------------------
    engine = ForecastEngine.from_config("cohort")
    result = engine.run(inputs)
    summary = result.summary()

    print("=" * 60)
    print(f"  {inputs.fund_name} — Forecast Summary")
    print("=" * 60)
    print(f"  Fund Size:          ${inputs.fund_size_usd:>15,.0f}")
    print(f"  Companies:          {len(result.portfolio):>16d}")
    print(f"  Total Invested:     ${summary['total_invested']:>15,.0f}")
    print(f"  Total Distributions:${summary['total_distributed']:>15,.0f}")
    print(f"  Ending NAV:         ${summary['portfolio_value']:>15,.0f}")
    print(f"  Management Fees:    ${summary['management_fees']:>15,.0f}")
    print(f"  Carry (GP):         ${summary['carried_interest']:>15,.0f}")
    print("-" * 60)
    print(f"  Gross IRR:          {summary['gross_irr']:>14.1%}")
    print(f"  Net IRR (LP):       {summary['net_irr']:>14.1%}")
    print(f"  Net MOIC:           {summary['net_moic']:>14.2f}x")
    print(f"  TVPI:               {summary['tvpi']:>14.2f}x")
    print(f"  DPI:                {summary['dpi']:>14.2f}x")
    print(f"  RVPI:               {summary['rvpi']:>14.2f}x")
    print("=" * 60)

    # -------------------------------------------------------------------
    # 3. Reserves, pacing and exits
    # -------------------------------------------------------------------
    reserves = engine.optimize_reserves(inputs, result)
    print(f"\nReserve pool ${reserves.total_reserve_pool:,.0f}, "
          f"allocated ${reserves.total_reserves_allocated:,.0f}")
    for line in reserves.recommendations:
        print(f"  - {line}")

    sufficiency = engine.analyze_reserve_sufficiency(inputs, result)
    print(f"Reserve sufficiency: {sufficiency.sufficiency_ratio:.2f} "
          f"(shortfall ${sufficiency.reserve_shortfall:,.0f})")

    pacing = analyze_pacing(inputs, result)
    print(f"Pacing score {pacing.pacing_score:.2f}, "
          f"front-loading {pacing.front_loading_ratio:.1%}")

    print("\nExits by entry stage:")
    print(stage_exit_frame(analyze_stage_exits(result)).to_string(index=False))

    # -------------------------------------------------------------------
    # 4. Visualize
    # -------------------------------------------------------------------
    print("\nOpening timeline chart...")
    viz.plot_timeline(result).show()
    viz.plot_waterfall(result.waterfall).show()
    viz.plot_reserve_allocations(reserves).show()


if __name__ == "__main__":
    main()
