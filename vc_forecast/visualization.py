"""
visualization.py — Plotly figure factories for forecast results.

Depends on: forecast.py, montecarlo.py, reserves.py, waterfall.py
All functions return plotly.graph_objects.Figure objects and read their inputs
without modifying them.
"""
from __future__ import annotations

from typing import Literal, Optional

import numpy as np
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from scipy.stats import gaussian_kde

from vc_forecast.forecast import ForecastResult
from vc_forecast.montecarlo import MonteCarloResult
from vc_forecast.reserves import FULLY_FUNDED, PARTIALLY_FUNDED, ReserveOptimizationResult
from vc_forecast.waterfall import WaterfallSummary


# ---------------------------------------------------------------------------
# Theme
# ---------------------------------------------------------------------------

_VC_COLORS = {
    "background": "#0D1117",
    "paper": "#161B22",
    "grid": "#21262D",
    "text": "#C9D1D9",
    "text_secondary": "#8B949E",
    "accent": "#58A6FF",
    "positive": "#3FB950",
    "negative": "#F85149",
    "neutral": "#FFA657",
}

_STAGE_COLORS = ["#58A6FF", "#3FB950", "#FFA657", "#F85149", "#A371F7", "#79C0FF"]

_PLOTLY_TEMPLATE = "plotly_dark"


def _apply_vc_theme(fig: go.Figure) -> go.Figure:
    """
    Apply the shared dark VC styling to a figure.

    Modifies the figure in-place and returns it for chaining.
    """
    fig.update_layout(
        template=_PLOTLY_TEMPLATE,
        paper_bgcolor=_VC_COLORS["paper"],
        plot_bgcolor=_VC_COLORS["background"],
        font=dict(
            family="Inter, -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif",
            color=_VC_COLORS["text"],
            size=12,
        ),
        title_font=dict(size=16, color=_VC_COLORS["text"]),
        legend=dict(
            bgcolor=_VC_COLORS["paper"],
            bordercolor=_VC_COLORS["grid"],
            borderwidth=1,
            font=dict(color=_VC_COLORS["text_secondary"]),
        ),
        hoverlabel=dict(
            bgcolor=_VC_COLORS["paper"],
            bordercolor=_VC_COLORS["grid"],
            font=dict(color=_VC_COLORS["text"]),
        ),
    )
    fig.update_xaxes(
        gridcolor=_VC_COLORS["grid"],
        zerolinecolor=_VC_COLORS["grid"],
        tickfont=dict(color=_VC_COLORS["text_secondary"]),
    )
    fig.update_yaxes(
        gridcolor=_VC_COLORS["grid"],
        zerolinecolor=_VC_COLORS["grid"],
        tickfont=dict(color=_VC_COLORS["text_secondary"]),
    )
    return fig


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

def plot_timeline(
    result: ForecastResult,
    show_cash_flows: bool = True,
    title: str = "Fund Timeline — NAV, Calls and Distributions",
) -> go.Figure:
    """
    Cumulative called, cumulative distributed and NAV by quarter, with
    quarterly net cash flow bars on a secondary axis.

    Parameters
    ----------
    result:
        Output of run_forecast().
    show_cash_flows:
        If True, add the quarterly net cash flow bars.
    title:
        Chart title.

    Returns
    -------
    go.Figure
    """
    df = result.timeline_frame()
    if df.empty:
        return go.Figure()

    fig = make_subplots(specs=[[{"secondary_y": True}]])
    labels = df["quarter_label"]

    if show_cash_flows:
        colors = [
            _VC_COLORS["positive"] if v >= 0 else _VC_COLORS["negative"]
            for v in df["net_cash_flow"]
        ]
        fig.add_trace(
            go.Bar(
                x=labels,
                y=df["net_cash_flow"],
                name="Net Cash Flow",
                marker_color=colors,
                opacity=0.5,
                hovertemplate="%{x}<br>Net: $%{y:,.0f}<extra></extra>",
            ),
            secondary_y=True,
        )

    fig.add_trace(
        go.Scatter(
            x=labels,
            y=df["total_called"],
            name="Cumulative Called",
            line=dict(color=_VC_COLORS["neutral"], width=2, dash="dash"),
            hovertemplate="%{x}<br>Called: $%{y:,.0f}<extra></extra>",
        ),
        secondary_y=False,
    )
    fig.add_trace(
        go.Scatter(
            x=labels,
            y=df["total_distributed"],
            name="Cumulative Distributions",
            fill="tozeroy",
            line=dict(color=_VC_COLORS["positive"], width=1),
            fillcolor="rgba(63, 185, 80, 0.10)",
            hovertemplate="%{x}<br>Distributed: $%{y:,.0f}<extra></extra>",
        ),
        secondary_y=False,
    )
    fig.add_trace(
        go.Scatter(
            x=labels,
            y=df["nav"],
            name="NAV",
            line=dict(color=_VC_COLORS["accent"], width=3),
            hovertemplate="%{x}<br>NAV: $%{y:,.0f}<extra></extra>",
        ),
        secondary_y=False,
    )

    fig.update_layout(title=title, xaxis_title="Quarter", hovermode="x unified")
    fig.update_yaxes(title_text="Cumulative ($)", secondary_y=False)
    fig.update_yaxes(title_text="Quarterly Net ($)", secondary_y=True, showgrid=False)
    return _apply_vc_theme(fig)


# ---------------------------------------------------------------------------
# Waterfall
# ---------------------------------------------------------------------------

def plot_waterfall(
    summary: WaterfallSummary,
    title: str = "Distribution Waterfall — LP / GP Split by Tier",
) -> go.Figure:
    """Stacked LP/GP bars for each waterfall tier."""
    df = summary.to_frame()
    tiers = [t.replace("_", " ").title() for t in df["tier"]]

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=tiers,
            y=df["lp"],
            name="LP",
            marker_color=_VC_COLORS["accent"],
            hovertemplate="%{x}<br>LP: $%{y:,.0f}<extra></extra>",
        )
    )
    fig.add_trace(
        go.Bar(
            x=tiers,
            y=df["gp"],
            name="GP",
            marker_color=_VC_COLORS["neutral"],
            hovertemplate="%{x}<br>GP: $%{y:,.0f}<extra></extra>",
        )
    )
    fig.update_layout(
        title=title,
        xaxis_title="Tier",
        yaxis_title="Distributions ($)",
        barmode="stack",
        annotations=[
            dict(
                text=(
                    f"LP {summary.lp_share:.1%} | GP {summary.gp_share:.1%} | "
                    f"Effective carry {summary.effective_carry:.1%}"
                ),
                xref="paper",
                yref="paper",
                x=0.5,
                y=1.08,
                showarrow=False,
                font=dict(color=_VC_COLORS["text_secondary"]),
            )
        ],
    )
    return _apply_vc_theme(fig)


# ---------------------------------------------------------------------------
# Reserves
# ---------------------------------------------------------------------------

def plot_reserve_allocations(
    optimization: ReserveOptimizationResult,
    top_n: Optional[int] = 25,
    title: str = "Reserve Allocation — Recommended vs. Need",
) -> go.Figure:
    """
    Horizontal bars of remaining need and recommended reserve per company,
    in the optimizer's ranking order.

    Parameters
    ----------
    optimization:
        Output of ReserveOptimizer.optimize().
    top_n:
        Show only the highest-ranked companies; None shows all.
    title:
        Chart title.

    Returns
    -------
    go.Figure
    """
    allocations = list(optimization.allocations)[:top_n] if top_n else list(optimization.allocations)
    if not allocations:
        return go.Figure()
    # highest-ranked company at the top
    allocations.reverse()
    names = [a.company_name for a in allocations]
    colors = [
        _VC_COLORS["positive"]
        if a.allocation_rationale == FULLY_FUNDED
        else _VC_COLORS["neutral"]
        if a.allocation_rationale == PARTIALLY_FUNDED
        else _VC_COLORS["text_secondary"]
        for a in allocations
    ]

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            y=names,
            x=[a.reserve_need for a in allocations],
            orientation="h",
            name="Remaining Need",
            marker_color=_VC_COLORS["grid"],
            hovertemplate="%{y}<br>Need: $%{x:,.0f}<extra></extra>",
        )
    )
    fig.add_trace(
        go.Bar(
            y=names,
            x=[a.recommended_reserve for a in allocations],
            orientation="h",
            name="Recommended",
            marker_color=colors,
            customdata=[
                [a.probability_adjusted_return, a.allocation_rationale] for a in allocations
            ],
            hovertemplate=(
                "%{y}<br>Recommended: $%{x:,.0f}<br>"
                "Prob.-adjusted return: %{customdata[0]:.2f}x<br>"
                "%{customdata[1]}<extra></extra>"
            ),
        )
    )
    fig.update_layout(
        title=(
            f"{title} (pool ${optimization.total_reserve_pool:,.0f}, "
            f"allocated ${optimization.total_reserves_allocated:,.0f})"
        ),
        xaxis_title="Reserves ($)",
        barmode="overlay",
        height=max(400, 22 * len(allocations)),
    )
    return _apply_vc_theme(fig)


def plot_portfolio_breakdown(result: ForecastResult) -> go.Figure:
    """Treemap and status bars of invested capital by entry stage."""
    df = result.portfolio_frame()
    if df.empty:
        return go.Figure()

    grouped = df.groupby("entry_stage")["invested"].sum().reset_index()
    status = df.groupby(["entry_stage", "status"]).size().unstack(fill_value=0)

    fig = make_subplots(
        rows=1,
        cols=2,
        specs=[[{"type": "treemap"}, {"type": "bar"}]],
        subplot_titles=["Invested by Entry Stage", "Company Status by Entry Stage"],
    )
    fig.add_trace(
        go.Treemap(
            labels=grouped["entry_stage"],
            parents=[""] * len(grouped),
            values=grouped["invested"],
            textinfo="label+percent root",
            hovertemplate="%{label}<br>$%{value:,.0f}<br>%{percentRoot:.1%}<extra></extra>",
            marker=dict(colors=_STAGE_COLORS[: len(grouped)]),
        ),
        row=1,
        col=1,
    )
    status_colors = {
        "active": _VC_COLORS["accent"],
        "exited": _VC_COLORS["positive"],
        "written-off": _VC_COLORS["negative"],
    }
    for column in status.columns:
        fig.add_trace(
            go.Bar(
                x=status.index,
                y=status[column],
                name=str(column),
                marker_color=status_colors.get(str(column), _VC_COLORS["neutral"]),
            ),
            row=1,
            col=2,
        )
    fig.update_layout(title="Portfolio Breakdown", barmode="stack")
    return _apply_vc_theme(fig)


# ---------------------------------------------------------------------------
# Monte Carlo distribution
# ---------------------------------------------------------------------------

_METRIC_LABELS = {
    "net_irr": "Net IRR",
    "net_moic": "Net MOIC (x)",
    "dpi": "DPI (x)",
    "tvpi": "TVPI (x)",
}


def plot_monte_carlo_distribution(
    mc: MonteCarloResult,
    metric: Literal["net_irr", "net_moic", "dpi", "tvpi"] = "net_irr",
    title: Optional[str] = None,
) -> go.Figure:
    """
    Histogram with Gaussian KDE overlay and p10/p50/p90 markers.

    Parameters
    ----------
    mc:
        Output of run_monte_carlo().
    metric:
        One of 'net_irr', 'net_moic', 'dpi', 'tvpi'.
    title:
        Chart title.

    Returns
    -------
    go.Figure
    """
    raw = mc.values(metric)
    raw = raw[np.isfinite(raw)]
    if len(raw) == 0:
        return go.Figure()

    label = _METRIC_LABELS[metric]
    fmt = ".1%" if metric == "net_irr" else ".2f"

    fig = go.Figure()
    fig.add_trace(
        go.Histogram(
            x=raw,
            nbinsx=60,
            name="Iterations",
            marker_color=_VC_COLORS["accent"],
            opacity=0.6,
            histnorm="probability density",
            hovertemplate=f"{label}: %{{x:{fmt}}}<br>Density: %{{y:.4f}}<extra></extra>",
        )
    )

    # KDE is singular on a constant sample
    if len(raw) > 1 and np.ptp(raw) > 0:
        kde = gaussian_kde(raw, bw_method="scott")
        x_range = np.linspace(raw.min(), raw.max(), 200)
        fig.add_trace(
            go.Scatter(
                x=x_range,
                y=kde(x_range),
                name="KDE",
                line=dict(color=_VC_COLORS["neutral"], width=2),
                hoverinfo="skip",
            )
        )

    stats = mc.statistics[metric]
    for name, value, color in (
        ("P10", stats.p10, _VC_COLORS["negative"]),
        ("P50", stats.p50, _VC_COLORS["positive"]),
        ("P90", stats.p90, _VC_COLORS["accent"]),
    ):
        fig.add_vline(
            x=value,
            line_dash="dash",
            line_color=color,
            annotation_text=f"{name}: {value:{fmt}}",
            annotation_position="top right",
        )

    convergence = "converged" if mc.convergence_achieved else "not converged"
    fig.update_layout(
        title=title or f"Monte Carlo — {label} ({mc.iterations} iterations, {convergence})",
        xaxis_title=label,
        yaxis_title="Probability Density",
        bargap=0.02,
    )
    return _apply_vc_theme(fig)
