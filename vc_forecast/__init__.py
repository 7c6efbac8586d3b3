"""
vc_forecast — VC fund forecast simulation and distribution engine.

Public API surface:

    from vc_forecast import FundInputs, StageStrategy, CheckSize, default_fund_inputs
    from vc_forecast import run_forecast, ForecastEngine, build_strategy, SimulationMode
    from vc_forecast import run_monte_carlo, MonteCarloConfig, MonteCarloParameter
    from vc_forecast import ReserveOptimizer, WaterfallDistributor
    from vc_forecast import metrics
    from vc_forecast import visualization as viz
"""
from __future__ import annotations

# Configuration and errors
from vc_forecast.errors import ConfigurationError, ConvergenceWarning, InvalidProbabilityMatrix
from vc_forecast.fund import (
    AppreciationPolicy,
    CheckSize,
    FeeBasis,
    FundInputs,
    PacingPolicy,
    StageStrategy,
    TransitionTiming,
    WaterfallStyle,
    default_fund_inputs,
)
from vc_forecast.stages import (
    ExitBucket,
    ExitProbabilityMatrix,
    FundStage,
    GraduationMatrix,
    default_exit_matrix,
    default_graduation_matrix,
)

# Engines
from vc_forecast.analysis import PacingAnalysis, StageExitAnalysis, analyze_pacing, analyze_stage_exits
from vc_forecast.forecast import (
    CohortForecastStrategy,
    ForecastEngine,
    ForecastResult,
    ForecastStrategy,
    FundMetrics,
    ReturnPair,
    build_strategy,
    run_forecast,
)
from vc_forecast.montecarlo import (
    MonteCarloConfig,
    MonteCarloParameter,
    MonteCarloResult,
    MonteCarloSimulator,
    StatisticalSummary,
    run_monte_carlo,
)
from vc_forecast.portfolio import CompanySnapshot, CompanyStatus, Investment, generate_cohort
from vc_forecast.reserves import ReserveOptimizationResult, ReserveOptimizer, ReserveSufficiencyAnalysis
from vc_forecast.timeline import TimelineMetrics
from vc_forecast.transitions import SimulationMode
from vc_forecast.waterfall import WaterfallDistributor, WaterfallSummary, WaterfallTerms

# Submodules available for direct import
from vc_forecast import metrics
from vc_forecast import visualization

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ConfigurationError",
    "ConvergenceWarning",
    "InvalidProbabilityMatrix",
    # Configuration
    "AppreciationPolicy",
    "CheckSize",
    "FeeBasis",
    "FundInputs",
    "PacingPolicy",
    "StageStrategy",
    "TransitionTiming",
    "WaterfallStyle",
    "default_fund_inputs",
    "ExitBucket",
    "ExitProbabilityMatrix",
    "FundStage",
    "GraduationMatrix",
    "default_exit_matrix",
    "default_graduation_matrix",
    # Forecast
    "CohortForecastStrategy",
    "ForecastEngine",
    "ForecastResult",
    "ForecastStrategy",
    "FundMetrics",
    "ReturnPair",
    "SimulationMode",
    "TimelineMetrics",
    "build_strategy",
    "run_forecast",
    "generate_cohort",
    "CompanySnapshot",
    "CompanyStatus",
    "Investment",
    # Reserves and waterfall
    "ReserveOptimizationResult",
    "ReserveOptimizer",
    "ReserveSufficiencyAnalysis",
    "WaterfallDistributor",
    "WaterfallSummary",
    "WaterfallTerms",
    # Analyses
    "PacingAnalysis",
    "StageExitAnalysis",
    "analyze_pacing",
    "analyze_stage_exits",
    # Monte Carlo
    "MonteCarloConfig",
    "MonteCarloParameter",
    "MonteCarloResult",
    "MonteCarloSimulator",
    "StatisticalSummary",
    "run_monte_carlo",
    # Submodules
    "metrics",
    "visualization",
    "__version__",
]
