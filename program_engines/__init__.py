"""
Module: program_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.  This is
    the import surface for program_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import program_kernel.domain, program_kernel.exceptions and
    program_kernel.logging_config.  MUST NOT import program_services.

Invariants enforced:
    - Engines never read a clock.  ``today`` is always a parameter.
    - Decimal-only arithmetic on money and ratios.
    - Identical inputs produce identical outputs.

Audit relevance:
    Public engine entrypoints are wrapped by ``@traced_engine`` and emit
    PROGRAM_ENGINE_TRACE records with an input fingerprint and duration.
"""

from program_engines.distribution import (
    DistributionEngine,
    DistributionShare,
    DistributionTarget,
)
from program_engines.forecasting import (
    CompletionForecast,
    ConfidenceLevel,
    EACForecast,
    ForecastEngine,
    ForecastMethod,
    ForecastScenario,
    ForecastScenarios,
    RequiredPerformance,
)
from program_engines.matching import (
    AmountMismatch,
    MatchPair,
    ReconciliationMatcher,
    types_compatible,
)
from program_engines.metrics import (
    HealthAssessment,
    MetricsEngine,
    classify_trend,
    status_for_score,
)
from program_engines.tracer import compute_input_fingerprint, traced_engine
from program_engines.trending import (
    Anomaly,
    BaselineComparison,
    IndexTrend,
    LinearRegression,
    PerformanceTrendAnalysis,
    RiskLevel,
    TrendAnalyzer,
    linear_regression,
    moving_average,
)

__all__ = [
    "AmountMismatch",
    "Anomaly",
    "BaselineComparison",
    "CompletionForecast",
    "ConfidenceLevel",
    "DistributionEngine",
    "DistributionShare",
    "DistributionTarget",
    "EACForecast",
    "ForecastEngine",
    "ForecastMethod",
    "ForecastScenario",
    "ForecastScenarios",
    "HealthAssessment",
    "IndexTrend",
    "LinearRegression",
    "MatchPair",
    "MetricsEngine",
    "PerformanceTrendAnalysis",
    "ReconciliationMatcher",
    "RequiredPerformance",
    "RiskLevel",
    "TrendAnalyzer",
    "classify_trend",
    "compute_input_fingerprint",
    "linear_regression",
    "moving_average",
    "status_for_score",
    "traced_engine",
    "types_compatible",
]
