"""Guard engine, entry strategies and the evaluator that runs them."""

from .evaluator import Evaluation, StrategyEvaluator
from .guard_engine import (
    DEFAULT_STAGES,
    GuardConfig,
    GuardState,
    StageThresholds,
    evaluate_guard,
    stage_for,
)
from .strategies import (
    STRATEGIES,
    StrategyConfig,
    StrategyContext,
    advisory_driven,
    mean_reversion,
    session_breakout,
    trend_follow,
)

__all__ = [
    "Evaluation",
    "StrategyEvaluator",
    "DEFAULT_STAGES",
    "GuardConfig",
    "GuardState",
    "StageThresholds",
    "evaluate_guard",
    "stage_for",
    "STRATEGIES",
    "StrategyConfig",
    "StrategyContext",
    "advisory_driven",
    "mean_reversion",
    "session_breakout",
    "trend_follow",
]
