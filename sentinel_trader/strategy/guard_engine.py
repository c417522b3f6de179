"""
Guard engine: per-instrument frequency gate with escalating stages.

The longer an instrument goes without a trade, the higher its stage and the
looser its entry thresholds. A daily cap and a cooldown bound activity at
every stage. Everything here is derived from the trade history; nothing is
stored.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..core.constants import ONE_MINUTE_MS, SkipCode
from ..core.models import SkipReason, Trade
from ..utils.time_utils import utc_day_start


@dataclass(frozen=True)
class StageThresholds:
    """Entry thresholds for one guard stage."""
    adx_min: float
    ema_proximity: float      # max |price - EMA20| / price for a pullback
    slope_min: float          # min |slope| / price per sample
    premium_limit: float      # reject buys above this range position
    discount_limit: float     # reject sells below this range position
    mr_deviation: float       # min |price - EMA20| / EMA20 for mean reversion
    rsi_low: float
    rsi_high: float
    outer_quantile: float     # mean reversion needs range position in the outer band
    adx_max: float            # mean reversion rejects trends stronger than this

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# Tuned values, stage 0 (strict) to stage 3 (relaxed)
DEFAULT_STAGES: Tuple[StageThresholds, ...] = (
    StageThresholds(25, 0.0015, 0.00005, 0.70, 0.30, 0.0150, 30, 70, 0.20, 25),
    StageThresholds(22, 0.0025, 0.00004, 0.75, 0.25, 0.0125, 32, 68, 0.25, 25),
    StageThresholds(20, 0.0035, 0.00003, 0.80, 0.20, 0.0100, 35, 65, 0.30, 28),
    StageThresholds(18, 0.0050, 0.00002, 0.85, 0.15, 0.0080, 38, 62, 0.35, 30),
)


@dataclass(frozen=True)
class GuardConfig:
    breakpoints: Tuple[int, ...] = (120, 360, 720)
    max_trades_per_day: int = 6
    cooldown_minutes: int = 15
    stages: Tuple[StageThresholds, ...] = DEFAULT_STAGES

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]]) -> "GuardConfig":
        """
        Build from the `guard` settings section.

        `stages` maps each threshold name to a list with one value per stage;
        missing names keep their defaults.
        """
        cfg = cfg or {}
        stages = DEFAULT_STAGES
        overrides = cfg.get("stages") or {}
        if overrides:
            stages = tuple(
                StageThresholds(**{
                    f.name: float(overrides[f.name][i]) if f.name in overrides else getattr(default, f.name)
                    for f in fields(StageThresholds)
                })
                for i, default in enumerate(DEFAULT_STAGES)
            )
        return cls(
            breakpoints=tuple(int(b) for b in cfg.get("stage_breakpoints_min", (120, 360, 720))),
            max_trades_per_day=int(cfg.get("max_trades_per_day", 6)),
            cooldown_minutes=int(cfg.get("cooldown_minutes", 15)),
            stages=stages,
        )


@dataclass(frozen=True)
class GuardState:
    """Guard verdict for one instrument at one instant."""
    symbol: str
    trades_today: int
    minutes_since_last_trade: float
    stage: int
    thresholds: StageThresholds
    max_trades_per_day: int
    cooldown_minutes: int

    @property
    def day_cap_reached(self) -> bool:
        return self.trades_today >= self.max_trades_per_day

    @property
    def cooldown_active(self) -> bool:
        return self.trades_today > 0 and self.minutes_since_last_trade < self.cooldown_minutes

    def blocked(self) -> Optional[SkipReason]:
        """Skip reason when the guard forbids any entry, else None."""
        if self.day_cap_reached:
            return SkipReason(
                SkipCode.DAILY_CAP,
                f"Daily cap reached ({self.trades_today}/{self.max_trades_per_day} trades today)",
                context={"tradesToday": self.trades_today},
            )
        if self.cooldown_active:
            return SkipReason(
                SkipCode.COOLDOWN,
                f"Cooldown active ({self.minutes_since_last_trade:.1f}/{self.cooldown_minutes} min since last trade)",
                context={"minutesSinceLastTrade": round(self.minutes_since_last_trade, 1)},
            )
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tradesToday": self.trades_today,
            "minutesSinceLastTrade": round(self.minutes_since_last_trade, 1),
            "stage": self.stage,
            "thresholds": self.thresholds.to_dict(),
            "maxTradesPerDay": self.max_trades_per_day,
            "cooldownMinutes": self.cooldown_minutes,
        }


def stage_for(minutes_idle: float, breakpoints: Tuple[int, ...] = (120, 360, 720)) -> int:
    """Number of breakpoints already passed; non-decreasing in minutes_idle."""
    return sum(1 for b in breakpoints if minutes_idle >= b)


def evaluate_guard(
    symbol: str,
    trades: Iterable[Trade],
    now_ms: int,
    config: GuardConfig = GuardConfig(),
) -> GuardState:
    """Derive the guard state for `symbol` from the trade history."""
    day_start = utc_day_start(now_ms)
    opened_today = [t.open_time for t in trades if t.symbol == symbol and t.open_time >= day_start]

    last_open = max(opened_today) if opened_today else day_start
    minutes_since = max(now_ms - last_open, 0) / ONE_MINUTE_MS

    stage = min(stage_for(minutes_since, config.breakpoints), len(config.stages) - 1)
    return GuardState(
        symbol=symbol,
        trades_today=len(opened_today),
        minutes_since_last_trade=minutes_since,
        stage=stage,
        thresholds=config.stages[stage],
        max_trades_per_day=config.max_trades_per_day,
        cooldown_minutes=config.cooldown_minutes,
    )
