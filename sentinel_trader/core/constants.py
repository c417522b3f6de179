"""
Global constants for the trading engine.
"""

from enum import Enum
from typing import Final, Tuple


class Timeframe(Enum):
    """Candle timeframes, value in minutes."""
    M5 = 5
    M15 = 15

    @classmethod
    def from_string(cls, timeframe_str: str) -> "Timeframe":
        """Convert string to Timeframe enum."""
        mapping = {"M5": cls.M5, "M15": cls.M15}
        return mapping.get(timeframe_str.upper(), cls.M5)

    def to_minutes(self) -> int:
        return self.value

    def to_ms(self) -> int:
        return self.value * ONE_MINUTE_MS


class TradeType(str, Enum):
    """Trade direction."""
    BUY = "BUY"
    SELL = "SELL"


class TradeState(str, Enum):
    """Trade lifecycle state. CLOSED is terminal."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    """Why a trade (or its last remaining size) was closed."""
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    ADVISORY_OVERRIDE = "ADVISORY_OVERRIDE"
    SESSION_CLOSE = "SESSION_CLOSE"
    MANUAL = "MANUAL"


class StrategyId(str, Enum):
    """Strategy families the evaluator knows about."""
    TREND_FOLLOW = "TREND_FOLLOW"
    SESSION_BREAKOUT = "SESSION_BREAKOUT"
    ADVISORY = "ADVISORY"
    MEAN_REVERSION = "MEAN_REVERSION"


class Sentiment(str, Enum):
    """Advisory sentiment."""
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def parse(cls, value) -> "Sentiment":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.NEUTRAL


class TrendDirection(str, Enum):
    """Primary trend, price versus EMA200."""
    UP = "UP"
    DOWN = "DOWN"


class RangeZone(str, Enum):
    """Where price sits in its recent high-low range."""
    PREMIUM = "PREMIUM"
    DISCOUNT = "DISCOUNT"
    EQUILIBRIUM = "EQUILIBRIUM"


class FeedState(str, Enum):
    """Live feed supervisor states."""
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    DEGRADED = "DEGRADED"


class SkipCode(str, Enum):
    """Structured reason an evaluation tick produced no trade."""
    BOT_INACTIVE = "BOT_INACTIVE"
    NO_STRATEGIES = "NO_STRATEGIES"
    POSITION_OPEN = "POSITION_OPEN"
    DAILY_CAP = "DAILY_CAP"
    COOLDOWN = "COOLDOWN"
    WARMUP = "WARMUP"
    ADX_TOO_LOW = "ADX_TOO_LOW"
    ADX_TOO_HIGH = "ADX_TOO_HIGH"
    SLOPE_TOO_WEAK = "SLOPE_TOO_WEAK"
    NO_PULLBACK = "NO_PULLBACK"
    PREMIUM_ZONE = "PREMIUM_ZONE"
    DISCOUNT_ZONE = "DISCOUNT_ZONE"
    OUTSIDE_SESSION = "OUTSIDE_SESSION"
    NO_SETUP = "NO_SETUP"
    DEVIATION_TOO_SMALL = "DEVIATION_TOO_SMALL"
    RSI_NOT_EXTREME = "RSI_NOT_EXTREME"
    RANGE_NOT_EXTREME = "RANGE_NOT_EXTREME"
    ADVISORY_STALE = "ADVISORY_STALE"
    ADVISORY_LOW_CONFIDENCE = "ADVISORY_LOW_CONFIDENCE"
    ADVISORY_DISAGREES = "ADVISORY_DISAGREES"
    REJECTED = "REJECTED"


# Strategy evaluation order; the first valid intent wins the tick.
EVALUATION_ORDER: Final[Tuple[StrategyId, ...]] = (
    StrategyId.TREND_FOLLOW,
    StrategyId.SESSION_BREAKOUT,
    StrategyId.ADVISORY,
    StrategyId.MEAN_REVERSION,
)

# Account
INITIAL_BALANCE: Final[float] = 10000.0
RISK_PER_TRADE: Final[float] = 0.01

# Buffers
CANDLE_RING_SIZE: Final[int] = 200
TICK_HISTORY_SIZE: Final[int] = 300

# Persistence
SCHEMA_VERSION: Final[int] = 1

# Floating point tolerance for TP ladder percentages
PERCENT_TOLERANCE: Final[float] = 1e-6

# Time constants (milliseconds)
ONE_SECOND_MS: Final[int] = 1000
ONE_MINUTE_MS: Final[int] = 60 * ONE_SECOND_MS
ONE_HOUR_MS: Final[int] = 60 * ONE_MINUTE_MS
ONE_DAY_MS: Final[int] = 24 * ONE_HOUR_MS
