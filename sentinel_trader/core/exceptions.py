"""Exception types raised across the engine."""


class TradingError(Exception):
    """Base class for engine errors."""


class InvariantViolation(TradingError):
    """A requested mutation would break a trade or position invariant."""


class SnapshotCorruptError(TradingError):
    """A persisted snapshot could not be read or parsed."""


class AdvisoryError(TradingError):
    """The advisory provider failed or returned an unusable answer."""
