"""
Loguru sinks for the engine.

  logs/activity/activity_YYYY-MM-DD.log  engine, feed and control events
  logs/market/market_YYYY-MM-DD.log      candle closes and skip reasons (kind="MARKET")
  logs/trades/trades_YYYY-MM-DD.log      position lifecycle (kind="TRADE")
  logs/errors/errors_YYYY-MM-DD.log      WARNING and above from everything

Tag a record by binding its kind:
  logger.bind(kind="TRADE").info("TP1 XAU/USD ...")
"""

import sys
from datetime import timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger

_FILE_FMT = "{time:YYYY-MM-DD} {extra[utc]}Z | {level:<8} | {extra[kind]:<6} | {name}:{line} | {message}"
_EVENT_FMT = "{time:YYYY-MM-DD} {extra[utc]}Z | {level:<8} | {message}"
_CONSOLE_FMT = (
    "<green>{extra[utc]}Z</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[kind]: <6}</cyan> | "
    "<level>{message}</level>"
)

_configured = False


def _patch(record: dict) -> None:
    record["extra"]["utc"] = record["time"].astimezone(timezone.utc).strftime("%H:%M:%S")
    record["extra"].setdefault("kind", "ENGINE")


def _kind_filter(kind: str, negate: bool = False) -> Callable[[dict], bool]:
    def _filter(record: dict) -> bool:
        matches = record["extra"].get("kind") == kind
        return not matches if negate else matches
    return _filter


def _file_sinks(level: str, retention: str) -> Dict[str, Dict[str, Any]]:
    """Sink name -> loguru.add keyword arguments."""
    return {
        "activity": {"format": _FILE_FMT, "level": level, "retention": retention,
                     "filter": _kind_filter("MARKET", negate=True)},
        "market": {"format": _EVENT_FMT, "level": "DEBUG", "retention": "14 days",
                   "filter": _kind_filter("MARKET")},
        "trades": {"format": _EVENT_FMT, "level": "INFO", "retention": retention,
                   "filter": _kind_filter("TRADE")},
        "errors": {"format": _FILE_FMT, "level": "WARNING", "retention": retention},
    }


def setup_logging(cfg: Mapping[str, Any], log_dir: Optional[str] = None) -> None:
    """Install console and daily-rotated file sinks. Safe to call more than once."""
    global _configured
    if _configured:
        return

    log_cfg = cfg.get("logging") or {}
    level = str(log_cfg.get("level", "INFO")).upper()
    retention = log_cfg.get("retention", "30 days")
    base = Path(log_dir or (cfg.get("paths") or {}).get("log_dir", "logs"))

    logger.remove()
    logger.configure(patcher=_patch)

    if log_cfg.get("console_output", True):
        logger.add(sys.stderr, format=_CONSOLE_FMT, level=level, colorize=True,
                   filter=_kind_filter("MARKET", negate=True))

    if log_cfg.get("file_output", True):
        for name, options in _file_sinks(level, retention).items():
            (base / name).mkdir(parents=True, exist_ok=True)
            logger.add(
                str(base / name / f"{name}_{{time:YYYY-MM-DD}}.log"),
                rotation="00:00",
                encoding="utf-8",
                **options,
            )

    _configured = True
    logger.info(f"Logging ready | level={level} | dir={base}")
