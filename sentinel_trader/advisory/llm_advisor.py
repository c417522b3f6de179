"""
LLM advisory provider: builds a compact market prompt, calls an
OpenAI-compatible chat endpoint and normalizes the JSON answer to an
Advisory {sentiment, confidence 0-100, reason}.

Providers are synchronous and raise AdvisoryError on any failure; the
AdvisoryCache runs them off the event loop and degrades errors.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import requests
from loguru import logger

from ..core.constants import Sentiment
from ..core.exceptions import AdvisoryError
from ..core.models import Advisory
from ..utils.config_loader import env_secret, lookup
from ..utils.time_utils import now_ms


_PROMPT_TEMPLATE = """\
{symbol} MARKET SENTIMENT, all data provided, NO tool calls needed.
You are a disciplined swing trader. Identify strong trend continuation and ignore temporary chop.

MARKET SNAPSHOT:
Price: {price} | Trend (price vs EMA200): {trend} | HTF trend: {htf_trend}
EMA20: {ema20} | EMA200: {ema200} | Slope: {slope:.5f}
RSI(14): {rsi:.1f} | ADX: {adx:.1f} | VWAP: {vwap}
Range position: {range_position:.2f} ({zone})

RULES:
- Respect the trend. In an UP trend a dip in RSI is a buying opportunity, rate it NEUTRAL, not BEARISH.
- Only go against the trend on a clear breakdown of structure.
- Confidence above 80 only for strong alignment of trend and momentum. Below 50 for conflicting signals.

Respond ONLY with valid JSON (no markdown):
{{"sentiment":"BULLISH or BEARISH or NEUTRAL","confidence":0-100,"reason":"<20 words"}}
"""


def build_prompt(symbol: str, snapshot: Mapping[str, Any]) -> str:
    """Prompt from an AssetState.to_dict() snapshot."""
    structure = snapshot.get("structure") or {}
    return _PROMPT_TEMPLATE.format(
        symbol=symbol,
        price=snapshot.get("currentPrice"),
        trend=snapshot.get("trend", "UP"),
        htf_trend=snapshot.get("htfTrend", "UP"),
        ema20=round(float(snapshot.get("ema", 0.0)), 5),
        ema200=round(float(snapshot.get("ema200", 0.0)), 5),
        slope=float(snapshot.get("slope", 0.0)),
        rsi=float(snapshot.get("rsi", 50.0)),
        adx=float(snapshot.get("adx", 0.0)),
        vwap=round(float(snapshot.get("vwap", 0.0)), 5),
        range_position=float(structure.get("rangePosition", 0.5)),
        zone=structure.get("zone", "EQUILIBRIUM"),
    )


def _extract_json(text: str) -> Optional[str]:
    """Extract the outermost {...} block from text."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_advisory(text: str, updated_at: int) -> Advisory:
    """Normalize a raw model answer. Raises AdvisoryError when unusable."""
    raw = _extract_json(text or "")
    if raw is None:
        raise AdvisoryError("No JSON object in advisory response")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AdvisoryError(f"Advisory JSON parse failed: {e}") from e

    if "sentiment" not in data:
        raise AdvisoryError("Missing 'sentiment' key")
    try:
        confidence = float(data.get("confidence", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    return Advisory(
        sentiment=Sentiment.parse(data["sentiment"]),
        confidence=min(max(confidence, 0.0), 100.0),
        reason=str(data.get("reason", ""))[:200],
        updated_at=updated_at,
    )


class AdvisoryProvider(ABC):
    """External sentiment collaborator."""

    @abstractmethod
    def advise(self, symbol: str, snapshot: Dict[str, Any]) -> Advisory:
        """Return an opinion for `symbol` or raise AdvisoryError."""


class NullAdvisor(AdvisoryProvider):
    """Used when no provider is configured; always has no opinion."""

    def advise(self, symbol: str, snapshot: Dict[str, Any]) -> Advisory:
        return Advisory.no_opinion("advisory disabled", now_ms())


class OpenAICompatibleAdvisor(AdvisoryProvider):
    """Chat-completions endpoint (OpenAI, DeepSeek, Kimi, GLM gateways...)."""

    def __init__(self, api_base: str, api_key: str, model: str, timeout: int = 30, temperature: float = 0.3):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    def advise(self, symbol: str, snapshot: Dict[str, Any]) -> Advisory:
        prompt = build_prompt(symbol, snapshot)
        try:
            resp = requests.post(
                f"{self.api_base}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self.temperature,
                    "max_tokens": 300,
                },
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise AdvisoryError(f"Advisory timeout ({self.model})") from e
        except requests.RequestException as e:
            raise AdvisoryError(f"Advisory request failed ({self.model}): {e}") from e

        if not resp.ok:
            body = resp.text[:200]
            if resp.status_code == 401:
                raise AdvisoryError("AUTH ERROR")
            if resp.status_code == 429:
                raise AdvisoryError("RATE LIMITED")
            raise AdvisoryError(f"HTTP {resp.status_code}: {body}")

        try:
            content = resp.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AdvisoryError(f"Malformed completion payload: {e}") from e

        advisory = parse_advisory(content, now_ms())
        logger.debug(f"Advisory {symbol}: {advisory.sentiment.value} {advisory.confidence:.0f}% | {advisory.reason}")
        return advisory


def create_provider(cfg: Mapping[str, Any]) -> AdvisoryProvider:
    """Provider from the full settings dict; NullAdvisor when disabled or keyless."""
    if not lookup(cfg, "advisory.enabled", False):
        return NullAdvisor()
    api_key = env_secret(cfg, "advisory.api_key_env")
    if not api_key:
        logger.warning("Advisory enabled but API key env var is not set; advisory disabled")
        return NullAdvisor()
    return OpenAICompatibleAdvisor(
        api_base=lookup(cfg, "advisory.api_base", "https://api.openai.com/v1"),
        api_key=api_key,
        model=lookup(cfg, "advisory.model", "gpt-4o-mini"),
        timeout=int(lookup(cfg, "advisory.timeout_sec", 30)),
    )
