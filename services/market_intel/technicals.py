# services/market_intel/technicals.py
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

HOURLY_PERIODS_PER_YEAR = 24 * 365  # crypto trades around the clock


def rolling_mean(vals: List[float], window: int) -> Optional[float]:
    if window <= 0 or len(vals) < window:
        return None
    return sum(vals[-window:]) / float(window)


def log_returns(closes: List[float]) -> List[float]:
    rets: List[float] = []
    for i in range(1, len(closes)):
        a, b = closes[i], closes[i - 1]
        if a > 0 and b > 0:
            rets.append(math.log(a / b))
    return rets


def realized_vol_annualized(
    closes: List[float], window: int = 20, periods_per_year: int = HOURLY_PERIODS_PER_YEAR
) -> Optional[float]:
    if len(closes) < window + 1:
        return None
    r = log_returns(closes[-(window + 1):])
    if len(r) < 2:
        return None
    mean = sum(r) / len(r)
    var = sum((x - mean) ** 2 for x in r) / (len(r) - 1)
    return math.sqrt(var) * math.sqrt(periods_per_year)


def max_drawdown(closes: List[float], window: int) -> Optional[float]:
    if window <= 1 or len(closes) < window:
        return None
    sub = closes[-window:]
    peak = sub[0]
    max_dd = 0.0
    for c in sub[1:]:
        peak = max(peak, c)
        dd = (c / peak) - 1.0
        if dd < max_dd:
            max_dd = dd
    return max_dd  # -0.22 == -22%


def rsi(closes: List[float], period: int = 14) -> Optional[float]:
    """Wilder's RSI over the whole series, seeded with a simple average."""
    if period <= 0 or len(closes) < period + 1:
        return None
    gains: List[float] = []
    losses: List[float] = []
    for i in range(1, len(closes)):
        delta = closes[i] - closes[i - 1]
        gains.append(max(delta, 0.0))
        losses.append(max(-delta, 0.0))

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for g, l in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + g) / period
        avg_loss = (avg_loss * (period - 1) + l) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def classify_trend(last: float, sma20: Optional[float], sma50: Optional[float]) -> str:
    if sma20 is None:
        return "unknown"
    if sma50 is None:
        return "bullish" if last > sma20 else "bearish"
    if last > sma20 > sma50:
        return "bullish"
    if last < sma20 < sma50:
        return "bearish"
    return "neutral"


def build_indicators(closes: List[float]) -> Dict[str, Any]:
    last = closes[-1]
    sma20 = rolling_mean(closes, 20)
    sma50 = rolling_mean(closes, 50)
    return {
        "last_close": last,
        "sma20": sma20,
        "sma50": sma50,
        "rsi14": rsi(closes, 14),
        "volatility_annualized": realized_vol_annualized(closes, window=20),
        "max_drawdown": max_drawdown(closes, window=len(closes)),
        "trend": classify_trend(last, sma20, sma50),
        "candle_count": len(closes),
    }
