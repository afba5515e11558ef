# services/sources/candle_sources.py
"""Close-price series for the technical phase (hourly granularity)."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from services.market_intel.errors import InvalidPayload

from .base import HttpSourceAdapter, Parsed, as_float
from .price_sources import (
    COINGECKO_BASE_URL,
    KRAKEN_BASE_URL,
    coingecko_headers,
    coingecko_id,
    first_result,
    kraken_pair,
)

MIN_CANDLES = int(os.getenv("TECHNICAL_MIN_CANDLES", "20"))


def _series(source: str, closes: List[float], last_ts: Optional[float]) -> Parsed:
    if len(closes) < MIN_CANDLES:
        raise InvalidPayload(source, f"only {len(closes)} candles (need {MIN_CANDLES})")
    extras: Dict[str, Any] = {"closes": closes}
    if last_ts is not None:
        extras["data_timestamp"] = datetime.fromtimestamp(last_ts, tz=timezone.utc)
    return {"last_close": closes[-1], "candle_count": float(len(closes))}, extras


class KrakenOhlcAdapter(HttpSourceAdapter):
    name = "kraken-ohlc"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        return f"{KRAKEN_BASE_URL}/OHLC", {"pair": kraken_pair(symbol), "interval": 60}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        rows = first_result(self.name, body)
        if not isinstance(rows, list):
            raise InvalidPayload(self.name, "OHLC rows missing")
        closes: List[float] = []
        last_ts: Optional[float] = None
        # [time, open, high, low, close, vwap, volume, count]
        for row in rows:
            if not isinstance(row, list) or len(row) < 5:
                continue
            close = as_float(row[4])
            if close is None or close <= 0:
                continue
            closes.append(close)
            last_ts = as_float(row[0])
        return _series(self.name, closes, last_ts)


class CoinGeckoChartAdapter(HttpSourceAdapter):
    name = "coingecko-chart"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        coin_id = coingecko_id(symbol)
        if coin_id is None:
            return None
        # 2-90 days returns hourly points
        params = {"vs_currency": "usd", "days": 7}
        return f"{COINGECKO_BASE_URL}/coins/{coin_id}/market_chart", params, coingecko_headers()

    def parse(self, symbol: str, body: Any) -> Parsed:
        points = (body or {}).get("prices") or []
        closes: List[float] = []
        last_ts: Optional[float] = None
        for point in points:
            if not isinstance(point, list) or len(point) < 2:
                continue
            price = as_float(point[1])
            if price is None or price <= 0:
                continue
            closes.append(price)
            ms = as_float(point[0])
            last_ts = ms / 1000.0 if ms is not None else last_ts
        return _series(self.name, closes, last_ts)
