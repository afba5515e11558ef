# services/sources/sentiment_sources.py
"""Sentiment readings on a common 0..100 scale (0 = extreme fear / bearish)."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from services.market_intel.errors import InvalidPayload

from .base import HttpSourceAdapter, Parsed, as_float, require_float
from .price_sources import COINGECKO_BASE_URL, coingecko_headers, coingecko_id

FEAR_GREED_URL = os.getenv("FEAR_GREED_URL", "https://api.alternative.me/fng/")


class CoinGeckoCommunityAdapter(HttpSourceAdapter):
    name = "coingecko-community"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        coin_id = coingecko_id(symbol)
        if coin_id is None:
            return None
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "false",
            "community_data": "true",
            "developer_data": "false",
            "sparkline": "false",
        }
        return f"{COINGECKO_BASE_URL}/coins/{coin_id}", params, coingecko_headers()

    def parse(self, symbol: str, body: Any) -> Parsed:
        if not isinstance(body, dict):
            raise InvalidPayload(self.name, "expected JSON object")
        up = require_float(self.name, body.get("sentiment_votes_up_percentage"), "sentiment_votes_up_percentage")
        if not 0 <= up <= 100:
            raise InvalidPayload(self.name, f"vote share out of range: {up}")
        metrics = {"sentiment_score": up, "community_up_pct": up}
        down = as_float(body.get("sentiment_votes_down_percentage"))
        if down is not None:
            metrics["community_down_pct"] = down
        return metrics, {}


class FearGreedAdapter(HttpSourceAdapter):
    name = "alternative-me"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        # market-wide index; applies to every symbol
        return FEAR_GREED_URL, {"limit": 1, "format": "json"}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        rows = (body or {}).get("data") or []
        if not rows or not isinstance(rows[0], dict):
            raise InvalidPayload(self.name, "empty data")
        row = rows[0]
        value = require_float(self.name, row.get("value"), "data[0].value")
        if not 0 <= value <= 100:
            raise InvalidPayload(self.name, f"index out of range: {value}")

        extras: Dict[str, Any] = {"classification": row.get("value_classification")}
        ts = as_float(row.get("timestamp"))
        if ts is not None:
            extras["data_timestamp"] = datetime.fromtimestamp(ts, tz=timezone.utc)
        return {"sentiment_score": value, "fear_greed_index": value}, extras
