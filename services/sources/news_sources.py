# services/sources/news_sources.py
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from services.market_intel.errors import InvalidPayload

from .base import HttpSourceAdapter, Parsed, as_float

CRYPTOCOMPARE_NEWS_URL = os.getenv("CRYPTOCOMPARE_NEWS_URL", "https://min-api.cryptocompare.com/data/v2/news/")
CRYPTOCOMPARE_API_KEY = os.getenv("CRYPTOCOMPARE_API_KEY", "")
CRYPTOPANIC_URL = os.getenv("CRYPTOPANIC_URL", "https://cryptopanic.com/api/v1/posts/")
CRYPTOPANIC_API_KEY = os.getenv("CRYPTOPANIC_API_KEY", "")

MAX_HEADLINES = int(os.getenv("NEWS_MAX_HEADLINES", "10"))


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _pack(headlines: List[Dict[str, Any]]) -> Parsed:
    latest = max((h["published_at"] for h in headlines if h.get("published_at")), default=None)
    extras: Dict[str, Any] = {"headlines": headlines[:MAX_HEADLINES]}
    if latest is not None:
        extras["data_timestamp"] = latest
    return {"article_count": float(len(headlines))}, extras


class CryptoCompareNewsAdapter(HttpSourceAdapter):
    name = "cryptocompare-news"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        headers = {"authorization": f"Apikey {CRYPTOCOMPARE_API_KEY}"} if CRYPTOCOMPARE_API_KEY else {}
        return CRYPTOCOMPARE_NEWS_URL, {"lang": "EN", "categories": symbol}, headers

    def parse(self, symbol: str, body: Any) -> Parsed:
        if not isinstance(body, dict):
            raise InvalidPayload(self.name, "expected JSON object")
        if body.get("Response") == "Error":
            raise InvalidPayload(self.name, str(body.get("Message") or "error response"))
        rows = body.get("Data")
        if not isinstance(rows, list):
            raise InvalidPayload(self.name, "Data is not a list")

        headlines: List[Dict[str, Any]] = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("title"):
                continue
            published = as_float(row.get("published_on"))
            headlines.append({
                "title": str(row["title"]).strip(),
                "url": row.get("url"),
                "source": row.get("source"),
                "published_at": datetime.fromtimestamp(published, tz=timezone.utc) if published else None,
            })
        return _pack(headlines)


class CryptoPanicAdapter(HttpSourceAdapter):
    name = "cryptopanic"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        if not CRYPTOPANIC_API_KEY:
            return None
        params = {"auth_token": CRYPTOPANIC_API_KEY, "currencies": symbol, "public": "true"}
        return CRYPTOPANIC_URL, params, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        rows = (body or {}).get("results")
        if not isinstance(rows, list):
            raise InvalidPayload(self.name, "results is not a list")

        headlines: List[Dict[str, Any]] = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("title"):
                continue
            source = row.get("source") or {}
            headlines.append({
                "title": str(row["title"]).strip(),
                "url": row.get("url"),
                "source": source.get("title") if isinstance(source, dict) else None,
                "published_at": _parse_iso(row.get("published_at")),
            })
        return _pack(headlines)
