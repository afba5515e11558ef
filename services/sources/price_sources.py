# services/sources/price_sources.py
"""Spot price providers triangulated for the market-data phase."""
from __future__ import annotations

import os
from typing import Any, Dict, Optional, Tuple

from services.market_intel.errors import InvalidPayload

from .base import HttpSourceAdapter, Parsed, as_float, require_float

COINGECKO_BASE_URL = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
COINGECKO_API_KEY = os.getenv("COINGECKO_API_KEY", "")
CMC_BASE_URL = os.getenv("COINMARKETCAP_BASE_URL", "https://pro-api.coinmarketcap.com/v1")
CMC_API_KEY = os.getenv("COINMARKETCAP_API_KEY", "")
KRAKEN_BASE_URL = os.getenv("KRAKEN_BASE_URL", "https://api.kraken.com/0/public")
COINBASE_BASE_URL = os.getenv("COINBASE_BASE_URL", "https://api.coinbase.com/v2")

COINGECKO_IDS: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "USDC": "usd-coin",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "MATIC": "matic-network",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
}

KRAKEN_PAIRS: Dict[str, str] = {
    "BTC": "XXBTZUSD",
    "ETH": "XETHZUSD",
    "SOL": "SOLUSD",
    "XRP": "XXRPZUSD",
    "ADA": "ADAUSD",
    "DOGE": "XDGUSD",
}


def coingecko_id(symbol: str) -> Optional[str]:
    return COINGECKO_IDS.get(symbol.upper())


def kraken_pair(symbol: str) -> str:
    s = symbol.upper()
    return KRAKEN_PAIRS.get(s, f"{s}USD")


def coingecko_headers() -> Dict[str, str]:
    return {"x-cg-demo-api-key": COINGECKO_API_KEY} if COINGECKO_API_KEY else {}


def first_result(source: str, body: Any) -> Any:
    """Kraken wraps results as {"error": [...], "result": {<pair>: {...}}}."""
    if not isinstance(body, dict):
        raise InvalidPayload(source, "expected JSON object")
    errors = body.get("error") or []
    if errors:
        raise InvalidPayload(source, "; ".join(str(e) for e in errors))
    result = body.get("result") or {}
    if not isinstance(result, dict) or not result:
        raise InvalidPayload(source, "empty result")
    # "last" is a pagination cursor on OHLC responses, not a pair
    for key, value in result.items():
        if key != "last":
            return value
    raise InvalidPayload(source, "empty result")


class CoinGeckoPriceAdapter(HttpSourceAdapter):
    name = "coingecko"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        coin_id = coingecko_id(symbol)
        if coin_id is None:
            return None
        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
            "include_market_cap": "true",
        }
        return f"{COINGECKO_BASE_URL}/simple/price", params, coingecko_headers()

    def parse(self, symbol: str, body: Any) -> Parsed:
        row = (body or {}).get(coingecko_id(symbol) or "")
        if not isinstance(row, dict):
            raise InvalidPayload(self.name, f"no quote for {symbol}")
        metrics = {"price": require_float(self.name, row.get("usd"), "usd")}
        for out_key, in_key in (
            ("volume_24h", "usd_24h_vol"),
            ("change_24h_pct", "usd_24h_change"),
            ("market_cap", "usd_market_cap"),
        ):
            v = as_float(row.get(in_key))
            if v is not None:
                metrics[out_key] = v
        return metrics, {}


class CoinMarketCapPriceAdapter(HttpSourceAdapter):
    name = "coinmarketcap"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        if not CMC_API_KEY:
            return None
        return (
            f"{CMC_BASE_URL}/cryptocurrency/quotes/latest",
            {"symbol": symbol, "convert": "USD"},
            {"X-CMC_PRO_API_KEY": CMC_API_KEY, "Accept": "application/json"},
        )

    def parse(self, symbol: str, body: Any) -> Parsed:
        data = (body or {}).get("data") or {}
        coin = data.get(symbol)
        if isinstance(coin, list):
            coin = coin[0] if coin else None
        if not isinstance(coin, dict):
            raise InvalidPayload(self.name, f"no quote for {symbol}")
        quote = (coin.get("quote") or {}).get("USD") or {}
        metrics = {"price": require_float(self.name, quote.get("price"), "quote.USD.price")}
        for out_key, in_key in (
            ("volume_24h", "volume_24h"),
            ("change_24h_pct", "percent_change_24h"),
            ("market_cap", "market_cap"),
        ):
            v = as_float(quote.get(in_key))
            if v is not None:
                metrics[out_key] = v
        return metrics, {}


class KrakenPriceAdapter(HttpSourceAdapter):
    name = "kraken"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        return f"{KRAKEN_BASE_URL}/Ticker", {"pair": kraken_pair(symbol)}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        ticker = first_result(self.name, body)
        last = require_float(self.name, (ticker.get("c") or [None])[0], "c[0]")
        metrics = {"price": last}

        volume = as_float((ticker.get("v") or [None, None])[1])
        if volume is not None:
            metrics["volume_24h"] = volume * last
        opened = as_float(ticker.get("o"))
        if opened:
            metrics["change_24h_pct"] = (last - opened) / opened * 100.0
        return metrics, {}


class CoinbasePriceAdapter(HttpSourceAdapter):
    name = "coinbase"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        return f"{COINBASE_BASE_URL}/prices/{symbol}-USD/spot", {}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        data = (body or {}).get("data") or {}
        # spot endpoint carries no volume or change
        return {"price": require_float(self.name, data.get("amount"), "data.amount")}, {}
