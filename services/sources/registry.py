# services/sources/registry.py
from __future__ import annotations

from typing import Dict, List, Optional

import httpx

from services.market_intel.retry_policy import RetryPolicy

from .base import SourceAdapter
from .candle_sources import CoinGeckoChartAdapter, KrakenOhlcAdapter
from .news_sources import CryptoCompareNewsAdapter, CryptoPanicAdapter
from .onchain_sources import BlockchainInfoAdapter, MempoolSpaceAdapter
from .price_sources import (
    CoinbasePriceAdapter,
    CoinGeckoPriceAdapter,
    CoinMarketCapPriceAdapter,
    KrakenPriceAdapter,
)
from .sentiment_sources import CoinGeckoCommunityAdapter, FearGreedAdapter

ADAPTER_CLASSES = {
    "market-data": (CoinGeckoPriceAdapter, CoinMarketCapPriceAdapter, KrakenPriceAdapter, CoinbasePriceAdapter),
    "sentiment": (CoinGeckoCommunityAdapter, FearGreedAdapter),
    "technical": (KrakenOhlcAdapter, CoinGeckoChartAdapter),
    "on-chain": (MempoolSpaceAdapter, BlockchainInfoAdapter),
    "news": (CryptoCompareNewsAdapter, CryptoPanicAdapter),
}


def build_adapters(
    client: Optional[httpx.AsyncClient] = None,
    retry: Optional[RetryPolicy] = None,
) -> Dict[str, List[SourceAdapter]]:
    """Provider adapters per data phase, in declared tier order."""
    return {
        phase: [cls(client, retry=retry) for cls in classes]
        for phase, classes in ADAPTER_CLASSES.items()
    }
