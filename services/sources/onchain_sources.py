# services/sources/onchain_sources.py
"""Bitcoin network metrics. Other symbols are reported as unsupported."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from services.market_intel.errors import InvalidPayload

from .base import HttpSourceAdapter, Parsed, as_float, require_float

MEMPOOL_SPACE_URL = os.getenv("MEMPOOL_SPACE_URL", "https://mempool.space/api")
BLOCKCHAIN_INFO_URL = os.getenv("BLOCKCHAIN_INFO_URL", "https://blockchain.info")

ONCHAIN_SYMBOLS = frozenset({"BTC"})


def congestion_level(tx_count: float, vbytes: float) -> str:
    if tx_count > 100_000 or vbytes > 100_000_000:
        return "high"
    if tx_count > 50_000 or vbytes > 50_000_000:
        return "medium"
    return "low"


class MempoolSpaceAdapter(HttpSourceAdapter):
    name = "mempool-space"
    tier = 1

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        if symbol not in ONCHAIN_SYMBOLS:
            return None
        return f"{MEMPOOL_SPACE_URL}/mempool", {}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        if not isinstance(body, dict):
            raise InvalidPayload(self.name, "expected JSON object")
        count = require_float(self.name, body.get("count"), "count")
        vsize = as_float(body.get("vsize")) or 0.0
        metrics = {"mempool_tx_count": count, "mempool_vbytes": vsize}
        fee = as_float(body.get("total_fee"))
        if fee is not None:
            metrics["mempool_total_fee_sat"] = fee
        return metrics, {"congestion": congestion_level(count, vsize)}


class BlockchainInfoAdapter(HttpSourceAdapter):
    name = "blockchain-info"
    tier = 2

    def request(self, symbol: str) -> Optional[Tuple[str, Dict[str, Any], Dict[str, str]]]:
        if symbol not in ONCHAIN_SYMBOLS:
            return None
        return f"{BLOCKCHAIN_INFO_URL}/stats", {"format": "json"}, {}

    def parse(self, symbol: str, body: Any) -> Parsed:
        if not isinstance(body, dict):
            raise InvalidPayload(self.name, "expected JSON object")
        count = require_float(self.name, body.get("n_tx_mempool"), "n_tx_mempool")
        vbytes = as_float(body.get("mempool_size")) or 0.0
        metrics: Dict[str, float] = {"mempool_tx_count": count, "mempool_vbytes": vbytes}
        for out_key, in_key in (
            ("hashrate", "hash_rate"),
            ("difficulty", "difficulty"),
            ("minutes_between_blocks", "minutes_between_blocks"),
            ("blocks_mined_24h", "n_blocks_mined"),
            ("tx_count_24h", "n_tx"),
        ):
            v = as_float(body.get(in_key))
            if v is not None:
                metrics[out_key] = v

        extras: Dict[str, Any] = {"congestion": congestion_level(count, vbytes)}
        ts_ms = as_float(body.get("timestamp"))
        if ts_ms is not None:
            extras["data_timestamp"] = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
        return metrics, extras
