# services/market_intel/analyst.py
from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable


@runtime_checkable
class AIAnalyst(Protocol):
    async def analyze(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Turn the accumulated phase results into a verdict.

        `context` carries `symbol`, `data_quality` and `phases`
        ({phase: {quality, payload, sources} | None}). Raise
        AnalysisUnavailable when no verdict can be produced.
        """
        ...
