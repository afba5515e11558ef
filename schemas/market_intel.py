from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 20 or not symbol.replace("-", "").isalnum():
        raise ValueError("symbol must be 1-20 alphanumeric characters")
    return symbol


# ============================================================================
# CACHE PAYLOADS (discriminated by `kind`)
# ============================================================================

class SourceSummary(BaseModel):
    source: str
    status: str
    tier: int = 1
    latencyMs: int = 0
    error: Optional[str] = None


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str
    sources: List[SourceSummary] = Field(default_factory=list)
    fallback_tier: Optional[int] = None
    triangulation: Optional[Dict[str, Any]] = None
    sanity: Optional[Dict[str, Any]] = None


class MarketDataPayload(_PayloadBase):
    kind: Literal["market-data"] = "market-data"
    price: float
    volume_24h: Optional[float] = None
    change_24h_pct: Optional[float] = None
    market_cap: Optional[float] = None


class SentimentPayload(_PayloadBase):
    kind: Literal["sentiment"] = "sentiment"
    score: float
    label: str
    fear_greed_index: Optional[float] = None
    community_up_pct: Optional[float] = None


class TechnicalPayload(_PayloadBase):
    kind: Literal["technical"] = "technical"
    last_close: float
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    rsi14: Optional[float] = None
    volatility_annualized: Optional[float] = None
    max_drawdown: Optional[float] = None
    trend: str = "unknown"
    candle_count: int = 0


class OnChainPayload(_PayloadBase):
    kind: Literal["on-chain"] = "on-chain"
    metrics: Dict[str, float] = Field(default_factory=dict)


class Headline(BaseModel):
    title: str
    url: Optional[str] = None
    source: Optional[str] = None
    published_at: Optional[datetime] = None


class NewsPayload(_PayloadBase):
    kind: Literal["news"] = "news"
    article_count: int = 0
    headlines: List[Headline] = Field(default_factory=list)


class SourceHealthPayload(BaseModel):
    kind: Literal["source-health"] = "source-health"
    source: str
    score: int = 100
    successes: int = 0
    failures: int = 0
    last_error: Optional[str] = None


IntelPayload = Annotated[
    Union[
        MarketDataPayload,
        SentimentPayload,
        TechnicalPayload,
        OnChainPayload,
        NewsPayload,
        SourceHealthPayload,
    ],
    Field(discriminator="kind"),
]

PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(IntelPayload)


def parse_payload(raw: Any):
    """Validate stored JSON back into its payload model (raises pydantic.ValidationError)."""
    return PAYLOAD_ADAPTER.validate_python(raw)


def dump_payload(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return PAYLOAD_ADAPTER.dump_python(parse_payload(payload), mode="json")


# ============================================================================
# API RESPONSES
# ============================================================================

class StartJobRequest(BaseModel):
    symbol: str

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        return normalize_symbol(value)


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    symbol: str
    status: str
    phase: str
    progress: int
    data_quality: Optional[int] = None
    error: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    quality_summary: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class CachedDataResponse(BaseModel):
    symbol: str
    data_type: str
    quality_score: int
    payload: Dict[str, Any]
    created_at: datetime
    expires_at: datetime


class TickResponse(BaseModel):
    reclaimed: int = 0
    claimed: bool = False
    job_id: Optional[str] = None
    phase: Optional[str] = None
    status: Optional[str] = None
    progress: Optional[int] = None


class SweepResponse(BaseModel):
    deleted: int


class DataAlertResponse(BaseModel):
    id: int
    symbol: str
    data_type: str
    severity: str
    alert_type: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    job_id: Optional[str] = None
    requires_review: bool = True
    reviewed: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime


class AlertReviewRequest(BaseModel):
    reviewed_by: str = Field(min_length=1, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=2000)


class AlertStatsResponse(BaseModel):
    total: int
    pending: int
    reviewed: int
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
