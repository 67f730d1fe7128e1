# upside/models.py
from __future__ import annotations
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

class PriceRow(BaseModel):
    date: date
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: Optional[int] = None

    @model_validator(mode="after")
    def high_ge_low(self):
        if self.high is not None and self.low is not None and self.high < self.low:
            raise ValueError("high must be >= low")
        return self

class Quote(BaseModel):
    symbol: str
    current_price: float
    name: Optional[str] = None
    fifty_two_week_low: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    target_mean_price: Optional[float] = None
    average_analyst_rating: Optional[str] = None

class AnalystRecord(BaseModel):
    symbol: str
    date: date
    target_mean: Optional[float] = None
    target_high: Optional[float] = None
    target_low: Optional[float] = None
    recommendation: Optional[str] = None
    number_of_analysts: Optional[int] = None

class TechnicalIndicators(BaseModel):
    model_config = ConfigDict(frozen=True)

    rsi: float
    sma20: float
    sma50: float
    momentum: float
    volatility: float
    current_price: float

class Signal(BaseModel):
    text: str
    bullish: bool

class Prediction(BaseModel):
    symbol: str
    name: str
    current_price: float
    predicted_price: float
    predicted_upside: float
    confidence: float
    technical_score: float
    analyst_score: float
    sentiment_score: float
    combined_score: float
    technical: TechnicalIndicators
    signals: List[Signal] = Field(default_factory=list)
    data_source: Optional[str] = None  # set by the batch pipeline: store | upstream | synthetic | cache
    model_version: Optional[str] = None

class UsageCounters(BaseModel):
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limit_hits: int = 0

class BatchResult(BaseModel):
    count: int
    opportunities: List[Prediction]
    analyzed_at: datetime
    model_version: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    usage: UsageCounters = Field(default_factory=UsageCounters)
