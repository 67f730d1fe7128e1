# upside/config.py
from __future__ import annotations
import os
from typing import Any, Dict
import yaml
from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_PATH = "config.yaml"

class ScoringConfig(BaseModel):
    """Tunable constants of the indicator, scoring and prediction rules.

    Volatility thresholds in the technical score assume annualized volatility;
    switching ``annualize_volatility`` off without retuning them shifts every
    symbol into the low-volatility buckets.
    """

    rsi_period: int = Field(default=14, ge=1)
    momentum_lookback: int = Field(default=10, ge=2)
    annualize_volatility: bool = True
    trading_days: int = 252
    insufficient_volatility: float = 25.0

    analyst_sensitivity: float = Field(default=1.5, ge=0.0)
    analyst_influence: float = Field(default=0.3, ge=0.0)
    momentum_weight: float = 0.4
    volatility_adjustment: bool = False

    technical_weight: float = 0.40
    analyst_weight: float = 0.40
    sentiment_weight: float = 0.20

    sentiment_bullish: float = 75.0
    sentiment_neutral: float = 50.0
    sentiment_bearish: float = 25.0

    confidence_history_days: int = Field(default=60, ge=1)
    max_signals: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def weights_sum_to_one(self):
        total = self.technical_weight + self.analyst_weight + self.sentiment_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"score weights must sum to 1.0, got {total}")
        return self

def load_cfg(path: str | None = None) -> Dict[str, Any]:
    path = path or os.environ.get("UPSIDE_CONFIG", DEFAULT_CONFIG_PATH)
    if not os.path.exists(path):
        cfg: Dict[str, Any] = {}
    else:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    db_override = os.environ.get("UPSIDE_DB_PATH")
    if db_override:
        cfg["db_path"] = db_override
    return cfg

def scoring_from_cfg(cfg: Dict[str, Any]) -> ScoringConfig:
    return ScoringConfig(**(cfg.get("scoring") or {}))
