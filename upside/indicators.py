# upside/indicators.py
from __future__ import annotations
import math
from typing import Iterable, List, Optional, Sequence
import numpy as np
import pandas as pd
from upside.config import ScoringConfig
from upside.models import PriceRow, TechnicalIndicators

NEUTRAL_RSI = 50.0

def closes_from_rows(rows: Iterable[PriceRow]) -> List[float]:
    """Close prices ordered ascending by date."""
    p = pd.DataFrame([{"date": r.date, "close": r.close} for r in rows])
    if p.empty:
        return []
    p["date"] = pd.to_datetime(p["date"], errors="coerce")
    p = p.dropna(subset=["date", "close"]).sort_values("date", kind="stable")
    return [float(c) for c in p["close"]]

def rsi(closes: Sequence[float], period: int = 14) -> float:
    # Single-window average of the last `period` moves, not Wilder smoothing.
    if len(closes) < period + 1:
        return NEUTRAL_RSI
    deltas = pd.Series(closes, dtype=float).diff().iloc[-period:]
    gains = float(deltas.clip(lower=0).sum())
    losses = float(-deltas.clip(upper=0).sum())
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)

def sma(closes: Sequence[float], period: int, default: float = 0.0) -> float:
    if not closes:
        return default
    window = min(period, len(closes))
    return float(pd.Series(closes[-window:], dtype=float).mean())

def momentum(closes: Sequence[float], lookback: int = 10) -> float:
    if len(closes) < lookback:
        return 0.0
    anchor = closes[-lookback]
    if anchor == 0:
        return 0.0
    return (closes[-1] - anchor) / anchor * 100.0

def volatility(
    closes: Sequence[float],
    annualize: bool = True,
    trading_days: int = 252,
    insufficient: float = 25.0,
) -> float:
    if len(closes) < 2:
        return insufficient
    returns = pd.Series(closes, dtype=float).pct_change().dropna()
    vol = float(np.std(returns.to_numpy(), ddof=0)) * 100.0
    if annualize:
        vol *= math.sqrt(trading_days)
    return vol

def compute_indicators(
    closes: Sequence[float],
    current_price: float,
    cfg: Optional[ScoringConfig] = None,
) -> TechnicalIndicators:
    cfg = cfg or ScoringConfig()
    closes = list(closes)
    # Empty history: averages sit at the current price so trend rules stay flat.
    return TechnicalIndicators(
        rsi=rsi(closes, cfg.rsi_period),
        sma20=sma(closes, 20, default=current_price),
        sma50=sma(closes, 50, default=current_price),
        momentum=momentum(closes, cfg.momentum_lookback),
        volatility=volatility(
            closes,
            annualize=cfg.annualize_volatility,
            trading_days=cfg.trading_days,
            insufficient=cfg.insufficient_volatility,
        ),
        current_price=float(current_price),
    )
