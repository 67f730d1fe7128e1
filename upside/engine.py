# upside/engine.py
"""Scoring pipeline for a single symbol.

Everything here is pure: the same price history and quote always produce the
same prediction. Fetching, caching and any synthetic history belong to the
caller.
"""
from __future__ import annotations
from typing import Optional, Sequence
from upside.config import ScoringConfig
from upside.indicators import closes_from_rows, compute_indicators
from upside.models import PriceRow, Prediction, Quote, TechnicalIndicators
from upside.scoring import analyst_score, analyst_upside, clamp, sentiment_score, technical_score
from upside.signals import generate_signals

def combine_scores(technical: float, analyst: float, sentiment: float,
                   cfg: Optional[ScoringConfig] = None) -> float:
    cfg = cfg or ScoringConfig()
    return (technical * cfg.technical_weight
            + analyst * cfg.analyst_weight
            + sentiment * cfg.sentiment_weight)

def trend_factor(ind: TechnicalIndicators) -> float:
    factor = 3.0 if ind.current_price > ind.sma20 else -2.0
    factor += 3.0 if ind.sma20 > ind.sma50 else -2.0
    return factor

def predicted_upside(ind: TechnicalIndicators, analyst_up: Optional[float],
                     cfg: Optional[ScoringConfig] = None) -> float:
    cfg = cfg or ScoringConfig()
    upside = ind.momentum * cfg.momentum_weight + trend_factor(ind)
    if analyst_up is not None:
        upside += analyst_up * cfg.analyst_influence
    if cfg.volatility_adjustment:
        # Raises the central estimate with volatility; off unless configured.
        upside += min(5.0, ind.volatility) * 0.5
    return upside

def confidence(combined: float, history_len: int, has_target: bool, volatility: float,
               cfg: Optional[ScoringConfig] = None) -> float:
    cfg = cfg or ScoringConfig()
    data_quality = min(history_len / cfg.confidence_history_days, 1.0)
    analyst_quality = 0.9 if has_target else 0.6
    volatility_penalty = max(0.0, 1.0 - volatility / 15.0)
    raw = (0.5 * (combined / 100.0)
           + 0.25 * data_quality
           + 0.15 * analyst_quality
           + 0.10 * volatility_penalty)
    return clamp(raw * 100.0)

def predict_symbol(
    symbol: str,
    name: Optional[str],
    current_price: float,
    prices: Sequence[PriceRow],
    quote: Quote,
    cfg: Optional[ScoringConfig] = None,
) -> Prediction:
    cfg = cfg or ScoringConfig()
    closes = closes_from_rows(prices)
    ind = compute_indicators(closes, current_price, cfg)

    target = quote.target_mean_price
    analyst_up = analyst_upside(target, current_price)
    tech = technical_score(ind, quote.fifty_two_week_low, quote.fifty_two_week_high)
    analyst = analyst_score(target, current_price, cfg.analyst_sensitivity)
    sentiment = sentiment_score(quote.average_analyst_rating, cfg)
    combined = combine_scores(tech, analyst, sentiment, cfg)

    upside = predicted_upside(ind, analyst_up, cfg)
    return Prediction(
        symbol=symbol,
        name=name or quote.name or symbol,
        current_price=current_price,
        predicted_price=current_price * (1 + upside / 100.0),
        predicted_upside=upside,
        confidence=confidence(combined, len(closes), analyst_up is not None, ind.volatility, cfg),
        technical_score=tech,
        analyst_score=analyst,
        sentiment_score=sentiment,
        combined_score=combined,
        technical=ind,
        signals=generate_signals(ind, upside, analyst_up, cfg.max_signals),
    )
