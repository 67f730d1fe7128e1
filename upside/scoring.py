# upside/scoring.py
from __future__ import annotations
import re
from typing import Optional
from upside.config import ScoringConfig
from upside.models import TechnicalIndicators

NEUTRAL_SCORE = 50.0

_BEARISH_WORDS = ("sell", "underperform", "underweight")
_BULLISH_WORDS = ("buy", "outperform", "overweight")
_NEUTRAL_WORDS = ("hold", "neutral")
_LEADING_CODE = re.compile(r"^\s*(\d+(?:\.\d+)?)")

def clamp(v: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, v))

def technical_score(
    ind: TechnicalIndicators,
    fifty_two_week_low: Optional[float] = None,
    fifty_two_week_high: Optional[float] = None,
) -> float:
    score = NEUTRAL_SCORE

    if ind.rsi < 30:
        score += 20
    elif ind.rsi < 40:
        score += 10
    elif ind.rsi > 70:
        score -= 15
    elif ind.rsi > 60:
        score -= 5

    if ind.momentum > 10:
        score += 20
    elif ind.momentum > 5:
        score += 15
    elif ind.momentum > 0:
        score += 5
    elif ind.momentum < -10:
        score -= 20
    elif ind.momentum < -5:
        score -= 10

    price = ind.current_price
    if price > ind.sma20:
        score += 10
    if ind.sma20 > ind.sma50:
        score += 10
    if price > ind.sma50:
        score += 5

    if ind.volatility < 20:
        score += 10
    elif ind.volatility < 30:
        score += 5
    elif ind.volatility > 50:
        score -= 10

    if fifty_two_week_low is not None and fifty_two_week_high is not None:
        rng = fifty_two_week_high - fifty_two_week_low
        if rng > 0:
            position = (price - fifty_two_week_low) / rng
            if position < 0.3:
                score += 15
            elif position > 0.9:
                score -= 10

    return clamp(score)

def analyst_upside(target: Optional[float], price: float) -> Optional[float]:
    if not target or not price:
        return None
    return (target - price) / price * 100.0

def analyst_score(target: Optional[float], price: float, sensitivity: float = 1.5) -> float:
    upside = analyst_upside(target, price)
    if upside is None:
        return NEUTRAL_SCORE
    return clamp(NEUTRAL_SCORE + upside * sensitivity)

def sentiment_score(rating: Optional[str], cfg: Optional[ScoringConfig] = None) -> float:
    """Map a free-text analyst rating to a sentiment score.

    Keywords win over numeric codes, so "2.1 - Buy" reads as bullish. A bare
    code follows the 1 (strong buy) to 5 (sell) consensus scale.
    """
    cfg = cfg or ScoringConfig()
    if not rating:
        return cfg.sentiment_neutral
    text = rating.strip().lower()
    if any(w in text for w in _BEARISH_WORDS):
        return cfg.sentiment_bearish
    if any(w in text for w in _BULLISH_WORDS):
        return cfg.sentiment_bullish
    if any(w in text for w in _NEUTRAL_WORDS):
        return cfg.sentiment_neutral

    m = _LEADING_CODE.match(text)
    if m:
        code = float(m.group(1))
        if code < 2:
            return cfg.sentiment_bullish
        if code < 4:
            return cfg.sentiment_neutral
        return cfg.sentiment_bearish
    return cfg.sentiment_neutral
