# upside/signals.py
from __future__ import annotations
from typing import List, Optional
from upside.models import Signal, TechnicalIndicators

HIGH_VOLATILITY = 40.0

def _upside_signal(predicted_upside: float) -> Optional[Signal]:
    if predicted_upside > 15:
        return Signal(text=f"Strong upside: +{predicted_upside:.1f}% in 30 days", bullish=True)
    if predicted_upside > 8:
        return Signal(text=f"Moderate upside: +{predicted_upside:.1f}% in 30 days", bullish=True)
    if predicted_upside > 3:
        return Signal(text=f"Modest gain expected: +{predicted_upside:.1f}%", bullish=True)
    if predicted_upside < 0:
        return Signal(text=f"Downside risk: {predicted_upside:.1f}%", bullish=False)
    return None

def _rsi_signal(rsi: float) -> Optional[Signal]:
    if rsi < 30:
        return Signal(text=f"Oversold (RSI {rsi:.1f}), potential bounce", bullish=True)
    if rsi > 70:
        return Signal(text=f"Overbought (RSI {rsi:.1f}), exercise caution", bullish=False)
    return None

def _momentum_signal(momentum: float) -> Optional[Signal]:
    if momentum > 8:
        return Signal(text=f"Strong positive momentum: +{momentum:.1f}%", bullish=True)
    if momentum < -8:
        return Signal(text=f"Negative momentum: {momentum:.1f}%", bullish=False)
    return None

def _trend_signal(ind: TechnicalIndicators) -> Optional[Signal]:
    if ind.current_price > ind.sma20 > ind.sma50:
        return Signal(text="Price above key moving averages", bullish=True)
    return None

def _analyst_signal(analyst_up: Optional[float]) -> Optional[Signal]:
    if analyst_up is not None and analyst_up > 12:
        return Signal(text=f"Analyst target: +{analyst_up:.1f}% upside", bullish=True)
    return None

def _volatility_signal(vol: float) -> Optional[Signal]:
    if vol > HIGH_VOLATILITY:
        return Signal(text=f"High volatility ({vol:.1f}%), elevated risk", bullish=False)
    return None

def generate_signals(
    ind: TechnicalIndicators,
    predicted_upside: float,
    analyst_up: Optional[float],
    max_signals: int = 5,
) -> List[Signal]:
    candidates = [
        _upside_signal(predicted_upside),
        _rsi_signal(ind.rsi),
        _momentum_signal(ind.momentum),
        _trend_signal(ind),
        _analyst_signal(analyst_up),
        _volatility_signal(ind.volatility),
    ]
    signals = [s for s in candidates if s is not None]
    return signals[:max_signals]
