# upside/synthetic.py
"""Synthetic price histories for offline runs and demos.

Nothing in the scoring path imports this module. The batch pipeline only
calls it when ``synthetic_fallback`` is enabled, and tags the resulting
prediction with ``data_source="synthetic"``.
"""
from __future__ import annotations
import zlib
from datetime import date
from typing import List, Optional
import numpy as np
import pandas as pd
from upside.models import AnalystRecord, PriceRow

class SyntheticPriceGenerator:
    def __init__(self, seed=None, daily_vol: float = 0.015):
        self.rng = np.random.default_rng(seed)
        self.daily_vol = daily_vol

    @classmethod
    def for_symbol(cls, symbol: str, seed: int = 0, daily_vol: float = 0.015) -> "SyntheticPriceGenerator":
        """Generator whose stream depends only on `symbol` and `seed`, not on call order."""
        return cls(seed=[seed, zlib.crc32(symbol.encode("utf-8"))], daily_vol=daily_vol)

    def price_history(self, current_price: float, days: int = 60,
                      end: Optional[date] = None) -> List[PriceRow]:
        """Random walk of `days` business days ending exactly at `current_price`."""
        if days <= 0:
            return []
        end = end or date.today()
        dates = pd.bdate_range(end=pd.Timestamp(end), periods=days)
        returns = self.rng.normal(0.0, self.daily_vol, size=days - 1)
        # Walk backwards from the current price so the last close matches it.
        closes = np.empty(days)
        closes[-1] = current_price
        for i in range(days - 2, -1, -1):
            closes[i] = closes[i + 1] / (1.0 + returns[i])

        rows: List[PriceRow] = []
        for d, c in zip(dates, closes):
            spread = abs(self.rng.normal(0.0, self.daily_vol)) * c
            rows.append(PriceRow(
                date=d.date(),
                open=float(c + self.rng.uniform(-0.5, 0.5) * spread),
                high=float(c + spread),
                low=float(c - spread),
                close=float(c),
                volume=int(self.rng.integers(1_000_000, 100_000_000)),
            ))
        return rows

    def analyst_record(self, symbol: str, target_price: float,
                       on: Optional[date] = None) -> AnalystRecord:
        return AnalystRecord(
            symbol=symbol,
            date=on or date.today(),
            target_mean=target_price,
            target_high=target_price * 1.1,
            target_low=target_price * 0.9,
            recommendation="buy",
            number_of_analysts=25,
        )
