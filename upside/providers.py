# upside/providers.py
from __future__ import annotations
import logging
import threading
from typing import Dict, List, Optional, Protocol
from sqlalchemy.exc import SQLAlchemyError
from upside.database import (
    cache_quote, get_cached_quote, get_latest_analyst, get_price_history,
    get_ticker_name, upsert_prices,
)
from upside.errors import UpstreamError
from upside.models import PriceRow, Quote

log = logging.getLogger(__name__)

YEAR_OF_TRADING_DAYS = 252

class PriceHistoryProvider(Protocol):
    def get_price_history(self, symbol: str, max_days: int = 60) -> List[PriceRow]: ...

    def source_for(self, symbol: str) -> str: ...

class QuoteProvider(Protocol):
    def get_quote(self, symbol: str) -> Optional[Quote]: ...

class StoreProvider:
    """Prices, analyst targets and a derived quote from the local store."""

    def __init__(self, engine):
        self.engine = engine

    def source_for(self, symbol: str) -> str:
        return "store"

    def get_price_history(self, symbol: str, max_days: int = 60) -> List[PriceRow]:
        return get_price_history(self.engine, symbol, max_days)

    def get_quote(self, symbol: str) -> Optional[Quote]:
        rows = get_price_history(self.engine, symbol, YEAR_OF_TRADING_DAYS)
        if not rows:
            return None
        closes = [r.close for r in rows]
        analyst = get_latest_analyst(self.engine, symbol)
        return Quote(
            symbol=symbol,
            current_price=rows[-1].close,
            name=get_ticker_name(self.engine, symbol),
            fifty_two_week_low=min(closes),
            fifty_two_week_high=max(closes),
            target_mean_price=analyst.target_mean if analyst else None,
            average_analyst_rating=analyst.recommendation if analyst else None,
        )

class FallbackProvider:
    """Try `primary` first, then `secondary`; history from `secondary` is written back to the store."""

    def __init__(self, primary, secondary, engine=None, min_points: int = 1):
        self.primary = primary
        self.secondary = secondary
        self.engine = engine
        self.min_points = min_points
        self._served: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _mark(self, symbol: str, provider) -> None:
        with self._lock:
            self._served[symbol] = provider.source_for(symbol)

    def source_for(self, symbol: str) -> str:
        with self._lock:
            return self._served.get(symbol, self.primary.source_for(symbol))

    def get_price_history(self, symbol: str, max_days: int = 60) -> List[PriceRow]:
        rows = self.primary.get_price_history(symbol, max_days)
        if len(rows) >= self.min_points:
            self._mark(symbol, self.primary)
            return rows
        rows = self.secondary.get_price_history(symbol, max_days)
        self._mark(symbol, self.secondary)
        if self.engine is not None and rows:
            try:
                upsert_prices(self.engine, symbol, rows)
            except SQLAlchemyError as e:
                log.warning("Could not store fetched history for %s: %s", symbol, e)
        return rows

    def get_quote(self, symbol: str) -> Optional[Quote]:
        quote = self.primary.get_quote(symbol)
        if quote is not None:
            return quote
        try:
            return self.secondary.get_quote(symbol)
        except UpstreamError as e:
            log.warning("No quote for %s: %s", symbol, e)
            return None

class CachedQuoteProvider:
    """Serve quotes from the quote_cache table while younger than `ttl_hours`."""

    def __init__(self, inner: QuoteProvider, engine, ttl_hours: float = 1.0):
        self.inner = inner
        self.engine = engine
        self.ttl_hours = ttl_hours

    def get_quote(self, symbol: str) -> Optional[Quote]:
        try:
            cached = get_cached_quote(self.engine, symbol, self.ttl_hours)
        except SQLAlchemyError as e:
            log.warning("Quote cache unavailable for %s: %s", symbol, e)
            cached = None
        if cached is not None:
            return cached
        quote = self.inner.get_quote(symbol)
        if quote is not None:
            try:
                cache_quote(self.engine, quote)
            except SQLAlchemyError as e:
                log.warning("Could not cache quote for %s: %s", symbol, e)
        return quote
