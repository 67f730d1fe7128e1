# upside/data_fetcher.py
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional
import pandas as pd
import yfinance as yf
from upside.errors import RateLimited, UpstreamError
from upside.models import AnalystRecord, PriceRow, Quote, UsageCounters

log = logging.getLogger(__name__)

_RATE_LIMIT_MARKERS = ("Too Many Requests", "Rate limited", "429")

def _retry(fn, tries: int = 3):
    last = None
    for _ in range(tries):
        try:
            return fn()
        except Exception as e:
            last = e
    if last:
        raise last

def is_rate_limited(exc: BaseException) -> bool:
    if type(exc).__name__ == "YFRateLimitError":
        return True
    msg = str(exc)
    return any(m in msg for m in _RATE_LIMIT_MARKERS)

@dataclass
class RateLimiter:
    """Minimum delay between upstream calls sharing a key, across threads."""

    delay: float = 0.1
    _last_request: Dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def acquire(self, key: str = "yahoo") -> None:
        with self._lock:
            now = time.monotonic()
            last = self._last_request.get(key)
            if last is not None and now - last < self.delay:
                time.sleep(self.delay - (now - last))
            self._last_request[key] = time.monotonic()

class UsageTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._counters = UsageCounters()

    def record(self, ok: bool, rate_limited: bool = False):
        with self._lock:
            c = self._counters
            c.total_requests += 1
            if ok:
                c.successful_requests += 1
            else:
                c.failed_requests += 1
            if rate_limited:
                c.rate_limit_hits += 1

    def snapshot(self) -> UsageCounters:
        with self._lock:
            return self._counters.model_copy()

def _pick_col(cols: List[str], key: str) -> Optional[str]:
    return next((c for c in cols if c == key or c.startswith(key + "_")), None)

def fetch_prices(ticker: str, period: str = "6mo") -> pd.DataFrame:
    """Daily OHLCV for `ticker`, ascending by date, lower-case columns."""
    df = yf.download(ticker, period=period, auto_adjust=True, progress=False)
    if df is None or df.empty:
        return pd.DataFrame(columns=["date", "open", "high", "low", "close", "volume"])

    df = df.copy()

    # Flatten MultiIndex columns
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = [
            "_".join([str(c) for c in col if c is not None]).strip() or "unnamed"
            for col in df.columns
        ]

    if isinstance(df.index, pd.DatetimeIndex):
        df.index.name = "date"
        df = df.reset_index()

    df.columns = [str(c).lower() for c in df.columns]

    cols = list(df.columns)
    close_col = _pick_col(cols, "close")
    if "date" not in cols or close_col is None:
        raise KeyError(f"Expected columns 'date' and 'close', found: {cols}")

    out = pd.DataFrame({"date": pd.to_datetime(df["date"], errors="coerce")})
    for key in ["open", "high", "low", "close", "volume"]:
        col = _pick_col(cols, key)
        out[key] = df[col] if col is not None else None
    out = out.dropna(subset=["date", "close"]).sort_values("date").reset_index(drop=True)
    return out

def _opt_float(v) -> Optional[float]:
    return None if v is None or pd.isna(v) else float(v)

def rows_from_frame(df: pd.DataFrame) -> List[PriceRow]:
    rows: List[PriceRow] = []
    for _, r in df.iterrows():
        volume = r.get("volume")
        rows.append(PriceRow(
            date=pd.to_datetime(r["date"]).date(),
            open=_opt_float(r.get("open")),
            high=_opt_float(r.get("high")),
            low=_opt_float(r.get("low")),
            close=float(r["close"]),
            volume=None if volume is None or pd.isna(volume) else int(volume),
        ))
    return rows

def fetch_info(ticker: str) -> Dict[str, Any]:
    return yf.Ticker(ticker).info or {}

def quote_from_info(symbol: str, info: Dict[str, Any]) -> Optional[Quote]:
    price = info.get("currentPrice") or info.get("regularMarketPrice")
    if not price:
        return None
    return Quote(
        symbol=symbol,
        current_price=float(price),
        name=info.get("shortName") or info.get("longName"),
        fifty_two_week_low=info.get("fiftyTwoWeekLow"),
        fifty_two_week_high=info.get("fiftyTwoWeekHigh"),
        target_mean_price=info.get("targetMeanPrice"),
        average_analyst_rating=info.get("averageAnalystRating") or info.get("recommendationKey"),
    )

def analyst_from_info(symbol: str, info: Dict[str, Any], on: Optional[date] = None) -> AnalystRecord:
    return AnalystRecord(
        symbol=symbol,
        date=on or date.today(),
        target_mean=info.get("targetMeanPrice"),
        target_high=info.get("targetHighPrice"),
        target_low=info.get("targetLowPrice"),
        recommendation=info.get("averageAnalystRating") or info.get("recommendationKey"),
        number_of_analysts=info.get("numberOfAnalystOpinions"),
    )

class YahooFinanceProvider:
    """Upstream price and quote source with retry, rate limiting and usage counting."""

    def __init__(self, limiter: Optional[RateLimiter] = None, tracker: Optional[UsageTracker] = None,
                 retries: int = 3, period: str = "6mo"):
        self.limiter = limiter or RateLimiter()
        self.tracker = tracker or UsageTracker()
        self.retries = retries
        self.period = period

    def source_for(self, symbol: str) -> str:
        return "upstream"

    def _call(self, symbol: str, fn: Callable[[], Any]):
        def attempt():
            self.limiter.acquire()
            try:
                result = fn()
            except Exception as e:
                self.tracker.record(ok=False, rate_limited=is_rate_limited(e))
                raise
            self.tracker.record(ok=True)
            return result

        try:
            return _retry(attempt, tries=self.retries)
        except Exception as e:
            log.warning("Upstream call for %s failed after %d tries: %s", symbol, self.retries, e)
            if is_rate_limited(e):
                raise RateLimited(symbol, e) from e
            raise UpstreamError(symbol, e) from e

    def get_price_history(self, symbol: str, max_days: int = 60) -> List[PriceRow]:
        # Empty frames are valid answers; only exceptions are retried.
        df = self._call(symbol, lambda: fetch_prices(symbol, period=self.period))
        return rows_from_frame(df.tail(max_days))

    def get_info(self, symbol: str) -> Dict[str, Any]:
        return self._call(symbol, lambda: fetch_info(symbol))

    def get_quote(self, symbol: str) -> Optional[Quote]:
        return quote_from_info(symbol, self.get_info(symbol))

    def usage(self) -> UsageCounters:
        return self.tracker.snapshot()
