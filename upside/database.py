# upside/database.py
from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import create_engine, inspect, text
from upside.models import AnalystRecord, Prediction, PriceRow, Quote, UsageCounters

PREDICTION_HORIZON_DAYS = 30

def get_engine(db_path: str):
    return create_engine(f"sqlite:///{db_path}", future=True)

def _now() -> datetime:
    return datetime.now(timezone.utc)

def init_schema(engine):
    """Create tables if they don't exist."""
    with engine.begin() as conn:
        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tickers(
          id INTEGER PRIMARY KEY,
          symbol TEXT UNIQUE,
          name TEXT
        );
        """))

        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS stock_prices(
          symbol TEXT,
          date TEXT,
          open REAL,
          high REAL,
          low REAL,
          close REAL NOT NULL,
          volume INTEGER,
          UNIQUE(symbol,date)
        );
        """))

        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS analyst_data(
          symbol TEXT,
          date TEXT,
          target_mean REAL,
          target_high REAL,
          target_low REAL,
          recommendation TEXT,
          number_of_analysts INTEGER,
          UNIQUE(symbol,date)
        );
        """))

        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS predictions(
          symbol TEXT,
          prediction_date TEXT,
          target_date TEXT,
          current_price REAL,
          predicted_price REAL,
          predicted_upside REAL,
          confidence_score REAL,
          technical_score REAL,
          analyst_score REAL,
          sentiment_score REAL,
          combined_score REAL,
          model_version TEXT,
          payload TEXT,
          config_hash TEXT,
          created_at TEXT,
          UNIQUE(symbol,prediction_date)
        );
        """))

        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS quote_cache(
          symbol TEXT UNIQUE,
          payload TEXT,
          fetched_at TEXT
        );
        """))

        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS api_usage_logs(
          id INTEGER PRIMARY KEY,
          timestamp TEXT,
          total_requests INTEGER,
          successful_requests INTEGER,
          failed_requests INTEGER,
          rate_limit_hits INTEGER
        );
        """))

    add_missing_columns(engine, "predictions", {"config_hash": "TEXT"})

def add_missing_columns(engine, table: str, columns: Dict[str, str]):
    """Add columns that older stores were created without."""
    inspector = inspect(engine)
    existing = [col["name"] for col in inspector.get_columns(table)]
    with engine.begin() as conn:
        for col, col_type in columns.items():
            if col not in existing:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col} {col_type}"))

def upsert_ticker(engine, symbol: str, name: Optional[str] = None):
    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO tickers(symbol,name) VALUES(:s,:n)
ON CONFLICT(symbol) DO UPDATE SET name=COALESCE(excluded.name, tickers.name)
"""), {"s": symbol, "n": name})

def get_ticker_name(engine, symbol: str) -> Optional[str]:
    with engine.begin() as conn:
        return conn.execute(text("SELECT name FROM tickers WHERE symbol=:s"), {"s": symbol}).scalar_one_or_none()

def upsert_prices(engine, symbol: str, rows: Iterable[PriceRow]) -> int:
    params = [{
        "symbol": symbol,
        "date": r.date.isoformat(),
        "open": r.open,
        "high": r.high,
        "low": r.low,
        "close": r.close,
        "volume": r.volume,
    } for r in rows]
    if not params:
        return 0

    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO stock_prices(symbol,date,open,high,low,close,volume)
VALUES(:symbol,:date,:open,:high,:low,:close,:volume)
ON CONFLICT(symbol,date) DO UPDATE SET
  open=excluded.open,
  high=excluded.high,
  low=excluded.low,
  close=excluded.close,
  volume=excluded.volume
"""), params)
    return len(params)

def get_price_history(engine, symbol: str, max_days: int = 60) -> List[PriceRow]:
    """Most recent `max_days` rows for `symbol`, ascending by date."""
    with engine.begin() as conn:
        result = conn.execute(text("""
SELECT date, open, high, low, close, volume FROM stock_prices
WHERE symbol=:s ORDER BY date DESC LIMIT :n
"""), {"s": symbol, "n": max_days}).mappings().all()
    rows = [PriceRow(**dict(r)) for r in result]
    rows.reverse()
    return rows

def upsert_analyst(engine, record: AnalystRecord):
    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO analyst_data(symbol,date,target_mean,target_high,target_low,recommendation,number_of_analysts)
VALUES(:symbol,:date,:target_mean,:target_high,:target_low,:recommendation,:number_of_analysts)
ON CONFLICT(symbol,date) DO UPDATE SET
  target_mean=excluded.target_mean,
  target_high=excluded.target_high,
  target_low=excluded.target_low,
  recommendation=excluded.recommendation,
  number_of_analysts=excluded.number_of_analysts
"""), {**record.model_dump(), "date": record.date.isoformat()})

def get_latest_analyst(engine, symbol: str) -> Optional[AnalystRecord]:
    with engine.begin() as conn:
        row = conn.execute(text("""
SELECT symbol, date, target_mean, target_high, target_low, recommendation, number_of_analysts
FROM analyst_data WHERE symbol=:s ORDER BY date DESC LIMIT 1
"""), {"s": symbol}).mappings().first()
    return AnalystRecord(**dict(row)) if row else None

def upsert_prediction(engine, prediction: Prediction, prediction_date: Optional[date] = None,
                      model_version: Optional[str] = None, config_hash: Optional[str] = None):
    prediction_date = prediction_date or _now().date()
    row: Dict[str, Any] = {
        "symbol": prediction.symbol,
        "prediction_date": prediction_date.isoformat(),
        "target_date": (prediction_date + timedelta(days=PREDICTION_HORIZON_DAYS)).isoformat(),
        "current_price": prediction.current_price,
        "predicted_price": prediction.predicted_price,
        "predicted_upside": prediction.predicted_upside,
        "confidence_score": prediction.confidence,
        "technical_score": prediction.technical_score,
        "analyst_score": prediction.analyst_score,
        "sentiment_score": prediction.sentiment_score,
        "combined_score": prediction.combined_score,
        "model_version": model_version or prediction.model_version,
        "payload": prediction.model_dump_json(),
        "config_hash": config_hash,
        "created_at": _now().isoformat(),
    }
    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO predictions(symbol,prediction_date,target_date,current_price,predicted_price,predicted_upside,
  confidence_score,technical_score,analyst_score,sentiment_score,combined_score,model_version,payload,
  config_hash,created_at)
VALUES(:symbol,:prediction_date,:target_date,:current_price,:predicted_price,:predicted_upside,
  :confidence_score,:technical_score,:analyst_score,:sentiment_score,:combined_score,:model_version,:payload,
  :config_hash,:created_at)
ON CONFLICT(symbol,prediction_date) DO UPDATE SET
  target_date=excluded.target_date,
  current_price=excluded.current_price,
  predicted_price=excluded.predicted_price,
  predicted_upside=excluded.predicted_upside,
  confidence_score=excluded.confidence_score,
  technical_score=excluded.technical_score,
  analyst_score=excluded.analyst_score,
  sentiment_score=excluded.sentiment_score,
  combined_score=excluded.combined_score,
  model_version=excluded.model_version,
  payload=excluded.payload,
  config_hash=excluded.config_hash,
  created_at=excluded.created_at
"""), row)

def get_cached_prediction(engine, symbol: str, ttl_hours: float,
                          model_version: Optional[str] = None,
                          config_hash: Optional[str] = None) -> Optional[Prediction]:
    """Latest stored prediction younger than `ttl_hours`.

    When given, `model_version` and `config_hash` must match too, so a changed
    scoring configuration never reuses scores computed under the old one.
    """
    cutoff = (_now() - timedelta(hours=ttl_hours)).isoformat()
    sql = "SELECT payload FROM predictions WHERE symbol=:s AND created_at >= :cutoff"
    params: Dict[str, Any] = {"s": symbol, "cutoff": cutoff}
    if model_version:
        sql += " AND model_version=:v"
        params["v"] = model_version
    if config_hash:
        sql += " AND config_hash=:h"
        params["h"] = config_hash
    sql += " ORDER BY created_at DESC LIMIT 1"
    with engine.begin() as conn:
        payload = conn.execute(text(sql), params).scalar_one_or_none()
    return Prediction.model_validate_json(payload) if payload else None

def cache_quote(engine, quote: Quote):
    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO quote_cache(symbol,payload,fetched_at) VALUES(:s,:p,:t)
ON CONFLICT(symbol) DO UPDATE SET payload=excluded.payload, fetched_at=excluded.fetched_at
"""), {"s": quote.symbol, "p": quote.model_dump_json(), "t": _now().isoformat()})

def get_cached_quote(engine, symbol: str, ttl_hours: float) -> Optional[Quote]:
    cutoff = (_now() - timedelta(hours=ttl_hours)).isoformat()
    with engine.begin() as conn:
        payload = conn.execute(text(
            "SELECT payload FROM quote_cache WHERE symbol=:s AND fetched_at >= :cutoff"
        ), {"s": symbol, "cutoff": cutoff}).scalar_one_or_none()
    return Quote.model_validate_json(payload) if payload else None

def log_usage(engine, counters: UsageCounters):
    with engine.begin() as conn:
        conn.execute(text("""
INSERT INTO api_usage_logs(timestamp,total_requests,successful_requests,failed_requests,rate_limit_hits)
VALUES(:t,:total_requests,:successful_requests,:failed_requests,:rate_limit_hits)
"""), {"t": _now().isoformat(), **counters.model_dump()})

def usage_summary(engine, hours: float = 24, daily_limit: int = 500) -> Dict[str, Any]:
    cutoff = (_now() - timedelta(hours=hours)).isoformat()
    with engine.begin() as conn:
        row = conn.execute(text("""
SELECT COALESCE(SUM(total_requests),0) AS total_requests,
       COALESCE(SUM(successful_requests),0) AS successful_requests,
       COALESCE(SUM(failed_requests),0) AS failed_requests,
       COALESCE(SUM(rate_limit_hits),0) AS rate_limit_hits,
       COUNT(*) AS runs
FROM api_usage_logs WHERE timestamp >= :cutoff
"""), {"cutoff": cutoff}).mappings().one()
    totals = UsageCounters(**{k: int(row[k]) for k in UsageCounters.model_fields})
    return {
        "window_hours": hours,
        "runs": int(row["runs"]),
        "totals": totals.model_dump(),
        "daily_limit": daily_limit,
        "remaining_requests": max(0, daily_limit - totals.total_requests),
        "percentage_used": round(min(100.0, totals.total_requests / daily_limit * 100), 1) if daily_limit else 0.0,
    }
