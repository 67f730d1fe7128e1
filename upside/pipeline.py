# upside/pipeline.py
from __future__ import annotations
import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.exc import SQLAlchemyError
from upside.config import ScoringConfig, scoring_from_cfg
from upside.data_fetcher import RateLimiter, UsageTracker, YahooFinanceProvider
from upside.database import get_cached_prediction, log_usage, upsert_prediction
from upside.engine import predict_symbol
from upside.errors import MissingQuote, PersistenceFailure
from upside.models import BatchResult, Prediction, UsageCounters
from upside.providers import CachedQuoteProvider, FallbackProvider, StoreProvider
from upside.ranker import rank_opportunities
from upside.synthetic import SyntheticPriceGenerator

log = logging.getLogger(__name__)

DEFAULT_MODEL_VERSION = "v1.1"
SOURCES = ("store", "live", "auto")

def normalize_symbols(symbols: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))

class BatchPredictor:
    """Runs the per-symbol scoring pipeline over a batch on a bounded thread pool.

    Workers fetch and score; persistence and ranking happen on the calling
    thread once results come back.
    """

    def __init__(
        self,
        history,
        quotes,
        scoring: Optional[ScoringConfig] = None,
        engine=None,
        tracker: Optional[UsageTracker] = None,
        workers: int = 4,
        history_days: int = 60,
        model_version: str = DEFAULT_MODEL_VERSION,
        prediction_cache_ttl_hours: float = 0,
        synthetic_fallback: bool = False,
        synthetic_seed: int = 0,
    ):
        self.history = history
        self.quotes = quotes
        self.scoring = scoring or ScoringConfig()
        self.engine = engine
        self.tracker = tracker
        self.workers = max(1, workers)
        self.history_days = history_days
        self.model_version = model_version
        self.prediction_cache_ttl_hours = prediction_cache_ttl_hours
        self.synthetic_fallback = synthetic_fallback
        self.synthetic_seed = synthetic_seed

    def config_hash(self) -> str:
        """Fingerprint of every setting that changes a computed prediction."""
        parts = [self.scoring.model_dump_json(), str(self.history_days),
                 str(self.synthetic_fallback), str(self.synthetic_seed)]
        return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()

    def _cached(self, symbol: str) -> Optional[Prediction]:
        if self.engine is None or self.prediction_cache_ttl_hours <= 0:
            return None
        try:
            return get_cached_prediction(self.engine, symbol, self.prediction_cache_ttl_hours,
                                         self.model_version, self.config_hash())
        except SQLAlchemyError as e:
            log.warning("Prediction cache unavailable for %s, recomputing: %s", symbol, e)
            return None

    def evaluate(self, symbol: str) -> Tuple[Prediction, bool]:
        """Score one symbol. Returns the prediction and whether it was freshly computed."""
        cached = self._cached(symbol)
        if cached is not None:
            log.debug("Using cached prediction for %s", symbol)
            return cached.model_copy(update={"data_source": "cache"}), False

        quote = self.quotes.get_quote(symbol)
        if quote is None:
            raise MissingQuote(symbol)

        rows = self.history.get_price_history(symbol, self.history_days)
        source = self.history.source_for(symbol)
        if not rows and self.synthetic_fallback:
            log.warning("No price history for %s, scoring against synthetic history", symbol)
            gen = SyntheticPriceGenerator.for_symbol(symbol, seed=self.synthetic_seed)
            rows = gen.price_history(quote.current_price, days=self.history_days)
            source = "synthetic"

        pred = predict_symbol(symbol, quote.name, quote.current_price, rows, quote, self.scoring)
        return pred.model_copy(update={"data_source": source, "model_version": self.model_version}), True

    def _persist(self, pred: Prediction):
        try:
            upsert_prediction(self.engine, pred, model_version=self.model_version,
                              config_hash=self.config_hash())
        except SQLAlchemyError as e:
            raise PersistenceFailure(pred.symbol, e) from e

    def run(self, symbols: Sequence[str], min_upside: float = 10.0) -> BatchResult:
        symbols = normalize_symbols(symbols)
        results: Dict[str, Prediction] = {}
        succeeded = failed = skipped = 0

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            future_to_symbol = {executor.submit(self.evaluate, s): s for s in symbols}
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    pred, fresh = future.result()
                except MissingQuote as e:
                    skipped += 1
                    log.info("Skipping %s: %s", symbol, e.message)
                    continue
                except Exception:
                    failed += 1
                    log.exception("Prediction failed for %s", symbol)
                    continue

                succeeded += 1
                results[symbol] = pred
                if fresh and self.engine is not None:
                    try:
                        self._persist(pred)
                    except PersistenceFailure as e:
                        log.warning(e.message)

        ordered = [results[s] for s in symbols if s in results]
        opportunities, count = rank_opportunities(ordered, min_upside)

        usage = self.tracker.snapshot() if self.tracker is not None else UsageCounters()
        if self.engine is not None and self.tracker is not None:
            try:
                log_usage(self.engine, usage)
            except SQLAlchemyError as e:
                log.warning("Could not record usage counters: %s", e)

        log.info("Batch done: %d ok, %d failed, %d skipped, %d opportunities",
                 succeeded, failed, skipped, count)
        return BatchResult(
            count=count,
            opportunities=opportunities,
            analyzed_at=datetime.now(timezone.utc),
            model_version=self.model_version,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            usage=usage,
        )

def build_predictor(cfg: Dict[str, Any], engine=None, source: str = "auto") -> BatchPredictor:
    if source not in SOURCES:
        raise ValueError(f"source must be one of {SOURCES}, got {source!r}")
    if source != "live" and engine is None:
        raise ValueError(f"source {source!r} needs a database engine")

    tracker = UsageTracker()
    upstream = None
    if source in ("live", "auto"):
        upstream = YahooFinanceProvider(
            limiter=RateLimiter(delay=float(cfg.get("request_delay", 0.1))),
            tracker=tracker,
            retries=int(cfg.get("retries", 3)),
            period=cfg.get("history_period", "6mo"),
        )

    if source == "store":
        store = StoreProvider(engine)
        history, quotes = store, store
    elif source == "live":
        history = upstream
        quotes = CachedQuoteProvider(upstream, engine, float(cfg.get("quote_cache_ttl_hours", 1))) if engine is not None else upstream
    else:
        store = StoreProvider(engine)
        history = FallbackProvider(store, upstream, engine=engine)
        quotes = FallbackProvider(store, CachedQuoteProvider(upstream, engine, float(cfg.get("quote_cache_ttl_hours", 1))))

    return BatchPredictor(
        history=history,
        quotes=quotes,
        scoring=scoring_from_cfg(cfg),
        engine=engine,
        tracker=tracker if upstream is not None else None,
        workers=int(cfg.get("workers", 4)),
        history_days=int(cfg.get("history_days", 60)),
        model_version=cfg.get("model_version", DEFAULT_MODEL_VERSION),
        prediction_cache_ttl_hours=float(cfg.get("prediction_cache_ttl_hours", 4)),
        synthetic_fallback=bool(cfg.get("synthetic_fallback", False)),
        synthetic_seed=int(cfg.get("synthetic_seed", 0)),
    )

def predict(symbols: Sequence[str], min_upside: float, cfg: Optional[Dict[str, Any]] = None,
            engine=None, source: str = "auto") -> BatchResult:
    return build_predictor(cfg or {}, engine=engine, source=source).run(symbols, min_upside)
