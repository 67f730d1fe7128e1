import pandas as pd
import pytest

from upside.config import ScoringConfig
from upside.database import get_engine, init_schema, upsert_analyst, upsert_prices, upsert_ticker
from upside.models import Quote, PriceRow
from upside.pipeline import BatchPredictor, build_predictor, normalize_symbols
from upside.synthetic import SyntheticPriceGenerator

RISING = [100.0 + i * 0.5 for i in range(40)]

def _rows(closes):
    dates = pd.bdate_range("2024-01-01", periods=len(closes))
    return [PriceRow(date=d.date(), close=c) for d, c in zip(dates, closes)]

class FakeHistory:
    def __init__(self, data, broken=()):
        self.data = data
        self.broken = set(broken)
        self.calls = []

    def source_for(self, symbol):
        return "store"

    def get_price_history(self, symbol, max_days=60):
        self.calls.append(symbol)
        if symbol in self.broken:
            raise RuntimeError(f"store unavailable for {symbol}")
        return self.data.get(symbol, [])[-max_days:]

class FakeQuotes:
    def __init__(self, quotes):
        self.quotes = quotes

    def get_quote(self, symbol):
        return self.quotes.get(symbol)

def _quote(symbol, price, target=None):
    return Quote(symbol=symbol, current_price=price, target_mean_price=target, name=f"{symbol} Inc")

def test_normalize_symbols():
    assert normalize_symbols([" aapl", "MSFT", "AAPL", "", "  "]) == ["AAPL", "MSFT"]

def test_batch_isolates_failures():
    history = FakeHistory({"AAA": _rows(RISING), "CCC": _rows(RISING)}, broken=["CCC"])
    quotes = FakeQuotes({"AAA": _quote("AAA", RISING[-1], 150.0), "CCC": _quote("CCC", 10.0)})
    result = BatchPredictor(history, quotes, workers=2).run(["AAA", "BBB", "CCC"], min_upside=-100)

    assert result.succeeded == 1
    assert result.skipped == 1   # BBB has no quote
    assert result.failed == 1    # CCC store raised
    assert result.count == 1
    assert result.opportunities[0].symbol == "AAA"
    assert result.opportunities[0].data_source == "store"
    assert result.opportunities[0].model_version == result.model_version

def test_min_upside_filters_everything():
    history = FakeHistory({"AAA": _rows([100.0] * 30)})
    quotes = FakeQuotes({"AAA": _quote("AAA", 100.0, 133.4)})
    # flat history: -4 trend + 33.4 * 0.3 analyst = ~6%
    result = BatchPredictor(history, quotes).run(["AAA"], min_upside=50)
    assert result.succeeded == 1
    assert result.count == 0
    assert result.opportunities == []

def test_results_ranked_by_combined_score():
    data = {s: _rows(RISING) for s in ["LOW", "HIGH", "MID"]}
    quotes = FakeQuotes({
        "LOW": _quote("LOW", RISING[-1], RISING[-1] * 1.05),
        "HIGH": _quote("HIGH", RISING[-1], RISING[-1] * 1.40),
        "MID": _quote("MID", RISING[-1], RISING[-1] * 1.20),
    })
    result = BatchPredictor(FakeHistory(data), quotes, workers=3).run(["LOW", "HIGH", "MID"], min_upside=-100)
    assert [p.symbol for p in result.opportunities] == ["HIGH", "MID", "LOW"]
    scores = [p.combined_score for p in result.opportunities]
    assert scores == sorted(scores, reverse=True)

def test_persists_and_reuses_cached_predictions(tmp_path):
    engine = get_engine(str(tmp_path / "batch.db"))
    init_schema(engine)
    history = FakeHistory({"AAA": _rows(RISING)})
    quotes = FakeQuotes({"AAA": _quote("AAA", RISING[-1], 150.0)})

    first = BatchPredictor(history, quotes, engine=engine, prediction_cache_ttl_hours=4).run(["AAA"], -100)
    assert history.calls == ["AAA"]

    second = BatchPredictor(history, quotes, engine=engine, prediction_cache_ttl_hours=4).run(["AAA"], -100)
    assert history.calls == ["AAA"]  # served from the predictions table
    assert second.opportunities[0].data_source == "cache"
    assert second.opportunities[0].predicted_upside == first.opportunities[0].predicted_upside

def test_persistence_failure_does_not_drop_prediction(tmp_path):
    # no schema: every write fails
    engine = get_engine(str(tmp_path / "broken.db"))
    history = FakeHistory({"AAA": _rows(RISING)})
    quotes = FakeQuotes({"AAA": _quote("AAA", RISING[-1], 150.0)})

    result = BatchPredictor(history, quotes, engine=engine).run(["AAA"], -100)
    assert result.succeeded == 1
    assert result.failed == 0
    assert result.count == 1

def test_cache_read_failure_recomputes(tmp_path):
    # no schema: the cache lookup itself fails
    engine = get_engine(str(tmp_path / "broken.db"))
    history = FakeHistory({"AAA": _rows(RISING)})
    quotes = FakeQuotes({"AAA": _quote("AAA", RISING[-1], 150.0)})

    result = BatchPredictor(history, quotes, engine=engine, prediction_cache_ttl_hours=4).run(["AAA"], -100)
    assert result.succeeded == 1
    assert result.failed == 0
    assert result.count == 1
    assert result.opportunities[0].data_source == "store"

def test_changed_scoring_config_bypasses_cache(tmp_path):
    engine = get_engine(str(tmp_path / "batch.db"))
    init_schema(engine)
    history = FakeHistory({"AAA": _rows(RISING)})
    quotes = FakeQuotes({"AAA": _quote("AAA", RISING[-1], 150.0)})

    first = BatchPredictor(history, quotes, engine=engine, prediction_cache_ttl_hours=4)
    first.run(["AAA"], -100)

    retuned = BatchPredictor(history, quotes, scoring=ScoringConfig(analyst_influence=0.5),
                             engine=engine, prediction_cache_ttl_hours=4)
    assert retuned.config_hash() != first.config_hash()
    result = retuned.run(["AAA"], -100)
    assert history.calls == ["AAA", "AAA"]
    assert result.opportunities[0].data_source == "store"

def test_synthetic_fallback_is_explicit_and_deterministic():
    history = FakeHistory({})
    quotes = FakeQuotes({"NEW": _quote("NEW", 25.0)})

    plain = BatchPredictor(history, quotes).run(["NEW"], -100)
    assert plain.opportunities[0].data_source == "store"
    assert plain.opportunities[0].technical.rsi == 50.0

    a = BatchPredictor(history, quotes, synthetic_fallback=True, synthetic_seed=3).run(["NEW"], -100)
    b = BatchPredictor(history, quotes, synthetic_fallback=True, synthetic_seed=3).run(["NEW"], -100)
    assert a.opportunities[0].data_source == "synthetic"
    assert a.opportunities[0].technical == b.opportunities[0].technical

def test_build_predictor_from_store(tmp_path):
    engine = get_engine(str(tmp_path / "store.db"))
    init_schema(engine)
    for symbol, target in [("AAA", 130.0), ("BBB", 90.0)]:
        gen = SyntheticPriceGenerator.for_symbol(symbol, seed=1)
        upsert_prices(engine, symbol, gen.price_history(100.0, days=60))
        upsert_analyst(engine, gen.analyst_record(symbol, target))
        upsert_ticker(engine, symbol, f"{symbol} Corp")

    cfg = {"workers": 2, "history_days": 60, "prediction_cache_ttl_hours": 0}
    result = build_predictor(cfg, engine=engine, source="store").run(["AAA", "BBB", "ZZZ"], -100)

    assert result.succeeded == 2
    assert result.skipped == 1
    by_symbol = {p.symbol: p for p in result.opportunities}
    assert by_symbol["AAA"].name == "AAA Corp"
    assert by_symbol["AAA"].current_price == pytest.approx(100.0)
    assert by_symbol["AAA"].analyst_score == pytest.approx(50 + 30 * 1.5)
    assert by_symbol["AAA"].sentiment_score == 75.0
    assert result.usage.total_requests == 0

def test_build_predictor_validates_source(tmp_path):
    with pytest.raises(ValueError):
        build_predictor({}, engine=None, source="store")
    with pytest.raises(ValueError):
        build_predictor({}, engine=None, source="ftp")
