# upside/main.py
import os
import json
import logging
import typer
from datetime import datetime, date

from upside.config import load_cfg
from upside.data_fetcher import RateLimiter, UsageTracker, YahooFinanceProvider, analyst_from_info, quote_from_info
from upside.database import (
    get_engine, init_schema, log_usage, upsert_analyst, upsert_prices, upsert_ticker, usage_summary,
)
from upside.errors import UpstreamError
from upside.pipeline import SOURCES, build_predictor, normalize_symbols
from upside.synthetic import SyntheticPriceGenerator

app = typer.Typer(add_completion=False)

class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)

def _ensure_parent(path: str):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

def _setup(config: str):
    cfg = load_cfg(config)
    logging.basicConfig(level=getattr(logging, str(cfg.get("log_level", "INFO")).upper(), logging.INFO))
    db_path = cfg.get("db_path", "data/upside.db")
    _ensure_parent(db_path)
    engine = get_engine(db_path)
    init_schema(engine)
    return cfg, engine, db_path

def _split(symbols: str):
    return normalize_symbols(symbols.split(","))

@app.command()
def predict(
    symbols: str = typer.Option(..., "--symbols", "-s", help="Comma-separated symbols"),
    min_upside: float = typer.Option(None, "--min-upside", "-m", help="Minimum predicted upside in percent"),
    source: str = typer.Option("auto", "--source", help=f"One of {', '.join(SOURCES)}"),
    output: str = typer.Option(None, "--output", "-o", help="Output JSON file"),
    config: str = typer.Option(None, "--config", envvar="UPSIDE_CONFIG"),
):
    cfg, engine, db_path = _setup(config)
    if min_upside is None:
        min_upside = float(cfg.get("min_upside", 10))
    tickers = _split(symbols)
    logging.info(f"Predicting {len(tickers)} symbols from source={source}, min_upside={min_upside}")

    result = build_predictor(cfg, engine=engine, source=source).run(tickers, min_upside)

    out_dir = cfg.get("output_dir", "out")
    if output is None:
        output = os.path.join(out_dir, f"predictions_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json")
    _ensure_parent(output)
    logging.info(f"Writing JSON to {output}")
    with open(output, "w", encoding="utf-8") as f:
        json.dump(result.model_dump(), f, ensure_ascii=False, indent=2, cls=EnhancedJSONEncoder)

    typer.echo(f" Saved: {output}")
    typer.echo(f" {result.succeeded} scored, {result.failed} failed, {result.skipped} skipped")
    if result.opportunities:
        typer.echo(f" Opportunities >= {min_upside:.1f}%: {result.count}")
        for p in result.opportunities[:10]:
            typer.echo(f"  - {p.symbol}: {p.predicted_upside:+.1f}% "
                       f"(score {p.combined_score:.1f}, confidence {p.confidence:.0f})")
    else:
        typer.echo(" No opportunities above the threshold.")

@app.command()
def collect(
    symbols: str = typer.Option(..., "--symbols", "-s", help="Comma-separated symbols"),
    config: str = typer.Option(None, "--config", envvar="UPSIDE_CONFIG"),
):
    """Fetch price history and analyst data from Yahoo Finance into the store."""
    cfg, engine, db_path = _setup(config)
    tracker = UsageTracker()
    provider = YahooFinanceProvider(
        limiter=RateLimiter(delay=float(cfg.get("request_delay", 0.1))),
        tracker=tracker,
        retries=int(cfg.get("retries", 3)),
        period=cfg.get("history_period", "6mo"),
    )
    max_days = int(cfg.get("collect_days", 90))

    ok, failed, total_prices, total_analyst = [], [], 0, 0
    for symbol in _split(symbols):
        try:
            rows = provider.get_price_history(symbol, max_days)
            total_prices += upsert_prices(engine, symbol, rows)
            info = provider.get_info(symbol)
            quote = quote_from_info(symbol, info)
            upsert_ticker(engine, symbol, quote.name if quote else None)
            upsert_analyst(engine, analyst_from_info(symbol, info))
            total_analyst += 1
            ok.append(symbol)
            logging.info(f"Collected {len(rows)} price rows for {symbol}")
        except UpstreamError as e:
            failed.append(symbol)
            logging.error(e.message)
        except Exception:
            failed.append(symbol)
            logging.exception(f"Collect failed for {symbol}")

    log_usage(engine, tracker.snapshot())
    typer.echo(f" Database updated at {db_path}")
    typer.echo(f" {len(ok)} collected ({total_prices} prices, {total_analyst} analyst rows), {len(failed)} failed")
    for symbol in failed:
        typer.echo(f"  - failed: {symbol}")

@app.command()
def seed(
    symbols: str = typer.Option(..., "--symbols", "-s", help="Comma-separated symbols"),
    price: float = typer.Option(100.0, "--price", help="Current price for every seeded symbol"),
    target_upside: float = typer.Option(12.0, "--target-upside", help="Analyst target above price, percent"),
    days: int = typer.Option(60, "--days"),
    random_seed: int = typer.Option(0, "--seed"),
    config: str = typer.Option(None, "--config", envvar="UPSIDE_CONFIG"),
):
    """Write synthetic price histories and analyst records into the store."""
    cfg, engine, db_path = _setup(config)
    for symbol in _split(symbols):
        gen = SyntheticPriceGenerator.for_symbol(symbol, seed=random_seed)
        n = upsert_prices(engine, symbol, gen.price_history(price, days=days))
        upsert_analyst(engine, gen.analyst_record(symbol, price * (1 + target_upside / 100)))
        upsert_ticker(engine, symbol, f"{symbol} (synthetic)")
        logging.info(f"Seeded {n} synthetic rows for {symbol}")
    typer.echo(f" Synthetic data written to {db_path}")

@app.command()
def usage(
    hours: float = typer.Option(24, "--hours"),
    config: str = typer.Option(None, "--config", envvar="UPSIDE_CONFIG"),
):
    """Summarize upstream API usage over the last `hours`."""
    cfg, engine, _ = _setup(config)
    summary = usage_summary(engine, hours=hours, daily_limit=int(cfg.get("daily_request_limit", 500)))
    typer.echo(json.dumps(summary, indent=2))

if __name__ == "__main__":
    app()
