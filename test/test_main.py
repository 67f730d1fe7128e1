import json
import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from typer.testing import CliRunner

import upside.data_fetcher as data_fetcher
import upside.main as main
from upside.database import get_engine, get_price_history
from upside.main import app

runner = CliRunner()

def test_seed_predict_usage_round(tmp_path, monkeypatch):
    monkeypatch.setenv("UPSIDE_DB_PATH", str(tmp_path / "cli.db"))
    cfg = str(tmp_path / "missing.yaml")
    out = tmp_path / "out" / "predictions.json"

    res = runner.invoke(app, ["seed", "--symbols", "aaa,bbb", "--target-upside", "40", "--config", cfg])
    assert res.exit_code == 0, res.output

    res = runner.invoke(app, ["predict", "--symbols", "AAA,BBB,ZZZ", "--min-upside", "-100",
                              "--source", "store", "--output", str(out), "--config", cfg])
    assert res.exit_code == 0, res.output
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["count"] == 2
    assert payload["skipped"] == 1
    assert {p["symbol"] for p in payload["opportunities"]} == {"AAA", "BBB"}
    assert payload["opportunities"][0]["name"].endswith("(synthetic)")

    res = runner.invoke(app, ["usage", "--config", cfg])
    assert res.exit_code == 0, res.output
    assert json.loads(res.output)["totals"]["total_requests"] == 0

def test_collect_isolates_store_errors(tmp_path, monkeypatch):
    db_path = tmp_path / "collect.db"
    monkeypatch.setenv("UPSIDE_DB_PATH", str(db_path))
    cfg = tmp_path / "config.yaml"
    cfg.write_text("request_delay: 0\nretries: 1\n", encoding="utf-8")

    frame = pd.DataFrame({"date": pd.bdate_range("2024-01-01", periods=3), "close": [10.0, 11.0, 12.0]})
    monkeypatch.setattr(data_fetcher, "fetch_prices", lambda ticker, period="6mo": frame)
    monkeypatch.setattr(data_fetcher, "fetch_info",
                        lambda ticker: {"currentPrice": 12.0, "shortName": ticker, "targetMeanPrice": 15.0})

    real_upsert_analyst = main.upsert_analyst

    def upsert_analyst(engine, record):
        if record.symbol == "BBB":
            raise SQLAlchemyError("database is locked")
        real_upsert_analyst(engine, record)

    monkeypatch.setattr(main, "upsert_analyst", upsert_analyst)

    res = runner.invoke(app, ["collect", "--symbols", "AAA,BBB,CCC", "--config", str(cfg)])
    assert res.exit_code == 0, res.output
    assert "2 collected" in res.output
    assert "failed: BBB" in res.output
    assert [r.close for r in get_price_history(get_engine(str(db_path)), "CCC")] == [10.0, 11.0, 12.0]
