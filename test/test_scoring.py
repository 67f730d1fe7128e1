import itertools
import pytest

from upside.config import ScoringConfig
from upside.models import TechnicalIndicators
from upside.scoring import analyst_score, analyst_upside, sentiment_score, technical_score

def _ind(rsi=50.0, momentum=0.0, price=100.0, sma20=100.0, sma50=100.0, volatility=35.0):
    return TechnicalIndicators(rsi=rsi, sma20=sma20, sma50=sma50, momentum=momentum,
                               volatility=volatility, current_price=price)

def test_neutral_indicators_score_50():
    assert technical_score(_ind()) == 50.0

def test_rule_table_adds_up():
    # oversold +20, momentum >10 +20, trend +25, low vol +10, near 52w low +15 -> clamped
    ind = _ind(rsi=20, momentum=12, price=110, sma20=105, sma50=100, volatility=10)
    assert technical_score(ind, 100.0, 200.0) == 100.0
    # rsi <40 +10, momentum >0 +5, vol <30 +5
    assert technical_score(_ind(rsi=35, momentum=3, volatility=25)) == 50 + 10 + 5 + 5

def test_bearish_rules():
    ind = _ind(rsi=75, momentum=-12, price=90, sma20=95, sma50=100, volatility=60)
    # 50 -15 -20 -10 = 5, then near 52w high -10 -> clamp 0
    assert technical_score(ind) == 5.0
    assert technical_score(ind, 10.0, 91.0) == 0.0

def test_52_week_position_ignored_without_range():
    ind = _ind()
    assert technical_score(ind, 100.0, 100.0) == 50.0
    assert technical_score(ind, None, 120.0) == 50.0
    assert technical_score(ind, 90.0, None) == 50.0

def test_technical_score_always_bounded():
    values = [-1e9, -50.0, 0.0, 29.0, 65.0, 1e9]
    for rsi, mom, vol in itertools.product([0.0, 35.0, 65.0, 100.0], values, [0.0, 25.0, 1e9]):
        score = technical_score(_ind(rsi=rsi, momentum=mom, volatility=vol), 0.0, 1e6)
        assert 0.0 <= score <= 100.0

def test_analyst_score_example():
    assert analyst_upside(120.0, 100.0) == pytest.approx(20.0)
    assert analyst_score(120.0, 100.0) == pytest.approx(80.0)

def test_analyst_score_without_target_is_neutral():
    assert analyst_upside(None, 100.0) is None
    assert analyst_score(None, 100.0) == 50.0

def test_analyst_score_clamps_and_sensitivity():
    assert analyst_score(200.0, 100.0) == 100.0
    assert analyst_score(10.0, 100.0) == 0.0
    assert analyst_score(110.0, 100.0, sensitivity=2.0) == pytest.approx(70.0)

@pytest.mark.parametrize("rating,expected", [
    ("Buy", 75.0),
    ("strong buy", 75.0),
    ("2.1 - Buy", 75.0),
    ("OUTPERFORM", 75.0),
    ("1", 75.0),
    ("1.4", 75.0),
    ("Hold", 50.0),
    ("2", 50.0),
    ("3.0", 50.0),
    ("Strong Sell", 25.0),
    ("underperform", 25.0),
    ("4.6", 25.0),
    ("", 50.0),
    (None, 50.0),
    ("no opinion", 50.0),
])
def test_sentiment_score(rating, expected):
    assert sentiment_score(rating) == expected

def test_sentiment_levels_configurable():
    cfg = ScoringConfig(sentiment_bullish=70.0, sentiment_bearish=30.0)
    assert sentiment_score("buy", cfg) == 70.0
    assert sentiment_score("sell", cfg) == 30.0
