import random
from datetime import datetime
from types import SimpleNamespace

import pytest

import analytics
from conftest import FixedQuotes
from errors import NotFound, ServiceError
from quotes import Quote


def _holding(symbol, quantity, average_price=100.0):
    return SimpleNamespace(id=1, symbol=symbol, quantity=quantity, average_price=average_price)


def test_fit_next_price_extends_linear_trend():
    prices = [100 + 2 * i for i in range(30)]
    assert analytics.fit_next_price(prices) == pytest.approx(160.0, abs=0.01)


def test_fit_next_price_flat_series():
    assert analytics.fit_next_price([50.0] * 30) == pytest.approx(50.0)


def test_synthetic_option_chain_bounds():
    now = datetime(2024, 1, 1)
    chain = analytics.synthesize_option_chain(100.0, random.Random(5), now)
    assert len(chain) == analytics.OPTION_CONTRACTS
    strikes = [c["strike"] for c in chain]
    assert strikes[0] == 85 and strikes[-1] == 115
    assert strikes == sorted(strikes)
    for contract in chain:
        assert 100 <= contract["open_interest"] < 2000
        assert contract["premium"] >= 0
    assert chain[-1]["expiry"] == "2024-01-31"


def test_option_chain_rejects_unknown_and_bad_price():
    with pytest.raises(NotFound):
        analytics.option_chain(FixedQuotes(), "AAPL")
    with pytest.raises(ServiceError):
        analytics.option_chain(FixedQuotes(AAPL=-1.0), "AAPL")


def test_portfolio_risk_weights_by_value():
    quotes = FixedQuotes(TSLA=100.0, JNJ=100.0)
    holdings = [_holding("TSLA", 1), _holding("JNJ", 3)]
    risk = analytics.portfolio_risk(quotes, holdings, random.Random(0))
    # |1.0%| * (0.8 * 100 + 0.3 * 300) / 400
    assert risk["portfolio_risk"] == pytest.approx(0.425)
    assert risk["total_value"] == 400.0
    steps = [b - a for a, b in zip(risk["trajectory"], risk["trajectory"][1:])]
    assert all(abs(s) <= 0.051 for s in steps)


def test_portfolio_risk_without_holdings():
    with pytest.raises(NotFound):
        analytics.portfolio_risk(FixedQuotes(), [])


def test_predictions_flag_two_biggest_drops():
    class FallingQuotes(FixedQuotes):
        def fetch_quote(self, symbol):
            slope = {"AAA": -1.0, "BBB": -2.0, "CCC": -0.5, "DDD": 10.0}[symbol]
            start = 100.0
            history = tuple(start + slope * i for i in range(30))
            return Quote(symbol, history[-1], 1, 0.0, history)

    quotes = FallingQuotes(AAA=1.0, BBB=1.0, CCC=1.0, DDD=1.0)
    holdings = [_holding(s, 1) for s in ("AAA", "BBB", "CCC", "DDD")]
    results = {r["symbol"]: r for r in analytics.holdings_predictions(quotes, holdings)}

    assert results["BBB"]["recommendation"] == "Sell Some"
    assert results["AAA"]["recommendation"] == "Sell Some"
    assert results["CCC"]["recommendation"] == "Hold"
    assert results["DDD"]["recommendation"] == "Buy More"


def test_crowd_mood_thresholds():
    assert analytics.crowd_mood(1.5) == ("euphoric", 80)
    assert analytics.crowd_mood(0.5) == ("optimistic", 60)
    assert analytics.crowd_mood(0.0) == ("neutral", 40)
    assert analytics.crowd_mood(-0.5) == ("concerned", 50)
    assert analytics.crowd_mood(-2) == ("panic", 70)


def test_vr_snapshot_uses_news_sentiment():
    class NewsQuotes(FixedQuotes):
        def news_sentiment(self):
            return [{"overall_sentiment_score": 0.4}, {"overall_sentiment_score": 0.2}]

    snapshot = analytics.vr_pit_snapshot(NewsQuotes())
    # baseline changes average about 0.31, sentiment adds 0.3 * 5
    assert snapshot["crowd_mood"] == "euphoric"
    assert snapshot["audio_level"] == 0.8


def test_vr_snapshot_skips_malformed_news_items():
    class NewsQuotes(FixedQuotes):
        def news_sentiment(self):
            return [
                {"overall_sentiment_score": 0.4},
                "headline only",
                None,
                {"overall_sentiment_score": "n/a"},
                {"overall_sentiment_score": [0.9]},
                {"overall_sentiment_score": 0.2},
            ]

    snapshot = analytics.vr_pit_snapshot(NewsQuotes())
    assert snapshot["crowd_mood"] == "euphoric"
    assert snapshot["audio_level"] == 0.8


def test_team_performance_formula():
    teams = {t["team"]: t for t in analytics.team_performance(FixedQuotes(AAPL=10.0))}
    assert teams["Gryffindor"]["performance"] == pytest.approx(6.91, abs=0.01)
