"""Chart data built from quotes: trends, risk, option chains, predictions."""
import logging
import math
import random
from datetime import datetime, timedelta

import numpy as np
from sqlalchemy import func, select

from errors import NotFound, ServiceError
from market_data import BASELINE, DEFAULT_RISK_FACTOR, HISTORY, RISK_FACTORS, SYMBOLS, TEAMS
from models import Order

log = logging.getLogger(__name__)

PREDICTION_WINDOW = 30
PREDICTION_EPOCHS = 150
LEARNING_RATE = 0.1
OPTION_CONTRACTS = 7


def stock_trends(quotes):
    trends = []
    for symbol in SYMBOLS:
        quote = quotes.fetch_quote(symbol)
        if quote is None:
            continue
        trends.append({
            "symbol": symbol,
            "current_price": quote.price,
            "volume": quote.volume or BASELINE[symbol]["volume"],
            "day_change_percent": quote.percent_change,
        })
    return trends


def all_stocks(quotes):
    stocks = []
    for symbol in SYMBOLS:
        quote = quotes.fetch_quote(symbol)
        base = BASELINE[symbol]
        if quote is None:
            price, volume, pct = base["price"], base["volume"], base["percent_change"]
        else:
            price = quote.historical_prices[-1] if quote.historical_prices else quote.price
            volume, pct = quote.volume, quote.percent_change
        stocks.append({
            "symbol": symbol,
            "name": symbol,
            "price": price,
            "volume": volume,
            "percent_change": pct,
        })
    return stocks


def trading_summary(db, user_id: int, rng=random):
    rows = db.execute(
        select(
            Order.mode,
            func.sum(Order.qty),
            func.sum(Order.qty * Order.price),
            func.count(Order.id),
        )
        .where(Order.user_id == user_id)
        .group_by(Order.mode)
    ).all()
    if not rows:
        return demo_trading_summary(rng)
    return [
        {
            "mode": mode,
            "total_qty": int(qty),
            "total_value": round(float(value), 2),
            "order_count": count,
        }
        for mode, qty, value, count in rows
    ]


def demo_trading_summary(rng=random):
    """Made-up per-symbol activity shown to users who have not traded yet."""
    summary = []
    for symbol, base in BASELINE.items():
        buy_qty = rng.randint(10, 99)
        avg_buy = base["price"]
        sell_qty = rng.randint(0, buy_qty - 1)
        avg_sell = round(avg_buy * (1 + rng.uniform(-0.05, 0.05)), 2)
        buy_value = avg_buy * buy_qty
        sell_value = avg_sell * sell_qty
        summary.append({
            "symbol": symbol,
            "mode": "demo",
            "total_buy_qty": buy_qty,
            "total_buy_value": buy_value,
            "total_sell_qty": sell_qty,
            "total_sell_value": round(sell_value, 2),
            "order_count": rng.randint(1, 10),
            "profit": round(sell_value - buy_value, 2),
            "avg_buy_price": avg_buy,
            "avg_sell_price": avg_sell,
        })
    return summary


def team_performance(quotes):
    teams = []
    for team, symbol in TEAMS.items():
        quote = quotes.fetch_quote(symbol)
        if quote is None:
            pct, volume = BASELINE[symbol]["percent_change"], BASELINE[symbol]["volume"]
        else:
            pct, volume = quote.percent_change, quote.volume
        performance = pct * math.log(volume if volume and volume > 0 else 1)
        teams.append({"team": team, "symbol": symbol, "performance": round(performance, 2)})
    return teams


def option_chain(quotes, symbol: str, rng=random, now=None):
    sym = symbol.upper().strip()
    quote = quotes.fetch_quote(sym)
    if quote is None:
        raise NotFound(f"No data available for {sym}")
    base = float(quote.price)
    if not math.isfinite(base) or base <= 0:
        raise ServiceError("Invalid base price for option chain calculation")

    chain = quotes.historical_options(sym)
    if not chain:
        chain = synthesize_option_chain(base, rng, now or datetime.now())
    return {"symbol": sym, "option_chain": chain}


def synthesize_option_chain(base: float, rng=random, now=None):
    now = now or datetime.now()
    lower, upper = base * 0.85, base * 1.15
    step = (upper - lower) / (OPTION_CONTRACTS - 1)
    chain = []
    for i in range(OPTION_CONTRACTS):
        strike = round(lower + i * step)
        implied_vol = rng.random() * 0.25 + 0.15
        premium = round(abs(base - strike) * implied_vol * 0.5 + rng.random() * 2, 2)
        open_interest = rng.randrange(100, 2000)
        expiry = now + timedelta(days=(i + 1) * 30 / OPTION_CONTRACTS)
        chain.append({
            "strike": strike,
            "expiry": expiry.date().isoformat(),
            "premium": premium,
            "open_interest": open_interest,
            "attack_intensity": round(premium * open_interest * implied_vol / 100000, 2),
        })
    return chain


def portfolio_risk(quotes, holdings, rng=random):
    if not holdings:
        raise NotFound("No holdings found")

    total_value = 0.0
    weighted_risk = 0.0
    for holding in holdings:
        symbol = (holding.symbol or "").strip()
        if not symbol:
            continue
        quote = quotes.fetch_quote(symbol)
        if quote is None:
            log.info("falling back to cost basis for %s", symbol)
            price, pct = float(holding.average_price), 0.0
        else:
            price, pct = float(quote.price), quote.percent_change
        if price <= 0:
            continue
        value = holding.quantity * price
        total_value += value
        weighted_risk += abs(pct) * RISK_FACTORS.get(symbol, DEFAULT_RISK_FACTOR) * value

    baseline = weighted_risk / total_value if total_value > 0 else 0.0
    trajectory = [round(baseline, 3)]
    for _ in range(9):
        trajectory.append(round(trajectory[-1] + (rng.random() - 0.5) * 0.1, 3))
    return {
        "portfolio_risk": round(baseline, 3),
        "trajectory": trajectory,
        "total_value": round(total_value, 2),
    }


def fit_next_price(prices, epochs=PREDICTION_EPOCHS, lr=LEARNING_RATE):
    """Fit a straight line by gradient descent and extrapolate one step ahead.

    Inputs and targets are standardised first so a fixed learning rate and
    epoch count converge regardless of the price scale.
    """
    y = np.asarray(prices, dtype=float)
    x = np.arange(len(y), dtype=float)
    x_mu, x_sd = x.mean(), x.std() or 1.0
    y_mu, y_sd = y.mean(), y.std() or 1.0
    xs = (x - x_mu) / x_sd
    ys = (y - y_mu) / y_sd

    w = b = 0.0
    for _ in range(epochs):
        err = w * xs + b - ys
        w -= lr * 2 * float(np.mean(err * xs))
        b -= lr * 2 * float(np.mean(err))

    x_next = (len(y) - x_mu) / x_sd
    return float((w * x_next + b) * y_sd + y_mu)


def _price_window(quote, holding):
    if quote is not None and quote.historical_prices:
        prices = list(quote.historical_prices)
    elif holding.symbol in HISTORY:
        prices = list(HISTORY[holding.symbol])
    elif holding.symbol in BASELINE:
        prices = [BASELINE[holding.symbol]["price"]]
    else:
        prices = [float(holding.average_price)]
    if len(prices) < PREDICTION_WINDOW:
        prices = [prices[0]] * (PREDICTION_WINDOW - len(prices)) + prices
    return prices[-PREDICTION_WINDOW:]


def holdings_predictions(quotes, holdings):
    if not holdings:
        raise NotFound("No holdings found")

    predictions = []
    for holding in holdings:
        quote = quotes.fetch_quote(holding.symbol)
        prices = _price_window(quote, holding)
        current = prices[-1]
        predicted = fit_next_price(prices)
        change = (predicted - current) / current * 100
        predictions.append((holding.symbol, current, predicted, change))

    predictions.sort(key=lambda p: p[3])
    to_sell = [p[0] for p in predictions if p[3] < 0][:2]

    results = []
    for symbol, current, predicted, change in predictions:
        description = f"For {symbol}, current price is ${current:.2f}. "
        if symbol in to_sell:
            recommendation = "Sell Some"
            description += f"We expect a {change:.2f}% drop. Consider selling a portion."
        elif change > 2:
            recommendation = "Buy More"
            description += f"Model predicts a strong gain of {change:.2f}%. Consider increasing position."
        else:
            recommendation = "Hold"
            description += (
                f"Predicted change of {change:.2f}%. "
                "Not severe enough to justify a move. Keep holding."
            )
        results.append({
            "symbol": symbol,
            "predicted_price": round(predicted, 2),
            "predicted_change_percent": round(change, 2),
            "recommendation": recommendation,
            "description": description,
        })
    return results


def crowd_mood(combined: float):
    if combined > 1:
        return "euphoric", 80
    if combined > 0.1:
        return "optimistic", 60
    if combined < -1:
        return "panic", 70
    if combined < -0.1:
        return "concerned", 50
    return "neutral", 40


def vr_pit_snapshot(quotes):
    changes = []
    for symbol in SYMBOLS:
        quote = quotes.fetch_quote(symbol)
        pct = quote.percent_change if quote is not None else BASELINE[symbol]["percent_change"]
        if not math.isnan(pct):
            changes.append(pct)
    avg_change = float(np.mean(changes)) if changes else 0.0
    volatility = float(np.std(changes)) if changes else 0.0

    sentiment = 0.0
    news = quotes.news_sentiment()
    if news:
        scores = []
        for article in news:
            try:
                scores.append(float(article.get("overall_sentiment_score") or 0))
            except (AttributeError, TypeError, ValueError):
                log.warning("skipping malformed news item: %r", article)
        if scores:
            sentiment = sum(scores) / len(scores)

    mood, noise = crowd_mood(avg_change + sentiment * 5)
    avg_volume = sum(base["volume"] for base in BASELINE.values()) / len(BASELINE)

    return {
        "avg_percent_change": round(avg_change, 2),
        "crowd_mood": mood,
        "noise_volume": noise,
        "average_volume": round(avg_volume),
        "market_volatility": round(volatility, 2),
        "animation_intensity": min(abs(avg_change) / 5, 1),
        "audio_level": noise / 100,
        "message": (
            f"Market avg change is {avg_change:.2f}% with volatility {volatility:.2f}. "
            f"Crowd feels {mood}."
        ),
    }


def positions(quotes, holdings):
    rows = []
    for holding in holdings:
        symbol = (holding.symbol or "").strip()
        if not symbol:
            log.error("empty symbol on holding %s", holding.id)
            continue
        quote = quotes.fetch_quote(symbol)
        if quote is None:
            log.error("could not fetch data for %s", symbol)
            continue
        avg = float(holding.average_price)
        rows.append({
            "symbol": symbol,
            "company_name": symbol,
            "quantity": holding.quantity,
            "average_price": avg,
            "current_price": quote.price,
            "net_change": round((quote.price - avg) * holding.quantity, 2),
            "day_change_percent": quote.percent_change,
            "is_loss": quote.price < avg,
        })
    return rows
