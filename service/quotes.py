"""Quote acquisition with provider fallback, a TTL cache and a daily call budget.

One ``QuoteService`` is built per process and handed to the routes as a
dependency. It picks a provider by budget (Alpha Vantage while calls remain,
then Finnhub, then mock data), falls back to mock data whenever a provider
fails, and caches every successful quote for a fixed TTL.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta

import requests
from cachetools import TTLCache

import config
from market_data import BASELINE, HISTORY

log = logging.getLogger(__name__)

ALPHA_VANTAGE = "alphavantage"
FINNHUB = "finnhub"
MOCK = "mock"

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
FINNHUB_URL = "https://finnhub.io/api/v1/quote"

# Anything a bad response or a dead network can throw while we parse it.
PROVIDER_ERRORS = (requests.RequestException, ValueError, KeyError, TypeError, AttributeError)

SERIES_WINDOW = 30


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    volume: int
    percent_change: float
    historical_prices: tuple = ()
    source: str = MOCK

    def as_dict(self):
        data = asdict(self)
        data["historical_prices"] = list(self.historical_prices)
        return data


@dataclass(frozen=True)
class ProviderQuote:
    quote: Quote
    ok = True


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    reason: str
    ok = False


class CallBudget:
    """Counts metered provider calls and resets at local midnight."""

    def __init__(self, daily_limit: int, now=datetime.now):
        self.daily_limit = daily_limit
        self._now = now
        self._lock = threading.Lock()
        self.calls_today = 0
        self.last_reset = self._midnight()

    def _midnight(self) -> datetime:
        return self._now().replace(hour=0, minute=0, second=0, microsecond=0)

    def _roll(self):
        today = self._midnight()
        if today > self.last_reset:
            self.calls_today = 0
            self.last_reset = today

    def record(self):
        with self._lock:
            self._roll()
            self.calls_today += 1

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return max(self.daily_limit - self.calls_today, 0)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    @property
    def reset_at(self) -> datetime:
        with self._lock:
            self._roll()
            return self.last_reset + timedelta(days=1)


def _quote_from_closes(symbol, closes, source):
    latest = closes[-1]
    pct = 0.0
    if len(closes) > 1 and closes[-2]:
        pct = (latest - closes[-2]) / closes[-2] * 100
    return Quote(
        symbol=symbol,
        price=latest,
        volume=0,
        percent_change=round(pct, 2),
        historical_prices=tuple(closes),
        source=source,
    )


class AlphaVantageProvider:
    """Metered provider. Every HTTP request spends one unit of the budget."""

    name = ALPHA_VANTAGE

    def __init__(self, api_key: str, budget: CallBudget, http=requests, timeout: float = 8):
        self.api_key = api_key
        self.budget = budget
        self.http = http
        self.timeout = timeout

    def _query(self, **params):
        self.budget.record()
        r = self.http.get(
            ALPHA_VANTAGE_URL,
            params={**params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json()

    def fetch(self, symbol: str):
        for series in (self._daily_adjusted, self._intraday):
            if series is self._intraday and self.budget.exhausted:
                break
            try:
                quote = series(symbol)
            except PROVIDER_ERRORS as e:
                log.warning("alphavantage %s failed for %s: %s", series.__name__, symbol, e)
                continue
            if quote is not None:
                return ProviderQuote(quote)
        return ProviderFailure(self.name, f"no time series for {symbol}")

    def _daily_adjusted(self, symbol):
        data = self._query(function="TIME_SERIES_DAILY_ADJUSTED", symbol=symbol)
        series = data.get("Time Series (Daily)")
        if not series:
            return None
        closes = [float(series[d]["4. close"]) for d in sorted(series)[-SERIES_WINDOW:]]
        return _quote_from_closes(symbol, closes, self.name)

    def _intraday(self, symbol):
        data = self._query(function="TIME_SERIES_INTRADAY", symbol=symbol, interval="5min")
        series = data.get("Time Series (5min)")
        if not series:
            return None
        by_day = {}
        for ts in sorted(series):
            by_day.setdefault(ts.split(" ")[0], []).append(float(series[ts]["4. close"]))
        days = sorted(by_day)[-SERIES_WINDOW:]
        averages = [round(sum(by_day[d]) / len(by_day[d]), 4) for d in days]
        return _quote_from_closes(symbol, averages, self.name)

    def historical_options(self, symbol: str, date: str = "2017-11-15"):
        try:
            data = self._query(function="HISTORICAL_OPTIONS", symbol=symbol, date=date)
            contracts = data.get("data")
            if not contracts:
                return None
            chain = []
            for item in contracts:
                premium = float(item.get("premium") or 0)
                open_interest = int(item.get("openInterest") or 0)
                chain.append({
                    "strike": float(item["strike"]),
                    "expiry": item.get("expiry") or date,
                    "premium": premium,
                    "open_interest": open_interest,
                    "attack_intensity": round(premium * open_interest / 100000, 2),
                })
            return chain
        except PROVIDER_ERRORS as e:
            log.warning("alphavantage options failed for %s: %s", symbol, e)
            return None

    def news_sentiment(self, tickers: str = "COIN,CRYPTO:BTC,FOREX:USD"):
        try:
            data = self._query(function="NEWS_SENTIMENT", tickers=tickers, limit=1000)
            return data.get("feed") or None
        except PROVIDER_ERRORS as e:
            log.warning("alphavantage news sentiment failed: %s", e)
            return None


class FinnhubProvider:
    name = FINNHUB

    def __init__(self, api_key: str, http=requests, timeout: float = 8):
        self.api_key = api_key
        self.http = http
        self.timeout = timeout

    def fetch(self, symbol: str):
        try:
            r = self.http.get(
                FINNHUB_URL,
                params={"symbol": symbol, "token": self.api_key},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
            # Finnhub returns current price in `c`
            c = data.get("c")
            if c in (None, 0):
                return ProviderFailure(self.name, f"No quote found for {symbol}")
            quote = Quote(
                symbol=symbol,
                price=float(c),
                volume=0,
                percent_change=round(float(data.get("dp") or 0), 2),
                source=self.name,
            )
        except PROVIDER_ERRORS as e:
            return ProviderFailure(self.name, str(e))
        return ProviderQuote(quote)


class MockProvider:
    """Synthetic quotes: the static baseline perturbed by up to 2% per call."""

    name = MOCK

    def __init__(self, rng=None, baseline=BASELINE, history=HISTORY):
        self.rng = rng or random.Random()
        self.baseline = baseline
        self.history = {symbol: list(prices) for symbol, prices in history.items()}
        self._lock = threading.Lock()

    def knows(self, symbol: str) -> bool:
        return symbol in self.baseline

    def fetch(self, symbol: str):
        base = self.baseline.get(symbol)
        if base is None:
            return ProviderFailure(self.name, f"unknown symbol {symbol}")
        with self._lock:
            price = round(base["price"] * (1 + self.rng.uniform(-0.02, 0.02)), 2)
            window = self.history.get(symbol)
            prev = window[-1] if window else base["price"]
            pct = round((price - prev) / prev * 100, 2)
            if window:
                window.pop(0)
                window.append(price)
            volume = int(base["volume"] * (1 + self.rng.uniform(-0.1, 0.1)))
            historical = tuple(window or ())
        return ProviderQuote(Quote(
            symbol=symbol,
            price=price,
            volume=volume,
            percent_change=pct,
            historical_prices=historical,
            source=self.name,
        ))


class QuoteService:
    def __init__(self, primary=None, secondary=None, mock=None, budget=None,
                 ttl: float = 300, maxsize: int = 512, timer=time.monotonic):
        self.budget = budget or CallBudget(config.ALPHAVANTAGE_DAILY_LIMIT)
        self.primary = primary
        self.secondary = secondary
        self.mock = mock or MockProvider()
        self.cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._cache_lock = threading.Lock()

    @classmethod
    def from_env(cls, http=requests):
        budget = CallBudget(config.ALPHAVANTAGE_DAILY_LIMIT)
        primary = secondary = None
        if config.ALPHAVANTAGE_API_KEY:
            primary = AlphaVantageProvider(config.ALPHAVANTAGE_API_KEY, budget, http)
        if config.FINNHUB_API_KEY:
            secondary = FinnhubProvider(config.FINNHUB_API_KEY, http)
        return cls(primary, secondary, budget=budget, ttl=config.QUOTE_CACHE_TTL)

    def select_provider(self):
        if self.primary is not None and not self.budget.exhausted:
            return self.primary
        if self.secondary is not None:
            return self.secondary
        return self.mock

    def fetch_quote(self, symbol: str):
        """Best-effort current quote, or None when no source knows the symbol."""
        sym = (symbol or "").upper().strip()
        if not sym:
            return None

        with self._cache_lock:
            cached = self.cache.get(sym)
        if cached is not None:
            return cached

        provider = self.select_provider()
        result = provider.fetch(sym)
        if not result.ok and provider is not self.mock:
            log.warning("%s failed for %s (%s), using mock data", result.provider, sym, result.reason)
            result = self.mock.fetch(sym)
        if not result.ok:
            log.info("no quote available for %s", sym)
            return None

        with self._cache_lock:
            self.cache[sym] = result.quote
        return result.quote

    def historical_options(self, symbol: str):
        if self.primary is None or self.budget.exhausted:
            return None
        return self.primary.historical_options(symbol)

    def news_sentiment(self):
        if self.primary is None or self.budget.exhausted:
            return None
        return self.primary.news_sentiment()

    def status(self):
        provider = self.select_provider()
        return {
            "provider": provider.name,
            "alphavantage_calls_remaining": self.budget.remaining,
            "reset_time": self.budget.reset_at.isoformat(),
            "is_mock_active": provider is self.mock,
        }
