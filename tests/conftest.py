"""Shared fixtures: deterministic price histories, a manual clock and in-memory collaborators."""

import threading
import time
from datetime import date, timedelta

import pytest

from income_engine.ai.models import PricePoint, Recommendation
from income_engine.core.analysis_cache import AnalysisCache
from income_engine.core.config_manager import EngineConfigManager
from income_engine.trading.market_data_client import MarketDataSource
from income_engine.trading.recommendation_service import RecommendationSource

def make_history(closes, volumes=None, start=date(2024, 1, 1), spread=0.01):
    """Daily bars with highs/lows ``spread`` above/below each close"""

    volumes = volumes or [1_000_000] * len(closes)
    return [
        PricePoint(
            date=start + timedelta(days=i),
            open=close,
            high=close * (1 + spread),
            low=close * (1 - spread),
            close=close,
            volume=volume,
        )
        for i, (close, volume) in enumerate(zip(closes, volumes))
    ]

def breakout_closes(daily_change, flat_days=230, move_days=20, base=100.0):
    closes = [base] * flat_days
    price = base
    for _ in range(move_days):
        price *= 1 + daily_change
        closes.append(price)
    return closes

@pytest.fixture
def rising_history():
    """Flat base followed by a 1%/day rally"""
    return make_history(breakout_closes(0.01))

@pytest.fixture
def falling_history():
    """Flat base followed by a 1%/day selloff"""
    return make_history(breakout_closes(-0.01))

@pytest.fixture
def flat_history():
    return make_history([100.0] * 250)

class FakeClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

@pytest.fixture
def clock():
    return FakeClock()

class FakeMarketData(MarketDataSource):
    """
    In-memory market data

    ``histories`` maps symbol → list of PricePoint or an exception instance
    to raise. ``delays`` maps symbol → seconds to block before answering.
    """

    def __init__(self, histories=None, summaries=None, delays=None):
        self.histories = dict(histories or {})
        self.summaries = dict(summaries or {})
        self.delays = dict(delays or {})
        self.history_calls = []
        self.closed = False
        self._lock = threading.Lock()

    def get_history(self, symbol, range_days):
        with self._lock:
            self.history_calls.append(symbol)
        if symbol in self.delays:
            time.sleep(self.delays[symbol])
        result = self.histories.get(symbol, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def get_quote(self, symbol):
        history = self.get_history(symbol, 5)
        return {'symbol': symbol, 'price': history[-1].close}

    def get_quote_summary(self, symbol):
        result = self.summaries.get(symbol, {})
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True

    def calls_for(self, symbol):
        return self.history_calls.count(symbol)

class FakeRecommendations(RecommendationSource):
    """Recommendation source backed by a dict; unknown symbols raise ``missing``"""

    def __init__(self, recommendations=None, missing=None):
        self.recommendations = dict(recommendations or {})
        self.missing = missing
        self.calls = []

    def get_recommendation(self, symbol):
        self.calls.append(symbol)
        result = self.recommendations.get(symbol)
        if isinstance(result, Exception):
            raise result
        if result is None:
            if self.missing is not None:
                raise self.missing
            return Recommendation.default()
        return result

@pytest.fixture
def config_manager(monkeypatch):
    for name in ('ANALYSIS_CACHE_TTL', 'ANALYSIS_BATCH_CONCURRENCY', 'ANALYSIS_SYMBOL_TIMEOUT',
                 'DEFAULT_RISK_PROFILE', 'REBALANCE_TOLERANCE', 'MAX_CONCENTRATION'):
        monkeypatch.delenv(name, raising=False)
    return EngineConfigManager()

@pytest.fixture
def cache(clock):
    return AnalysisCache(ttl_seconds=300, clock=clock)

@pytest.fixture
def market_data(rising_history, falling_history, flat_history):
    return FakeMarketData({
        'RISE': rising_history,
        'FALL': falling_history,
        'FLAT': flat_history,
    })
