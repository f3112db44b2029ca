#!/usr/bin/env python3
"""
🔌 INCOME SIGNAL ENGINE - MARKET DATA CLIENT
src/income_engine/trading/market_data_client.py

Market data collaborator contract and its Yahoo Finance implementation.

Features:
- Daily price history (chart v8 endpoint)
- Latest quote and analyst quote summary (quoteSummary v10 endpoint)
- HTTP status → typed error mapping
- Bounded request timeouts, retries with exponential backoff
- Per-minute client-side rate limiting

Author: Income Signal Engine
Version: 1.0.0
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from ..ai.models import PricePoint
from ..core.config_manager import ApiConfiguration, EngineConfigManager
from ..core.logger import LoggerFactory, LogCategory

SECONDS_PER_DAY = 86400
MAX_BACKOFF_SECONDS = 30

# ============================================================================
# MARKET DATA ERRORS
# ============================================================================

class MarketDataError(Exception):
    """Base error for market data collaborator failures"""

    code = 'MARKET_DATA_ERROR'

    def __init__(self, message: str, symbol: str = None, status_code: int = None,
                 original_error: BaseException = None):
        super().__init__(message)
        self.symbol = symbol
        self.status_code = status_code
        self.original_error = original_error

class InvalidSymbol(MarketDataError):
    code = 'INVALID_SYMBOL'

class RateLimited(MarketDataError):
    code = 'RATE_LIMIT_EXCEEDED'

class MarketDataTimeout(MarketDataError):
    code = 'TIMEOUT'

class ServerError(MarketDataError):
    code = 'SERVER_ERROR'

class NetworkError(MarketDataError):
    code = 'NETWORK_ERROR'

class DataValidationError(MarketDataError):
    code = 'DATA_VALIDATION_ERROR'

class DataUnavailable(MarketDataError):
    """No usable price history for a symbol"""
    code = 'DATA_UNAVAILABLE'

# ============================================================================
# COLLABORATOR CONTRACT
# ============================================================================

class MarketDataSource(ABC):
    """What the analysis engine needs from a market data provider"""

    @abstractmethod
    def get_history(self, symbol: str, range_days: int) -> List[PricePoint]:
        """Daily bars covering the last ``range_days`` calendar days, ascending"""

    @abstractmethod
    def get_quote(self, symbol: str) -> Dict[str, Any]:
        """Latest quote; contains at least ``price``"""

    @abstractmethod
    def get_quote_summary(self, symbol: str) -> Dict[str, Any]:
        """Analyst data keyed by module name (``financialData``, ``price``)"""

    def get_connection_status(self) -> Dict[str, Any]:
        return {'provider': type(self).__name__}

    def close(self):
        pass

# ============================================================================
# RATE LIMITING
# ============================================================================

class RateLimiter:
    """Fixed one-minute window request limiter"""

    def __init__(self, max_requests_per_minute: int, clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep, window_seconds: float = 60.0):
        self.max_requests = max_requests_per_minute
        self.window_seconds = window_seconds
        self.clock = clock
        self.sleep = sleep
        self._window_start = clock()
        self._request_count = 0
        self._lock = threading.RLock()

    def acquire(self) -> float:
        """Count one request, sleeping out the window when it is full; returns seconds slept"""

        if self.max_requests <= 0:
            return 0.0

        with self._lock:
            now = self.clock()
            slept = 0.0

            if now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._request_count = 0

            if self._request_count >= self.max_requests:
                slept = self.window_seconds - (now - self._window_start)
                if slept > 0:
                    self.sleep(slept)
                self._window_start = self.clock()
                self._request_count = 0

            self._request_count += 1
            return max(slept, 0.0)

    @property
    def remaining(self) -> int:
        with self._lock:
            return max(0, self.max_requests - self._request_count)

# ============================================================================
# YAHOO FINANCE CLIENT
# ============================================================================

def _raw(value: Any) -> Any:
    """Unwrap Yahoo's ``{"raw": ..., "fmt": ...}`` number envelopes"""
    if isinstance(value, dict) and 'raw' in value:
        return value['raw']
    return value

class YahooFinanceClient(MarketDataSource):
    """
    Yahoo Finance market data over HTTP

    404, 429, 5xx, timeouts and any other transport failure raised by
    requests are mapped to typed failures. Everything except 404 is retried
    with exponential backoff up to ``max_retries`` times.
    """

    def __init__(self, config_manager: EngineConfigManager,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):

        self.config_manager = config_manager
        self.logger = LoggerFactory.get_logger('market_data_client', LogCategory.MARKET_DATA)

        api_config: ApiConfiguration = config_manager.get_api_config()
        self.provider = api_config.provider
        self.base_url = api_config.base_url.rstrip('/')
        self.timeout = api_config.timeout
        self.max_retries = api_config.max_retries
        self.sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': api_config.user_agent
        })

        self.rate_limiter = RateLimiter(api_config.rate_limit_per_minute, sleep=sleep)

        self.request_count = 0
        self.error_count = 0

        self.logger.info("🔌 Market data client initialized",
                         provider=self.provider,
                         base_url=self.base_url,
                         timeout=self.timeout)

    # ========================================================================
    # API REQUEST MANAGEMENT
    # ========================================================================

    def _backoff(self, attempt: int) -> float:
        return min(2 ** attempt, MAX_BACKOFF_SECONDS)

    def _make_request(self, endpoint: str, symbol: str, params: dict = None) -> dict:
        """GET with rate limiting, retries and error mapping"""

        url = f"{self.base_url}{endpoint}"
        last_error: Optional[MarketDataError] = None

        for attempt in range(self.max_retries + 1):
            self.rate_limiter.acquire()
            start_time = time.time()
            self.request_count += 1

            try:
                response = self.session.get(url, params=params, timeout=self.timeout)

            except requests.exceptions.Timeout as e:
                last_error = MarketDataTimeout(f"Request timed out for {symbol}", symbol, original_error=e)

            except requests.exceptions.ConnectionError as e:
                last_error = NetworkError(f"Connection error for {symbol}: {e}", symbol, original_error=e)

            except requests.exceptions.RequestException as e:
                last_error = NetworkError(f"Request failed for {symbol}: {e}", symbol, original_error=e)

            else:
                response_time = time.time() - start_time
                self.logger.api_call(
                    provider=self.provider,
                    endpoint=endpoint,
                    response_time=response_time,
                    status_code=response.status_code,
                    symbol=symbol
                )

                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise DataValidationError(f"Invalid JSON response for {symbol}", symbol,
                                                  response.status_code, e)

                if response.status_code == 404:
                    self.error_count += 1
                    raise InvalidSymbol(f"Invalid symbol: {symbol}", symbol, 404)

                if response.status_code == 429:
                    last_error = RateLimited("Rate limit exceeded", symbol, 429)
                    retry_after = response.headers.get('Retry-After')
                    if attempt < self.max_retries and retry_after and retry_after.isdigit():
                        wait_time = min(int(retry_after), MAX_BACKOFF_SECONDS)
                        self.logger.warning(f"⏱️ Rate limited, retrying after {wait_time}s", symbol=symbol)
                        self.sleep(wait_time)
                        continue

                elif response.status_code >= 500:
                    last_error = ServerError(f"Server error: {response.status_code}", symbol,
                                             response.status_code)

                else:
                    self.error_count += 1
                    raise MarketDataError(f"HTTP {response.status_code} for {symbol}", symbol,
                                          response.status_code)

            if attempt < self.max_retries:
                wait_time = self._backoff(attempt)
                self.logger.warning(f"🔄 {last_error.code} for {symbol}, retrying in {wait_time}s",
                                    symbol=symbol, attempt=attempt + 1)
                self.sleep(wait_time)

        self.error_count += 1
        raise last_error

    # ========================================================================
    # MARKET DATA
    # ========================================================================

    def get_history(self, symbol: str, range_days: int) -> List[PricePoint]:
        """Daily bars for the last ``range_days`` calendar days"""

        period2 = int(time.time())
        period1 = period2 - int(range_days) * SECONDS_PER_DAY

        payload = self._make_request(
            f"/v8/finance/chart/{symbol}", symbol,
            params={'period1': period1, 'period2': period2, 'interval': '1d', 'events': 'div'}
        )

        chart = (payload or {}).get('chart') or {}
        if chart.get('error'):
            description = chart['error'].get('description') or chart['error'].get('code')
            raise InvalidSymbol(f"Invalid symbol: {symbol} ({description})", symbol)

        results = chart.get('result') or []
        if not results:
            return []

        points = self._parse_chart(results[0])

        self.logger.debug("📊 Price history retrieved", symbol=symbol, count=len(points))
        return points

    def _parse_chart(self, result: Dict[str, Any]) -> List[PricePoint]:
        timestamps = result.get('timestamp') or []
        quotes = ((result.get('indicators') or {}).get('quote') or [{}])[0]

        columns = [quotes.get(name) or [] for name in ('open', 'high', 'low', 'close', 'volume')]
        by_date = {}

        for index, ts in enumerate(timestamps):
            row = [column[index] if index < len(column) else None for column in columns]
            if row[3] is None:
                continue
            bar_date = datetime.fromtimestamp(ts, tz=timezone.utc).date()
            open_, high, low, close, volume = row
            by_date[bar_date] = PricePoint(
                date=bar_date,
                open=float(open_ if open_ is not None else close),
                high=float(high if high is not None else close),
                low=float(low if low is not None else close),
                close=float(close),
                volume=float(volume or 0)
            )

        return [by_date[d] for d in sorted(by_date)]

    def get_quote_summary(self, symbol: str) -> Dict[str, Any]:
        """``financialData`` and ``price`` modules with number envelopes unwrapped"""

        payload = self._make_request(
            f"/v10/finance/quoteSummary/{symbol}", symbol,
            params={'modules': 'financialData,price'}
        )

        summary = (payload or {}).get('quoteSummary') or {}
        if summary.get('error'):
            raise InvalidSymbol(f"Invalid symbol: {symbol}", symbol)

        results = summary.get('result') or []
        if not results:
            raise DataValidationError(f"Empty quote summary for {symbol}", symbol)

        return {
            module: {key: _raw(value) for key, value in (data or {}).items()}
            for module, data in results[0].items()
        }

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        price_module = self.get_quote_summary(symbol).get('price') or {}
        price = price_module.get('regularMarketPrice')

        if price is None:
            raise DataValidationError(f"No market price for {symbol}", symbol)

        return {
            'symbol': symbol,
            'price': float(price),
            'currency': price_module.get('currency'),
            'market_cap': price_module.get('marketCap'),
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

    # ========================================================================
    # UTILITY METHODS
    # ========================================================================

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            'provider': self.provider,
            'base_url': self.base_url,
            'requests': self.request_count,
            'errors': self.error_count,
            'rate_limit_remaining': self.rate_limiter.remaining,
        }

    def close(self):
        self.session.close()
        self.logger.info("🔌 Market data client closed")
