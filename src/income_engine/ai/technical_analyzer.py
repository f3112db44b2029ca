#!/usr/bin/env python3
"""
📊 INCOME SIGNAL ENGINE - TECHNICAL ANALYSIS ORCHESTRATOR
src/income_engine/ai/technical_analyzer.py

Single and batch technical analysis fronted by the analysis cache.

Features:
- Read-through cached single-symbol analysis
- Concurrent batch analysis with bounded parallelism and a per-symbol
  deadline; one failing symbol never aborts the batch
- Top buy/sell opportunity ranking
- Cached opportunity lists for a symbol universe

Author: Income Signal Engine
Version: 1.0.0
"""

import math
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .indicators import calculate_indicators
from .models import PricePoint, RiskProfile, Signal, SymbolAnalysisResult, TechnicalAnalysis
from .position_sizing import PositionSizingAdvisor
from .signal_aggregator import aggregate, build_indicators
from ..core.analysis_cache import AnalysisCache
from ..core.config_manager import EngineConfigManager, InvalidConfiguration, parse_risk_profile
from ..core.logger import LoggerFactory, LogCategory, PerformanceMetric
from ..trading.market_data_client import (
    DataUnavailable, MarketDataError, MarketDataSource, MarketDataTimeout
)

ANALYSIS_NAMESPACE = "analysis"
OPPORTUNITIES_NAMESPACE = "opportunities"

def _unique_symbols(symbols: Iterable[str]) -> List[str]:
    seen = []
    for symbol in symbols:
        normalized = (symbol or '').strip().upper()
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen

class ProductionTechnicalAnalyzer:
    """
    Technical analysis orchestrator

    Pipeline per symbol: price history → indicator values → signals and
    confidence → position sizing. Results are cached per symbol and risk
    profile in the ``analysis`` namespace.
    """

    def __init__(self, config_manager: EngineConfigManager,
                 market_data: MarketDataSource,
                 cache: AnalysisCache,
                 sizing_advisor: Optional[PositionSizingAdvisor] = None):

        self.config_manager = config_manager
        self.market_data = market_data
        self.cache = cache
        self.logger = LoggerFactory.get_logger('technical_analyzer', LogCategory.ANALYSIS)

        analysis_config = config_manager.get_config('analysis')
        self.history_range_days = analysis_config.history_range_days
        self.batch_concurrency = analysis_config.batch_concurrency
        self.symbol_timeout = analysis_config.symbol_timeout_seconds
        self.opportunity_limit = analysis_config.opportunity_limit
        self.default_risk_profile = config_manager.get_default_risk_profile()

        self.thresholds = config_manager.get_signal_thresholds()
        self.sizing_advisor = sizing_advisor or PositionSizingAdvisor(config_manager.get_position_sizing())

        # Performance tracking
        self._metrics_lock = threading.RLock()
        self.analysis_count = 0
        self.cache_hits = 0
        self.failure_count = 0
        self.analysis_times = deque(maxlen=100)

        self.logger.info("📊 Technical analyzer initialized",
                         history_range_days=self.history_range_days,
                         batch_concurrency=self.batch_concurrency,
                         symbol_timeout=self.symbol_timeout)

    # ========================================================================
    # MAIN ANALYSIS INTERFACE
    # ========================================================================

    def _resolve_profile(self, risk_profile) -> RiskProfile:
        return parse_risk_profile(risk_profile if risk_profile is not None else self.default_risk_profile)

    def cache_key(self, symbol: str, risk_profile: RiskProfile) -> str:
        return f"{symbol}:{risk_profile.value}"

    def analyze(self, symbol: str, risk_profile: Union[RiskProfile, str, None] = None,
                force_refresh: bool = False) -> TechnicalAnalysis:
        """
        Technical analysis for one symbol

        Args:
            symbol: Ticker to analyze
            risk_profile: Sizing profile, defaults to the configured one
            force_refresh: Skip the cache read (the result is still cached)

        Raises:
            DataUnavailable: no price history could be obtained
            InvalidConfiguration: unknown risk profile
        """

        profile = self._resolve_profile(risk_profile)
        symbol = (symbol or '').strip().upper()
        if not symbol:
            raise DataUnavailable("A symbol is required for analysis")

        key = self.cache_key(symbol, profile)

        if not force_refresh:
            cached = self.cache.get(key, ANALYSIS_NAMESPACE)
            if cached is not None:
                with self._metrics_lock:
                    self.cache_hits += 1
                self.logger.debug("📦 Analysis served from cache", symbol=symbol)
                return cached

        start_time = time.time()
        history = self._get_history(symbol)
        analysis = self.build_analysis(symbol, history, profile)

        self.cache.set(key, analysis, ANALYSIS_NAMESPACE)

        analysis_time = time.time() - start_time
        with self._metrics_lock:
            self.analysis_count += 1
            self.analysis_times.append(analysis_time)

        self.logger.info(f"✅ Technical analysis completed: {symbol}",
                         symbol=symbol,
                         signal=analysis.overall_signal.value,
                         confidence=analysis.confidence,
                         indicators=len(analysis.indicators),
                         execution_time=analysis_time)

        self.logger.performance(PerformanceMetric(
            metric_name="technical_analysis_time",
            value=analysis_time,
            unit="seconds",
            timestamp=datetime.now(timezone.utc),
            component="technical_analyzer",
            operation="analyze",
            additional_data={'symbol': symbol}
        ))

        return analysis

    def _get_history(self, symbol: str) -> List[PricePoint]:
        try:
            history = self.market_data.get_history(symbol, self.history_range_days)
        except DataUnavailable:
            raise
        except MarketDataError as e:
            raise DataUnavailable(f"Price history unavailable for {symbol}: {e}", symbol,
                                  e.status_code, e) from e

        if not history:
            raise DataUnavailable(f"No historical data available for {symbol}", symbol)

        return list(history)

    def build_analysis(self, symbol: str, history: Sequence[PricePoint],
                       risk_profile: Union[RiskProfile, str] = RiskProfile.MODERATE) -> TechnicalAnalysis:
        """Run indicators → signals → sizing over an already fetched history"""

        if not history:
            raise DataUnavailable(f"No historical data available for {symbol}", symbol)

        values = calculate_indicators(history, self.thresholds)
        indicators = build_indicators(values, self.thresholds)
        signals = aggregate(indicators, self.thresholds)
        current_price = values['current_price']

        position_sizing = self.sizing_advisor.advise(
            signals.overall_signal,
            signals.confidence,
            indicators,
            current_price,
            risk_profile=risk_profile,
            volatility=values['volatility']
        )

        return TechnicalAnalysis(
            symbol=symbol,
            current_price=current_price,
            indicators=indicators,
            overall_signal=signals.overall_signal,
            buy_signals=signals.buy_signals,
            sell_signals=signals.sell_signals,
            neutral_signals=signals.neutral_signals,
            confidence=signals.confidence,
            position_sizing=position_sizing,
            last_updated=datetime.now(timezone.utc)
        )

    # ========================================================================
    # BATCH ANALYSIS
    # ========================================================================

    def batch_analyze_results(self, symbols: Iterable[str],
                              risk_profile: Union[RiskProfile, str, None] = None) -> List[SymbolAnalysisResult]:
        """
        One result per unique symbol, in input order

        Symbols are analyzed concurrently with at most ``batch_concurrency``
        in flight. A symbol that fails or misses its deadline becomes a
        failure result; nothing raised by one symbol escapes the batch.
        """

        profile = self._resolve_profile(risk_profile)
        unique = _unique_symbols(symbols)
        if not unique:
            return []

        start_time = time.time()
        workers = min(self.batch_concurrency, len(unique))
        waves = math.ceil(len(unique) / workers)
        deadline = self.symbol_timeout * waves

        self.logger.info(f"📊 Starting batch analysis of {len(unique)} symbols",
                         symbols=len(unique), workers=workers)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='analysis')
        try:
            futures = {symbol: executor.submit(self.analyze, symbol, profile) for symbol in unique}
            wait(list(futures.values()), timeout=deadline)

            results = []
            for symbol, future in futures.items():
                if not future.done():
                    future.cancel()
                    results.append(SymbolAnalysisResult.failure(
                        symbol, MarketDataTimeout(f"Analysis of {symbol} exceeded {self.symbol_timeout}s", symbol)
                    ))
                    continue

                error = future.exception()
                if error is None:
                    results.append(SymbolAnalysisResult.success(symbol, future.result()))
                else:
                    results.append(SymbolAnalysisResult.failure(symbol, error))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        failures = [r for r in results if not r.ok]
        with self._metrics_lock:
            self.failure_count += len(failures)

        for failure in failures:
            self.logger.warning(f"⚠️ Analysis failed for {failure.symbol}: {failure.error}",
                                symbol=failure.symbol, error_type=failure.error_type)

        self.logger.info("✅ Batch analysis complete",
                         analyzed=len(results) - len(failures),
                         failed=len(failures),
                         execution_time=time.time() - start_time)

        return results

    def batch_analyze(self, symbols: Iterable[str],
                      risk_profile: Union[RiskProfile, str, None] = None) -> List[TechnicalAnalysis]:
        """Successful analyses only; failed symbols are logged and omitted"""

        return [r.analysis for r in self.batch_analyze_results(symbols, risk_profile) if r.ok]

    # ========================================================================
    # OPPORTUNITY RANKING
    # ========================================================================

    def top_opportunities(self, analyses: Iterable[TechnicalAnalysis],
                          signal_type: Union[Signal, str] = Signal.BUY,
                          limit: Optional[int] = None) -> List[TechnicalAnalysis]:
        """
        Analyses whose overall signal matches ``signal_type``

        Ordered by confidence (desc), recommended allocation (desc), then
        symbol (asc), truncated to ``limit``.
        """

        try:
            wanted = signal_type if isinstance(signal_type, Signal) else Signal(str(signal_type).lower())
        except ValueError:
            raise InvalidConfiguration(f"Unknown opportunity type {signal_type!r}")

        limit = self.opportunity_limit if limit is None else limit
        if limit <= 0:
            return []

        matching = [a for a in analyses if a.overall_signal is wanted]
        matching.sort(key=lambda a: (-a.confidence,
                                     -a.position_sizing.recommended_allocation,
                                     a.symbol))
        return matching[:limit]

    def opportunities_cache_key(self, symbols: Sequence[str], risk_profile: RiskProfile, limit: int) -> str:
        return f"{risk_profile.value}:{limit}:{','.join(sorted(symbols))}"

    def get_opportunities(self, symbols: Iterable[str], limit: Optional[int] = None,
                          risk_profile: Union[RiskProfile, str, None] = None,
                          force_refresh: bool = False) -> Dict[str, Any]:
        """
        Top buy and sell opportunities across a symbol universe

        Returns ``{"buy": [...], "sell": [...], "failed": [...]}``. Cached in
        the ``opportunities`` namespace; the batch also warms the per-symbol
        analysis cache.
        """

        profile = self._resolve_profile(risk_profile)
        unique = _unique_symbols(symbols)
        limit = self.opportunity_limit if limit is None else limit
        key = self.opportunities_cache_key(unique, profile, limit)

        if not force_refresh:
            cached = self.cache.get(key, OPPORTUNITIES_NAMESPACE)
            if cached is not None:
                return cached

        results = self.batch_analyze_results(unique, profile)
        analyses = [r.analysis for r in results if r.ok]

        opportunities = {
            'buy': self.top_opportunities(analyses, Signal.BUY, limit),
            'sell': self.top_opportunities(analyses, Signal.SELL, limit),
            'failed': [r.symbol for r in results if not r.ok],
        }

        self.cache.set(key, opportunities, OPPORTUNITIES_NAMESPACE)

        self.logger.info("🎯 Opportunities ranked",
                         analyzed=len(analyses),
                         buy_opportunities=len(opportunities['buy']),
                         sell_opportunities=len(opportunities['sell']))
        return opportunities

    # ========================================================================
    # CACHE MANAGEMENT
    # ========================================================================

    def invalidate_symbol(self, symbol: str) -> int:
        """Drop every cached analysis of ``symbol``; returns entries removed"""

        symbol = (symbol or '').strip().upper()
        removed = sum(
            1 for profile in RiskProfile
            if self.cache.invalidate(self.cache_key(symbol, profile), ANALYSIS_NAMESPACE)
        )
        self.logger.info("🧹 Symbol analysis invalidated", symbol=symbol, entries_removed=removed)
        return removed

    def invalidate_opportunities(self) -> int:
        return self.cache.invalidate_all(OPPORTUNITIES_NAMESPACE)

    # ========================================================================
    # PERFORMANCE AND UTILITY
    # ========================================================================

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Get technical analyzer performance metrics"""

        with self._metrics_lock:
            times = list(self.analysis_times)
            requests_served = self.analysis_count + self.cache_hits

            return {
                'total_analyses': self.analysis_count,
                'cache_hits': self.cache_hits,
                'cache_hit_rate': (self.cache_hits / max(requests_served, 1)) * 100,
                'failed_symbols': self.failure_count,
                'average_analysis_time': sum(times) / len(times) if times else 0.0,
            }
