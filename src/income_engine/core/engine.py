#!/usr/bin/env python3
"""
🚀 INCOME SIGNAL ENGINE - COMPOSITION ROOT AND LAMBDA ENTRY POINT
src/income_engine/core/engine.py

Builds the engine once per process (configuration → cache → market data
client → analyzers) and exposes it to the API layer. The Lambda handler is
a thin boundary that maps requests onto engine calls and typed errors onto
HTTP status codes.

Modes:
- technical_analysis: one symbol, or opportunities over a symbol list
- rebalancing: rebalancing report for a holdings snapshot
- cache_stats: cache observability
- invalidate: drop one symbol, one namespace or the whole cache
- status: engine health, collaborator and performance summaries

Author: Income Signal Engine
Version: 1.0.0
"""

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .analysis_cache import AnalysisCache, DEFAULT_NAMESPACES, UnknownCacheNamespace
from .config_manager import ConfigurationError, EngineConfigManager, InvalidConfiguration
from .logger import LoggerFactory, LogCategory
from ..ai.models import Holding, RiskProfile, Signal, SymbolAnalysisResult, TechnicalAnalysis
from ..ai.technical_analyzer import ProductionTechnicalAnalyzer
from ..trading.market_data_client import DataUnavailable, MarketDataSource, YahooFinanceClient
from ..trading.rebalancing_analyzer import ProductionRebalancingAnalyzer, RebalancingReport
from ..trading.recommendation_service import RecommendationService, RecommendationSource

# ============================================================================
# INCOME SIGNAL ENGINE
# ============================================================================

class IncomeSignalEngine:
    """
    Process-wide engine

    Every collaborator can be injected; anything not supplied is built from
    configuration. Create one instance at process start and call
    ``shutdown()`` when the process ends.
    """

    def __init__(self, config_manager: Optional[EngineConfigManager] = None,
                 market_data: Optional[MarketDataSource] = None,
                 recommendation_source: Optional[RecommendationSource] = None,
                 cache: Optional[AnalysisCache] = None):

        self.logger = LoggerFactory.get_logger('engine', LogCategory.SYSTEM)
        self.config_manager = config_manager or EngineConfigManager()

        self.cache = cache or AnalysisCache(
            ttl_seconds=self.config_manager.get_config('cache', 'ttl_seconds', 300.0),
            namespaces=DEFAULT_NAMESPACES
        )
        self.market_data = market_data or YahooFinanceClient(self.config_manager)
        self.recommendation_source = recommendation_source or RecommendationService(self.market_data)

        self.technical_analyzer = ProductionTechnicalAnalyzer(
            self.config_manager, self.market_data, self.cache
        )
        self.rebalancing_analyzer = ProductionRebalancingAnalyzer(
            self.config_manager, self.recommendation_source
        )

        self.started_at = datetime.now(timezone.utc)
        self.is_shutdown = False

        self.logger.info("🚀 Income signal engine initialized",
                         market_data=type(self.market_data).__name__,
                         cache_ttl=self.cache.ttl_seconds)

    # ========================================================================
    # ANALYSIS INTERFACE
    # ========================================================================

    def analyze(self, symbol: str, risk_profile: Union[RiskProfile, str, None] = None,
                force_refresh: bool = False) -> TechnicalAnalysis:
        return self.technical_analyzer.analyze(symbol, risk_profile, force_refresh)

    def batch_analyze(self, symbols: Iterable[str],
                      risk_profile: Union[RiskProfile, str, None] = None) -> List[TechnicalAnalysis]:
        return self.technical_analyzer.batch_analyze(symbols, risk_profile)

    def batch_analyze_results(self, symbols: Iterable[str],
                              risk_profile: Union[RiskProfile, str, None] = None) -> List[SymbolAnalysisResult]:
        return self.technical_analyzer.batch_analyze_results(symbols, risk_profile)

    def top_opportunities(self, analyses: Iterable[TechnicalAnalysis],
                          signal_type: Union[Signal, str] = Signal.BUY,
                          limit: Optional[int] = None) -> List[TechnicalAnalysis]:
        return self.technical_analyzer.top_opportunities(analyses, signal_type, limit)

    def get_opportunities(self, symbols: Iterable[str], limit: Optional[int] = None,
                          risk_profile: Union[RiskProfile, str, None] = None,
                          force_refresh: bool = False) -> Dict[str, Any]:
        return self.technical_analyzer.get_opportunities(symbols, limit, risk_profile, force_refresh)

    def analyze_rebalancing(self, holdings: Iterable[Union[Holding, Dict[str, Any]]],
                            risk_profile: Union[RiskProfile, str] = RiskProfile.MODERATE,
                            portfolio_id: Optional[str] = None) -> RebalancingReport:
        return self.rebalancing_analyzer.analyze_rebalancing(holdings, risk_profile, portfolio_id)

    # ========================================================================
    # CACHE INTERFACE
    # ========================================================================

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def invalidate(self, symbol: Optional[str] = None, namespace: Optional[str] = None) -> int:
        """
        Drop cached results

        A symbol removes that symbol's analyses and the opportunity lists
        that may include it; otherwise ``namespace`` (or everything) is cleared.
        """

        if symbol:
            removed = self.technical_analyzer.invalidate_symbol(symbol)
            return removed + self.technical_analyzer.invalidate_opportunities()
        return self.cache.invalidate_all(namespace)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'shutdown': self.is_shutdown,
            'configuration': self.config_manager.get_configuration_summary(),
            'market_data': self.market_data.get_connection_status(),
            'cache': self.cache.stats(),
            'technical_analyzer': self.technical_analyzer.get_performance_metrics(),
            'rebalancing_analyzer': self.rebalancing_analyzer.get_performance_metrics(),
            'performance': LoggerFactory.get_all_performance_summaries(),
        }

    def shutdown(self):
        if self.is_shutdown:
            return

        self.cache.invalidate_all()
        self.market_data.close()
        LoggerFactory.flush_all_metrics()
        self.is_shutdown = True

        self.logger.info("🛑 Income signal engine shut down")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

# ============================================================================
# LAMBDA HANDLER - API BOUNDARY
# ============================================================================

def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body, default=str)
    }

def _parse_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten direct invocations and API Gateway proxy events into one dict"""

    request = {k: v for k, v in (event or {}).items() if k not in ('body', 'queryStringParameters')}
    request.update((event or {}).get('queryStringParameters') or {})

    body = (event or {}).get('body')
    if isinstance(body, str) and body.strip():
        try:
            body = json.loads(body)
        except ValueError:
            raise InvalidConfiguration("Request body is not valid JSON")
    if isinstance(body, dict):
        request.update(body)

    symbols = request.get('symbols')
    if isinstance(symbols, str):
        request['symbols'] = [s for s in symbols.split(',') if s.strip()]

    return request

class LambdaApplication:
    """
    Lambda entry point owning one engine per container

    The engine is built on the first invocation and reused while the
    container stays warm.
    """

    def __init__(self, engine_factory: Callable[[], IncomeSignalEngine] = IncomeSignalEngine):
        self.engine_factory = engine_factory
        self.engine: Optional[IncomeSignalEngine] = None
        self.logger = LoggerFactory.get_logger('lambda_handler', LogCategory.API)

    def get_engine(self) -> IncomeSignalEngine:
        if self.engine is None:
            self.logger.info("🔧 Initializing engine instance")
            self.engine = self.engine_factory()
        return self.engine

    def __call__(self, event: Dict[str, Any], context=None) -> Dict[str, Any]:

        execution_id = str(uuid.uuid4())
        start_time = time.time()

        with self.logger.execution_context(execution_id, 'lambda_invocation'):
            try:
                request = _parse_event(event)
                mode = request.get('mode', 'technical_analysis')

                self.logger.info(f"🚀 Request received: {mode}", mode=mode)

                status_code, body = self.dispatch(mode, request)

            except DataUnavailable as e:
                status_code, body = 404, {'status': 'error', 'error_type': 'DataUnavailable',
                                          'symbol': e.symbol, 'error': str(e)}
            except (InvalidConfiguration, UnknownCacheNamespace) as e:
                status_code, body = 400, {'status': 'error', 'error_type': type(e).__name__,
                                          'error': str(e)}
            except ConfigurationError as e:
                self.logger.error(f"❌ Engine configuration error: {e}")
                status_code, body = 500, {'status': 'error', 'error_type': 'ConfigurationError',
                                          'error': str(e)}
            except Exception as e:
                self.logger.exception(f"❌ Request failed: {e}")
                status_code, body = 500, {'status': 'error', 'error_type': type(e).__name__,
                                          'error': str(e)}

            body['execution_id'] = execution_id
            body['timestamp'] = datetime.now(timezone.utc).isoformat()
            body['execution_time'] = time.time() - start_time

            self.logger.info("✅ Request completed", status_code=status_code,
                             execution_time=body['execution_time'])

            return _response(status_code, body)

    def dispatch(self, mode: str, request: Dict[str, Any]):
        engine = self.get_engine()

        if mode == 'technical_analysis':
            return self._handle_technical_analysis(engine, request)

        if mode == 'rebalancing':
            holdings = request.get('holdings') or []
            report = engine.analyze_rebalancing(
                holdings,
                request.get('risk_profile', RiskProfile.MODERATE.value),
                request.get('portfolio_id')
            )
            return 200, {'status': 'success', 'rebalancing': report.to_dict()}

        if mode == 'cache_stats':
            return 200, {'status': 'success', 'cache': engine.cache_stats()}

        if mode == 'status':
            return 200, {'status': 'success', 'engine': engine.get_status()}

        if mode == 'invalidate':
            removed = engine.invalidate(request.get('symbol'), request.get('namespace'))
            return 200, {'status': 'success', 'entries_removed': removed}

        raise InvalidConfiguration(f"Unknown mode {mode!r}")

    def _handle_technical_analysis(self, engine: IncomeSignalEngine, request: Dict[str, Any]):
        risk_profile = request.get('risk_profile')
        force_refresh = str(request.get('force_refresh', '')).lower() in ('1', 'true', 'yes')

        if request.get('symbol'):
            analysis = engine.analyze(request['symbol'], risk_profile, force_refresh)
            return 200, {'status': 'success', 'analysis': analysis.to_dict()}

        symbols = request.get('symbols') or []
        if not symbols:
            raise InvalidConfiguration("Provide 'symbol' or 'symbols'")

        try:
            limit = int(request['limit']) if request.get('limit') is not None else None
        except (TypeError, ValueError):
            raise InvalidConfiguration(f"limit must be an integer, got {request.get('limit')!r}")

        wanted = request.get('type')
        if wanted and str(wanted).lower() not in (Signal.BUY.value, Signal.SELL.value):
            raise InvalidConfiguration(f"Unknown opportunity type {wanted!r}")

        opportunities = engine.get_opportunities(symbols, limit, risk_profile, force_refresh)

        body = {'status': 'success', 'failed': opportunities['failed']}
        if wanted:
            body['opportunities'] = [a.to_dict() for a in opportunities[str(wanted).lower()]]
        else:
            body['buy'] = [a.to_dict() for a in opportunities['buy']]
            body['sell'] = [a.to_dict() for a in opportunities['sell']]

        return 200, body

lambda_handler = LambdaApplication()
