"""Technical analysis orchestrator tests"""

from unittest.mock import MagicMock

import pytest
import requests

from income_engine.ai.models import (
    PositionSizing, RiskLevel, Signal, TechnicalAnalysis
)
from income_engine.ai.technical_analyzer import ProductionTechnicalAnalyzer
from income_engine.core.analysis_cache import AnalysisCache
from income_engine.core.config_manager import EngineConfigManager, InvalidConfiguration
from income_engine.trading.market_data_client import (
    DataUnavailable, InvalidSymbol, NetworkError, YahooFinanceClient
)

from conftest import FakeMarketData

@pytest.fixture
def analyzer(config_manager, market_data, cache):
    return ProductionTechnicalAnalyzer(config_manager, market_data, cache)

def hand_built(symbol, signal, confidence, allocation=5.0):
    return TechnicalAnalysis(
        symbol=symbol,
        current_price=10.0,
        indicators=(),
        overall_signal=signal,
        buy_signals=0,
        sell_signals=0,
        neutral_signals=0,
        confidence=confidence,
        position_sizing=PositionSizing(allocation, 10.0, RiskLevel.MEDIUM, 8.5, 13.0),
    )

# ============================================================================
# SINGLE SYMBOL
# ============================================================================

class TestAnalyze:

    def test_breakout_is_a_buy(self, analyzer):
        analysis = analyzer.analyze("rise")

        assert analysis.symbol == "RISE"
        assert analysis.overall_signal is Signal.BUY
        assert len(analysis.indicators) == 7
        assert analysis.buy_signals + analysis.sell_signals + analysis.neutral_signals == 7
        assert 0 <= analysis.confidence <= 100
        assert analysis.position_sizing.max_position_size == 10.0
        assert analysis.position_sizing.recommended_allocation <= analysis.position_sizing.max_position_size

    def test_selloff_recommends_no_allocation(self, analyzer):
        analysis = analyzer.analyze("FALL")

        assert analysis.overall_signal is Signal.SELL
        assert analysis.position_sizing.recommended_allocation == 0.0

    def test_repeat_call_is_served_from_cache(self, analyzer, market_data):
        first = analyzer.analyze("RISE")
        second = analyzer.analyze("RISE")

        assert first == second
        assert market_data.calls_for("RISE") == 1
        assert analyzer.get_performance_metrics()['cache_hits'] == 1

    def test_force_refresh_recomputes(self, analyzer, market_data):
        analyzer.analyze("RISE")
        analyzer.analyze("RISE", force_refresh=True)

        assert market_data.calls_for("RISE") == 2

    def test_cache_expiry_recomputes(self, analyzer, market_data, clock):
        analyzer.analyze("RISE")
        clock.advance(301)
        analyzer.analyze("RISE")

        assert market_data.calls_for("RISE") == 2

    def test_risk_profiles_are_cached_separately(self, analyzer, market_data):
        moderate = analyzer.analyze("RISE", "moderate")
        aggressive = analyzer.analyze("RISE", "aggressive")

        assert market_data.calls_for("RISE") == 2
        assert moderate.position_sizing.max_position_size == 10.0
        assert aggressive.position_sizing.max_position_size == 15.0

    def test_no_history_is_data_unavailable(self, analyzer):
        with pytest.raises(DataUnavailable):
            analyzer.analyze("NOPE")

    def test_provider_errors_are_wrapped(self, config_manager, cache):
        source = FakeMarketData({'BAD': InvalidSymbol("not found", "BAD", 404)})
        analyzer = ProductionTechnicalAnalyzer(config_manager, source, cache)

        with pytest.raises(DataUnavailable) as excinfo:
            analyzer.analyze("BAD")

        assert isinstance(excinfo.value.__cause__, InvalidSymbol)
        assert excinfo.value.status_code == 404

    def test_broken_transfer_from_the_provider_is_data_unavailable(self, cache):
        session = MagicMock()
        session.headers = {}
        session.get.side_effect = requests.exceptions.ChunkedEncodingError("truncated")
        config = EngineConfigManager(overrides={'market_data': {'max_retries': 1}})
        client = YahooFinanceClient(config, session=session, sleep=lambda seconds: None)
        analyzer = ProductionTechnicalAnalyzer(config, client, cache)

        with pytest.raises(DataUnavailable) as excinfo:
            analyzer.analyze("KO")

        assert isinstance(excinfo.value.__cause__, NetworkError)
        assert session.get.call_count == 2

    def test_failed_analysis_is_not_cached(self, analyzer, cache):
        with pytest.raises(DataUnavailable):
            analyzer.analyze("NOPE")
        assert cache.stats()['total_entries'] == 0

    def test_unknown_risk_profile(self, analyzer):
        with pytest.raises(InvalidConfiguration):
            analyzer.analyze("RISE", "yolo")

# ============================================================================
# BATCH
# ============================================================================

class TestBatch:

    def test_one_failure_does_not_abort_the_batch(self, config_manager, cache, rising_history, flat_history):
        source = FakeMarketData({
            'RISE': rising_history,
            'FLAT': flat_history,
            'DOWN': NetworkError("connection reset", "DOWN"),
        })
        analyzer = ProductionTechnicalAnalyzer(config_manager, source, cache)

        analyses = analyzer.batch_analyze(["RISE", "DOWN", "FLAT"])

        assert [a.symbol for a in analyses] == ["RISE", "FLAT"]
        assert analyzer.get_performance_metrics()['failed_symbols'] == 1

    def test_results_keep_order_and_collapse_duplicates(self, analyzer):
        results = analyzer.batch_analyze_results(["flat", "RISE", "FLAT", "NOPE", "FALL"])

        assert [r.symbol for r in results] == ["FLAT", "RISE", "NOPE", "FALL"]
        assert [r.ok for r in results] == [True, True, False, True]
        assert results[2].error_type == "DataUnavailable"

    def test_empty_batch(self, analyzer):
        assert analyzer.batch_analyze([]) == []

    def test_slow_symbol_times_out(self, rising_history, clock):
        config = EngineConfigManager(overrides={'analysis': {'symbol_timeout_seconds': 0.5}})
        source = FakeMarketData({'RISE': rising_history, 'SLOW': rising_history}, delays={'SLOW': 2.0})
        analyzer = ProductionTechnicalAnalyzer(config, source, AnalysisCache(clock=clock))

        results = analyzer.batch_analyze_results(["RISE", "SLOW"])

        assert results[0].ok
        assert not results[1].ok
        assert results[1].error_type == "MarketDataTimeout"

    def test_batch_warms_the_symbol_cache(self, analyzer, market_data):
        analyzer.batch_analyze(["RISE", "FALL"])
        analyzer.analyze("RISE")

        assert market_data.calls_for("RISE") == 1

# ============================================================================
# OPPORTUNITIES
# ============================================================================

class TestTopOpportunities:

    def test_orders_by_confidence_allocation_then_symbol(self, analyzer):
        analyses = [
            hand_built("CCC", Signal.BUY, 60.0, 4.0),
            hand_built("AAA", Signal.BUY, 80.0, 2.0),
            hand_built("BBB", Signal.BUY, 60.0, 6.0),
            hand_built("ABC", Signal.BUY, 60.0, 6.0),
            hand_built("SSS", Signal.SELL, 90.0),
            hand_built("NNN", Signal.NEUTRAL, 99.0),
        ]

        result = analyzer.top_opportunities(analyses, "buy", limit=10)

        assert [a.symbol for a in result] == ["AAA", "ABC", "BBB", "CCC"]

    def test_limit_truncates(self, analyzer):
        analyses = [hand_built(f"S{i}", Signal.SELL, float(i)) for i in range(5)]

        result = analyzer.top_opportunities(analyses, Signal.SELL, limit=2)

        assert [a.symbol for a in result] == ["S4", "S3"]

    def test_non_positive_limit(self, analyzer):
        assert analyzer.top_opportunities([hand_built("A", Signal.BUY, 50.0)], "buy", limit=0) == []

    def test_neutral_is_a_valid_filter(self, analyzer):
        result = analyzer.top_opportunities([hand_built("N", Signal.NEUTRAL, 50.0)], "neutral")
        assert [a.symbol for a in result] == ["N"]

    def test_unknown_type(self, analyzer):
        with pytest.raises(InvalidConfiguration):
            analyzer.top_opportunities([], "hodl")

class TestGetOpportunities:

    def test_splits_buy_and_sell_and_reports_failures(self, analyzer):
        result = analyzer.get_opportunities(["RISE", "FALL", "FLAT", "NOPE"])

        assert [a.symbol for a in result['buy']] == ["RISE"]
        assert [a.symbol for a in result['sell']] == ["FALL"]
        assert result['failed'] == ["NOPE"]

    def test_cached_until_refreshed(self, analyzer, market_data):
        first = analyzer.get_opportunities(["RISE", "FALL"])
        analyzer.invalidate_symbol("RISE")
        second = analyzer.get_opportunities(["FALL", "RISE"])

        assert first == second
        assert market_data.calls_for("RISE") == 1

        analyzer.get_opportunities(["RISE", "FALL"], force_refresh=True)
        assert market_data.calls_for("RISE") == 2

    def test_invalidate_opportunities(self, analyzer, market_data):
        analyzer.get_opportunities(["RISE"])
        assert analyzer.invalidate_opportunities() == 1

def test_invalidate_symbol_drops_every_profile(analyzer, cache):
    analyzer.analyze("RISE", "moderate")
    analyzer.analyze("RISE", "conservative")
    analyzer.analyze("FALL")

    assert analyzer.invalidate_symbol("rise") == 2
    assert cache.stats()['namespaces']['analysis']['keys'] == ["FALL:moderate"]
