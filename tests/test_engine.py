"""Engine composition and Lambda boundary tests"""

import json

import pytest

from income_engine import IncomeSignalEngine, LambdaApplication
from income_engine.ai.models import Recommendation, Signal

from conftest import FakeRecommendations

@pytest.fixture
def recommendations():
    return FakeRecommendations({'MSFT': Recommendation('buy', number_of_analysts=10, confidence=80.0)})

@pytest.fixture
def engine(config_manager, market_data, recommendations, cache):
    return IncomeSignalEngine(config_manager, market_data, recommendations, cache)

@pytest.fixture
def app(engine):
    return LambdaApplication(engine_factory=lambda: engine)

def invoke(app, event):
    response = app(event, None)
    return response['statusCode'], json.loads(response['body'])

# ============================================================================
# ENGINE
# ============================================================================

class TestEngine:

    def test_analysis_is_cached_across_calls(self, engine, market_data):
        first = engine.analyze('RISE')
        assert engine.analyze('rise') == first
        assert market_data.calls_for('RISE') == 1
        assert engine.cache_stats()['namespaces']['analysis']['count'] == 1

    def test_batch_and_ranking(self, engine):
        analyses = engine.batch_analyze(['RISE', 'FALL', 'FLAT', 'NOPE'])

        assert [a.symbol for a in analyses] == ['RISE', 'FALL', 'FLAT']
        assert [a.symbol for a in engine.top_opportunities(analyses, Signal.SELL)] == ['FALL']

    def test_invalidating_a_symbol_drops_opportunities(self, engine, market_data):
        engine.get_opportunities(['RISE', 'FALL'])

        assert engine.invalidate('RISE') == 2
        assert engine.cache_stats()['namespaces']['opportunities']['count'] == 0

        engine.get_opportunities(['RISE', 'FALL'])
        assert market_data.calls_for('RISE') == 2
        assert market_data.calls_for('FALL') == 1

    def test_invalidate_everything(self, engine):
        engine.analyze('RISE')
        engine.analyze('FALL')
        assert engine.invalidate() == 2

    def test_status(self, engine):
        engine.analyze('RISE')
        status = engine.get_status()

        assert status['shutdown'] is False
        assert status['technical_analyzer']['total_analyses'] == 1
        assert status['cache']['total_entries'] == 1
        assert status['market_data'] == {'provider': 'FakeMarketData'}
        assert 'analysis' in status['configuration']

    def test_shutdown_is_idempotent(self, engine, market_data):
        engine.analyze('RISE')

        with engine:
            pass
        engine.shutdown()

        assert engine.is_shutdown
        assert market_data.closed
        assert engine.cache_stats()['total_entries'] == 0

# ============================================================================
# LAMBDA BOUNDARY
# ============================================================================

class TestLambdaApplication:

    def test_engine_is_built_once(self, engine):
        built = []

        def factory():
            built.append(1)
            return engine

        app = LambdaApplication(engine_factory=factory)
        invoke(app, {'mode': 'cache_stats'})
        invoke(app, {'mode': 'cache_stats'})

        assert built == [1]

    def test_single_symbol(self, app):
        status, body = invoke(app, {'mode': 'technical_analysis', 'symbol': 'RISE'})

        assert status == 200
        assert body['status'] == 'success'
        assert body['analysis']['symbol'] == 'RISE'
        assert body['analysis']['overallSignal'] == 'buy'
        assert len(body['analysis']['indicators']) == 7
        assert 'execution_id' in body

    def test_unknown_symbol_is_404(self, app):
        status, body = invoke(app, {'symbol': 'NOPE'})

        assert status == 404
        assert body['error_type'] == 'DataUnavailable'
        assert body['symbol'] == 'NOPE'

    def test_bad_risk_profile_is_400(self, app):
        status, body = invoke(app, {'symbol': 'RISE', 'risk_profile': 'reckless'})

        assert status == 400
        assert body['error_type'] == 'InvalidConfiguration'

    def test_api_gateway_opportunities(self, app):
        status, body = invoke(app, {
            'httpMethod': 'GET',
            'queryStringParameters': {'symbols': 'RISE,FALL,NOPE', 'type': 'buy', 'limit': '5'},
        })

        assert status == 200
        assert [a['symbol'] for a in body['opportunities']] == ['RISE']
        assert body['failed'] == ['NOPE']

    def test_opportunities_without_type_return_both_sides(self, app):
        status, body = invoke(app, {'symbols': ['RISE', 'FALL', 'FLAT']})

        assert status == 200
        assert [a['symbol'] for a in body['buy']] == ['RISE']
        assert [a['symbol'] for a in body['sell']] == ['FALL']
        assert body['failed'] == []

    @pytest.mark.parametrize("event", [
        {'symbols': 'RISE', 'type': 'hodl'},
        {'symbols': 'RISE', 'limit': 'ten'},
        {'mode': 'technical_analysis'},
        {'mode': 'forecast'},
        {'mode': 'invalidate', 'namespace': 'quotes'},
        {'mode': 'rebalancing', 'holdings': [{'shares': 10, 'currentPrice': 50}]},
        {'body': '{not json'},
    ])
    def test_bad_requests_are_400(self, app, event):
        status, body = invoke(app, event)

        assert status == 400
        assert body['status'] == 'error'

    def test_rebalancing_from_json_body(self, app, recommendations):
        status, body = invoke(app, {'body': json.dumps({
            'mode': 'rebalancing',
            'portfolio_id': 'income-1',
            'risk_profile': 'conservative',
            'holdings': [
                {'symbol': 'MSFT', 'shares': 70, 'averageCost': 90, 'currentPrice': 100},
                {'symbol': 'KO', 'shares': 30, 'averageCost': 55, 'currentPrice': 100},
            ],
        })})

        report = body['rebalancing']
        assert status == 200
        assert report['portfolioId'] == 'income-1'
        assert report['riskProfile'] == 'conservative'
        assert report['totalValue'] == 10000.0
        assert {s['symbol']: s['action'] for s in report['suggestions']} == {'MSFT': 'sell', 'KO': 'buy'}
        assert recommendations.calls == ['MSFT', 'KO']

    def test_cache_stats_and_invalidate(self, app):
        invoke(app, {'symbol': 'RISE'})

        status, body = invoke(app, {'mode': 'cache_stats'})
        assert status == 200
        assert body['cache']['namespaces']['analysis']['keys'] == ['RISE:moderate']

        status, body = invoke(app, {'mode': 'invalidate', 'symbol': 'RISE'})
        assert status == 200
        assert body['entries_removed'] == 1

    def test_unexpected_failure_is_500(self, app, market_data):
        market_data.histories['BOOM'] = RuntimeError("disk on fire")

        status, body = invoke(app, {'symbol': 'BOOM'})

        assert status == 500
        assert body['error_type'] == 'RuntimeError'

def test_status_mode(app):
    invoke(app, {'symbol': 'FLAT'})

    status, body = invoke(app, {'mode': 'status'})

    assert status == 200
    assert body['engine']['shutdown'] is False
    assert body['engine']['technical_analyzer']['total_analyses'] == 1
