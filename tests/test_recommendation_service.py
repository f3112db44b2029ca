"""Analyst recommendation service tests"""

import pytest

from income_engine.trading.market_data_client import NetworkError
from income_engine.trading.recommendation_service import (
    RecommendationService, RecommendationUnavailable, analyst_confidence,
    normalize_recommendation_key
)

from conftest import FakeMarketData

@pytest.mark.parametrize("analysts, expected", [
    (None, 20.0),
    (0, 20.0),
    (3, 44.0),
    (5, 60.0),
    (8, 72.0),
    (10, 80.0),
    (15, 90.0),
    (30, 100.0),
])
def test_confidence_grows_with_coverage(analysts, expected):
    assert analyst_confidence(analysts) == expected

@pytest.mark.parametrize("key, expected", [
    ("strongBuy", "strong_buy"),
    ("strong_buy", "strong_buy"),
    ("BUY", "buy"),
    ("underperform", "sell"),
    ("strong sell", "strong_sell"),
    ("none", "hold"),
    (None, "hold"),
    ("mystery", "hold"),
])
def test_recommendation_keys(key, expected):
    assert normalize_recommendation_key(key) == expected

def test_builds_recommendation_from_quote_summary():
    source = FakeMarketData(summaries={
        'KO': {
            'financialData': {
                'recommendationKey': 'strongBuy',
                'numberOfAnalystOpinions': 12,
                'targetLowPrice': 55.0,
                'targetHighPrice': 75.0,
                'targetMeanPrice': 66.0,
                'targetMedianPrice': 65.0,
            },
            'price': {'regularMarketPrice': 60.0},
        }
    })

    rec = RecommendationService(source).get_recommendation('KO')

    assert rec.recommendation == "strong_buy"
    assert rec.number_of_analysts == 12
    assert rec.potential_return == pytest.approx(10.0)
    assert rec.confidence == 84.0
    assert rec.target_median_price == 65.0

def test_missing_price_means_no_potential_return():
    source = FakeMarketData(summaries={
        'KO': {'financialData': {'recommendationKey': 'hold', 'targetMeanPrice': 66.0}}
    })

    rec = RecommendationService(source).get_recommendation('KO')

    assert rec.potential_return == 0.0
    assert rec.confidence == 20.0

def test_market_data_failure_is_unavailable():
    source = FakeMarketData(summaries={'KO': NetworkError("reset", "KO")})

    with pytest.raises(RecommendationUnavailable) as excinfo:
        RecommendationService(source).get_recommendation('KO')

    assert excinfo.value.symbol == "KO"
    assert isinstance(excinfo.value.__cause__, NetworkError)

def test_no_analyst_coverage_is_unavailable():
    with pytest.raises(RecommendationUnavailable):
        RecommendationService(FakeMarketData()).get_recommendation('KO')
