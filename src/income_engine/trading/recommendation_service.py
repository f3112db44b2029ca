#!/usr/bin/env python3
"""
🎯 INCOME SIGNAL ENGINE - ANALYST RECOMMENDATIONS
src/income_engine/trading/recommendation_service.py

Builds a Recommendation from the market data quote summary.

Author: Income Signal Engine
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from ..ai.models import Recommendation
from ..core.logger import LoggerFactory, LogCategory
from .market_data_client import MarketDataError, MarketDataSource

# Yahoo recommendation keys folded onto the five-step scale
RECOMMENDATION_ALIASES = {
    'strong_buy': 'strong_buy',
    'strongbuy': 'strong_buy',
    'buy': 'buy',
    'outperform': 'buy',
    'hold': 'hold',
    'none': 'hold',
    'underperform': 'sell',
    'sell': 'sell',
    'strong_sell': 'strong_sell',
    'strongsell': 'strong_sell',
}

class RecommendationUnavailable(Exception):
    """No recommendation could be produced for a symbol"""

    def __init__(self, message: str, symbol: str = None):
        super().__init__(message)
        self.symbol = symbol

class RecommendationSource(ABC):

    @abstractmethod
    def get_recommendation(self, symbol: str) -> Recommendation:
        """Raises RecommendationUnavailable when the lookup fails"""

def analyst_confidence(number_of_analysts: int) -> float:
    """
    Confidence from analyst coverage

    0 analysts → 20, 1-5 → 20 + 8n, 6-10 → 60 + 4(n-5), 11+ → 80 + 2(n-10)
    capped at 100.
    """

    n = int(number_of_analysts or 0)
    if n <= 0:
        return 20.0
    if n <= 5:
        return 20.0 + n * 8
    if n <= 10:
        return 60.0 + (n - 5) * 4
    return float(min(100, 80 + (n - 10) * 2))

def normalize_recommendation_key(key) -> str:
    if not key:
        return 'hold'
    return RECOMMENDATION_ALIASES.get(str(key).strip().lower().replace(' ', '_'), 'hold')

class RecommendationService(RecommendationSource):
    """Analyst consensus sourced from the market data quote summary"""

    def __init__(self, market_data: MarketDataSource):
        self.market_data = market_data
        self.logger = LoggerFactory.get_logger('recommendation_service', LogCategory.MARKET_DATA)

    def get_recommendation(self, symbol: str) -> Recommendation:

        try:
            summary = self.market_data.get_quote_summary(symbol)
        except MarketDataError as e:
            raise RecommendationUnavailable(f"Recommendation lookup failed for {symbol}: {e}", symbol) from e

        financial_data = summary.get('financialData')
        if not financial_data:
            raise RecommendationUnavailable(f"No financial data available for {symbol}", symbol)

        analysts = int(financial_data.get('numberOfAnalystOpinions') or 0)
        target_mean = float(financial_data.get('targetMeanPrice') or 0)
        current_price = float((summary.get('price') or {}).get('regularMarketPrice') or 0)

        if target_mean and current_price:
            potential_return = (target_mean - current_price) / current_price * 100
        else:
            potential_return = 0.0

        recommendation = Recommendation(
            recommendation=normalize_recommendation_key(financial_data.get('recommendationKey')),
            number_of_analysts=analysts,
            target_low_price=float(financial_data.get('targetLowPrice') or 0),
            target_high_price=float(financial_data.get('targetHighPrice') or 0),
            target_mean_price=target_mean,
            target_median_price=float(financial_data.get('targetMedianPrice') or 0),
            potential_return=round(potential_return, 2),
            confidence=analyst_confidence(analysts),
            last_updated=datetime.now(timezone.utc)
        )

        self.logger.debug("🎯 Recommendation retrieved",
                          symbol=symbol,
                          recommendation=recommendation.recommendation,
                          analysts=analysts)
        return recommendation
