#!/usr/bin/env python3
"""
📐 INCOME SIGNAL ENGINE - ANALYSIS DATA MODEL
src/income_engine/ai/models.py

Immutable records exchanged between the indicator calculator, signal
aggregator, position sizing advisor and the analysis orchestrator, plus the
collaborator records (price history, analyst recommendations, holdings).

``to_dict()`` renders the camelCase shape used at the API boundary.

Author: Income Signal Engine
Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, Optional, Any, Tuple

from ..core.config_manager import InvalidConfiguration, RiskProfile

__all__ = [
    'PricePoint', 'Signal', 'RiskLevel', 'RiskProfile', 'TechnicalIndicator',
    'PositionSizing', 'TechnicalAnalysis', 'SymbolAnalysisResult',
    'Recommendation', 'Holding',
]

# ============================================================================
# ENUMS
# ============================================================================

class Signal(Enum):
    """Directional call of one indicator or of a whole analysis"""
    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"

class RiskLevel(Enum):
    """Qualitative risk bucket"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def raised(self) -> 'RiskLevel':
        """One level riskier, saturating at HIGH"""
        if self is RiskLevel.LOW:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)

# ============================================================================
# PRICE HISTORY
# ============================================================================

@dataclass(frozen=True)
class PricePoint:
    """One daily bar"""
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': _iso(self.date),
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }

# ============================================================================
# TECHNICAL ANALYSIS RECORDS
# ============================================================================

@dataclass(frozen=True)
class TechnicalIndicator:
    """Individual technical indicator result"""
    name: str
    value: float
    signal: Signal
    strength: float          # 0-100
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'signal': self.signal.value,
            'strength': self.strength,
            'description': self.description,
        }

@dataclass(frozen=True)
class PositionSizing:
    """Suggested allocation for one symbol, in percent of portfolio"""
    recommended_allocation: float
    max_position_size: float
    risk_level: RiskLevel
    stop_loss: float
    target_price: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recommendedAllocation': self.recommended_allocation,
            'maxPositionSize': self.max_position_size,
            'riskLevel': self.risk_level.value,
            'stopLoss': self.stop_loss,
            'targetPrice': self.target_price,
        }

@dataclass(frozen=True)
class TechnicalAnalysis:
    """Complete analysis of one symbol"""
    symbol: str
    current_price: float
    indicators: Tuple[TechnicalIndicator, ...]
    overall_signal: Signal
    buy_signals: int
    sell_signals: int
    neutral_signals: int
    confidence: float        # 0-100
    position_sizing: PositionSizing
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'currentPrice': self.current_price,
            'indicators': [indicator.to_dict() for indicator in self.indicators],
            'overallSignal': self.overall_signal.value,
            'buySignals': self.buy_signals,
            'sellSignals': self.sell_signals,
            'neutralSignals': self.neutral_signals,
            'confidence': self.confidence,
            'positionSizing': self.position_sizing.to_dict(),
            'lastUpdated': _iso(self.last_updated),
        }

@dataclass(frozen=True)
class SymbolAnalysisResult:
    """Outcome of analyzing one symbol inside a batch: an analysis or an error"""
    symbol: str
    analysis: Optional[TechnicalAnalysis] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.analysis is not None

    @classmethod
    def success(cls, symbol: str, analysis: TechnicalAnalysis) -> 'SymbolAnalysisResult':
        return cls(symbol=symbol, analysis=analysis)

    @classmethod
    def failure(cls, symbol: str, error: BaseException) -> 'SymbolAnalysisResult':
        return cls(symbol=symbol, error=str(error) or repr(error), error_type=type(error).__name__)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {'symbol': self.symbol, 'ok': True, 'analysis': self.analysis.to_dict()}
        return {'symbol': self.symbol, 'ok': False, 'error': self.error, 'errorType': self.error_type}

# ============================================================================
# COLLABORATOR RECORDS
# ============================================================================

RECOMMENDATION_KEYS = ('strong_buy', 'buy', 'hold', 'sell', 'strong_sell')

@dataclass(frozen=True)
class Recommendation:
    """Analyst consensus for one symbol"""
    recommendation: str
    number_of_analysts: int = 0
    target_low_price: float = 0.0
    target_high_price: float = 0.0
    target_mean_price: float = 0.0
    target_median_price: float = 0.0
    potential_return: float = 0.0   # percent
    confidence: float = 20.0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def default(cls, confidence: float = 20.0) -> 'Recommendation':
        """Low-confidence hold used when no recommendation can be obtained"""
        return cls(recommendation='hold', confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recommendation': self.recommendation,
            'numberOfAnalysts': self.number_of_analysts,
            'targetLowPrice': self.target_low_price,
            'targetHighPrice': self.target_high_price,
            'targetMeanPrice': self.target_mean_price,
            'targetMedianPrice': self.target_median_price,
            'potentialReturn': self.potential_return,
            'confidence': self.confidence,
            'lastUpdated': _iso(self.last_updated),
        }

@dataclass(frozen=True)
class Holding:
    """A position as supplied by the portfolio store"""
    symbol: str
    shares: float
    average_cost: float
    current_price: float
    market_cap: Optional[float] = None
    sector: Optional[str] = None

    @property
    def value(self) -> float:
        return self.shares * self.current_price

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Holding':
        """Accept either snake_case or the API's camelCase keys"""
        def pick(*names, default=None):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return default

        symbol = str(pick('symbol', 'ticker', default='')).strip().upper()
        if not symbol:
            raise InvalidConfiguration(f"Holding has no symbol: {data!r}")

        return cls(
            symbol=symbol,
            shares=float(pick('shares', default=0.0)),
            average_cost=float(pick('average_cost', 'averageCost', default=0.0)),
            current_price=float(pick('current_price', 'currentPrice', 'price', default=0.0)),
            market_cap=pick('market_cap', 'marketCap'),
            sector=pick('sector'),
        )
