#!/usr/bin/env python3
"""
⚖️ INCOME SIGNAL ENGINE - PORTFOLIO REBALANCING ANALYZER
src/income_engine/trading/rebalancing_analyzer.py

Pure computation over a portfolio snapshot: current allocations,
risk-profile targets tilted by analyst recommendations, per-symbol trade
suggestions and a portfolio-level summary.

Pipeline:
1. Total value (Σ shares × price)
2. Current allocations (percent of total; undefined when the total is 0)
3. Analyst recommendations, defaulting to a low-confidence hold per symbol
4. Target allocations: category baseline per risk profile, recommendation
   tilt, renormalized to 100
5. Suggestions: hold inside the balance tolerance, otherwise buy/sell the
   share count that closes the gap
6. Summary: buy/sell totals, rebalancing score and risk level

Rounding:
- Allocations, estimated values and scores are rounded half-up to 2 decimals
- Shares are rounded half away from zero to the configured increment
  (0.01 share by default)

Author: Income Signal Engine
Version: 1.0.0
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..ai.models import Holding, Recommendation, RiskLevel
from ..core.config_manager import (
    AssetCategory, EngineConfigManager, RebalancingSettings, RiskProfile, parse_risk_profile
)
from ..core.logger import LoggerFactory, LogCategory, PerformanceMetric, log_execution_time
from .recommendation_service import RecommendationSource, RecommendationUnavailable

logger = LoggerFactory.get_logger('rebalancing_analyzer', LogCategory.REBALANCING)

# ============================================================================
# REBALANCING TYPES AND ENUMS
# ============================================================================

class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"

class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}

CATEGORY_ORDER = (
    AssetCategory.BONDS,
    AssetCategory.LARGE_CAP,
    AssetCategory.MID_CAP,
    AssetCategory.SMALL_CAP,
    AssetCategory.OTHER,
)

BOND_TICKER_MARKERS = ('BOND', 'TLT', 'AGG')

@dataclass(frozen=True)
class Allocation:
    symbol: str
    value: float
    allocation: Optional[float]     # None when the portfolio total is 0

    def to_dict(self) -> Dict[str, Any]:
        return {'symbol': self.symbol, 'value': self.value, 'allocation': self.allocation}

@dataclass(frozen=True)
class TargetAllocation:
    symbol: str
    target_allocation: float

    def to_dict(self) -> Dict[str, Any]:
        return {'symbol': self.symbol, 'targetAllocation': self.target_allocation}

@dataclass(frozen=True)
class RebalancingSuggestion:
    symbol: str
    current_allocation: float
    suggested_allocation: float
    action: TradeAction
    shares_to_trade: float          # signed, positive = buy
    estimated_value: float          # non-negative
    reason: str
    confidence: float
    priority: Priority

    @property
    def allocation_delta(self) -> float:
        return self.suggested_allocation - self.current_allocation

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'currentAllocation': self.current_allocation,
            'suggestedAllocation': self.suggested_allocation,
            'action': self.action.value,
            'sharesToTrade': self.shares_to_trade,
            'estimatedValue': self.estimated_value,
            'reason': self.reason,
            'confidence': self.confidence,
            'priority': self.priority.value,
        }

@dataclass(frozen=True)
class RebalancingSummary:
    total_buy_value: float
    total_sell_value: float
    rebalancing_score: float        # 0-100, 100 = already balanced
    risk_level: RiskLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalBuyValue': self.total_buy_value,
            'totalSellValue': self.total_sell_value,
            'rebalancingScore': self.rebalancing_score,
            'riskLevel': self.risk_level.value,
        }

@dataclass(frozen=True)
class RebalancingReport:
    portfolio_id: Optional[str]
    risk_profile: RiskProfile
    total_value: float
    current_allocations: Tuple[Allocation, ...]
    target_allocations: Tuple[TargetAllocation, ...]
    suggestions: Tuple[RebalancingSuggestion, ...]
    summary: RebalancingSummary
    recommendations: Dict[str, Recommendation]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'portfolioId': self.portfolio_id,
            'riskProfile': self.risk_profile.value,
            'totalValue': self.total_value,
            'currentAllocations': [a.to_dict() for a in self.current_allocations],
            'targetAllocations': [t.to_dict() for t in self.target_allocations],
            'suggestions': [s.to_dict() for s in self.suggestions],
            'summary': self.summary.to_dict(),
            'recommendations': {s: r.to_dict() for s, r in self.recommendations.items()},
        }

# ============================================================================
# ROUNDING HELPERS
# ============================================================================

def round_half_up(value: float, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))

def round_to_increment(value: float, increment: float) -> float:
    """Nearest multiple of ``increment``, ties away from zero"""

    step = Decimal(str(increment))
    units = (Decimal(str(value)) / step).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return float(units * step)

# ============================================================================
# PRODUCTION REBALANCING ANALYZER
# ============================================================================

class ProductionRebalancingAnalyzer:
    """
    Portfolio rebalancing analysis

    Holds no state between calls beyond configuration, the recommendation
    collaborator and lock-guarded counters.
    """

    def __init__(self, config_manager: EngineConfigManager,
                 recommendation_source: RecommendationSource):

        self.config_manager = config_manager
        self.recommendation_source = recommendation_source
        self.settings: RebalancingSettings = config_manager.get_rebalancing_settings()
        self.logger = logger

        self.analysis_count = 0
        self.recommendation_failures = 0
        self._metrics_lock = threading.RLock()

        self.logger.info("⚖️ Rebalancing analyzer initialized",
                         balance_tolerance=self.settings.balance_tolerance_percent,
                         concentration_limit=self.settings.concentration_limit_percent)

    # ========================================================================
    # MAIN ANALYSIS INTERFACE
    # ========================================================================

    def analyze_rebalancing(self, holdings: Iterable[Union[Holding, Dict[str, Any]]],
                            risk_profile: Union[RiskProfile, str] = RiskProfile.MODERATE,
                            portfolio_id: Optional[str] = None) -> RebalancingReport:
        """
        Full rebalancing report for a portfolio snapshot

        Raises:
            InvalidConfiguration: unknown risk profile, before any other work
        """

        profile = parse_risk_profile(risk_profile)
        start_time = time.time()

        positions = self.consolidate_holdings(holdings)
        total_value = self.calculate_total_value(positions)
        current_allocations = self.calculate_current_allocations(positions, total_value)

        if total_value <= 0:
            self.logger.info("⚖️ Portfolio has no value, nothing to rebalance",
                             portfolio_id=portfolio_id,
                             holdings=len(positions))
            return RebalancingReport(
                portfolio_id=portfolio_id,
                risk_profile=profile,
                total_value=0.0,
                current_allocations=tuple(current_allocations),
                target_allocations=tuple(TargetAllocation(h.symbol, 0.0) for h in positions),
                suggestions=tuple(),
                summary=RebalancingSummary(0.0, 0.0, 100.0, RiskLevel.LOW),
                recommendations={}
            )

        recommendations = self.fetch_recommendations([h.symbol for h in positions])
        target_allocations = self.calculate_target_allocations(positions, recommendations, profile)
        suggestions = self.generate_suggestions(
            current_allocations, target_allocations, positions, recommendations, total_value
        )
        summary = self.calculate_summary(suggestions, current_allocations)

        analysis_time = time.time() - start_time
        with self._metrics_lock:
            self.analysis_count += 1

        self.logger.info("✅ Rebalancing analysis completed",
                         portfolio_id=portfolio_id,
                         risk_profile=profile.value,
                         total_value=round_half_up(total_value),
                         suggestions=len(suggestions),
                         rebalancing_score=summary.rebalancing_score,
                         risk_level=summary.risk_level.value,
                         execution_time=analysis_time)

        self.logger.performance(PerformanceMetric(
            metric_name="rebalancing_analysis_time",
            value=analysis_time,
            unit="seconds",
            timestamp=datetime.now(timezone.utc),
            component="rebalancing_analyzer"
        ))

        return RebalancingReport(
            portfolio_id=portfolio_id,
            risk_profile=profile,
            total_value=round_half_up(total_value),
            current_allocations=tuple(current_allocations),
            target_allocations=tuple(target_allocations),
            suggestions=tuple(suggestions),
            summary=summary,
            recommendations=recommendations
        )

    # ========================================================================
    # PIPELINE STEPS
    # ========================================================================

    def consolidate_holdings(self, holdings: Iterable[Union[Holding, Dict[str, Any]]]) -> List[Holding]:
        """Normalize input records and merge repeated symbols (multiple lots)"""

        merged: Dict[str, Holding] = {}

        for item in holdings:
            holding = item if isinstance(item, Holding) else Holding.from_dict(item)
            existing = merged.get(holding.symbol)

            if existing is None:
                merged[holding.symbol] = holding
                continue

            shares = existing.shares + holding.shares
            cost = existing.shares * existing.average_cost + holding.shares * holding.average_cost
            merged[holding.symbol] = Holding(
                symbol=existing.symbol,
                shares=shares,
                average_cost=cost / shares if shares else 0.0,
                current_price=existing.current_price,
                market_cap=existing.market_cap if existing.market_cap is not None else holding.market_cap,
                sector=existing.sector or holding.sector
            )

        return list(merged.values())

    def calculate_total_value(self, holdings: Sequence[Holding]) -> float:
        return sum(h.shares * h.current_price for h in holdings)

    def calculate_current_allocations(self, holdings: Sequence[Holding],
                                      total_value: float) -> List[Allocation]:
        allocations = []

        for holding in holdings:
            value = holding.shares * holding.current_price
            allocation = round_half_up(value / total_value * 100) if total_value > 0 else None
            allocations.append(Allocation(holding.symbol, round_half_up(value), allocation))

        return allocations

    @log_execution_time(logger, 'recommendation_fetch')
    def fetch_recommendations(self, symbols: Sequence[str]) -> Dict[str, Recommendation]:
        """One recommendation per symbol; failures become the default hold"""

        recommendations = {}
        default_confidence = self.settings.default_recommendation_confidence

        for symbol in symbols:
            try:
                recommendations[symbol] = self.recommendation_source.get_recommendation(symbol)

            except RecommendationUnavailable as e:
                self._record_recommendation_failure()
                self.logger.warning(f"⚠️ Recommendation unavailable for {symbol}, using default",
                                    symbol=symbol, error=str(e))
                recommendations[symbol] = Recommendation.default(default_confidence)

            except Exception as e:
                self._record_recommendation_failure()
                self.logger.warning(f"⚠️ Recommendation lookup failed for {symbol}, using default",
                                    symbol=symbol, error=str(e), error_type=type(e).__name__)
                recommendations[symbol] = Recommendation.default(default_confidence)

        return recommendations

    def _record_recommendation_failure(self):
        with self._metrics_lock:
            self.recommendation_failures += 1

    def categorize_holding(self, holding: Holding) -> AssetCategory:
        """Bucket a holding by sector, ticker and market cap"""

        s = self.settings
        sector = (holding.sector or '').lower()
        ticker = holding.symbol.upper()
        market_cap = holding.market_cap or 0

        if 'bond' in sector or any(marker in ticker for marker in BOND_TICKER_MARKERS):
            return AssetCategory.BONDS
        if market_cap > s.large_cap_min_market_cap:
            return AssetCategory.LARGE_CAP
        if market_cap > s.mid_cap_min_market_cap:
            return AssetCategory.MID_CAP
        if market_cap > s.small_cap_min_market_cap:
            return AssetCategory.SMALL_CAP
        return AssetCategory.OTHER

    def calculate_baseline_allocations(self, holdings: Sequence[Holding],
                                       risk_profile: RiskProfile) -> Dict[str, float]:
        """Category shares bounded by the profile's ranges, split equally within a category"""

        ranges = self.settings.category_ranges[risk_profile]
        groups: Dict[AssetCategory, List[str]] = {category: [] for category in CATEGORY_ORDER}

        for holding in holdings:
            groups[self.categorize_holding(holding)].append(holding.symbol)

        baseline = {}
        remaining = 100.0

        for category in CATEGORY_ORDER:
            members = groups[category]
            if not members:
                continue

            bounds = ranges[category]
            share = min(bounds.max_percent, max(bounds.min_percent, remaining * bounds.share_of_remaining))
            for symbol in members:
                baseline[symbol] = share / len(members)
            remaining -= share

        return baseline

    def recommendation_factor(self, recommendation: Optional[Recommendation]) -> float:
        """
        Multiplicative tilt: 1 + direction × (base + return bonus) × confidence/100

        The return bonus only applies when the potential return points the
        same way as the rating.
        """

        if recommendation is None:
            return 1.0

        s = self.settings
        base = s.recommendation_tilts.get(recommendation.recommendation, 0.0)
        if base == 0:
            return 1.0

        direction = 1 if base > 0 else -1
        aligned_return = max(0.0, direction * recommendation.potential_return)
        bonus = min(s.max_return_bonus, aligned_return / 100 * s.return_bonus_rate)
        confidence = max(0.0, min(recommendation.confidence, 100.0)) / 100

        return 1 + direction * (abs(base) + bonus) * confidence

    def calculate_target_allocations(self, holdings: Sequence[Holding],
                                     recommendations: Dict[str, Recommendation],
                                     risk_profile: Union[RiskProfile, str]) -> List[TargetAllocation]:
        """Targets summing to 100 (or all 0 when there is nothing to allocate)"""

        profile = parse_risk_profile(risk_profile)
        baseline = self.calculate_baseline_allocations(holdings, profile)

        tilted = {
            symbol: weight * self.recommendation_factor(recommendations.get(symbol))
            for symbol, weight in baseline.items()
        }

        total = sum(tilted.values())
        if total <= 0:
            return [TargetAllocation(h.symbol, 0.0) for h in holdings]

        return [TargetAllocation(h.symbol, tilted[h.symbol] / total * 100) for h in holdings]

    def calculate_priority(self, allocation_delta: float, confidence: float) -> Priority:
        s = self.settings
        score = abs(allocation_delta) * (s.priority_confidence_floor
                                         + s.priority_confidence_span * confidence / 100)
        if score > s.high_priority_delta:
            return Priority.HIGH
        if score < s.low_priority_delta:
            return Priority.LOW
        return Priority.MEDIUM

    def generate_reason(self, allocation_delta: float, recommendation: Optional[Recommendation],
                        action: TradeAction) -> str:
        reasons = []
        magnitude = abs(allocation_delta)

        if magnitude > self.settings.high_priority_delta:
            reasons.append('Significant allocation imbalance')
        elif magnitude > self.settings.balance_tolerance_percent:
            reasons.append('Moderate allocation adjustment needed')

        if recommendation is not None:
            rating = recommendation.recommendation
            if rating == 'strong_buy' and action is TradeAction.BUY:
                reasons.append('Strong buy recommendation from analysts')
            elif rating == 'buy' and action is TradeAction.BUY:
                reasons.append('Buy recommendation from analysts')
            elif rating == 'sell' and action is TradeAction.SELL:
                reasons.append('Sell recommendation from analysts')
            elif rating == 'strong_sell' and action is TradeAction.SELL:
                reasons.append('Strong sell recommendation from analysts')

        if not reasons:
            reasons.append('Portfolio rebalancing to maintain target allocation')

        return '. '.join(reasons)

    def generate_suggestions(self, current_allocations: Sequence[Allocation],
                             target_allocations: Sequence[TargetAllocation],
                             holdings: Sequence[Holding],
                             recommendations: Dict[str, Recommendation],
                             total_value: float) -> List[RebalancingSuggestion]:
        """
        One suggestion per symbol present in both current and target lists

        Sorted by priority, then by size of the allocation change, then by
        symbol.
        """

        s = self.settings
        current_by_symbol = {a.symbol: a for a in current_allocations}
        holding_by_symbol = {h.symbol: h for h in holdings}
        default_confidence = s.default_recommendation_confidence
        suggestions = []

        for target in target_allocations:
            current = current_by_symbol.get(target.symbol)
            holding = holding_by_symbol.get(target.symbol)
            if current is None or holding is None or current.allocation is None:
                continue

            recommendation = recommendations.get(target.symbol)
            confidence = recommendation.confidence if recommendation else default_confidence
            delta = target.target_allocation - current.allocation

            if delta > s.balance_tolerance_percent:
                action = TradeAction.BUY
            elif delta < -s.balance_tolerance_percent:
                action = TradeAction.SELL
            else:
                action = TradeAction.HOLD

            if action is TradeAction.HOLD:
                shares, estimated_value = 0.0, 0.0
            else:
                value_delta = delta / 100 * total_value
                raw_shares = value_delta / holding.current_price if holding.current_price > 0 else 0.0
                shares = round_to_increment(raw_shares, s.share_increment)
                estimated_value = round_half_up(abs(value_delta))

            suggestions.append(RebalancingSuggestion(
                symbol=target.symbol,
                current_allocation=current.allocation,
                suggested_allocation=round_half_up(target.target_allocation),
                action=action,
                shares_to_trade=shares,
                estimated_value=estimated_value,
                reason=self.generate_reason(delta, recommendation, action),
                confidence=confidence,
                priority=self.calculate_priority(delta, confidence)
            ))

        suggestions.sort(key=lambda x: (-PRIORITY_RANK[x.priority], -abs(x.allocation_delta), x.symbol))
        return suggestions

    def calculate_summary(self, suggestions: Sequence[RebalancingSuggestion],
                          current_allocations: Sequence[Allocation] = ()) -> RebalancingSummary:
        """
        Buy/sell totals, score and risk level

        score = 100 - min(100, Σ|Δ| over buy/sell suggestions). Risk is LOW
        from 90, MEDIUM from 80, else HIGH; one level higher when the largest
        holding exceeds the concentration limit.
        """

        s = self.settings

        total_buy = sum(x.estimated_value for x in suggestions if x.action is TradeAction.BUY)
        total_sell = sum(x.estimated_value for x in suggestions if x.action is TradeAction.SELL)
        total_changes = sum(abs(x.allocation_delta) for x in suggestions if x.action is not TradeAction.HOLD)

        score = round_half_up(100 - min(100.0, total_changes))

        if score >= s.low_risk_min_score:
            risk_level = RiskLevel.LOW
        elif score >= s.medium_risk_min_score:
            risk_level = RiskLevel.MEDIUM
        else:
            risk_level = RiskLevel.HIGH

        allocations = [a.allocation for a in current_allocations if a.allocation is not None]
        if allocations and max(allocations) > s.concentration_limit_percent:
            risk_level = risk_level.raised()

        return RebalancingSummary(
            total_buy_value=round_half_up(total_buy),
            total_sell_value=round_half_up(total_sell),
            rebalancing_score=score,
            risk_level=risk_level
        )

    # ========================================================================
    # PERFORMANCE AND UTILITY
    # ========================================================================

    def get_performance_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            return {
                'total_analyses': self.analysis_count,
                'recommendation_failures': self.recommendation_failures,
            }
