#!/usr/bin/env python3
"""
⚖️ INCOME SIGNAL ENGINE - POSITION SIZING ADVISOR
src/income_engine/ai/position_sizing.py

Turns an aggregated signal and confidence into a recommended allocation,
a risk-profile ceiling and a qualitative risk level.

Author: Income Signal Engine
Version: 1.0.0
"""

from typing import Optional, Sequence, Union

from .models import PositionSizing, RiskLevel, Signal, TechnicalIndicator
from .signal_aggregator import disagreement_ratio
from ..core.config_manager import (
    PositionSizingSettings, RiskProfile, parse_risk_profile
)

class PositionSizingAdvisor:
    """
    Position sizing per risk profile

    - max_position_size is the profile ceiling, independent of confidence
    - recommended_allocation is 0 for a sell or below the profile's minimum
      confidence; a buy gets ceiling × confidence/100, a neutral call half
      of that; the result never exceeds the ceiling
    """

    def __init__(self, settings: Optional[PositionSizingSettings] = None):
        self.settings = settings or PositionSizingSettings()

    def max_position_size(self, risk_profile: Union[RiskProfile, str]) -> float:
        profile = parse_risk_profile(risk_profile)
        return self.settings.profiles[profile].max_position_percent

    def recommended_allocation(self, signal: Signal, confidence: float,
                               risk_profile: Union[RiskProfile, str]) -> float:
        profile_settings = self.settings.profiles[parse_risk_profile(risk_profile)]
        ceiling = profile_settings.max_position_percent

        if signal is Signal.SELL or confidence < profile_settings.min_confidence:
            return 0.0

        allocation = ceiling * max(0.0, min(confidence, 100.0)) / 100
        if signal is Signal.NEUTRAL:
            allocation *= profile_settings.neutral_allocation_factor

        return round(min(allocation, ceiling), 2)

    def risk_level(self, signal: Signal, confidence: float,
                   indicators: Sequence[TechnicalIndicator],
                   volatility: Optional[float] = None) -> RiskLevel:
        """
        HIGH on low confidence, wide disagreement, high volatility or a
        confident sell. LOW only when confidence is high, indicators mostly
        agree and volatility (when known) is low.
        """

        s = self.settings
        disagreement = disagreement_ratio(indicators, signal)

        if (confidence < s.low_confidence
                or disagreement > s.high_disagreement
                or (volatility is not None and volatility > s.high_volatility)
                or (signal is Signal.SELL and confidence >= s.confident_sell)):
            return RiskLevel.HIGH

        if (confidence >= s.high_confidence
                and disagreement <= s.low_disagreement
                and (volatility is None or volatility < s.low_volatility)):
            return RiskLevel.LOW

        return RiskLevel.MEDIUM

    def advise(self, signal: Signal, confidence: float,
               indicators: Sequence[TechnicalIndicator], current_price: float,
               risk_profile: Union[RiskProfile, str] = RiskProfile.MODERATE,
               volatility: Optional[float] = None) -> PositionSizing:

        profile = parse_risk_profile(risk_profile)
        band = self.settings.assumed_volatility

        return PositionSizing(
            recommended_allocation=self.recommended_allocation(signal, confidence, profile),
            max_position_size=self.max_position_size(profile),
            risk_level=self.risk_level(signal, confidence, indicators, volatility),
            stop_loss=round(current_price * (1 - band), 2),
            target_price=round(current_price * (1 + band * self.settings.reward_risk_ratio), 2)
        )
