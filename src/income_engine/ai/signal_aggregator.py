#!/usr/bin/env python3
"""
🧮 INCOME SIGNAL ENGINE - SIGNAL AGGREGATOR
src/income_engine/ai/signal_aggregator.py

Maps raw indicator values to buy/sell/neutral signals with a 0-100 strength
and combines them into one overall call with a confidence score.

Signal rules (thresholds from SignalThresholds):
- Price vs SMA: above ⇒ buy, below ⇒ sell; strength = 10 × percent distance
- SMA 50/200 crossover: short above long ⇒ buy, below ⇒ sell;
  strength = 10 × percent gap
- RSI / stochastic: below oversold ⇒ buy, above overbought ⇒ sell;
  strength = 80 + 2 × points into the zone, else neutral at 50
- MACD: line above signal with positive histogram ⇒ buy (mirror for sell);
  strength = 70 + 50 × histogram as a percent of price
- Volume ratio: above 1.5 ⇒ buy, below 0.5 ⇒ sell;
  strength = 60 + 20 × distance past the threshold

Every strength saturates at 100.

Author: Income Signal Engine
Version: 1.0.0
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .models import Signal, TechnicalIndicator
from ..core.config_manager import SignalThresholds

MAX_STRENGTH = 100.0

# ============================================================================
# INDICATOR → SIGNAL RULES
# ============================================================================

def _cap(strength: float) -> float:
    return max(0.0, min(MAX_STRENGTH, strength))

def moving_average_signal(name: str, label: str, current_price: float, average: float,
                          thresholds: SignalThresholds) -> TechnicalIndicator:
    """Price relative to a moving average"""

    if average == 0 or current_price == average:
        return TechnicalIndicator(name, average, Signal.NEUTRAL,
                                  thresholds.neutral_strength, f"Price at {label}")

    distance_pct = abs(current_price - average) / abs(average) * 100
    strength = _cap(distance_pct * thresholds.ma_strength_multiplier)

    if current_price > average:
        return TechnicalIndicator(name, average, Signal.BUY, strength, f"Price above {label}")
    return TechnicalIndicator(name, average, Signal.SELL, strength, f"Price below {label}")

def crossover_signal(short_average: float, long_average: float,
                     thresholds: SignalThresholds) -> TechnicalIndicator:
    """Short moving average relative to the long one"""

    name = f"SMA {thresholds.short_ma_period}/{thresholds.long_ma_period} Crossover"

    if long_average == 0 or short_average == long_average:
        return TechnicalIndicator(name, 0.0, Signal.NEUTRAL,
                                  thresholds.neutral_strength, "Moving averages converged")

    gap_pct = (short_average - long_average) / abs(long_average) * 100
    strength = _cap(abs(gap_pct) * thresholds.crossover_strength_multiplier)

    if gap_pct > 0:
        return TechnicalIndicator(name, gap_pct, Signal.BUY, strength,
                                  "Golden cross: short average above long average")
    return TechnicalIndicator(name, gap_pct, Signal.SELL, strength,
                              "Death cross: short average below long average")

def oscillator_signal(name: str, value: float, oversold: float, overbought: float,
                      thresholds: SignalThresholds) -> TechnicalIndicator:
    """Bounded 0-100 oscillator (RSI, stochastic %K)"""

    if value < oversold:
        strength = thresholds.oscillator_zone_base + (oversold - value) * thresholds.oscillator_zone_slope
        return TechnicalIndicator(name, value, Signal.BUY, _cap(strength), "Oversold")

    if value > overbought:
        strength = thresholds.oscillator_zone_base + (value - overbought) * thresholds.oscillator_zone_slope
        return TechnicalIndicator(name, value, Signal.SELL, _cap(strength), "Overbought")

    return TechnicalIndicator(name, value, Signal.NEUTRAL, thresholds.neutral_strength, "Neutral")

def macd_signal(macd_value: float, signal_value: float, histogram: float, current_price: float,
                thresholds: SignalThresholds) -> TechnicalIndicator:

    if current_price > 0:
        histogram_pct = abs(histogram) / current_price * 100
    else:
        histogram_pct = 0.0
    directional_strength = _cap(thresholds.macd_base_strength
                                + histogram_pct * thresholds.macd_strength_multiplier)

    if macd_value > signal_value and histogram > 0:
        return TechnicalIndicator("MACD", macd_value, Signal.BUY, directional_strength,
                                  "Bullish Crossover")
    if macd_value < signal_value and histogram < 0:
        return TechnicalIndicator("MACD", macd_value, Signal.SELL, directional_strength,
                                  "Bearish Crossover")

    return TechnicalIndicator("MACD", macd_value, Signal.NEUTRAL,
                              thresholds.neutral_strength, "No Crossover")

def volume_signal(ratio: float, thresholds: SignalThresholds) -> TechnicalIndicator:

    if ratio > thresholds.volume_high_ratio:
        strength = thresholds.volume_base_strength + (ratio - thresholds.volume_high_ratio) * thresholds.volume_strength_slope
        return TechnicalIndicator("Volume", ratio, Signal.BUY, _cap(strength), "Above Average")

    if ratio < thresholds.volume_low_ratio:
        strength = thresholds.volume_base_strength + (thresholds.volume_low_ratio - ratio) * thresholds.volume_strength_slope
        return TechnicalIndicator("Volume", ratio, Signal.SELL, _cap(strength), "Below Average")

    return TechnicalIndicator("Volume", ratio, Signal.NEUTRAL, thresholds.neutral_strength, "Average")

def build_indicators(values: Dict[str, Optional[float]],
                     thresholds: Optional[SignalThresholds] = None) -> Tuple[TechnicalIndicator, ...]:
    """Turn raw indicator values into signals, skipping indicators with no value"""

    t = thresholds or SignalThresholds()
    price = values.get('current_price')
    indicators = []

    if price is None:
        return tuple()

    sma_short = values.get('sma_short')
    sma_long = values.get('sma_long')

    if sma_short is not None:
        indicators.append(moving_average_signal(
            f"{t.short_ma_period}-Day SMA", f"SMA-{t.short_ma_period}", price, sma_short, t))
    if sma_long is not None:
        indicators.append(moving_average_signal(
            f"{t.long_ma_period}-Day SMA", f"SMA-{t.long_ma_period}", price, sma_long, t))
    if sma_short is not None and sma_long is not None:
        indicators.append(crossover_signal(sma_short, sma_long, t))

    if values.get('stochastic_k') is not None:
        indicators.append(oscillator_signal(
            "Stochastic Oscillator", values['stochastic_k'],
            t.stochastic_oversold, t.stochastic_overbought, t))

    if values.get('rsi') is not None:
        indicators.append(oscillator_signal(
            f"RSI ({t.rsi_period})", values['rsi'], t.rsi_oversold, t.rsi_overbought, t))

    if values.get('macd') is not None and values.get('macd_signal') is not None:
        indicators.append(macd_signal(
            values['macd'], values['macd_signal'], values['macd_histogram'], price, t))

    if values.get('volume_ratio') is not None:
        indicators.append(volume_signal(values['volume_ratio'], t))

    return tuple(indicators)

# ============================================================================
# AGGREGATION
# ============================================================================

@dataclass(frozen=True)
class SignalAggregate:
    overall_signal: Signal
    buy_signals: int
    sell_signals: int
    neutral_signals: int
    confidence: float

def count_signals(indicators: Sequence[TechnicalIndicator]) -> Tuple[int, int, int]:
    """(buy, sell, neutral) counts"""

    buy = sum(1 for i in indicators if i.signal is Signal.BUY)
    sell = sum(1 for i in indicators if i.signal is Signal.SELL)
    return buy, sell, len(indicators) - buy - sell

def determine_overall_signal(buy_signals: int, sell_signals: int, neutral_signals: int) -> Signal:
    """
    Plurality vote

    Neutral wins any tie it takes part in. Buy beats sell when those two
    tie for the plurality.
    """

    top = max(buy_signals, sell_signals, neutral_signals)

    if top == 0 or neutral_signals == top:
        return Signal.NEUTRAL
    if buy_signals == top:
        return Signal.BUY
    return Signal.SELL

def calculate_confidence(indicators: Sequence[TechnicalIndicator], overall_signal: Signal,
                         weights: Optional[Dict[str, float]] = None) -> float:
    """
    Confidence in ``overall_signal``, 0-100

    weighted mean strength of agreeing indicators
        × (agreeing / total)
        × (1 - opposing / total)

    where opposing is the opposite directional bucket and is empty for a
    neutral call.
    """

    total = len(indicators)
    if total == 0:
        return 0.0

    weights = weights or {}
    agreeing = [i for i in indicators if i.signal is overall_signal]
    if not agreeing:
        return 0.0

    weight_sum = sum(weights.get(i.name, 1.0) for i in agreeing)
    if weight_sum <= 0:
        return 0.0
    mean_strength = sum(weights.get(i.name, 1.0) * i.strength for i in agreeing) / weight_sum

    if overall_signal is Signal.BUY:
        opposing = sum(1 for i in indicators if i.signal is Signal.SELL)
    elif overall_signal is Signal.SELL:
        opposing = sum(1 for i in indicators if i.signal is Signal.BUY)
    else:
        opposing = 0

    confidence = mean_strength * (len(agreeing) / total) * (1 - opposing / total)
    return round(max(0.0, min(100.0, confidence)), 2)

def aggregate(indicators: Sequence[TechnicalIndicator],
              thresholds: Optional[SignalThresholds] = None) -> SignalAggregate:
    """Count, vote and score an indicator set"""

    t = thresholds or SignalThresholds()
    buy, sell, neutral = count_signals(indicators)
    overall = determine_overall_signal(buy, sell, neutral)

    return SignalAggregate(
        overall_signal=overall,
        buy_signals=buy,
        sell_signals=sell,
        neutral_signals=neutral,
        confidence=calculate_confidence(indicators, overall, t.indicator_weights)
    )

def disagreement_ratio(indicators: Sequence[TechnicalIndicator], overall_signal: Signal) -> float:
    """Share of indicators that do not agree with the overall call"""

    if not indicators:
        return 0.0
    agreeing = sum(1 for i in indicators if i.signal is overall_signal)
    return 1 - agreeing / len(indicators)
