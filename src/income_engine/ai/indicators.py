#!/usr/bin/env python3
"""
📈 INCOME SIGNAL ENGINE - INDICATOR CALCULATOR
src/income_engine/ai/indicators.py

Pure indicator functions over an ascending price series. Every function
returns ``None`` when the history is too short for it, so a short series
degrades only the indicators that need more data.

Definitions:
- SMA: trailing arithmetic mean ending at the latest point
- EMA: seeded with the SMA of the first ``period`` values, multiplier 2/(period+1)
- RSI: mean gain vs mean loss over the last ``period`` changes
- MACD: EMA(fast) - EMA(slow); signal = EMA(signal) of the MACD series
- Stochastic: %K over ``period`` bars, %D = mean of the last 3 %K values
- Volume ratio: short-window mean volume / long-window mean volume
- Volatility: annualized stdev of daily log returns

Author: Income Signal Engine
Version: 1.0.0
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .models import PricePoint
from ..core.config_manager import SignalThresholds

TRADING_DAYS_PER_YEAR = 252

IndicatorValues = Dict[str, Optional[float]]

# ============================================================================
# MOVING AVERAGES
# ============================================================================

def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)

def latest_sma(values: Sequence[float], period: int) -> Optional[float]:
    if period <= 0 or len(values) < period:
        return None
    return float(np.mean(_as_array(values)[-period:]))

def ema_series(values: Sequence[float], period: int) -> np.ndarray:
    """EMA starting at index ``period - 1``; returns only the defined values"""

    data = _as_array(values)
    if period <= 0 or len(data) < period:
        return np.array([], dtype=float)

    multiplier = 2.0 / (period + 1)
    result = np.empty(len(data) - period + 1)
    result[0] = np.mean(data[:period])

    for i, value in enumerate(data[period:], start=1):
        result[i] = (value - result[i - 1]) * multiplier + result[i - 1]

    return result

# ============================================================================
# OSCILLATORS
# ============================================================================

def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """Relative Strength Index over the last ``period`` price changes"""

    if period <= 0 or len(closes) < period + 1:
        return None

    changes = np.diff(_as_array(closes))[-period:]
    avg_gain = float(np.mean(np.clip(changes, 0, None)))
    avg_loss = float(np.mean(np.clip(-changes, 0, None)))

    if avg_loss == 0:
        # Flat series has no momentum either way
        return 50.0 if avg_gain == 0 else 100.0

    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))

def macd(closes: Sequence[float], fast: int = 12, slow: int = 26,
         signal: int = 9) -> Optional[Tuple[float, float, float]]:
    """Latest (macd, signal, histogram), or None below slow + signal - 1 points"""

    if len(closes) < slow + signal - 1:
        return None

    ema_fast = ema_series(closes, fast)
    ema_slow = ema_series(closes, slow)

    # Align both EMAs on the dates where the slow one is defined
    macd_line = ema_fast[-len(ema_slow):] - ema_slow
    signal_line = ema_series(macd_line, signal)
    if len(signal_line) == 0:
        return None

    macd_value = float(macd_line[-1])
    signal_value = float(signal_line[-1])
    return macd_value, signal_value, macd_value - signal_value

def stochastic(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float],
               period: int = 14, smoothing: int = 3) -> Optional[Tuple[float, Optional[float]]]:
    """Latest (%K, %D); %D is None until ``smoothing`` %K values exist"""

    n = len(closes)
    if period <= 0 or n < period or len(highs) != n or len(lows) != n:
        return None

    high = _as_array(highs)
    low = _as_array(lows)
    close = _as_array(closes)

    k_values: List[float] = []
    windows = min(smoothing, n - period + 1)

    for end in range(n - windows + 1, n + 1):
        highest = float(np.max(high[end - period:end]))
        lowest = float(np.min(low[end - period:end]))
        if highest == lowest:
            k_values.append(50.0)
        else:
            k_values.append((float(close[end - 1]) - lowest) / (highest - lowest) * 100.0)

    d_value = float(np.mean(k_values)) if len(k_values) >= smoothing else None
    return k_values[-1], d_value

# ============================================================================
# VOLUME AND VOLATILITY
# ============================================================================

def volume_ratio(volumes: Sequence[float], short_window: int = 5,
                 long_window: int = 20) -> Optional[float]:
    if len(volumes) < long_window or short_window > long_window:
        return None

    data = _as_array(volumes)
    long_avg = float(np.mean(data[-long_window:]))
    if long_avg <= 0:
        return None

    return float(np.mean(data[-short_window:])) / long_avg

def historical_volatility(closes: Sequence[float], window: int = 20) -> Optional[float]:
    """Annualized volatility of the last ``window`` daily log returns, as a fraction"""

    if len(closes) < window + 1 or window < 2:
        return None

    data = _as_array(closes)[-(window + 1):]
    if np.any(data <= 0):
        return None

    returns = np.diff(np.log(data))
    return float(np.std(returns, ddof=1) * math.sqrt(TRADING_DAYS_PER_YEAR))

# ============================================================================
# FULL INDICATOR SET
# ============================================================================

def calculate_indicators(points: Sequence[PricePoint],
                         thresholds: Optional[SignalThresholds] = None) -> IndicatorValues:
    """
    Compute every raw indicator value for a price series

    Returns a mapping with the keys ``current_price``, ``sma_short``,
    ``sma_long``, ``rsi``, ``macd``, ``macd_signal``, ``macd_histogram``,
    ``stochastic_k``, ``stochastic_d``, ``volume_ratio`` and ``volatility``.
    A value is None when the series is too short for that indicator.
    """

    t = thresholds or SignalThresholds()

    closes = [p.close for p in points]
    highs = [p.high for p in points]
    lows = [p.low for p in points]
    volumes = [p.volume for p in points]

    macd_values = macd(closes, t.macd_fast, t.macd_slow, t.macd_signal)
    stoch_values = stochastic(highs, lows, closes, t.stochastic_period, t.stochastic_smoothing)

    return {
        'current_price': float(closes[-1]) if closes else None,
        'sma_short': latest_sma(closes, t.short_ma_period),
        'sma_long': latest_sma(closes, t.long_ma_period),
        'rsi': rsi(closes, t.rsi_period),
        'macd': macd_values[0] if macd_values else None,
        'macd_signal': macd_values[1] if macd_values else None,
        'macd_histogram': macd_values[2] if macd_values else None,
        'stochastic_k': stoch_values[0] if stoch_values else None,
        'stochastic_d': stoch_values[1] if stoch_values else None,
        'volume_ratio': volume_ratio(volumes, t.volume_short_window, t.volume_long_window),
        'volatility': historical_volatility(closes, t.volatility_window),
    }
