#!/usr/bin/env python3
"""
🔧 INCOME SIGNAL ENGINE - CONFIGURATION MANAGEMENT
src/income_engine/core/config_manager.py

Environment-driven configuration with validation for the analysis engine.

Sections:
- cache: analysis cache TTL
- analysis: history window, batch concurrency, per-symbol timeout
- market_data: market data API endpoint, timeouts, retries, rate limit
- signals: indicator periods and signal thresholds
- position_sizing: per-risk-profile ceilings and risk-level thresholds
- rebalancing: balance tolerance, priorities, concentration, category ranges

Author: Income Signal Engine
Version: 1.0.0
"""

import os
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Any, Tuple

from .logger import LoggerFactory, LogCategory

# ============================================================================
# CONFIGURATION ENUMS AND TYPES
# ============================================================================

class RiskProfile(Enum):
    """Portfolio risk profiles"""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

class AssetCategory(Enum):
    """Holding categories used for the rebalancing baseline"""
    BONDS = "bonds"
    LARGE_CAP = "large_cap"
    MID_CAP = "mid_cap"
    SMALL_CAP = "small_cap"
    OTHER = "other"

@dataclass(frozen=True)
class CacheSettings:
    ttl_seconds: float = 300.0

@dataclass(frozen=True)
class AnalysisSettings:
    history_range_days: int = 250
    batch_concurrency: int = 5
    symbol_timeout_seconds: float = 30.0
    opportunity_limit: int = 10
    default_risk_profile: str = "moderate"

@dataclass(frozen=True)
class ApiConfiguration:
    """Market data API endpoint configuration"""
    provider: str = "yahoo_finance"
    base_url: str = "https://query1.finance.yahoo.com"
    timeout: float = 10.0
    max_retries: int = 3
    rate_limit_per_minute: int = 120
    user_agent: str = "IncomeSignalEngine/1.0.0"

@dataclass(frozen=True)
class SignalThresholds:
    """Indicator periods and value-range → signal thresholds"""
    # Moving averages
    short_ma_period: int = 50
    long_ma_period: int = 200
    ma_strength_multiplier: float = 10.0        # strength per 1% distance from the average
    crossover_strength_multiplier: float = 10.0  # strength per 1% gap between the averages

    # Bounded oscillators
    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    stochastic_period: int = 14
    stochastic_smoothing: int = 3
    stochastic_oversold: float = 20.0
    stochastic_overbought: float = 80.0
    oscillator_zone_base: float = 80.0
    oscillator_zone_slope: float = 2.0

    # MACD
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    macd_base_strength: float = 70.0
    macd_strength_multiplier: float = 50.0  # strength per 1% of price in the histogram

    # Volume
    volume_short_window: int = 5
    volume_long_window: int = 20
    volume_high_ratio: float = 1.5
    volume_low_ratio: float = 0.5
    volume_base_strength: float = 60.0
    volume_strength_slope: float = 20.0

    neutral_strength: float = 50.0
    volatility_window: int = 20
    indicator_weights: Dict[str, float] = field(default_factory=dict)

@dataclass(frozen=True)
class RiskProfileSettings:
    """Position sizing limits for one risk profile"""
    profile: RiskProfile
    max_position_percent: float
    min_confidence: float
    neutral_allocation_factor: float = 0.5

@dataclass(frozen=True)
class PositionSizingSettings:
    profiles: Dict[RiskProfile, RiskProfileSettings] = field(default_factory=lambda: {
        RiskProfile.CONSERVATIVE: RiskProfileSettings(RiskProfile.CONSERVATIVE, 5.0, 50.0),
        RiskProfile.MODERATE: RiskProfileSettings(RiskProfile.MODERATE, 10.0, 40.0),
        RiskProfile.AGGRESSIVE: RiskProfileSettings(RiskProfile.AGGRESSIVE, 15.0, 30.0),
    })
    low_confidence: float = 40.0
    high_confidence: float = 70.0
    high_disagreement: float = 0.5
    low_disagreement: float = 0.2
    high_volatility: float = 0.45
    low_volatility: float = 0.25
    confident_sell: float = 60.0
    assumed_volatility: float = 0.15
    reward_risk_ratio: float = 2.0

@dataclass(frozen=True)
class CategoryRange:
    """Allocation bounds for one asset category, in percent"""
    min_percent: float
    max_percent: float
    share_of_remaining: float

def _category_ranges(bonds, large, mid, small, other) -> Dict[AssetCategory, CategoryRange]:
    return {
        AssetCategory.BONDS: CategoryRange(bonds[0], bonds[1], 0.3),
        AssetCategory.LARGE_CAP: CategoryRange(large[0], large[1], 0.4),
        AssetCategory.MID_CAP: CategoryRange(mid[0], mid[1], 0.3),
        AssetCategory.SMALL_CAP: CategoryRange(small[0], small[1], 0.2),
        AssetCategory.OTHER: CategoryRange(other[0], other[1], 1.0),
    }

@dataclass(frozen=True)
class RebalancingSettings:
    balance_tolerance_percent: float = 2.0
    high_priority_delta: float = 5.0
    low_priority_delta: float = 1.0
    concentration_limit_percent: float = 60.0
    share_increment: float = 0.01
    default_recommendation_confidence: float = 20.0
    low_risk_min_score: float = 90.0
    medium_risk_min_score: float = 80.0
    priority_confidence_floor: float = 0.75
    priority_confidence_span: float = 0.5
    # Target tilt per analyst rating; scaled by recommendation confidence
    recommendation_tilts: Dict[str, float] = field(default_factory=lambda: {
        'strong_buy': 0.30,
        'buy': 0.15,
        'hold': 0.0,
        'sell': -0.15,
        'strong_sell': -0.30,
    })
    return_bonus_rate: float = 0.5      # extra tilt per 100% of potential return
    max_return_bonus: float = 0.15
    large_cap_min_market_cap: float = 10_000_000_000
    mid_cap_min_market_cap: float = 2_000_000_000
    small_cap_min_market_cap: float = 300_000_000
    category_ranges: Dict[RiskProfile, Dict[AssetCategory, CategoryRange]] = field(default_factory=lambda: {
        RiskProfile.CONSERVATIVE: _category_ranges((40, 60), (20, 35), (10, 20), (5, 15), (10, 25)),
        RiskProfile.MODERATE: _category_ranges((25, 45), (25, 40), (15, 25), (10, 20), (15, 30)),
        RiskProfile.AGGRESSIVE: _category_ranges((10, 30), (30, 45), (20, 30), (15, 25), (20, 35)),
    })

# ============================================================================
# ENVIRONMENT HELPERS
# ============================================================================

def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

def parse_risk_profile(value: Any) -> RiskProfile:
    """Turn user/config input into a RiskProfile or raise InvalidConfiguration"""

    if isinstance(value, RiskProfile):
        return value
    if isinstance(value, str):
        try:
            return RiskProfile(value.strip().lower())
        except ValueError:
            pass
    valid = [p.value for p in RiskProfile]
    raise InvalidConfiguration(f"Unknown risk profile {value!r}; expected one of {valid}")

# ============================================================================
# ENGINE CONFIGURATION MANAGER
# ============================================================================

class EngineConfigManager:
    """
    Loads, validates and serves engine configuration

    Values come from environment variables with documented defaults.
    ``overrides`` maps a section name to field overrides and is applied
    after the environment, which is how tests and embedding applications
    tune the engine without touching the process environment.
    """

    def __init__(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None):
        self.logger = LoggerFactory.get_logger('config_manager', LogCategory.SYSTEM)
        self.config_cache: Dict[str, Any] = {}
        self.last_validated: Optional[datetime] = None

        self._load_complete_configuration(overrides or {})

    def _load_complete_configuration(self, overrides: Dict[str, Dict[str, Any]]):

        self.config_cache['cache'] = CacheSettings(
            ttl_seconds=_env_float('ANALYSIS_CACHE_TTL', 300.0)
        )

        self.config_cache['analysis'] = AnalysisSettings(
            history_range_days=_env_int('ANALYSIS_HISTORY_DAYS', 250),
            batch_concurrency=_env_int('ANALYSIS_BATCH_CONCURRENCY', 5),
            symbol_timeout_seconds=_env_float('ANALYSIS_SYMBOL_TIMEOUT', 30.0),
            opportunity_limit=_env_int('ANALYSIS_OPPORTUNITY_LIMIT', 10),
            default_risk_profile=os.environ.get('DEFAULT_RISK_PROFILE', 'moderate')
        )

        self.config_cache['market_data'] = ApiConfiguration(
            base_url=os.environ.get('MARKET_DATA_BASE_URL', 'https://query1.finance.yahoo.com'),
            timeout=_env_float('MARKET_DATA_TIMEOUT', 10.0),
            max_retries=_env_int('MARKET_DATA_MAX_RETRIES', 3),
            rate_limit_per_minute=_env_int('MARKET_DATA_RATE_LIMIT', 120)
        )

        self.config_cache['signals'] = SignalThresholds()
        self.config_cache['position_sizing'] = PositionSizingSettings()

        self.config_cache['rebalancing'] = RebalancingSettings(
            balance_tolerance_percent=_env_float('REBALANCE_TOLERANCE', 2.0),
            concentration_limit_percent=_env_float('MAX_CONCENTRATION', 60.0),
            share_increment=_env_float('SHARE_INCREMENT', 0.01)
        )

        for section, values in overrides.items():
            if section not in self.config_cache:
                raise ConfigurationError(f"Unknown configuration section: {section}")
            try:
                self.config_cache[section] = replace(self.config_cache[section], **values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid override for {section}: {e}")

        self._validate_complete_configuration()
        self.last_validated = datetime.now(timezone.utc)

        self.logger.info("✅ Engine configuration loaded",
                         cache_ttl=self.config_cache['cache'].ttl_seconds,
                         batch_concurrency=self.config_cache['analysis'].batch_concurrency,
                         market_data_provider=self.config_cache['market_data'].provider)

    def _validate_complete_configuration(self):

        errors = []

        if self.config_cache['cache'].ttl_seconds <= 0:
            errors.append("Cache TTL must be positive")

        analysis: AnalysisSettings = self.config_cache['analysis']
        if analysis.batch_concurrency < 1:
            errors.append("Batch concurrency must be at least 1")
        if analysis.symbol_timeout_seconds <= 0:
            errors.append("Per-symbol timeout must be positive")
        if analysis.history_range_days < 1:
            errors.append("History range must be at least one day")
        if analysis.default_risk_profile not in [p.value for p in RiskProfile]:
            errors.append(f"Unknown default risk profile: {analysis.default_risk_profile}")

        api: ApiConfiguration = self.config_cache['market_data']
        if api.timeout <= 0:
            errors.append("Market data timeout must be positive")
        if api.max_retries < 0:
            errors.append("Market data retries cannot be negative")

        signals: SignalThresholds = self.config_cache['signals']
        if not signals.rsi_oversold < signals.rsi_overbought:
            errors.append("RSI oversold threshold must be below overbought")
        if not signals.stochastic_oversold < signals.stochastic_overbought:
            errors.append("Stochastic oversold threshold must be below overbought")
        if not signals.volume_low_ratio < signals.volume_high_ratio:
            errors.append("Low volume ratio must be below high volume ratio")
        if not signals.macd_fast < signals.macd_slow:
            errors.append("MACD fast period must be shorter than slow period")
        if any(w < 0 for w in signals.indicator_weights.values()):
            errors.append("Indicator weights cannot be negative")

        sizing: PositionSizingSettings = self.config_cache['position_sizing']
        for profile in RiskProfile:
            settings = sizing.profiles.get(profile)
            if settings is None:
                errors.append(f"Missing position sizing for {profile.value}")
            elif not 0 < settings.max_position_percent <= 100:
                errors.append(f"Max position for {profile.value} must be in (0, 100]")

        rebalancing: RebalancingSettings = self.config_cache['rebalancing']
        if rebalancing.balance_tolerance_percent < 0:
            errors.append("Balance tolerance cannot be negative")
        if rebalancing.share_increment <= 0:
            errors.append("Share increment must be positive")
        if not rebalancing.low_priority_delta <= rebalancing.high_priority_delta:
            errors.append("Low priority delta must not exceed high priority delta")
        for profile in RiskProfile:
            if profile not in rebalancing.category_ranges:
                errors.append(f"Missing category ranges for {profile.value}")
        if any(abs(t) + rebalancing.max_return_bonus >= 1 for t in rebalancing.recommendation_tilts.values()):
            errors.append("Recommendation tilts plus return bonus must stay below 1")

        if errors:
            self.logger.error("❌ Configuration validation failed", validation_errors=errors)
            raise ConfigurationError(f"Configuration validation failed: {errors}")

    # ========================================================================
    # PUBLIC INTERFACE METHODS
    # ========================================================================

    def get_config(self, section: str, key: str = None, default=None):
        """
        Get configuration value(s)

        Args:
            section: Configuration section name
            key: Optional field within the section
            default: Returned when the section or key is missing
        """

        if section not in self.config_cache:
            self.logger.warning(f"⚠️ Configuration section not found: {section}")
            return default

        if key is None:
            return self.config_cache[section]

        return getattr(self.config_cache[section], key, default)

    def get_api_config(self) -> ApiConfiguration:
        return self.config_cache['market_data']

    def get_signal_thresholds(self) -> SignalThresholds:
        return self.config_cache['signals']

    def get_position_sizing(self) -> PositionSizingSettings:
        return self.config_cache['position_sizing']

    def get_rebalancing_settings(self) -> RebalancingSettings:
        return self.config_cache['rebalancing']

    def get_default_risk_profile(self) -> RiskProfile:
        return parse_risk_profile(self.config_cache['analysis'].default_risk_profile)

    def get_configuration_summary(self) -> Dict[str, Any]:
        return {
            'last_validated': self.last_validated.isoformat() if self.last_validated else None,
            'sections_loaded': list(self.config_cache.keys()),
            'cache': asdict(self.config_cache['cache']),
            'analysis': asdict(self.config_cache['analysis']),
        }

# ============================================================================
# CONFIGURATION EXCEPTIONS
# ============================================================================

class ConfigurationError(Exception):
    """Configuration-related errors"""
    pass

class InvalidConfiguration(ConfigurationError):
    """A caller supplied a configuration value the engine cannot honour"""
    pass
