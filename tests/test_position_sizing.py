"""Position sizing advisor tests"""

import pytest

from income_engine.ai.models import RiskLevel, Signal, TechnicalIndicator
from income_engine.ai.position_sizing import PositionSizingAdvisor
from income_engine.core.config_manager import InvalidConfiguration, RiskProfile

def indicators(buy=0, sell=0, neutral=0):
    return ([TechnicalIndicator("b", 0.0, Signal.BUY, 80.0, "")] * buy
            + [TechnicalIndicator("s", 0.0, Signal.SELL, 80.0, "")] * sell
            + [TechnicalIndicator("n", 0.0, Signal.NEUTRAL, 50.0, "")] * neutral)

@pytest.fixture
def advisor():
    return PositionSizingAdvisor()

@pytest.mark.parametrize("profile, ceiling", [
    ("conservative", 5.0),
    ("moderate", 10.0),
    ("aggressive", 15.0),
])
def test_profile_ceilings(advisor, profile, ceiling):
    assert advisor.max_position_size(profile) == ceiling
    assert advisor.recommended_allocation(Signal.BUY, 100.0, profile) == ceiling

def test_recommended_never_exceeds_ceiling(advisor):
    for profile in RiskProfile:
        ceiling = advisor.max_position_size(profile)
        for signal in Signal:
            for confidence in range(0, 101, 5):
                assert 0.0 <= advisor.recommended_allocation(signal, confidence, profile) <= ceiling

def test_sell_recommends_nothing(advisor):
    assert advisor.recommended_allocation(Signal.SELL, 95.0, RiskProfile.AGGRESSIVE) == 0.0

def test_buy_scales_with_confidence(advisor):
    assert advisor.recommended_allocation(Signal.BUY, 60.0, "moderate") == pytest.approx(6.0)
    assert advisor.recommended_allocation(Signal.NEUTRAL, 60.0, "moderate") == pytest.approx(3.0)

def test_conservative_needs_higher_confidence(advisor):
    assert advisor.recommended_allocation(Signal.BUY, 45.0, "conservative") == 0.0
    assert advisor.recommended_allocation(Signal.BUY, 45.0, "moderate") > 0.0

def test_unknown_profile_is_rejected(advisor):
    with pytest.raises(InvalidConfiguration):
        advisor.max_position_size("reckless")

class TestRiskLevel:

    def test_low_confidence_is_high_risk(self, advisor):
        assert advisor.risk_level(Signal.BUY, 30.0, indicators(buy=5)) is RiskLevel.HIGH

    def test_confident_agreement_is_low_risk(self, advisor):
        assert advisor.risk_level(Signal.BUY, 80.0, indicators(buy=5), volatility=0.1) is RiskLevel.LOW

    def test_unknown_volatility_does_not_block_low(self, advisor):
        assert advisor.risk_level(Signal.BUY, 80.0, indicators(buy=5)) is RiskLevel.LOW

    def test_high_volatility_is_high_risk(self, advisor):
        assert advisor.risk_level(Signal.BUY, 80.0, indicators(buy=5), volatility=0.6) is RiskLevel.HIGH

    def test_wide_disagreement_is_high_risk(self, advisor):
        assert advisor.risk_level(Signal.BUY, 80.0, indicators(buy=2, neutral=3)) is RiskLevel.HIGH

    def test_confident_sell_is_high_risk(self, advisor):
        assert advisor.risk_level(Signal.SELL, 65.0, indicators(sell=5)) is RiskLevel.HIGH

    def test_middle_ground(self, advisor):
        assert advisor.risk_level(Signal.BUY, 55.0, indicators(buy=4, sell=1)) is RiskLevel.MEDIUM

def test_advise_builds_price_band(advisor):
    sizing = advisor.advise(Signal.BUY, 80.0, indicators(buy=5), 50.0, "aggressive")

    assert sizing.stop_loss == pytest.approx(42.5)
    assert sizing.target_price == pytest.approx(65.0)
    assert sizing.max_position_size == 15.0
    assert sizing.recommended_allocation == pytest.approx(12.0)
    assert sizing.to_dict()['riskLevel'] == "low"
