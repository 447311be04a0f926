import pytest

from orbminer.chain.codec import SQUARE_COUNT, RoundState, to_base_units
from orbminer.core.exceptions import ConfigurationError
from orbminer.mining.profitability import (
    REASON_BELOW_THRESHOLD,
    REASON_NEGATIVE_EV,
    REASON_PRICE_UNAVAILABLE,
    REASON_PROFITABLE,
    REASON_UNDER_SAMPLED,
    EvParameters,
    ProfitabilityEvaluator,
    WinShareEvModel,
)


def _round(motherload_orb: float, miners: int = 40, total_sol: float = 5.0) -> RoundState:
    return RoundState(
        round_id=1,
        motherload=to_base_units(motherload_orb),
        count=(miners,) * SQUARE_COUNT,
        total_deployed=to_base_units(total_sol),
    )


def test_below_threshold_never_mines():
    evaluator = ProfitabilityEvaluator(EvParameters(motherload_threshold=150))
    result = evaluator.evaluate(_round(100), to_base_units(0.01), orb_price_sol=1_000.0)
    assert result.should_mine is False
    assert result.reason == REASON_BELOW_THRESHOLD


def test_under_sampled_round_is_conservative():
    evaluator = ProfitabilityEvaluator(EvParameters(motherload_threshold=0))
    result = evaluator.evaluate(_round(500, miners=0), to_base_units(0.01), orb_price_sol=1.0)
    assert result.should_mine is False
    assert result.reason == REASON_UNDER_SAMPLED


def test_missing_price_blocks_mining():
    evaluator = ProfitabilityEvaluator(EvParameters(motherload_threshold=50))
    result = evaluator.evaluate(_round(200), to_base_units(0.01), orb_price_sol=0.0)
    assert result.should_mine is False
    assert result.reason == REASON_PRICE_UNAVAILABLE


def test_profitable_round():
    evaluator = ProfitabilityEvaluator(EvParameters(motherload_threshold=50))
    result = evaluator.evaluate(_round(200), to_base_units(0.01), orb_price_sol=0.01)
    assert result.should_mine is True
    assert result.reason == REASON_PROFITABLE
    assert result.expected_value_sol > 0
    assert 0 < result.share < 1


def test_cheap_orb_gives_negative_ev():
    evaluator = ProfitabilityEvaluator(EvParameters(motherload_threshold=50))
    result = evaluator.evaluate(_round(200), to_base_units(1.0), orb_price_sol=1e-6)
    assert result.should_mine is False
    assert result.reason == REASON_NEGATIVE_EV
    assert result.expected_value_sol < 0


def test_more_miners_lower_share():
    model = WinShareEvModel()
    params = EvParameters()
    assert model.share(_round(200, miners=10), 1, params) > model.share(_round(200, miners=100), 1, params)


def test_stake_weighted_share():
    params = EvParameters(stake_weighted=True)
    share = WinShareEvModel().share(_round(200, total_sol=9.0), to_base_units(1.0), params)
    assert share == pytest.approx(0.1)


def test_parameters_from_config():
    cfg = {"profitability": {"base_reward_orb": 2.0, "win_share": 0.5}}
    params = EvParameters.from_config(75, cfg)
    assert params.motherload_threshold == 75
    assert params.base_reward_orb == 2.0
    assert params.win_share == 0.5
    with pytest.raises(ConfigurationError):
        EvParameters.from_config(75, {"profitability": {"model": "monte_carlo"}})
    with pytest.raises(ConfigurationError):
        EvParameters.from_config(75, {"profitability": {"refining_fee": 1.5}})
