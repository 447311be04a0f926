from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from orbminer.chain.codec import LAMPORTS_PER_SOL, RoundState
from orbminer.config import get_config
from orbminer.core.exceptions import ConfigurationError

REASON_PROFITABLE = "Profitable"
REASON_UNDER_SAMPLED = "UnderSampled"
REASON_BELOW_THRESHOLD = "BelowMotherloadThreshold"
REASON_PRICE_UNAVAILABLE = "PriceUnavailable"
REASON_NEGATIVE_EV = "NegativeExpectedValue"


@dataclass(frozen=True)
class EvParameters:
    motherload_threshold: float = 50.0
    base_reward_orb: float = 4.0
    motherload_hit_probability: float = 1 / 625
    refining_fee: float = 0.10
    sol_return_ratio: float = 0.95
    win_share: float = 1 / 25
    min_expected_value: float = 0.0
    stake_weighted: bool = False
    model: str = "win_share"

    @classmethod
    def from_config(cls, motherload_threshold: float, cfg: Optional[Dict[str, Any]] = None) -> "EvParameters":
        section = (cfg if cfg is not None else get_config()).get("profitability", {})
        params = cls(
            motherload_threshold=float(motherload_threshold),
            base_reward_orb=float(section.get("base_reward_orb", cls.base_reward_orb)),
            motherload_hit_probability=float(
                section.get("motherload_hit_probability", cls.motherload_hit_probability)
            ),
            refining_fee=float(section.get("refining_fee", cls.refining_fee)),
            sol_return_ratio=float(section.get("sol_return_ratio", cls.sol_return_ratio)),
            win_share=float(section.get("win_share", cls.win_share)),
            min_expected_value=float(section.get("min_expected_value", cls.min_expected_value)),
            stake_weighted=bool(section.get("stake_weighted", cls.stake_weighted)),
            model=str(section.get("model", cls.model)),
        )
        if not 0 <= params.refining_fee < 1:
            raise ConfigurationError("profitability.refining_fee must be in [0, 1)")
        if not 0 < params.win_share <= 1:
            raise ConfigurationError("profitability.win_share must be in (0, 1]")
        if params.model not in EV_MODELS:
            raise ConfigurationError(f"unknown profitability model {params.model}")
        return params


@dataclass(frozen=True)
class EvEstimate:
    share: float
    expected_orb: float
    expected_value_sol: float


@dataclass(frozen=True)
class Evaluation:
    should_mine: bool
    expected_value_sol: float
    reason: str
    share: float = 0.0
    expected_orb: float = 0.0


class EvModel(Protocol):
    def estimate(self, round_state: RoundState, amount: int, orb_price_sol: float, params: EvParameters) -> EvEstimate:
        ...


class WinShareEvModel:
    """Expected ORB from a share of the round reward plus the motherload lottery."""

    def share(self, round_state: RoundState, amount: int, params: EvParameters) -> float:
        if params.stake_weighted and round_state.total_deployed > 0 and amount > 0:
            return amount / (amount + round_state.total_deployed)
        winners = round_state.unique_miner_count * params.win_share
        return 1.0 / (1.0 + winners)

    def estimate(self, round_state: RoundState, amount: int, orb_price_sol: float, params: EvParameters) -> EvEstimate:
        share = self.share(round_state, amount, params)
        gross_orb = params.base_reward_orb + params.motherload_hit_probability * round_state.motherload_orb
        expected_orb = share * gross_orb * (1.0 - params.refining_fee)
        cost_sol = amount / LAMPORTS_PER_SOL
        ev = expected_orb * orb_price_sol + cost_sol * params.sol_return_ratio - cost_sol
        return EvEstimate(share=share, expected_orb=expected_orb, expected_value_sol=ev)


EV_MODELS = {"win_share": WinShareEvModel}


class ProfitabilityEvaluator:
    def __init__(self, params: EvParameters, model: Optional[EvModel] = None) -> None:
        self.params = params
        self.model = model or EV_MODELS[params.model]()

    def evaluate(self, round_state: RoundState, amount: int, orb_price_sol: float) -> Evaluation:
        if round_state.unique_miner_count == 0:
            return Evaluation(False, 0.0, REASON_UNDER_SAMPLED)
        if round_state.motherload_orb < self.params.motherload_threshold:
            return Evaluation(False, 0.0, REASON_BELOW_THRESHOLD)
        if orb_price_sol <= 0:
            return Evaluation(False, 0.0, REASON_PRICE_UNAVAILABLE)
        estimate = self.model.estimate(round_state, amount, orb_price_sol, self.params)
        profitable = estimate.expected_value_sol > self.params.min_expected_value
        return Evaluation(
            should_mine=profitable,
            expected_value_sol=estimate.expected_value_sol,
            reason=REASON_PROFITABLE if profitable else REASON_NEGATIVE_EV,
            share=estimate.share,
            expected_orb=estimate.expected_orb,
        )


__all__ = [
    "EV_MODELS",
    "EvEstimate",
    "EvModel",
    "EvParameters",
    "Evaluation",
    "ProfitabilityEvaluator",
    "REASON_BELOW_THRESHOLD",
    "REASON_NEGATIVE_EV",
    "REASON_PRICE_UNAVAILABLE",
    "REASON_PROFITABLE",
    "REASON_UNDER_SAMPLED",
    "WinShareEvModel",
]
