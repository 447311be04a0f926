from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from orbminer.chain.codec import MinerState, StakeState, TreasuryState, accrued_rewards, to_base_units
from orbminer.config import BotSettings


@dataclass(frozen=True)
class RewardThresholds:
    claim_sol: int
    claim_orb: int
    staking_claim_orb: int
    swap_threshold_orb: int
    min_orb_to_keep: int
    min_swap_amount: int
    auto_claim: bool = True
    auto_swap: bool = True

    @classmethod
    def from_settings(cls, settings: BotSettings) -> "RewardThresholds":
        return cls(
            claim_sol=to_base_units(settings.claim_threshold_sol),
            claim_orb=to_base_units(settings.claim_threshold_orb),
            staking_claim_orb=to_base_units(settings.staking_claim_threshold_orb),
            swap_threshold_orb=to_base_units(settings.auto_swap_threshold),
            min_orb_to_keep=to_base_units(settings.min_orb_to_keep),
            min_swap_amount=to_base_units(settings.min_orb_swap_amount),
            auto_claim=settings.claim_strategy == "auto",
            auto_swap=settings.auto_swap_enabled,
        )


@dataclass(frozen=True)
class RewardStatus:
    mining_sol: int
    mining_orb: int
    staking_orb: int
    wallet_orb: int
    should_claim_sol: bool
    should_claim_orb: bool
    should_claim_yield: bool
    should_swap: bool
    swap_amount: int

    @property
    def claimable_sol(self) -> int:
        return self.mining_sol

    @property
    def claimable_orb(self) -> int:
        return self.mining_orb + self.staking_orb

    @property
    def should_claim(self) -> bool:
        return self.should_claim_sol or self.should_claim_orb or self.should_claim_yield


class RewardMonitor:
    def __init__(self, thresholds: RewardThresholds) -> None:
        self.thresholds = thresholds

    def staking_rewards(self, stake: Optional[StakeState], treasury: Optional[TreasuryState]) -> int:
        if stake is None:
            return 0
        settled = stake.rewards_orb
        if treasury is None:
            return settled
        return settled + accrued_rewards(treasury.stake_rewards_factor, stake.rewards_factor, stake.balance)

    def evaluate(
        self,
        miner: Optional[MinerState],
        stake: Optional[StakeState],
        treasury: Optional[TreasuryState],
        wallet_orb: int,
    ) -> RewardStatus:
        t = self.thresholds
        mining_sol = miner.rewards_sol if miner else 0
        mining_orb = miner.rewards_orb if miner else 0
        staking_orb = self.staking_rewards(stake, treasury)

        claim_sol = t.auto_claim and mining_sol > 0 and mining_sol >= t.claim_sol
        orb_due = t.auto_claim and mining_orb + staking_orb > 0 and mining_orb + staking_orb >= t.claim_orb
        claim_orb = orb_due and mining_orb > 0
        claim_yield = t.auto_claim and staking_orb > 0 and (orb_due or staking_orb >= t.staking_claim_orb)

        swap_amount = max(0, int(wallet_orb) - t.min_orb_to_keep)
        should_swap = (
            t.auto_swap
            and wallet_orb >= t.swap_threshold_orb
            and swap_amount > 0
            and swap_amount >= t.min_swap_amount
        )
        return RewardStatus(
            mining_sol=mining_sol,
            mining_orb=mining_orb,
            staking_orb=staking_orb,
            wallet_orb=int(wallet_orb),
            should_claim_sol=claim_sol,
            should_claim_orb=claim_orb,
            should_claim_yield=claim_yield,
            should_swap=should_swap,
            swap_amount=swap_amount if should_swap else 0,
        )


__all__ = ["RewardMonitor", "RewardStatus", "RewardThresholds"]
