from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.codec import (
    SQUARE_COUNT,
    AccountCodec,
    AutomationState,
    BoardState,
    MinerState,
    RoundState,
    StakeState,
    TreasuryState,
    encode_account,
    i80f48_from_float,
    to_base_units,
)
from orbminer.chain.gateway import DecodedTransaction, MockChainGateway
from orbminer.chain.instructions import (
    CHECKPOINT,
    CLAIM_ORB,
    CLAIM_SOL,
    CLAIM_YIELD,
    DEPLOY_DISCRIMINATOR,
    INSTRUCTION_SIZE,
    decode_instruction,
)

DEFAULT_ROUND_ID = 4210
DEFAULT_MOTHERLOAD_ORB = 180.0


def _round_state(rng: random.Random, round_id: int, motherload_orb: float) -> RoundState:
    count = tuple(rng.randint(18, 40) for _ in range(SQUARE_COUNT))
    deployed = tuple(n * rng.randint(1_000_000, 20_000_000) for n in count)
    return RoundState(
        round_id=round_id,
        motherload=to_base_units(motherload_orb),
        deployed=deployed,
        count=count,
        expires_at=round_id * 150 + 3000,
        total_deployed=sum(deployed),
    )


@dataclass
class SimulatedProgram:
    """Account store plus the subset of program behaviour the agent exercises."""

    addresses: ProgramAddresses
    seed: int = 7
    round_id: int = DEFAULT_ROUND_ID
    motherload_orb: float = DEFAULT_MOTHERLOAD_ORB
    accounts: Dict[str, bytes] = field(default_factory=dict)
    balances: Dict[str, int] = field(default_factory=dict)
    token_balances: Dict[Tuple[str, str], int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.codec = AccountCodec()
        self.rng = random.Random(self.seed)
        board = BoardState(round_id=self.round_id, start_slot=self.round_id * 150, end_slot=self.round_id * 150 + 150)
        self.put(self.addresses.board(), board)
        self.put(self.addresses.round(self.round_id), _round_state(self.rng, self.round_id, self.motherload_orb))
        self.put(self.addresses.treasury(), TreasuryState(stake_rewards_factor=i80f48_from_float(0.02)))

    def put(self, address: str, record) -> None:
        self.accounts[address] = encode_account(record)

    def get(self, kind: str, address: str):
        raw = self.accounts.get(address)
        return None if raw is None else self.codec.decode(kind, raw)

    def seed_wallet(
        self,
        wallet: str,
        sol: float = 2.0,
        orb: float = 0.0,
        with_miner: bool = True,
        rewards_sol: float = 0.0,
        rewards_orb: float = 0.0,
        staked_orb: float = 0.0,
    ) -> None:
        self.balances[wallet] = to_base_units(sol)
        self.token_balances[(wallet, self.addresses.orb_mint)] = to_base_units(orb)
        if with_miner:
            self.put(
                self.addresses.miner(wallet),
                MinerState(
                    authority=wallet,
                    rewards_sol=to_base_units(rewards_sol),
                    rewards_orb=to_base_units(rewards_orb),
                    checkpoint_id=self.round_id - 1,
                    round_id=self.round_id - 1,
                ),
            )
            self.put(self.addresses.automation(wallet), AutomationState(authority=wallet))
        if staked_orb > 0:
            self.put(
                self.addresses.stake(wallet),
                StakeState(authority=wallet, balance=to_base_units(staked_orb), rewards_factor=i80f48_from_float(0.01)),
            )

    def advance_round(self, motherload_orb: Optional[float] = None) -> int:
        self.round_id += 1
        if motherload_orb is not None:
            self.motherload_orb = motherload_orb
        board = BoardState(round_id=self.round_id, start_slot=self.round_id * 150, end_slot=self.round_id * 150 + 150)
        self.put(self.addresses.board(), board)
        self.put(self.addresses.round(self.round_id), _round_state(self.rng, self.round_id, self.motherload_orb))
        return self.round_id

    def apply(self, tx: DecodedTransaction) -> None:
        """Mutate accounts as the program would for a confirmed transaction."""
        wallet = tx.fee_payer
        for data in tx.program_data(self.addresses.program_id):
            if data[:8] == DEPLOY_DISCRIMINATOR:
                self._deploy(wallet, decode_instruction("deploy", data)["amount"])
            elif len(data) == INSTRUCTION_SIZE and not any(data):
                self._bootstrap(wallet)
            elif data[:1] == bytes([CHECKPOINT]):
                self._checkpoint(wallet)
            elif data[:1] == bytes([CLAIM_SOL]):
                self._claim_sol(wallet)
            elif data[:1] == bytes([CLAIM_ORB]):
                self._claim_orb(wallet)
            elif data[:1] == bytes([CLAIM_YIELD]):
                self._claim_yield(wallet)

    def _miner(self, wallet: str) -> MinerState:
        miner = self.get("miner", self.addresses.miner(wallet))
        return miner if miner is not None else MinerState(authority=wallet)

    def _bootstrap(self, wallet: str) -> None:
        if self.get("miner", self.addresses.miner(wallet)) is None:
            self.put(self.addresses.miner(wallet), MinerState(authority=wallet, checkpoint_id=0, round_id=0))
        self.put(self.addresses.automation(wallet), AutomationState(authority=wallet))

    def _deploy(self, wallet: str, amount: int) -> None:
        per_square = amount // SQUARE_COUNT
        miner = self._miner(wallet)
        self.put(
            self.addresses.miner(wallet),
            replace(
                miner,
                deployed=(per_square,) * SQUARE_COUNT,
                round_id=self.round_id,
                lifetime_deployed=miner.lifetime_deployed + amount,
            ),
        )
        round_state = self.get("round", self.addresses.round(self.round_id))
        if round_state is not None:
            self.put(
                self.addresses.round(self.round_id),
                replace(
                    round_state,
                    deployed=tuple(value + per_square for value in round_state.deployed),
                    count=tuple(value + 1 for value in round_state.count),
                    total_deployed=round_state.total_deployed + amount,
                ),
            )
        self.balances[wallet] = self.balances.get(wallet, 0) - amount

    def _checkpoint(self, wallet: str) -> None:
        miner = self._miner(wallet)
        payout = sum(miner.deployed) * 95 // 100
        self.put(
            self.addresses.miner(wallet),
            replace(
                miner,
                checkpoint_id=miner.round_id,
                rewards_sol=miner.rewards_sol + payout,
                rewards_orb=miner.rewards_orb + to_base_units(0.2),
            ),
        )

    def _claim_sol(self, wallet: str) -> None:
        miner = self._miner(wallet)
        self.balances[wallet] = self.balances.get(wallet, 0) + miner.rewards_sol
        self.put(self.addresses.miner(wallet), replace(miner, rewards_sol=0))

    def _claim_orb(self, wallet: str) -> None:
        miner = self._miner(wallet)
        key = (wallet, self.addresses.orb_mint)
        self.token_balances[key] = self.token_balances.get(key, 0) + miner.rewards_orb * 9 // 10
        self.put(self.addresses.miner(wallet), replace(miner, rewards_orb=0))

    def _claim_yield(self, wallet: str) -> None:
        stake = self.get("stake", self.addresses.stake(wallet))
        treasury = self.get("treasury", self.addresses.treasury())
        if stake is None or treasury is None:
            return
        key = (wallet, self.addresses.orb_mint)
        self.token_balances[key] = self.token_balances.get(key, 0) + stake.rewards_orb
        self.put(
            self.addresses.stake(wallet),
            replace(stake, rewards_orb=0, rewards_factor=treasury.stake_rewards_factor),
        )

    def gateway(self, fees: Optional[list] = None) -> MockChainGateway:
        """In-process gateway sharing this program's account store."""
        return MockChainGateway(
            program_id=self.addresses.program_id,
            accounts=self.accounts,
            balances=self.balances,
            token_balances=self.token_balances,
            prioritization_fees=list(fees or [0, 1200, 2500, 4000, 9000]),
            on_submit=self.apply,
        )


__all__ = ["DEFAULT_MOTHERLOAD_ORB", "DEFAULT_ROUND_ID", "SimulatedProgram"]
