"""Fixed-offset account layouts for the mining program.

Every account starts with an 8-byte discriminator followed by little-endian integers and
32-byte addresses. Offsets below are absolute (they include the discriminator).
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from solders.pubkey import Pubkey

from orbminer.chain.instructions import decode_instruction, encode_instruction
from orbminer.core.exceptions import ConfigurationError, DecodeError, TruncatedRecord

LAMPORTS_PER_SOL = 1_000_000_000
ORB_BASE_UNITS = 1_000_000_000
SQUARE_COUNT = 25
I80F48_FRACTION_BITS = 48
LAYOUT_VERSION = 1

ACCOUNT_KINDS = ("board", "round", "miner", "stake", "treasury", "automation")

# Minimum byte span required to decode each kind.
RECORD_SIZES: Dict[str, int] = {
    "board": 32,
    "round": 560,
    "miner": 544,
    "stake": 105,
    "treasury": 96,
    "automation": 112,
}

ACCOUNT_DISCRIMINATORS: Dict[str, int] = {
    "automation": 100,
    "miner": 103,
    "treasury": 104,
    "board": 105,
    "stake": 108,
    "round": 109,
}

STRATEGY_RANDOM = 0
STRATEGY_PREFERRED = 1
_STRATEGY_TAGS = {STRATEGY_RANDOM: "Random", STRATEGY_PREFERRED: "Preferred"}

_ZERO_KEY = str(Pubkey.default())


def to_base_units(amount: float) -> int:
    return int(round(float(amount) * LAMPORTS_PER_SOL))


def from_base_units(amount: int) -> float:
    return int(amount) / LAMPORTS_PER_SOL


def accrued_rewards(treasury_factor: int, stake_factor: int, balance: int) -> int:
    """Unsettled rewards for a stake: ((treasury - stake) * balance) >> 48, truncated."""
    delta = int(treasury_factor) - int(stake_factor)
    if delta <= 0 or balance <= 0:
        return 0
    return (delta * int(balance)) >> I80F48_FRACTION_BITS


def i80f48_from_float(value: float) -> int:
    return int(value * (1 << I80F48_FRACTION_BITS))


def i80f48_to_float(raw: int) -> float:
    return raw / (1 << I80F48_FRACTION_BITS)


@dataclass(frozen=True)
class BoardState:
    round_id: int
    start_slot: int = 0
    end_slot: int = 0


@dataclass(frozen=True)
class RoundState:
    round_id: int
    motherload: int
    deployed: Tuple[int, ...] = (0,) * SQUARE_COUNT
    count: Tuple[int, ...] = (0,) * SQUARE_COUNT
    slot_hash: bytes = bytes(32)
    expires_at: int = 0
    rent_payer: str = _ZERO_KEY
    top_miner: str = _ZERO_KEY
    top_miner_reward: int = 0
    total_deployed: int = 0
    total_vaulted: int = 0
    total_winnings: int = 0

    @property
    def unique_miner_count(self) -> int:
        # Miners that deploy to every square appear once per square.
        return max(self.count) if self.count else 0

    @property
    def winning_square(self) -> Optional[int]:
        if not any(self.slot_hash):
            return None
        words = struct.unpack("<4Q", self.slot_hash)
        return (words[0] ^ words[1] ^ words[2] ^ words[3]) % SQUARE_COUNT

    @property
    def motherload_orb(self) -> float:
        return self.motherload / ORB_BASE_UNITS


@dataclass(frozen=True)
class MinerState:
    authority: str
    rewards_sol: int = 0
    rewards_orb: int = 0
    deployed: Tuple[int, ...] = (0,) * SQUARE_COUNT
    cumulative: Tuple[int, ...] = (0,) * SQUARE_COUNT
    checkpoint_fee: int = 0
    checkpoint_id: int = 0
    last_claim_orb_at: int = 0
    last_claim_sol_at: int = 0
    rewards_factor: int = 0
    refined_orb: int = 0
    round_id: int = 0
    lifetime_rewards_sol: int = 0
    lifetime_rewards_orb: int = 0
    lifetime_deployed: int = 0

    @property
    def total_deployments(self) -> int:
        return self.lifetime_deployed

    @property
    def needs_checkpoint(self) -> bool:
        return self.checkpoint_id < self.round_id


@dataclass(frozen=True)
class StakeState:
    authority: str
    balance: int = 0
    last_claim_at: int = 0
    last_deposit_at: int = 0
    last_withdraw_at: int = 0
    rewards_factor: int = 0
    rewards_orb: int = 0
    lifetime_rewards_orb: int = 0
    is_seeker: bool = False
    # Staking pays ORB only.
    rewards_sol: int = field(default=0, init=False)
    lifetime_rewards_sol: int = field(default=0, init=False)


@dataclass(frozen=True)
class TreasuryState:
    stake_rewards_factor: int = 0
    balance: int = 0
    motherload: int = 0
    miner_rewards_factor: int = 0
    total_staked: int = 0
    total_unclaimed: int = 0
    total_refined: int = 0


@dataclass(frozen=True)
class AutomationState:
    authority: str
    amount_per_square: int = 0
    remaining_balance: int = 0
    executor: str = _ZERO_KEY
    fee_per_execution: int = 0
    strategy: int = STRATEGY_RANDOM
    square_count_or_mask: int = 0

    @property
    def strategy_tag(self) -> str:
        return _STRATEGY_TAGS.get(self.strategy, f"Unknown({self.strategy})")


def _u64(data: bytes, offset: int) -> int:
    return struct.unpack_from("<Q", data, offset)[0]


def _squares(data: bytes, offset: int) -> Tuple[int, ...]:
    return tuple(struct.unpack_from(f"<{SQUARE_COUNT}Q", data, offset))


def _pubkey(data: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(bytes(data[offset : offset + 32])))


def _i80f48(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 16], "little", signed=True)


def _decode_board(data: bytes) -> BoardState:
    return BoardState(round_id=_u64(data, 8), start_slot=_u64(data, 16), end_slot=_u64(data, 24))


def _decode_round(data: bytes) -> RoundState:
    return RoundState(
        round_id=_u64(data, 8),
        deployed=_squares(data, 16),
        slot_hash=bytes(data[216:248]),
        count=_squares(data, 248),
        expires_at=_u64(data, 448),
        motherload=_u64(data, 456),
        rent_payer=_pubkey(data, 464),
        top_miner=_pubkey(data, 496),
        top_miner_reward=_u64(data, 528),
        total_deployed=_u64(data, 536),
        total_vaulted=_u64(data, 544),
        total_winnings=_u64(data, 552),
    )


def _decode_miner(data: bytes) -> MinerState:
    return MinerState(
        authority=_pubkey(data, 8),
        deployed=_squares(data, 40),
        cumulative=_squares(data, 240),
        checkpoint_fee=_u64(data, 440),
        checkpoint_id=_u64(data, 448),
        last_claim_orb_at=_u64(data, 456),
        last_claim_sol_at=_u64(data, 464),
        rewards_factor=_i80f48(data, 472),
        rewards_sol=_u64(data, 488),
        rewards_orb=_u64(data, 496),
        refined_orb=_u64(data, 504),
        round_id=_u64(data, 512),
        lifetime_rewards_sol=_u64(data, 520),
        lifetime_rewards_orb=_u64(data, 528),
        lifetime_deployed=_u64(data, 536),
    )


def _decode_stake(data: bytes) -> StakeState:
    return StakeState(
        authority=_pubkey(data, 8),
        balance=_u64(data, 40),
        last_claim_at=_u64(data, 48),
        last_deposit_at=_u64(data, 56),
        last_withdraw_at=_u64(data, 64),
        rewards_factor=_i80f48(data, 72),
        rewards_orb=_u64(data, 88),
        lifetime_rewards_orb=_u64(data, 96),
        is_seeker=bool(data[104]),
    )


def _decode_treasury(data: bytes) -> TreasuryState:
    return TreasuryState(
        balance=_u64(data, 8),
        motherload=_u64(data, 16),
        miner_rewards_factor=_i80f48(data, 24),
        stake_rewards_factor=_i80f48(data, 40),
        total_staked=_u64(data, 72),
        total_unclaimed=_u64(data, 80),
        total_refined=_u64(data, 88),
    )


def _decode_automation(data: bytes) -> AutomationState:
    return AutomationState(
        amount_per_square=_u64(data, 8),
        authority=_pubkey(data, 16),
        remaining_balance=_u64(data, 48),
        executor=_pubkey(data, 56),
        fee_per_execution=_u64(data, 88),
        strategy=_u64(data, 96),
        square_count_or_mask=_u64(data, 104),
    )


_DECODERS: Dict[str, Callable[[bytes], Any]] = {
    "board": _decode_board,
    "round": _decode_round,
    "miner": _decode_miner,
    "stake": _decode_stake,
    "treasury": _decode_treasury,
    "automation": _decode_automation,
}


class _Writer:
    def __init__(self, kind: str) -> None:
        self.buf = bytearray(RECORD_SIZES[kind])
        self.buf[0] = ACCOUNT_DISCRIMINATORS[kind]

    def u64(self, offset: int, value: int) -> None:
        struct.pack_into("<Q", self.buf, offset, int(value))

    def squares(self, offset: int, values: Tuple[int, ...]) -> None:
        if len(values) != SQUARE_COUNT:
            raise ValueError(f"expected {SQUARE_COUNT} squares, got {len(values)}")
        struct.pack_into(f"<{SQUARE_COUNT}Q", self.buf, offset, *values)

    def pubkey(self, offset: int, value: str) -> None:
        self.buf[offset : offset + 32] = bytes(Pubkey.from_string(value))

    def i80f48(self, offset: int, value: int) -> None:
        self.buf[offset : offset + 16] = int(value).to_bytes(16, "little", signed=True)

    def raw(self, offset: int, value: bytes) -> None:
        self.buf[offset : offset + len(value)] = value


def encode_account(record: Any) -> bytes:
    """Inverse of decode; used to seed fixtures and the mock chain."""
    if isinstance(record, BoardState):
        w = _Writer("board")
        w.u64(8, record.round_id)
        w.u64(16, record.start_slot)
        w.u64(24, record.end_slot)
    elif isinstance(record, RoundState):
        w = _Writer("round")
        w.u64(8, record.round_id)
        w.squares(16, record.deployed)
        w.raw(216, record.slot_hash)
        w.squares(248, record.count)
        w.u64(448, record.expires_at)
        w.u64(456, record.motherload)
        w.pubkey(464, record.rent_payer)
        w.pubkey(496, record.top_miner)
        w.u64(528, record.top_miner_reward)
        w.u64(536, record.total_deployed)
        w.u64(544, record.total_vaulted)
        w.u64(552, record.total_winnings)
    elif isinstance(record, MinerState):
        w = _Writer("miner")
        w.pubkey(8, record.authority)
        w.squares(40, record.deployed)
        w.squares(240, record.cumulative)
        w.u64(440, record.checkpoint_fee)
        w.u64(448, record.checkpoint_id)
        w.u64(456, record.last_claim_orb_at)
        w.u64(464, record.last_claim_sol_at)
        w.i80f48(472, record.rewards_factor)
        w.u64(488, record.rewards_sol)
        w.u64(496, record.rewards_orb)
        w.u64(504, record.refined_orb)
        w.u64(512, record.round_id)
        w.u64(520, record.lifetime_rewards_sol)
        w.u64(528, record.lifetime_rewards_orb)
        w.u64(536, record.lifetime_deployed)
    elif isinstance(record, StakeState):
        w = _Writer("stake")
        w.pubkey(8, record.authority)
        w.u64(40, record.balance)
        w.u64(48, record.last_claim_at)
        w.u64(56, record.last_deposit_at)
        w.u64(64, record.last_withdraw_at)
        w.i80f48(72, record.rewards_factor)
        w.u64(88, record.rewards_orb)
        w.u64(96, record.lifetime_rewards_orb)
        w.buf[104] = 1 if record.is_seeker else 0
    elif isinstance(record, TreasuryState):
        w = _Writer("treasury")
        w.u64(8, record.balance)
        w.u64(16, record.motherload)
        w.i80f48(24, record.miner_rewards_factor)
        w.i80f48(40, record.stake_rewards_factor)
        w.u64(72, record.total_staked)
        w.u64(80, record.total_unclaimed)
        w.u64(88, record.total_refined)
    elif isinstance(record, AutomationState):
        w = _Writer("automation")
        w.u64(8, record.amount_per_square)
        w.pubkey(16, record.authority)
        w.u64(48, record.remaining_balance)
        w.pubkey(56, record.executor)
        w.u64(88, record.fee_per_execution)
        w.u64(96, record.strategy)
        w.u64(104, record.square_count_or_mask)
    else:
        raise TypeError(f"cannot encode {type(record).__name__}")
    return bytes(w.buf)


class AccountCodec:
    def __init__(self, layout_version: int = LAYOUT_VERSION) -> None:
        if layout_version != LAYOUT_VERSION:
            raise ConfigurationError(f"unsupported account layout version {layout_version}")
        self.layout_version = layout_version

    def decode(self, kind: str, raw: bytes) -> Any:
        decoder = _DECODERS.get(kind)
        if decoder is None:
            raise DecodeError(f"unknown account kind: {kind}")
        required = RECORD_SIZES[kind]
        if raw is None or len(raw) < required:
            raise TruncatedRecord(kind, required, 0 if raw is None else len(raw))
        try:
            return decoder(bytes(raw))
        except (struct.error, ValueError) as exc:
            raise DecodeError(f"{kind} record malformed: {exc}") from exc

    def encode_account(self, record: Any) -> bytes:
        return encode_account(record)

    def encode_instruction(self, kind: str, args: Optional[Dict[str, Any]] = None) -> bytes:
        return encode_instruction(kind, args or {})

    def decode_instruction(self, kind: str, data: bytes) -> Dict[str, Any]:
        return decode_instruction(kind, data)


__all__ = [
    "ACCOUNT_KINDS",
    "AccountCodec",
    "AutomationState",
    "BoardState",
    "LAMPORTS_PER_SOL",
    "MinerState",
    "ORB_BASE_UNITS",
    "RECORD_SIZES",
    "RoundState",
    "SQUARE_COUNT",
    "StakeState",
    "TreasuryState",
    "accrued_rewards",
    "encode_account",
    "from_base_units",
    "i80f48_from_float",
    "i80f48_to_float",
    "to_base_units",
]
