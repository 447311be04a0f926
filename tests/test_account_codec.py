import struct

import pytest
from solders.keypair import Keypair

from orbminer.chain.codec import (
    RECORD_SIZES,
    SQUARE_COUNT,
    AccountCodec,
    AutomationState,
    BoardState,
    MinerState,
    RoundState,
    StakeState,
    TreasuryState,
    accrued_rewards,
    encode_account,
    i80f48_from_float,
    to_base_units,
)
from orbminer.core.exceptions import ConfigurationError, DecodeError, TruncatedRecord


def _wallet() -> str:
    return str(Keypair().pubkey())


def test_board_fields_at_fixed_offsets():
    raw = bytearray(RECORD_SIZES["board"])
    struct.pack_into("<QQQ", raw, 8, 4210, 631_500, 631_650)
    board = AccountCodec().decode("board", bytes(raw))
    assert board == BoardState(round_id=4210, start_slot=631_500, end_slot=631_650)


def test_round_motherload_and_counts_decode():
    count = tuple(range(1, SQUARE_COUNT + 1))
    state = RoundState(
        round_id=7,
        motherload=to_base_units(180),
        deployed=(5_000_000,) * SQUARE_COUNT,
        count=count,
        total_deployed=125_000_000,
    )
    raw = encode_account(state)
    assert struct.unpack_from("<Q", raw, 456)[0] == to_base_units(180)
    decoded = AccountCodec().decode("round", raw)
    assert decoded.motherload_orb == pytest.approx(180.0)
    assert decoded.count == count
    assert decoded.unique_miner_count == SQUARE_COUNT
    assert decoded.total_deployed == 125_000_000


def test_miner_record_keeps_rewards_and_round():
    wallet = _wallet()
    miner = MinerState(
        authority=wallet,
        rewards_sol=150_000_000,
        rewards_orb=to_base_units(1.2),
        checkpoint_id=41,
        round_id=42,
        lifetime_deployed=900,
    )
    decoded = AccountCodec().decode("miner", encode_account(miner))
    assert decoded.authority == wallet
    assert decoded.rewards_sol == 150_000_000
    assert decoded.rewards_orb == to_base_units(1.2)
    assert decoded.needs_checkpoint
    assert decoded.total_deployments == 900


def test_stake_record_has_no_sol_rewards():
    stake = StakeState(authority=_wallet(), balance=to_base_units(10), rewards_orb=77, is_seeker=True)
    decoded = AccountCodec().decode("stake", encode_account(stake))
    assert decoded.rewards_sol == 0
    assert decoded.rewards_orb == 77
    assert decoded.is_seeker is True


def test_automation_strategy_tag():
    automation = AutomationState(authority=_wallet(), strategy=1, amount_per_square=10)
    decoded = AccountCodec().decode("automation", encode_account(automation))
    assert decoded.strategy_tag == "Preferred"
    assert AutomationState(authority=_wallet(), strategy=9).strategy_tag == "Unknown(9)"


def test_truncated_record_is_rejected():
    raw = encode_account(MinerState(authority=_wallet()))[:200]
    with pytest.raises(TruncatedRecord) as excinfo:
        AccountCodec().decode("miner", raw)
    assert excinfo.value.expected == RECORD_SIZES["miner"]
    assert excinfo.value.actual == 200


def test_longer_buffers_are_accepted():
    raw = encode_account(TreasuryState(stake_rewards_factor=i80f48_from_float(0.5))) + bytes(64)
    decoded = AccountCodec().decode("treasury", raw)
    assert decoded.stake_rewards_factor == i80f48_from_float(0.5)


def test_unknown_kind_raises_decode_error():
    with pytest.raises(DecodeError):
        AccountCodec().decode("vault", bytes(64))


def test_unsupported_layout_version():
    with pytest.raises(ConfigurationError):
        AccountCodec(layout_version=2)


def test_winning_square_from_slot_hash():
    assert RoundState(round_id=1, motherload=0).winning_square is None
    words = (3, 5, 9, 0)
    state = RoundState(round_id=1, motherload=0, slot_hash=struct.pack("<4Q", *words))
    assert state.winning_square == (3 ^ 5 ^ 9) % SQUARE_COUNT


def test_accrued_rewards_truncates_and_is_monotonic():
    balance = to_base_units(10)
    stake_factor = i80f48_from_float(0.01)
    lower = accrued_rewards(i80f48_from_float(0.02), stake_factor, balance)
    higher = accrued_rewards(i80f48_from_float(0.03), stake_factor, balance)
    assert 0 < lower < higher
    assert lower == pytest.approx(to_base_units(0.1), abs=2)
    assert accrued_rewards(stake_factor, stake_factor, balance) == 0
    assert accrued_rewards(stake_factor, i80f48_from_float(0.02), balance) == 0
    # one raw unit over 2**48 rounds down to nothing
    assert accrued_rewards(1, 0, 1) == 0
