import pytest
from solders.keypair import Keypair
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.instructions import (
    DEPLOY_DISCRIMINATOR,
    INSTRUCTION_SIZE,
    InstructionBuilder,
    decode_instruction,
    encode_instruction,
)
from orbminer.config import get_config
from orbminer.core.exceptions import DecodeError


def _builder():
    addresses = ProgramAddresses.from_config(get_config())
    return addresses, InstructionBuilder(addresses)


def test_deploy_payload_is_bit_exact():
    data = encode_instruction("deploy", {"amount": 10_000_000})
    expected = (
        bytes.fromhex("0040420f00000000")
        + (10_000_000).to_bytes(8, "little")
        + bytes(4)
        + bytes(4)
        + (25).to_bytes(4, "little")
        + bytes(6)
    )
    assert data == expected
    assert len(data) == INSTRUCTION_SIZE
    assert decode_instruction("deploy", data) == {"amount": 10_000_000, "mask": 0, "reserved": 0, "square_count": 25}


def test_deploy_rejects_non_positive_amount():
    with pytest.raises(ValueError):
        encode_instruction("deploy", {"amount": 0})


def test_bootstrap_is_all_zero():
    assert encode_instruction("bootstrap", {}) == bytes(INSTRUCTION_SIZE)


def test_automate_payload_layout():
    args = {"amount_per_square": 40_000, "deposit": 2_000_000_000, "fee": 5_000, "mask": 0x1FFFFFF, "strategy": 2}
    data = encode_instruction("automate", args)
    assert len(data) == INSTRUCTION_SIZE
    assert data == (
        b"\x00"
        + (40_000).to_bytes(8, "little")
        + (2_000_000_000).to_bytes(8, "little")
        + (5_000).to_bytes(8, "little")
        + (0x1FFFFFF).to_bytes(8, "little")
        + b"\x02"
    )
    assert decode_instruction("automate", data) == args


@pytest.mark.parametrize(
    "kind,args",
    [
        ("deploy", {"amount": 7_654_321, "mask": 0b1011}),
        ("automate", {"amount_per_square": 1, "deposit": 2**63, "fee": 12_345, "mask": 7, "strategy": 255}),
        ("bootstrap", {}),
        ("claim_yield", {"amount": 3}),
    ],
)
def test_encode_decode_encode_is_stable(kind, args):
    encoded = encode_instruction(kind, args)
    assert encode_instruction(kind, decode_instruction(kind, encoded)) == encoded


def test_single_byte_claims():
    assert encode_instruction("checkpoint", {}) == b"\x02"
    assert encode_instruction("claim_sol", {}) == b"\x03"
    assert encode_instruction("claim_orb", {}) == b"\x04"
    assert encode_instruction("claim_yield", {"amount": 5}) == b"\x0c" + (5).to_bytes(8, "little")


def test_decode_wrong_length_or_tag():
    with pytest.raises(DecodeError):
        decode_instruction("deploy", DEPLOY_DISCRIMINATOR)
    with pytest.raises(DecodeError):
        decode_instruction("deploy", bytes(INSTRUCTION_SIZE))
    with pytest.raises(DecodeError):
        decode_instruction("claim_sol", b"\x03")


def test_unknown_instruction_kind():
    with pytest.raises(ValueError):
        encode_instruction("close", {})


def test_deploy_account_order():
    addresses, builder = _builder()
    wallet = str(Keypair().pubkey())
    ix = builder.deploy(wallet, 1_000_000)
    keys = [str(meta.pubkey) for meta in ix.accounts]
    assert keys == [
        wallet,
        addresses.automation(wallet),
        addresses.fee_collector,
        addresses.miner(wallet),
        str(SYSTEM_PROGRAM_ID),
    ]
    assert ix.accounts[0].is_signer and ix.accounts[0].is_writable
    assert not ix.accounts[4].is_writable
    assert str(ix.program_id) == addresses.program_id


def test_bootstrap_uses_two_system_placeholders():
    _, builder = _builder()
    ix = builder.bootstrap(str(Keypair().pubkey()))
    assert len(ix.accounts) == 5
    assert ix.accounts[2].pubkey == SYSTEM_PROGRAM_ID
    assert ix.accounts[4].pubkey == SYSTEM_PROGRAM_ID
    assert bytes(ix.data) == bytes(INSTRUCTION_SIZE)


def test_claim_sol_accounts():
    addresses, builder = _builder()
    wallet = str(Keypair().pubkey())
    ix = builder.claim_sol(wallet)
    assert [str(meta.pubkey) for meta in ix.accounts][:2] == [wallet, addresses.miner(wallet)]
    assert bytes(ix.data) == b"\x03"


def test_pda_derivation_is_stable():
    addresses, _ = _builder()
    wallet = str(Keypair().pubkey())
    assert addresses.miner(wallet) == addresses.miner(wallet)
    assert addresses.miner(wallet) != addresses.stake(wallet)
    assert addresses.round(1) != addresses.round(2)
