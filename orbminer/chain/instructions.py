"""Instruction payloads for the mining program.

Byte layouts were taken from observed mainnet transactions; any drift here makes the
program reject the transaction, so every field is packed explicitly.
"""
from __future__ import annotations

import struct
from typing import Any, Callable, Dict, List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from orbminer.chain.addresses import ProgramAddresses
from orbminer.core.exceptions import DecodeError

DEPLOY_DISCRIMINATOR = bytes.fromhex("0040420f00000000")
DEPLOY_SQUARE_COUNT = 25
# 0 selects all squares; it does not mean "no squares".
ALL_SQUARES_MASK = 0
INSTRUCTION_SIZE = 34

AUTOMATE = 0x00
CHECKPOINT = 0x02
CLAIM_SOL = 0x03
CLAIM_ORB = 0x04
CLAIM_YIELD = 0x0C

_DEPLOY = struct.Struct("<8sQIII6x")
_AUTOMATE = struct.Struct("<BQQQQB")


def _encode_deploy(args: Dict[str, Any]) -> bytes:
    amount = int(args["amount"])
    if amount <= 0:
        raise ValueError("deploy amount must be positive")
    return _DEPLOY.pack(
        DEPLOY_DISCRIMINATOR,
        amount,
        int(args.get("mask", ALL_SQUARES_MASK)),
        int(args.get("reserved", 0)),
        int(args.get("square_count", DEPLOY_SQUARE_COUNT)),
    )


def _decode_deploy(data: bytes) -> Dict[str, Any]:
    discriminator, amount, mask, reserved, square_count = _DEPLOY.unpack(data)
    if discriminator != DEPLOY_DISCRIMINATOR:
        raise DecodeError(f"not a deploy instruction: {discriminator.hex()}")
    return {"amount": amount, "mask": mask, "reserved": reserved, "square_count": square_count}


def _encode_automate(args: Dict[str, Any]) -> bytes:
    return _AUTOMATE.pack(
        AUTOMATE,
        int(args.get("amount_per_square", 0)),
        int(args.get("deposit", 0)),
        int(args.get("fee", 0)),
        int(args.get("mask", 0)),
        int(args.get("strategy", 0)),
    )


def _decode_automate(data: bytes) -> Dict[str, Any]:
    tag, amount, deposit, fee, mask, strategy = _AUTOMATE.unpack(data)
    if tag != AUTOMATE:
        raise DecodeError(f"not an automate instruction: {tag:#04x}")
    return {"amount_per_square": amount, "deposit": deposit, "fee": fee, "mask": mask, "strategy": strategy}


def _single_byte(tag: int) -> Callable[[Dict[str, Any]], bytes]:
    def encode(_args: Dict[str, Any]) -> bytes:
        return bytes([tag])

    return encode


def _encode_claim_yield(args: Dict[str, Any]) -> bytes:
    return struct.pack("<BQ", CLAIM_YIELD, int(args.get("amount", 0)))


def _decode_claim_yield(data: bytes) -> Dict[str, Any]:
    tag, amount = struct.unpack("<BQ", data)
    if tag != CLAIM_YIELD:
        raise DecodeError(f"not a claim_yield instruction: {tag:#04x}")
    return {"amount": amount}


_ENCODERS: Dict[str, Callable[[Dict[str, Any]], bytes]] = {
    "deploy": _encode_deploy,
    "automate": _encode_automate,
    "bootstrap": lambda _args: _encode_automate({}),
    "checkpoint": _single_byte(CHECKPOINT),
    "claim_sol": _single_byte(CLAIM_SOL),
    "claim_orb": _single_byte(CLAIM_ORB),
    "claim_yield": _encode_claim_yield,
}

_DECODERS: Dict[str, Callable[[bytes], Dict[str, Any]]] = {
    "deploy": _decode_deploy,
    "automate": _decode_automate,
    "bootstrap": _decode_automate,
    "claim_yield": _decode_claim_yield,
}

_FIXED_SIZES = {"deploy": INSTRUCTION_SIZE, "automate": INSTRUCTION_SIZE, "bootstrap": INSTRUCTION_SIZE, "claim_yield": 9}


def encode_instruction(kind: str, args: Dict[str, Any]) -> bytes:
    encoder = _ENCODERS.get(kind)
    if encoder is None:
        raise ValueError(f"unknown instruction kind: {kind}")
    return encoder(args)


def decode_instruction(kind: str, data: bytes) -> Dict[str, Any]:
    decoder = _DECODERS.get(kind)
    if decoder is None:
        raise DecodeError(f"instruction kind {kind} carries no arguments to decode")
    expected = _FIXED_SIZES[kind]
    if len(data) != expected:
        raise DecodeError(f"{kind} instruction must be {expected} bytes, got {len(data)}")
    return decoder(bytes(data))


def _meta(address: str, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=Pubkey.from_string(address), is_signer=signer, is_writable=writable)


def _system_meta() -> AccountMeta:
    return AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False)


class InstructionBuilder:
    def __init__(self, addresses: ProgramAddresses) -> None:
        self.addresses = addresses
        self.program_id = Pubkey.from_string(addresses.program_id)

    def _build(self, kind: str, args: Dict[str, Any], accounts: List[AccountMeta]) -> Instruction:
        return Instruction(self.program_id, encode_instruction(kind, args), accounts)

    def deploy(self, wallet: str, amount: int) -> Instruction:
        accounts = [
            _meta(wallet, signer=True, writable=True),
            _meta(self.addresses.automation(wallet), writable=True),
            _meta(self.addresses.fee_collector, writable=True),
            _meta(self.addresses.miner(wallet), writable=True),
            _system_meta(),
        ]
        return self._build("deploy", {"amount": amount}, accounts)

    def bootstrap(self, wallet: str) -> Instruction:
        # Executor slot is the default key, which is also the system program id.
        accounts = [
            _meta(wallet, signer=True, writable=True),
            _meta(self.addresses.automation(wallet), writable=True),
            _system_meta(),
            _meta(self.addresses.miner(wallet), writable=True),
            _system_meta(),
        ]
        return self._build("bootstrap", {}, accounts)

    def checkpoint(self, wallet: str, round_id: int) -> Instruction:
        accounts = [
            _meta(wallet, signer=True, writable=True),
            _meta(self.addresses.board(), writable=True),
            _meta(self.addresses.miner(wallet), writable=True),
            _meta(self.addresses.round(round_id), writable=True),
            _meta(self.addresses.treasury(), writable=True),
            _system_meta(),
        ]
        return self._build("checkpoint", {}, accounts)

    def claim_sol(self, wallet: str) -> Instruction:
        accounts = [
            _meta(wallet, signer=True, writable=True),
            _meta(self.addresses.miner(wallet), writable=True),
            _system_meta(),
        ]
        return self._build("claim_sol", {}, accounts)

    def _token_accounts(self, wallet: str, record: str) -> List[AccountMeta]:
        treasury = self.addresses.treasury()
        return [
            _meta(wallet, signer=True, writable=True),
            _meta(record, writable=True),
            _meta(treasury, writable=True),
            _meta(self.addresses.associated_token(treasury), writable=True),
            _meta(self.addresses.associated_token(wallet), writable=True),
            _meta(self.addresses.orb_mint, writable=True),
            _meta(self.addresses.token_program),
            _meta(self.addresses.associated_token_program),
            _system_meta(),
        ]

    def claim_orb(self, wallet: str) -> Instruction:
        return self._build("claim_orb", {}, self._token_accounts(wallet, self.addresses.miner(wallet)))

    def claim_yield(self, wallet: str, amount: int) -> Instruction:
        accounts = self._token_accounts(wallet, self.addresses.stake(wallet))
        return self._build("claim_yield", {"amount": amount}, accounts)


__all__ = [
    "ALL_SQUARES_MASK",
    "DEPLOY_DISCRIMINATOR",
    "INSTRUCTION_SIZE",
    "InstructionBuilder",
    "decode_instruction",
    "encode_instruction",
]
