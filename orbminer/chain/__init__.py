from orbminer.chain.addresses import ProgramAddresses, derive_address
from orbminer.chain.codec import (
    AccountCodec,
    AutomationState,
    BoardState,
    MinerState,
    RoundState,
    StakeState,
    TreasuryState,
    accrued_rewards,
    encode_account,
)
from orbminer.chain.gateway import ChainGateway, ConfirmationStatus, MockChainGateway, decode_transaction
from orbminer.chain.instructions import InstructionBuilder, decode_instruction, encode_instruction
from orbminer.chain.rpc import RpcHttpClient, RpcSettings, SolanaRpcGateway

__all__ = [
    "AccountCodec",
    "AutomationState",
    "BoardState",
    "ChainGateway",
    "ConfirmationStatus",
    "InstructionBuilder",
    "MinerState",
    "MockChainGateway",
    "ProgramAddresses",
    "RoundState",
    "RpcHttpClient",
    "RpcSettings",
    "SolanaRpcGateway",
    "StakeState",
    "TreasuryState",
    "accrued_rewards",
    "decode_instruction",
    "decode_transaction",
    "derive_address",
    "encode_account",
    "encode_instruction",
]
