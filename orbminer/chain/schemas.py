from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RpcErrorBody(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None

    model_config = ConfigDict(extra="allow")


class RpcResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[int] = None
    result: Optional[Any] = None
    error: Optional[RpcErrorBody] = None

    model_config = ConfigDict(extra="allow")


class RpcContext(BaseModel):
    slot: int

    model_config = ConfigDict(extra="allow")


class AccountInfo(BaseModel):
    data: List[str]
    lamports: int
    owner: str
    executable: bool = False
    rent_epoch: Optional[int] = Field(default=None, alias="rentEpoch")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class AccountInfoResult(BaseModel):
    context: Optional[RpcContext] = None
    value: Optional[AccountInfo] = None

    model_config = ConfigDict(extra="allow")


class BalanceResult(BaseModel):
    context: Optional[RpcContext] = None
    value: int

    model_config = ConfigDict(extra="allow")


class BlockhashValue(BaseModel):
    blockhash: str
    last_valid_block_height: int = Field(alias="lastValidBlockHeight")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class BlockhashResult(BaseModel):
    context: Optional[RpcContext] = None
    value: BlockhashValue

    model_config = ConfigDict(extra="allow")


class SignatureStatus(BaseModel):
    slot: int
    confirmations: Optional[int] = None
    err: Optional[Any] = None
    confirmation_status: Optional[str] = Field(default=None, alias="confirmationStatus")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SignatureStatusesResult(BaseModel):
    context: Optional[RpcContext] = None
    value: List[Optional[SignatureStatus]]

    model_config = ConfigDict(extra="allow")


class TokenAmount(BaseModel):
    amount: str
    decimals: int
    ui_amount: Optional[float] = Field(default=None, alias="uiAmount")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ParsedTokenInfo(BaseModel):
    mint: str
    owner: str
    token_amount: TokenAmount = Field(alias="tokenAmount")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ParsedTokenData(BaseModel):
    info: ParsedTokenInfo

    model_config = ConfigDict(extra="allow")


class ParsedTokenAccountData(BaseModel):
    parsed: ParsedTokenData

    model_config = ConfigDict(extra="allow")


class TokenAccountData(BaseModel):
    data: ParsedTokenAccountData

    model_config = ConfigDict(extra="allow")


class TokenAccount(BaseModel):
    pubkey: str
    account: TokenAccountData

    model_config = ConfigDict(extra="allow")


class TokenAccountsResult(BaseModel):
    context: Optional[RpcContext] = None
    value: List[TokenAccount]

    model_config = ConfigDict(extra="allow")


class PrioritizationFee(BaseModel):
    slot: int
    prioritization_fee: int = Field(alias="prioritizationFee")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


__all__ = [
    "AccountInfo",
    "AccountInfoResult",
    "BalanceResult",
    "BlockhashResult",
    "BlockhashValue",
    "PrioritizationFee",
    "RpcErrorBody",
    "RpcResponse",
    "SignatureStatus",
    "SignatureStatusesResult",
    "TokenAccount",
    "TokenAccountsResult",
]
