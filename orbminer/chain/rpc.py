from __future__ import annotations

import asyncio
import base64
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Type, TypeVar

from pydantic import ValidationError

from orbminer.chain.addresses import derive_address
from orbminer.chain.gateway import CONFIRMED, FAILED, TIMED_OUT, ConfirmationStatus
from orbminer.chain.request_factory import RpcRequestFactory
from orbminer.chain.schemas import (
    AccountInfoResult,
    BalanceResult,
    BlockhashResult,
    PrioritizationFee,
    RpcErrorBody,
    RpcResponse,
    SignatureStatusesResult,
    TokenAccountsResult,
)
from orbminer.core.exceptions import ChainRejection, ProviderMisconfigured, TransientNetworkError, UpstreamBadResponse
from orbminer.core.http import HttpClient
from orbminer.core.request_spec import JsonRpcSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Node-side conditions that clear up on their own.
TRANSIENT_RPC_CODES = {-32004, -32005, -32009, -32014, -32016}
TRANSIENT_RPC_MESSAGES = (
    "blockhash not found",
    "block height exceeded",
    "node is behind",
    "node is unhealthy",
    "too many requests",
    "rate limit",
)
FINAL_COMMITMENTS = {"confirmed", "finalized"}


@dataclass(frozen=True)
class RpcSettings:
    rpc_url: str
    api_key: str
    rps: float
    timeout: float
    live: bool

    @classmethod
    def from_env(cls) -> "RpcSettings":
        rpc_url = os.getenv("SOLANA_RPC_URL", "").strip()
        api_key = os.getenv("SOLANA_RPC_API_KEY", "").strip()
        rps = float(os.getenv("SOLANA_RPC_RPS", "5").strip() or 5)
        timeout = float(os.getenv("SOLANA_RPC_TIMEOUT", "10").strip() or 10)
        live_flag = os.getenv("SOLANA_RPC_LIVE", "0").strip().lower() in {"1", "true", "yes"}
        if live_flag and not rpc_url:
            raise ProviderMisconfigured("SOLANA_RPC_URL is required when SOLANA_RPC_LIVE=1")
        return cls(rpc_url=rpc_url, api_key=api_key, rps=rps, timeout=timeout, live=live_flag and bool(rpc_url))


class RpcHttpClient(HttpClient):
    label = "RPC"


def _validate_model(payload: Any, model: Type[T], context: str) -> T:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamBadResponse(f"RPC {context} response invalid") from exc


def is_transient_rpc_error(error: RpcErrorBody) -> bool:
    if error.code in TRANSIENT_RPC_CODES:
        return True
    message = error.message.lower()
    if any(marker in message for marker in TRANSIENT_RPC_MESSAGES):
        return True
    if isinstance(error.data, dict):
        if error.data.get("err") == "BlockhashNotFound":
            return True
    return False


def classify_rpc_error(method: str, error: RpcErrorBody) -> Exception:
    if is_transient_rpc_error(error):
        return TransientNetworkError(f"{method}: {error.message}")
    if method == "sendTransaction":
        detail = error.data.get("err") if isinstance(error.data, dict) else error.data
        return ChainRejection(f"transaction rejected: {error.message}", error=detail)
    return UpstreamBadResponse(f"{method}: {error.message} ({error.code})")


class SolanaRpcGateway:
    def __init__(
        self,
        program_id: str,
        settings: Optional[RpcSettings] = None,
        http_client: Optional[RpcHttpClient] = None,
        poll_interval: float = 2.0,
    ) -> None:
        self.program_id = program_id
        self.settings = settings or RpcSettings.from_env()
        self.request_factory = RpcRequestFactory(rpc_url=self.settings.rpc_url, api_key=self.settings.api_key)
        self._client = http_client or RpcHttpClient(timeout=self.settings.timeout, rps=self.settings.rps)
        self._owns_client = http_client is None
        self.poll_interval = poll_interval

    async def __aenter__(self) -> "SolanaRpcGateway":
        await self._client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_client:
            await self._client.__aexit__(exc_type, exc, tb)

    async def _call(self, spec: JsonRpcSpec) -> Any:
        payload = await self._client.request(spec)
        response = _validate_model(payload, RpcResponse, spec.rpc_method)
        if response.error is not None:
            raise classify_rpc_error(spec.rpc_method, response.error)
        return response.result

    async def get_account(self, address: str) -> Optional[bytes]:
        result = await self._call(self.request_factory.build_get_account_info(address))
        info = _validate_model(result, AccountInfoResult, "getAccountInfo")
        if info.value is None:
            return None
        encoded, encoding = (info.value.data + ["base64"])[:2]
        if encoding != "base64":
            raise UpstreamBadResponse(f"unexpected account encoding {encoding}")
        return base64.b64decode(encoded)

    def derive_address(self, seeds: Sequence[bytes]) -> str:
        return derive_address(seeds, self.program_id)

    async def submit(self, signed_tx: bytes) -> str:
        encoded = base64.b64encode(bytes(signed_tx)).decode("ascii")
        result = await self._call(self.request_factory.build_send_transaction(encoded))
        if not isinstance(result, str):
            raise UpstreamBadResponse("sendTransaction returned no signature")
        logger.debug("Transaction sent: %s", result)
        return result

    async def confirm(self, signature: str, timeout: float) -> ConfirmationStatus:
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            result = await self._call(self.request_factory.build_get_signature_statuses([signature]))
            statuses = _validate_model(result, SignatureStatusesResult, "getSignatureStatuses")
            status = statuses.value[0] if statuses.value else None
            if status is not None:
                if status.err is not None:
                    return ConfirmationStatus(FAILED, error=status.err, slot=status.slot)
                if status.confirmation_status in FINAL_COMMITMENTS:
                    return ConfirmationStatus(CONFIRMED, slot=status.slot)
            if time.monotonic() >= deadline:
                logger.debug("Confirmation of %s timed out after %.1fs", signature, timeout)
                return ConfirmationStatus(TIMED_OUT)
            await asyncio.sleep(min(self.poll_interval, max(0.0, deadline - time.monotonic())))

    async def get_balance(self, address: str) -> int:
        result = await self._call(self.request_factory.build_get_balance(address))
        return _validate_model(result, BalanceResult, "getBalance").value

    async def get_token_balance(self, owner: str, mint: str) -> int:
        result = await self._call(self.request_factory.build_get_token_accounts_by_owner(owner, mint))
        accounts = _validate_model(result, TokenAccountsResult, "getTokenAccountsByOwner")
        return sum(int(item.account.data.parsed.info.token_amount.amount) for item in accounts.value)

    async def get_latest_blockhash(self) -> str:
        result = await self._call(self.request_factory.build_get_latest_blockhash())
        return _validate_model(result, BlockhashResult, "getLatestBlockhash").value.blockhash

    async def get_recent_prioritization_fees(self, addresses: Optional[List[str]] = None) -> List[int]:
        result = await self._call(self.request_factory.build_get_recent_prioritization_fees(addresses))
        if not isinstance(result, list):
            raise UpstreamBadResponse("getRecentPrioritizationFees response invalid")
        return [_validate_model(item, PrioritizationFee, "prioritization fee").prioritization_fee for item in result]


__all__ = [
    "RpcHttpClient",
    "RpcSettings",
    "SolanaRpcGateway",
    "classify_rpc_error",
    "is_transient_rpc_error",
]
