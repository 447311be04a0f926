from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from orbminer.core.request_spec import JsonRpcSpec, next_rpc_id

DEFAULT_COMMITMENT = "confirmed"


class RpcRequestError(ValueError):
    pass


class RpcRequestFactory:
    def __init__(
        self,
        rpc_url: str = "https://api.mainnet-beta.solana.com",
        api_key: str = "",
        commitment: str = DEFAULT_COMMITMENT,
    ) -> None:
        self.rpc_url = rpc_url.rstrip("/")
        self.api_key = (api_key or "").strip()
        self.commitment = commitment

    def build_rpc_request(self, method: str, params: Optional[list] = None, request_id: Optional[int] = None) -> JsonRpcSpec:
        if not method:
            raise RpcRequestError("method is required")
        body = {
            "jsonrpc": "2.0",
            "id": request_id if request_id is not None else next_rpc_id(),
            "method": method,
            "params": params or [],
        }
        query: Dict[str, Any] = {"api-key": self.api_key} if self.api_key else {}
        return JsonRpcSpec(
            base_url=self.rpc_url,
            path="/",
            query=query,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    def build_get_account_info(self, address: str) -> JsonRpcSpec:
        if not address:
            raise RpcRequestError("address is required")
        return self.build_rpc_request(
            "getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}]
        )

    def build_get_balance(self, address: str) -> JsonRpcSpec:
        if not address:
            raise RpcRequestError("address is required")
        return self.build_rpc_request("getBalance", [address, {"commitment": self.commitment}])

    def build_get_token_accounts_by_owner(self, owner: str, mint: str) -> JsonRpcSpec:
        if not owner or not mint:
            raise RpcRequestError("owner and mint are required")
        return self.build_rpc_request(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )

    def build_get_latest_blockhash(self) -> JsonRpcSpec:
        return self.build_rpc_request("getLatestBlockhash", [{"commitment": self.commitment}])

    def build_send_transaction(self, tx_base64: str, skip_preflight: bool = False) -> JsonRpcSpec:
        if not tx_base64:
            raise RpcRequestError("transaction payload is required")
        options = {
            "encoding": "base64",
            "skipPreflight": bool(skip_preflight),
            "preflightCommitment": self.commitment,
            "maxRetries": 0,
        }
        return self.build_rpc_request("sendTransaction", [tx_base64, options])

    def build_get_signature_statuses(self, signatures: Sequence[str]) -> JsonRpcSpec:
        if not signatures:
            raise RpcRequestError("at least one signature is required")
        return self.build_rpc_request(
            "getSignatureStatuses", [list(signatures), {"searchTransactionHistory": False}]
        )

    def build_get_recent_prioritization_fees(self, addresses: Optional[List[str]] = None) -> JsonRpcSpec:
        params = [list(addresses)] if addresses else []
        return self.build_rpc_request("getRecentPrioritizationFees", params)


__all__ = ["DEFAULT_COMMITMENT", "RpcRequestError", "RpcRequestFactory"]
