from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from orbminer.core.request_spec import RequestSpec

MAX_SLIPPAGE_BPS = 10_000

# Optional quote arguments and the query parameter each one maps to.
_QUOTE_OPTIONS = {
    "swap_mode": ("swapMode", str),
    "only_direct_routes": ("onlyDirectRoutes", lambda value: "true" if value else "false"),
    "max_accounts": ("maxAccounts", int),
}


class JupiterRequestError(ValueError):
    pass


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise JupiterRequestError(message)


@dataclass(frozen=True)
class JupiterRequestFactory:
    """Builds quote and swap-transaction requests for the Jupiter swap API."""

    api_key: str = ""
    base_url: str = "https://lite-api.jup.ag"
    quote_path: str = "/swap/v1/quote"
    swap_path: str = "/swap/v1/swap"

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key} if self.api_key else {}

    def _spec(self, method: str, path: str, query: Dict[str, Any], body: Optional[Dict[str, Any]] = None) -> RequestSpec:
        return RequestSpec(method=method, base_url=self.base_url, path=path, query=query, headers=self.headers, json=body)

    def build_quote_request(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        **options: Any,
    ) -> RequestSpec:
        _require(bool(input_mint) and bool(output_mint), "input_mint and output_mint are required")
        _require(input_mint != output_mint, "input_mint and output_mint must differ")
        _require(int(amount) > 0, "amount must be positive")
        _require(0 <= int(slippage_bps) <= MAX_SLIPPAGE_BPS, f"slippage_bps must be between 0 and {MAX_SLIPPAGE_BPS}")
        unknown = set(options) - set(_QUOTE_OPTIONS)
        _require(not unknown, f"unsupported quote options: {', '.join(sorted(unknown))}")

        query: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": int(amount),
            "slippageBps": int(slippage_bps),
        }
        for name, value in options.items():
            if value is None or value == "":
                continue
            param, convert = _QUOTE_OPTIONS[name]
            query[param] = convert(value)
        return self._spec("GET", self.quote_path, query)

    def build_swap_request(
        self,
        quote_response: Dict[str, Any],
        user_pubkey: str,
        wrap_and_unwrap_sol: bool = True,
        dynamic_compute_unit_limit: bool = True,
        prioritization_fee_lamports: Optional[int] = None,
    ) -> RequestSpec:
        _require(isinstance(quote_response, dict), "quote_response must be a dict")
        _require(bool(user_pubkey), "user_pubkey is required")

        body: Dict[str, Any] = {
            "quoteResponse": quote_response,
            "userPublicKey": user_pubkey,
            "wrapAndUnwrapSol": bool(wrap_and_unwrap_sol),
            "dynamicComputeUnitLimit": bool(dynamic_compute_unit_limit),
        }
        if prioritization_fee_lamports is not None:
            body["prioritizationFeeLamports"] = int(prioritization_fee_lamports)
        return self._spec("POST", self.swap_path, {}, body)


__all__ = ["JupiterRequestError", "JupiterRequestFactory"]
