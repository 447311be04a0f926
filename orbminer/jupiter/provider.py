from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError
from solders.hash import Hash
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from orbminer.config import repo_root
from orbminer.core.exceptions import ProviderMisconfigured, UpstreamBadResponse
from orbminer.core.fixtures import load_fixture
from orbminer.core.http import HttpClient
from orbminer.jupiter.request_factory import JupiterRequestFactory
from orbminer.jupiter.schemas import JupiterQuoteResponse, JupiterSwapResponse


@dataclass(frozen=True)
class JupiterSettings:
    api_key: str
    base_url: str
    quote_path: str
    swap_path: str
    rps: float
    live: bool

    @classmethod
    def from_env(cls) -> "JupiterSettings":
        api_key = os.getenv("JUPITER_API_KEY", "").strip()
        base_url = os.getenv("JUPITER_BASE_URL", "https://lite-api.jup.ag").strip().rstrip("/")
        quote_path = os.getenv("JUPITER_QUOTE_PATH", "/swap/v1/quote").strip()
        swap_path = os.getenv("JUPITER_SWAP_PATH", "/swap/v1/swap").strip()
        rps = float(os.getenv("JUPITER_RPS", "1").strip() or 1)
        live_flag = os.getenv("JUPITER_LIVE", "0").strip().lower() in {"1", "true", "yes"}
        if live_flag and not base_url:
            raise ProviderMisconfigured("JUPITER_BASE_URL is required when JUPITER_LIVE=1")
        return cls(
            api_key=api_key,
            base_url=base_url,
            quote_path=quote_path,
            swap_path=swap_path,
            rps=rps,
            live=live_flag,
        )


class JupiterHttpClient(HttpClient):
    label = "Jupiter"


def _parse_jupiter_response(payload: Dict[str, Any], model, context: str):
    if isinstance(payload, dict) and payload.get("error"):
        message = payload.get("error") or f"Jupiter {context} response error"
        raise UpstreamBadResponse(str(message))
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamBadResponse(f"Jupiter {context} response invalid") from exc


def build_unsigned_swap_transaction(user_pubkey: str, blockhash: Optional[str] = None) -> str:
    """Placeholder v0 swap paying the user to themselves, with an empty signature slot."""
    owner = Pubkey.from_string(user_pubkey)
    recent = Hash.from_string(blockhash) if blockhash else Hash.default()
    ix = transfer(TransferParams(from_pubkey=owner, to_pubkey=owner, lamports=0))
    message = MessageV0.try_compile(owner, [ix], [], recent)
    tx = VersionedTransaction.populate(message, [Signature.default()])
    return base64.b64encode(bytes(tx)).decode("ascii")


class JupiterProvider:
    def __init__(self, settings: JupiterSettings, http_client: Optional[JupiterHttpClient] = None) -> None:
        self.settings = settings
        self.request_factory = JupiterRequestFactory(
            api_key=settings.api_key,
            base_url=settings.base_url,
            quote_path=settings.quote_path,
            swap_path=settings.swap_path,
        )
        self._client = http_client or JupiterHttpClient(rps=settings.rps)
        self._owns_client = http_client is None

    async def __aenter__(self) -> "JupiterProvider":
        await self._client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_client:
            await self._client.__aexit__(exc_type, exc, tb)

    async def get_quote(self, params: Dict[str, Any]) -> JupiterQuoteResponse:
        spec = self.request_factory.build_quote_request(**params)
        payload = await self._client.request(spec)
        return _parse_jupiter_response(payload, JupiterQuoteResponse, "quote")

    async def build_swap_tx(self, quote_response: Dict[str, Any], user_pubkey: str, opts: Dict[str, Any]) -> JupiterSwapResponse:
        spec = self.request_factory.build_swap_request(quote_response, user_pubkey, **opts)
        payload = await self._client.request(spec)
        return _parse_jupiter_response(payload, JupiterSwapResponse, "swap")


class MockJupiterProvider:
    """Offline quotes priced from a fixture; swaps are built locally for the caller's wallet."""

    def __init__(self, fixture_dir: Optional[Path] = None, error_mode: Optional[str] = None) -> None:
        self.fixture_dir = fixture_dir or repo_root() / "tests" / "fixtures" / "jupiter"
        self._quote_ok = load_fixture(self.fixture_dir, "quote_ok.json")
        self._quote_error = load_fixture(self.fixture_dir, "quote_error.json")
        self._swap_error = load_fixture(self.fixture_dir, "swap_error.json")
        self.error_mode = error_mode
        self.request_factory = JupiterRequestFactory(api_key="offline")
        self.quotes: list[Dict[str, Any]] = []

    async def __aenter__(self) -> "MockJupiterProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get_quote(self, params: Dict[str, Any]) -> JupiterQuoteResponse:
        # validate the same way the live provider does
        self.request_factory.build_quote_request(**params)
        self.quotes.append(dict(params))
        if self.error_mode == "quote":
            return _parse_jupiter_response(self._quote_error, JupiterQuoteResponse, "quote")
        template = _parse_jupiter_response(self._quote_ok, JupiterQuoteResponse, "quote")
        amount = int(params["amount"])
        out_amount = int(amount * template.price)
        payload = template.model_dump(by_alias=True)
        payload.update(
            {
                "inputMint": params["input_mint"],
                "outputMint": params["output_mint"],
                "inAmount": str(amount),
                "outAmount": str(out_amount),
                "otherAmountThreshold": str(out_amount * (10_000 - int(params["slippage_bps"])) // 10_000),
                "slippageBps": int(params["slippage_bps"]),
            }
        )
        return _parse_jupiter_response(payload, JupiterQuoteResponse, "quote")

    async def build_swap_tx(self, quote_response: Dict[str, Any], user_pubkey: str, opts: Dict[str, Any]) -> JupiterSwapResponse:
        self.request_factory.build_swap_request(quote_response, user_pubkey, **opts)
        if self.error_mode == "swap":
            return _parse_jupiter_response(self._swap_error, JupiterSwapResponse, "swap")
        payload = {
            "swapTransaction": build_unsigned_swap_transaction(user_pubkey),
            "lastValidBlockHeight": 1000,
            "prioritizationFeeLamports": 0,
        }
        return _parse_jupiter_response(payload, JupiterSwapResponse, "swap")


def get_jupiter_provider(settings: Optional[JupiterSettings] = None, fixture_dir: Optional[Path] = None):
    cfg = settings or JupiterSettings.from_env()
    if cfg.live:
        return JupiterProvider(cfg)
    return MockJupiterProvider(fixture_dir=fixture_dir)


__all__ = [
    "JupiterHttpClient",
    "JupiterProvider",
    "JupiterSettings",
    "MockJupiterProvider",
    "build_unsigned_swap_transaction",
    "get_jupiter_provider",
]
