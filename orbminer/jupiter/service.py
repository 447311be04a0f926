from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from orbminer.chain.codec import ORB_BASE_UNITS, from_base_units
from orbminer.core.exceptions import UpstreamBadResponse, UpstreamError
from orbminer.jupiter.request_factory import JupiterRequestError
from orbminer.jupiter.schemas import JupiterQuoteResponse, JupiterSwapResponse

logger = logging.getLogger(__name__)

STATUS_SUBMITTED = "submitted"
STATUS_SIMULATED = "simulated"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class QuoteParams:
    input_mint: str
    output_mint: str
    amount: int
    slippage_bps: int
    swap_mode: str = "ExactIn"
    only_direct_routes: Optional[bool] = None
    max_accounts: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "input_mint": self.input_mint,
            "output_mint": self.output_mint,
            "amount": int(self.amount),
            "slippage_bps": int(self.slippage_bps),
            "swap_mode": self.swap_mode,
        }
        if self.only_direct_routes is not None:
            payload["only_direct_routes"] = self.only_direct_routes
        if self.max_accounts is not None:
            payload["max_accounts"] = self.max_accounts
        return payload


@dataclass(frozen=True)
class SwapOptions:
    wrap_and_unwrap_sol: bool = True
    dynamic_compute_unit_limit: bool = True
    prioritization_fee_lamports: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "wrap_and_unwrap_sol": self.wrap_and_unwrap_sol,
            "dynamic_compute_unit_limit": self.dynamic_compute_unit_limit,
        }
        if self.prioritization_fee_lamports is not None:
            payload["prioritization_fee_lamports"] = self.prioritization_fee_lamports
        return payload


@dataclass(frozen=True)
class ExecutionResult:
    status: str
    message: str
    in_amount: int = 0
    out_amount: int = 0
    signature: Optional[str] = None

    @property
    def executed(self) -> bool:
        return self.status in {STATUS_SUBMITTED, STATUS_SIMULATED}


class SignedTransactionSink(Protocol):
    async def submit_signed(self, label: str, tx_bytes: bytes) -> Any:
        ...


def sign_swap_transaction(swap_transaction: str, keypair: Keypair) -> bytes:
    """Re-sign a base64 Jupiter swap transaction with the wallet keypair."""
    try:
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_transaction))
    except (ValueError, TypeError) as exc:
        raise UpstreamBadResponse("Jupiter swap transaction is not valid base64") from exc
    except Exception as exc:  # solders raises its own bincode error type
        raise UpstreamBadResponse(f"Jupiter swap transaction malformed: {exc}") from exc
    signed = VersionedTransaction(unsigned.message, [keypair])
    return bytes(signed)


class OrbPriceOracle:
    def __init__(self, provider, orb_mint: str, wsol_mint: str, slippage_bps: int = 50) -> None:
        self.provider = provider
        self.orb_mint = orb_mint
        self.wsol_mint = wsol_mint
        self.slippage_bps = slippage_bps

    async def price_in_sol(self) -> float:
        """SOL per whole ORB, or 0.0 when no quote is available."""
        params = QuoteParams(self.orb_mint, self.wsol_mint, ORB_BASE_UNITS, self.slippage_bps)
        try:
            quote = await self.provider.get_quote(params.as_dict())
        except (UpstreamError, JupiterRequestError) as exc:
            logger.warning("ORB price unavailable: %s", exc)
            return 0.0
        return from_base_units(quote.out_units)


class JupiterSwapService:
    def __init__(
        self,
        provider,
        orb_mint: str,
        wsol_mint: str,
        slippage_bps: int = 50,
        min_price_sol: float = 0.0,
        options: Optional[SwapOptions] = None,
    ) -> None:
        self.provider = provider
        self.orb_mint = orb_mint
        self.wsol_mint = wsol_mint
        self.slippage_bps = slippage_bps
        self.min_price_sol = min_price_sol
        self.options = options or SwapOptions()

    async def get_quote(self, params: QuoteParams) -> JupiterQuoteResponse:
        return await self.provider.get_quote(params.as_dict())

    async def build_swap_tx(self, quote: JupiterQuoteResponse, user_pubkey: str) -> JupiterSwapResponse:
        quote_payload = quote.model_dump(by_alias=True)
        return await self.provider.build_swap_tx(quote_payload, user_pubkey, self.options.as_dict())

    async def swap_orb_to_sol(self, amount: int, keypair: Keypair, sink: SignedTransactionSink) -> ExecutionResult:
        quote = await self.get_quote(QuoteParams(self.orb_mint, self.wsol_mint, int(amount), self.slippage_bps))
        in_amount, out_amount = quote.in_units, quote.out_units
        if self.min_price_sol > 0 and quote.price < self.min_price_sol:
            logger.info("Swap skipped: ORB quoted at %.9f SOL, floor %.9f", quote.price, self.min_price_sol)
            return ExecutionResult(STATUS_SKIPPED, "price below floor", in_amount, out_amount)

        swap = await self.build_swap_tx(quote, str(keypair.pubkey()))
        signed = sign_swap_transaction(swap.swap_transaction, keypair)
        submission = await sink.submit_signed("swap", signed)
        status = STATUS_SIMULATED if getattr(submission, "simulated", False) else STATUS_SUBMITTED
        logger.info(
            "Swapped %.4f ORB for ~%.6f SOL (%s)", from_base_units(in_amount), from_base_units(out_amount), status
        )
        return ExecutionResult(
            status,
            "swap confirmed" if status == STATUS_SUBMITTED else "dry run",
            in_amount,
            out_amount,
            signature=getattr(submission, "signature", None),
        )


__all__ = [
    "ExecutionResult",
    "JupiterSwapService",
    "OrbPriceOracle",
    "QuoteParams",
    "STATUS_SIMULATED",
    "STATUS_SKIPPED",
    "STATUS_SUBMITTED",
    "SignedTransactionSink",
    "SwapOptions",
    "sign_swap_transaction",
]
