from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JupiterSwapInfo(BaseModel):
    amm_key: str = Field(alias="ammKey")
    label: Optional[str] = None
    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: str = Field(alias="inAmount")
    out_amount: str = Field(alias="outAmount")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class JupiterRoutePlan(BaseModel):
    swap_info: JupiterSwapInfo = Field(alias="swapInfo")
    percent: int

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class JupiterQuoteResponse(BaseModel):
    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: str = Field(alias="inAmount")
    out_amount: str = Field(alias="outAmount")
    other_amount_threshold: str = Field(alias="otherAmountThreshold")
    swap_mode: str = Field(alias="swapMode")
    slippage_bps: int = Field(alias="slippageBps")
    price_impact_pct: str = Field(alias="priceImpactPct")
    route_plan: List[JupiterRoutePlan] = Field(default_factory=list, alias="routePlan")
    context_slot: Optional[int] = Field(default=None, alias="contextSlot")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def in_units(self) -> int:
        return int(self.in_amount)

    @property
    def out_units(self) -> int:
        return int(self.out_amount)

    @property
    def min_out_units(self) -> int:
        """Worst-case output after slippage."""
        return int(self.other_amount_threshold)

    @property
    def price(self) -> float:
        """Output units received per input unit."""
        return self.out_units / self.in_units if self.in_units else 0.0


class JupiterSwapResponse(BaseModel):
    swap_transaction: str = Field(alias="swapTransaction")
    last_valid_block_height: Optional[int] = Field(default=None, alias="lastValidBlockHeight")
    prioritization_fee_lamports: Optional[int] = Field(default=None, alias="prioritizationFeeLamports")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


__all__ = ["JupiterQuoteResponse", "JupiterRoutePlan", "JupiterSwapInfo", "JupiterSwapResponse"]
