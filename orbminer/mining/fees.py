from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from orbminer.chain.gateway import ChainGateway
from orbminer.config import get_config
from orbminer.core.exceptions import TransientNetworkError, UpstreamBadResponse

logger = logging.getLogger(__name__)

BASE_SIGNATURE_FEE_LAMPORTS = 5_000
FEE_LEVEL_PERCENTILES = {"low": 25, "medium": 50, "high": 75, "veryHigh": 95}
DEFAULT_COMPUTE_UNITS = {
    "deploy": 300_000,
    "bootstrap": 200_000,
    "checkpoint": 200_000,
    "claim_sol": 50_000,
    "claim_orb": 150_000,
    "claim_yield": 150_000,
}


@dataclass(frozen=True)
class FeeEstimate:
    compute_unit_price: int
    compute_unit_limit: int

    @property
    def total_fee_lamports(self) -> int:
        return math.ceil(self.compute_unit_price * self.compute_unit_limit / 1_000_000) + BASE_SIGNATURE_FEE_LAMPORTS


def percentile_fee(samples: List[int], percentile: int) -> Optional[int]:
    values = sorted(fee for fee in samples if fee > 0)
    if not values:
        return None
    index = int(math.floor(percentile / 100 * len(values)))
    return values[min(index, len(values) - 1)]


class PriorityFeeEstimator:
    def __init__(
        self,
        gateway: ChainGateway,
        level: str = "medium",
        min_price: int = 100,
        max_price: int = 50_000,
        compute_units: Optional[Dict[str, int]] = None,
    ) -> None:
        if level not in FEE_LEVEL_PERCENTILES:
            raise ValueError(f"unknown fee level {level}")
        self.gateway = gateway
        self.level = level
        self.min_price = int(min_price)
        self.max_price = max(int(max_price), self.min_price)
        self.compute_units = dict(DEFAULT_COMPUTE_UNITS)
        self.compute_units.update(compute_units or {})

    @classmethod
    def from_config(cls, gateway: ChainGateway, level: str, cfg: Optional[Dict[str, Any]] = None) -> "PriorityFeeEstimator":
        fees = (cfg if cfg is not None else get_config()).get("fees", {})
        return cls(
            gateway,
            level=level,
            min_price=int(fees.get("min_micro_lamports", 100)),
            max_price=int(fees.get("max_micro_lamports", 50_000)),
            compute_units={key: int(value) for key, value in (fees.get("compute_units") or {}).items()},
        )

    def compute_unit_limit(self, label: str) -> int:
        return self.compute_units.get(label, 200_000)

    def fallback_price(self) -> int:
        return {
            "low": self.min_price,
            "medium": (self.min_price + self.max_price) // 2,
            "high": int(self.max_price * 0.75),
            "veryHigh": self.max_price,
        }[self.level]

    def _clamp(self, price: int) -> int:
        return max(self.min_price, min(int(price), self.max_price))

    async def estimate(self, label: str, accounts: Optional[List[str]] = None) -> FeeEstimate:
        limit = self.compute_unit_limit(label)
        price: Optional[int] = None
        try:
            samples = await self.gateway.get_recent_prioritization_fees(accounts)
            price = percentile_fee(samples, FEE_LEVEL_PERCENTILES[self.level])
        except (TransientNetworkError, UpstreamBadResponse) as exc:
            logger.warning("Priority fee lookup failed, using fallback: %s", exc)
        if price is None:
            price = self.fallback_price()
        return FeeEstimate(compute_unit_price=self._clamp(price), compute_unit_limit=limit)

    def max_fee_lamports(self, label: str) -> int:
        return FeeEstimate(self.max_price, self.compute_unit_limit(label)).total_fee_lamports


__all__ = ["FeeEstimate", "PriorityFeeEstimator", "percentile_fee"]
