from orbminer.jupiter.provider import (
    JupiterHttpClient,
    JupiterProvider,
    JupiterSettings,
    MockJupiterProvider,
    get_jupiter_provider,
)
from orbminer.jupiter.service import ExecutionResult, JupiterSwapService, OrbPriceOracle, QuoteParams, SwapOptions

__all__ = [
    "ExecutionResult",
    "JupiterHttpClient",
    "JupiterProvider",
    "JupiterSettings",
    "JupiterSwapService",
    "MockJupiterProvider",
    "OrbPriceOracle",
    "QuoteParams",
    "SwapOptions",
    "get_jupiter_provider",
]
