from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from solders.keypair import Keypair

from mock_api.data_seed import SimulatedProgram
from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.gateway import ChainGateway
from orbminer.chain.rpc import RpcSettings, SolanaRpcGateway
from orbminer.config import BotSettings
from orbminer.core.exceptions import ConfigurationError
from orbminer.jupiter.service import JupiterSwapService, OrbPriceOracle
from orbminer.mining.fees import PriorityFeeEstimator
from orbminer.mining.planner import DeploymentPlanner, PlannerConfig
from orbminer.mining.profitability import EvParameters, ProfitabilityEvaluator
from orbminer.mining.rewards import RewardMonitor, RewardThresholds
from orbminer.orchestrator.runner import OperationLoop
from orbminer.orchestrator.state_machine import OperationCycleResult
from orbminer.orchestrator.submitter import TransactionSubmitter

CHAIN_CHOICES = ("rpc", "mock")


def load_keypair(path: str | Path) -> Keypair:
    keypair_path = Path(path).expanduser()
    try:
        data = json.loads(keypair_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"cannot read keypair {keypair_path}: {exc}") from exc
    if not isinstance(data, list) or len(data) != 64:
        raise ConfigurationError("SIGNER_KEYPAIR_PATH must point to a 64-byte keypair JSON array")
    try:
        return Keypair.from_bytes(bytes(data))
    except ValueError as exc:
        raise ConfigurationError(f"invalid keypair bytes: {exc}") from exc


def resolve_chain_choice(choice: Optional[str] = None) -> str:
    value = (choice or os.getenv("ORBMINER_CHAIN", "")).strip().lower()
    if not value:
        value = "rpc" if RpcSettings.from_env().live else "mock"
    if value not in CHAIN_CHOICES:
        raise ValueError(f"Unknown chain gateway: {value}")
    return value


def build_gateway(
    choice: str,
    addresses: ProgramAddresses,
    settings: BotSettings,
    wallet: Optional[str] = None,
) -> ChainGateway:
    if choice == "rpc":
        return SolanaRpcGateway(addresses.program_id, RpcSettings.from_env(), poll_interval=settings.confirm_poll_sec)
    if choice == "mock":
        program = SimulatedProgram(addresses)
        if wallet:
            program.seed_wallet(wallet, sol=2.0, rewards_sol=0.15, rewards_orb=1.2, staked_orb=10.0)
        return program.gateway()
    raise ValueError(f"Unknown chain gateway: {choice}")


def build_loop(
    settings: BotSettings,
    cfg: Dict[str, Any],
    gateway: ChainGateway,
    keypair: Keypair,
    jupiter_provider,
    recorder: Optional[Callable[[OperationCycleResult], None]] = None,
    shutdown: Optional[asyncio.Event] = None,
) -> OperationLoop:
    addresses = ProgramAddresses.from_config(cfg)
    shutdown = shutdown or asyncio.Event()
    fee_estimator = PriorityFeeEstimator.from_config(gateway, settings.priority_fee_level, cfg)
    submitter = TransactionSubmitter(
        gateway,
        keypair,
        fee_estimator,
        max_retries=settings.deploy_max_retries,
        backoff_base=settings.backoff_base_sec,
        backoff_max=settings.backoff_max_sec,
        confirm_timeout=settings.confirm_timeout_sec,
        dry_run=settings.dry_run,
        shutdown=shutdown,
    )
    slippage = settings.slippage_bps
    oracle = OrbPriceOracle(jupiter_provider, addresses.orb_mint, addresses.wsol_mint, slippage_bps=slippage)
    swap_service = JupiterSwapService(
        jupiter_provider,
        addresses.orb_mint,
        addresses.wsol_mint,
        slippage_bps=slippage,
        min_price_sol=settings.min_orb_price_sol,
    )
    return OperationLoop(
        settings=settings,
        gateway=gateway,
        addresses=addresses,
        submitter=submitter,
        evaluator=ProfitabilityEvaluator(EvParameters.from_config(settings.motherload_threshold, cfg)),
        planner=DeploymentPlanner(PlannerConfig.from_settings(settings, cfg)),
        monitor=RewardMonitor(RewardThresholds.from_settings(settings)),
        fee_estimator=fee_estimator,
        price_oracle=oracle,
        swap_service=swap_service,
        recorder=recorder,
        shutdown=shutdown,
    )


__all__ = ["CHAIN_CHOICES", "build_gateway", "build_loop", "load_keypair", "resolve_chain_choice"]
