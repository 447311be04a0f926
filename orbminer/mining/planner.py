from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from orbminer.chain.codec import ORB_BASE_UNITS, to_base_units
from orbminer.config import DEPLOYMENT_STRATEGIES, BotSettings, get_config, repo_root
from orbminer.core.exceptions import ConfigurationError
from orbminer.core.fixtures import load_versioned_yaml

CURVES_VERSION = 1
CURVE_STRATEGIES = ("ultra_conservative", "balanced", "aggressive")

REASON_DEPLOY = "Deploy"
REASON_INSUFFICIENT_BALANCE = "InsufficientBalance"


@dataclass(frozen=True)
class CurveBucket:
    min_motherload: float
    rounds: int


@dataclass(frozen=True)
class StrategyCurves:
    version: int
    curves: Dict[str, Tuple[CurveBucket, ...]]

    def rounds_for(self, strategy: str, motherload_orb: float) -> int:
        buckets = self.curves.get(strategy)
        if not buckets:
            raise ConfigurationError(f"no round curve configured for {strategy}")
        for bucket in buckets:
            if motherload_orb >= bucket.min_motherload:
                return bucket.rounds
        return buckets[-1].rounds


def load_strategy_curves(path: str | Path | None = None, expected_version: int = CURVES_VERSION) -> StrategyCurves:
    curve_path = Path(path) if path else repo_root() / "config" / "strategy_curves.yaml"
    try:
        payload = load_versioned_yaml(curve_path, expected_version=expected_version)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot load strategy curves: {exc}") from exc
    if not isinstance(payload, dict) or "curves" not in payload:
        raise ConfigurationError(f"{curve_path.name} has no curves section")

    curves: Dict[str, Tuple[CurveBucket, ...]] = {}
    for name, rows in (payload.get("curves") or {}).items():
        buckets = []
        for row in rows or []:
            rounds = int(row["rounds"])
            if rounds <= 0:
                raise ConfigurationError(f"{name}: rounds must be positive")
            buckets.append(CurveBucket(min_motherload=float(row["min_motherload"]), rounds=rounds))
        if not buckets:
            raise ConfigurationError(f"{name}: curve is empty")
        buckets.sort(key=lambda bucket: bucket.min_motherload, reverse=True)
        curves[str(name)] = tuple(buckets)
    missing = [name for name in CURVE_STRATEGIES if name not in curves]
    if missing:
        raise ConfigurationError(f"strategy curves missing: {', '.join(missing)}")
    return StrategyCurves(version=int(payload.get("version", expected_version)), curves=curves)


@dataclass(frozen=True)
class KellyParameters:
    win_probability: float = 0.04
    base_payout: float = 20.0
    motherload_scale: float = 50.0
    fraction: float = 0.25
    min_fraction: float = 0.001
    max_fraction: float = 0.05

    def stake_fraction(self, motherload_orb: float) -> float:
        payout = self.base_payout + motherload_orb / self.motherload_scale
        p = self.win_probability
        kelly = (payout * p - (1.0 - p)) / payout
        return min(self.max_fraction, max(self.min_fraction, kelly * self.fraction))


@dataclass(frozen=True)
class PlannerConfig:
    strategy: str
    manual_amount: int
    target_rounds: int
    percentage: float
    doubling_start: int = 1_000_000
    doubling_interval: float = 100.0
    kelly: KellyParameters = KellyParameters()

    @classmethod
    def from_settings(cls, settings: BotSettings, cfg: Optional[Dict[str, Any]] = None) -> "PlannerConfig":
        mining = (cfg if cfg is not None else get_config()).get("mining", {})
        doubling = mining.get("auto_doubling", {})
        kelly = mining.get("kelly", {})
        config = cls(
            strategy=settings.strategy,
            manual_amount=to_base_units(settings.manual_amount_per_round),
            target_rounds=int(settings.target_rounds),
            percentage=float(settings.percentage),
            doubling_start=to_base_units(doubling.get("start_amount", 0.001)),
            doubling_interval=float(doubling.get("motherload_interval", 100)),
            kelly=KellyParameters(**{key: float(value) for key, value in kelly.items()}),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.strategy not in DEPLOYMENT_STRATEGIES:
            raise ConfigurationError(f"unknown deployment strategy {self.strategy}")
        if self.strategy == "manual" and self.manual_amount <= 0:
            raise ConfigurationError("MANUAL_AMOUNT_PER_ROUND must be positive")
        if self.strategy == "fixed_rounds" and self.target_rounds <= 0:
            raise ConfigurationError("TARGET_ROUNDS must be positive")
        if self.strategy == "percentage" and not 0 < self.percentage <= 100:
            raise ConfigurationError("DEPLOYMENT_PERCENTAGE must be in (0, 100]")
        if self.strategy == "auto_doubling" and (self.doubling_start <= 0 or self.doubling_interval <= 0):
            raise ConfigurationError("auto_doubling start_amount and motherload_interval must be positive")
        if self.strategy == "kelly_optimized":
            k = self.kelly
            if not 0 < k.win_probability < 1 or k.base_payout <= 0 or k.motherload_scale <= 0:
                raise ConfigurationError("kelly parameters out of range")
            if not 0 < k.min_fraction <= k.max_fraction <= 1 or k.fraction <= 0:
                raise ConfigurationError("kelly fractions out of range")


@dataclass(frozen=True)
class DeploymentPlan:
    strategy: str
    amount_per_round: int
    estimated_rounds: int


@dataclass(frozen=True)
class DeploymentDecision:
    should_deploy: bool
    amount_lamports: int
    reason: str
    estimated_rounds: int = 0
    square_mask: int = 0


class DeploymentPlanner:
    def __init__(self, config: PlannerConfig, curves: Optional[StrategyCurves] = None) -> None:
        config.validate()
        self.config = config
        self.curves = curves
        if config.strategy in CURVE_STRATEGIES and curves is None:
            self.curves = load_strategy_curves()

    def _strategy_rounds(self, strategy: str, motherload_orb: float) -> Optional[int]:
        """Round count the strategy targets, or None when it sizes by amount instead."""
        if strategy in CURVE_STRATEGIES:
            if self.curves is None:
                raise ConfigurationError("strategy curves not loaded")
            return self.curves.rounds_for(strategy, motherload_orb)
        if strategy == "fixed_rounds":
            return self.config.target_rounds
        if strategy == "percentage":
            return int(math.floor(100 / self.config.percentage))
        return None

    def _raw_amount(self, strategy: str, motherload_orb: float, remaining: int) -> int:
        cfg = self.config
        if strategy in CURVE_STRATEGIES or strategy == "fixed_rounds":
            return remaining // self._strategy_rounds(strategy, motherload_orb)
        if strategy == "kelly_optimized":
            return int(remaining * cfg.kelly.stake_fraction(motherload_orb))
        if strategy == "manual":
            return cfg.manual_amount
        if strategy == "percentage":
            return int(remaining * cfg.percentage / 100)
        if strategy == "auto_doubling":
            return cfg.doubling_start * 2 ** int(math.floor(motherload_orb / cfg.doubling_interval))
        raise ConfigurationError(f"unknown deployment strategy {strategy}")

    def plan(self, motherload: int, remaining_balance: int) -> DeploymentPlan:
        """Map (motherload, remaining balance) to a per-round amount in [1, remaining]."""
        strategy = self.config.strategy
        remaining = int(remaining_balance)
        if remaining <= 0:
            return DeploymentPlan(strategy, 0, 0)
        motherload_orb = motherload / ORB_BASE_UNITS
        raw = self._raw_amount(strategy, motherload_orb, remaining)
        amount = max(1, min(int(raw), remaining))
        rounds = self._strategy_rounds(strategy, motherload_orb)
        return DeploymentPlan(strategy, amount, rounds if rounds is not None else remaining // amount)

    def decide(self, motherload: int, remaining_balance: int, max_fee_lamports: int) -> DeploymentDecision:
        plan = self.plan(motherload, remaining_balance)
        if plan.amount_per_round <= 0 or plan.amount_per_round + max_fee_lamports > remaining_balance:
            return DeploymentDecision(False, 0, REASON_INSUFFICIENT_BALANCE, plan.estimated_rounds)
        return DeploymentDecision(True, plan.amount_per_round, REASON_DEPLOY, plan.estimated_rounds)


__all__ = [
    "CURVES_VERSION",
    "CurveBucket",
    "DeploymentDecision",
    "DeploymentPlan",
    "DeploymentPlanner",
    "KellyParameters",
    "PlannerConfig",
    "REASON_DEPLOY",
    "REASON_INSUFFICIENT_BALANCE",
    "StrategyCurves",
    "load_strategy_curves",
]
