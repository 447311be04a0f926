from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from orbminer.core.exceptions import ConfigurationError

_CONFIG_CACHE: Dict[str, Any] | None = None

DEPLOYMENT_STRATEGIES = (
    "ultra_conservative",
    "balanced",
    "aggressive",
    "kelly_optimized",
    "manual",
    "fixed_rounds",
    "percentage",
    "auto_doubling",
)
CLAIM_STRATEGIES = ("auto", "manual")
FEE_LEVELS = ("low", "medium", "high", "veryHigh")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    root = repo_root()
    env_path = root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = Path(path) if path else Path(os.getenv("ORBMINER_CONFIG", root / "config" / "default.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    return data


def get_config(refresh: bool = False) -> Dict[str, Any]:
    global _CONFIG_CACHE
    if refresh or _CONFIG_CACHE is None:
        _CONFIG_CACHE = load_config()
    return _CONFIG_CACHE


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return bool(default)
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_float(name: str, default: Any) -> float:
    raw = os.getenv(name)
    value = default if raw is None or not raw.strip() else raw.strip()
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _env_int(name: str, default: Any) -> int:
    raw = os.getenv(name)
    value = default if raw is None or not raw.strip() else raw.strip()
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _env_choice(name: str, default: str, choices: tuple) -> str:
    raw = os.getenv(name)
    value = (raw.strip() if raw and raw.strip() else str(default)).strip()
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class BotSettings:
    mining_enabled: bool
    dry_run: bool
    strategy: str
    motherload_threshold: float
    min_sol_balance: float
    manual_amount_per_round: float
    target_rounds: int
    percentage: float
    claim_strategy: str
    claim_threshold_sol: float
    claim_threshold_orb: float
    staking_claim_threshold_orb: float
    auto_swap_enabled: bool
    auto_swap_threshold: float
    min_orb_to_keep: float
    min_orb_swap_amount: float
    min_orb_price_sol: float
    slippage_bps: int
    check_round_interval_sec: float
    rewards_check_interval_sec: float
    deploy_max_retries: int
    confirm_timeout_sec: float
    confirm_poll_sec: float
    backoff_base_sec: float
    backoff_max_sec: float
    priority_fee_level: str
    signer_keypair_path: str

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "BotSettings":
        cfg = cfg if cfg is not None else get_config()
        mining = cfg.get("mining", {})
        rewards = cfg.get("rewards", {})
        swap = cfg.get("swap", {})
        engine = cfg.get("engine", {})
        fees = cfg.get("fees", {})

        settings = cls(
            mining_enabled=_env_bool("MINING_ENABLED", mining.get("enabled", True)),
            dry_run=_env_bool("DRY_RUN", mining.get("dry_run", False)),
            strategy=_env_choice(
                "DEPLOYMENT_AMOUNT_STRATEGY", mining.get("strategy", "balanced"), DEPLOYMENT_STRATEGIES
            ),
            motherload_threshold=_env_float("MOTHERLOAD_THRESHOLD", mining.get("motherload_threshold", 50)),
            min_sol_balance=_env_float("MIN_SOL_BALANCE", mining.get("min_sol_balance", 0.1)),
            manual_amount_per_round=_env_float(
                "MANUAL_AMOUNT_PER_ROUND", mining.get("manual_amount_per_round", 0.01)
            ),
            target_rounds=_env_int("TARGET_ROUNDS", mining.get("target_rounds", 100)),
            percentage=_env_float("DEPLOYMENT_PERCENTAGE", mining.get("percentage", 1.0)),
            claim_strategy=_env_choice("CLAIM_STRATEGY", rewards.get("claim_strategy", "auto"), CLAIM_STRATEGIES),
            claim_threshold_sol=_env_float("CLAIM_THRESHOLD_SOL", rewards.get("claim_threshold_sol", 0.1)),
            claim_threshold_orb=_env_float("CLAIM_THRESHOLD_ORB", rewards.get("claim_threshold_orb", 1.0)),
            staking_claim_threshold_orb=_env_float(
                "STAKING_CLAIM_THRESHOLD_ORB", rewards.get("staking_claim_threshold_orb", 0.5)
            ),
            auto_swap_enabled=_env_bool("AUTO_SWAP_ENABLED", swap.get("enabled", True)),
            auto_swap_threshold=_env_float("AUTO_SWAP_THRESHOLD", swap.get("threshold_orb", 0.1)),
            min_orb_to_keep=_env_float("MIN_ORB_TO_KEEP", swap.get("min_orb_to_keep", 5.0)),
            min_orb_swap_amount=_env_float("MIN_ORB_SWAP_AMOUNT", swap.get("min_swap_amount", 0.1)),
            min_orb_price_sol=_env_float("MIN_ORB_PRICE_SOL", swap.get("min_orb_price_sol", 0.0)),
            slippage_bps=_env_int("SLIPPAGE_BPS", swap.get("slippage_bps", 50)),
            check_round_interval_sec=_env_float(
                "CHECK_ROUND_INTERVAL_SEC", engine.get("check_round_interval_sec", 10)
            ),
            rewards_check_interval_sec=_env_float(
                "REWARDS_CHECK_INTERVAL_SEC", engine.get("rewards_check_interval_sec", 0)
            ),
            deploy_max_retries=_env_int("DEPLOY_MAX_RETRIES", engine.get("deploy_max_retries", 3)),
            confirm_timeout_sec=_env_float("CONFIRM_TIMEOUT_SEC", engine.get("confirm_timeout_sec", 60)),
            confirm_poll_sec=float(engine.get("confirm_poll_sec", 2.0)),
            backoff_base_sec=float(engine.get("backoff_base_sec", 1.0)),
            backoff_max_sec=float(engine.get("backoff_max_sec", 30.0)),
            priority_fee_level=_env_choice("PRIORITY_FEE_LEVEL", fees.get("level", "medium"), FEE_LEVELS),
            signer_keypair_path=os.getenv("SIGNER_KEYPAIR_PATH", "").strip(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.motherload_threshold < 0:
            raise ConfigurationError("MOTHERLOAD_THRESHOLD must be >= 0")
        if self.min_sol_balance < 0:
            raise ConfigurationError("MIN_SOL_BALANCE must be >= 0")
        if self.deploy_max_retries < 0:
            raise ConfigurationError("DEPLOY_MAX_RETRIES must be >= 0")
        if self.check_round_interval_sec <= 0:
            raise ConfigurationError("CHECK_ROUND_INTERVAL_SEC must be > 0")
        if self.confirm_timeout_sec <= 0:
            raise ConfigurationError("CONFIRM_TIMEOUT_SEC must be > 0")
        if not 0 <= self.slippage_bps <= 10_000:
            raise ConfigurationError("SLIPPAGE_BPS must be between 0 and 10000")


__all__ = [
    "BotSettings",
    "CLAIM_STRATEGIES",
    "DEPLOYMENT_STRATEGIES",
    "FEE_LEVELS",
    "get_config",
    "load_config",
    "repo_root",
]
