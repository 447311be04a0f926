from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PHASE_IDLE = "Idle"
PHASE_EVALUATING = "Evaluating"
PHASE_DEPLOYING = "Deploying"
PHASE_AWAITING_CONFIRMATION = "AwaitingConfirmation"
PHASE_DEPLOYED = "Deployed"
PHASE_FAILED_RETRYABLE = "FailedRetryable"
PHASE_FAILED_FATAL = "FailedFatal"

_TERMINAL = {PHASE_DEPLOYED, PHASE_FAILED_RETRYABLE, PHASE_FAILED_FATAL}

ALLOWED_TRANSITIONS = {
    PHASE_IDLE: {PHASE_EVALUATING},
    PHASE_EVALUATING: {PHASE_IDLE, PHASE_DEPLOYING, PHASE_FAILED_RETRYABLE, PHASE_FAILED_FATAL},
    PHASE_DEPLOYING: {PHASE_AWAITING_CONFIRMATION, PHASE_FAILED_RETRYABLE, PHASE_FAILED_FATAL},
    PHASE_AWAITING_CONFIRMATION: {PHASE_DEPLOYED, PHASE_FAILED_RETRYABLE, PHASE_FAILED_FATAL},
    PHASE_DEPLOYED: {PHASE_IDLE},
    PHASE_FAILED_RETRYABLE: {PHASE_IDLE},
    PHASE_FAILED_FATAL: {PHASE_IDLE},
}

RESULT_DEPLOYED = "Deployed"
RESULT_SKIPPED_BELOW_THRESHOLD = "SkippedBelowThreshold"
RESULT_SKIPPED_INSUFFICIENT_BALANCE = "SkippedInsufficientBalance"
RESULT_SKIPPED_ALREADY_DEPLOYED = "SkippedAlreadyDeployed"
RESULT_SKIPPED_DISABLED = "SkippedDisabled"
RESULT_BOOTSTRAPPED = "Bootstrapped"
RESULT_CHECKPOINTED = "Checkpointed"
RESULT_CLAIMED = "Claimed"
RESULT_SWAPPED = "Swapped"
RESULT_FAILED = "Failed"


class InvalidTransition(RuntimeError):
    pass


@dataclass
class WalletLoopState:
    wallet: str
    phase: str = PHASE_IDLE
    last_deployed_round_id: Optional[int] = None
    last_rewards_check: float = 0.0
    ticks: int = 0
    consecutive_failures: int = 0
    bootstrap_simulated: bool = False

    def already_deployed(self, round_id: int) -> bool:
        return self.last_deployed_round_id is not None and self.last_deployed_round_id == round_id


def advance(state: WalletLoopState, phase: str) -> None:
    if phase not in ALLOWED_TRANSITIONS.get(state.phase, set()):
        raise InvalidTransition(f"{state.phase} -> {phase} is not allowed")
    state.phase = phase


def finish_cycle(state: WalletLoopState) -> None:
    """Return to Idle from wherever the cycle stopped."""
    if state.phase == PHASE_IDLE:
        return
    if state.phase in _TERMINAL or state.phase == PHASE_EVALUATING:
        advance(state, PHASE_IDLE)
        return
    advance(state, PHASE_FAILED_RETRYABLE)
    advance(state, PHASE_IDLE)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class OperationCycleResult:
    kind: str
    wallet: str
    reason: str = ""
    round_id: Optional[int] = None
    amount: int = 0
    signature: Optional[str] = None
    simulated: bool = False
    retryable: Optional[bool] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_now_iso)

    @property
    def failed(self) -> bool:
        return self.kind == RESULT_FAILED

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {key: value for key, value in payload.items() if value is not None and value != {}}


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransition",
    "OperationCycleResult",
    "PHASE_AWAITING_CONFIRMATION",
    "PHASE_DEPLOYED",
    "PHASE_DEPLOYING",
    "PHASE_EVALUATING",
    "PHASE_FAILED_FATAL",
    "PHASE_FAILED_RETRYABLE",
    "PHASE_IDLE",
    "RESULT_BOOTSTRAPPED",
    "RESULT_CHECKPOINTED",
    "RESULT_CLAIMED",
    "RESULT_DEPLOYED",
    "RESULT_FAILED",
    "RESULT_SKIPPED_ALREADY_DEPLOYED",
    "RESULT_SKIPPED_BELOW_THRESHOLD",
    "RESULT_SKIPPED_DISABLED",
    "RESULT_SKIPPED_INSUFFICIENT_BALANCE",
    "RESULT_SWAPPED",
    "WalletLoopState",
    "advance",
    "finish_cycle",
]
