from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.codec import (
    AccountCodec,
    AutomationState,
    BoardState,
    MinerState,
    RoundState,
    StakeState,
    TreasuryState,
    from_base_units,
    to_base_units,
)
from orbminer.chain.gateway import ChainGateway
from orbminer.chain.instructions import InstructionBuilder
from orbminer.config import BotSettings
from orbminer.core.exceptions import (
    BalanceInsufficient,
    ChainRejection,
    ConfigurationError,
    DecodeError,
    OperationCancelled,
    TransientNetworkError,
    UpstreamBadResponse,
)
from orbminer.jupiter.service import STATUS_SIMULATED
from orbminer.mining.fees import PriorityFeeEstimator
from orbminer.mining.planner import DeploymentPlanner
from orbminer.mining.profitability import ProfitabilityEvaluator
from orbminer.mining.rewards import RewardMonitor, RewardStatus
from orbminer.orchestrator.state_machine import (
    ALLOWED_TRANSITIONS,
    PHASE_AWAITING_CONFIRMATION,
    PHASE_DEPLOYED,
    PHASE_DEPLOYING,
    PHASE_EVALUATING,
    PHASE_FAILED_FATAL,
    PHASE_FAILED_RETRYABLE,
    RESULT_BOOTSTRAPPED,
    RESULT_CHECKPOINTED,
    RESULT_CLAIMED,
    RESULT_DEPLOYED,
    RESULT_FAILED,
    RESULT_SKIPPED_ALREADY_DEPLOYED,
    RESULT_SKIPPED_BELOW_THRESHOLD,
    RESULT_SKIPPED_DISABLED,
    RESULT_SKIPPED_INSUFFICIENT_BALANCE,
    RESULT_SWAPPED,
    OperationCycleResult,
    WalletLoopState,
    advance,
    finish_cycle,
)
from orbminer.orchestrator.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    async def price_in_sol(self) -> float:
        ...


@dataclass(frozen=True)
class ChainSnapshot:
    board: BoardState
    round: Optional[RoundState]
    miner: Optional[MinerState]
    automation: Optional[AutomationState]
    stake: Optional[StakeState]
    treasury: Optional[TreasuryState]
    wallet_lamports: int
    wallet_orb: int


class OperationLoop:
    """Polling loop for one wallet: deploy branch plus the claim/swap sub-cycle."""

    def __init__(
        self,
        settings: BotSettings,
        gateway: ChainGateway,
        addresses: ProgramAddresses,
        submitter: TransactionSubmitter,
        evaluator: ProfitabilityEvaluator,
        planner: DeploymentPlanner,
        monitor: RewardMonitor,
        fee_estimator: PriorityFeeEstimator,
        price_oracle: PriceOracle,
        swap_service=None,
        codec: Optional[AccountCodec] = None,
        recorder: Optional[Callable[[OperationCycleResult], None]] = None,
        shutdown: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.addresses = addresses
        self.builder = InstructionBuilder(addresses)
        self.submitter = submitter
        self.evaluator = evaluator
        self.planner = planner
        self.monitor = monitor
        self.fee_estimator = fee_estimator
        self.price_oracle = price_oracle
        self.swap_service = swap_service
        self.codec = codec or AccountCodec()
        self.recorder = recorder
        self.shutdown = shutdown or submitter.shutdown
        self.clock = clock
        self.wallet = submitter.wallet
        self.state = WalletLoopState(wallet=self.wallet)
        self.min_sol_balance = to_base_units(settings.min_sol_balance)

    # lifecycle

    def request_shutdown(self) -> None:
        self.shutdown.set()

    async def run(self, max_ticks: Optional[int] = None) -> List[OperationCycleResult]:
        history: List[OperationCycleResult] = []
        ticks = 0
        while not self.shutdown.is_set():
            history.extend(await self.tick())
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=self.settings.check_round_interval_sec)
            except asyncio.TimeoutError:
                continue
        logger.info("Loop for %s stopped after %d ticks", self.wallet, ticks)
        return history

    # chain reads

    def _ensure_running(self) -> None:
        if self.shutdown.is_set():
            raise OperationCancelled("shutdown requested")

    async def _read(self, kind: str, address: str):
        self._ensure_running()
        raw = await self.gateway.get_account(address)
        if raw is None:
            return None
        return self.codec.decode(kind, raw)

    async def fetch_snapshot(self) -> ChainSnapshot:
        board = await self._read("board", self.addresses.board())
        if board is None:
            raise ConfigurationError("board account not found; check chain.program_id")
        round_state = await self._read("round", self.addresses.round(board.round_id))
        miner = await self._read("miner", self.addresses.miner(self.wallet))
        automation = await self._read("automation", self.addresses.automation(self.wallet))
        stake = await self._read("stake", self.addresses.stake(self.wallet))
        treasury = await self._read("treasury", self.addresses.treasury())
        self._ensure_running()
        lamports = await self.gateway.get_balance(self.wallet)
        self._ensure_running()
        wallet_orb = await self.gateway.get_token_balance(self.wallet, self.addresses.orb_mint)
        return ChainSnapshot(board, round_state, miner, automation, stake, treasury, int(lamports), int(wallet_orb))

    # tick

    def _result(self, kind: str, **kwargs) -> OperationCycleResult:
        result = OperationCycleResult(kind=kind, wallet=self.wallet, **kwargs)
        if result.failed:
            logger.warning("%s %s: %s", self.wallet[:8], kind, result.reason)
        else:
            logger.info("%s %s %s", self.wallet[:8], kind, result.reason)
        if self.recorder is not None:
            self.recorder(result)
        return result

    def _fail(self, exc: BaseException, retryable: bool, **kwargs) -> OperationCycleResult:
        target = PHASE_FAILED_RETRYABLE if retryable else PHASE_FAILED_FATAL
        if target in ALLOWED_TRANSITIONS[self.state.phase]:
            advance(self.state, target)
        self.state.consecutive_failures += 1
        reason = f"{type(exc).__name__}: {exc}"
        return self._result(RESULT_FAILED, reason=reason, retryable=retryable, **kwargs)

    def _classify(self, exc: BaseException, **kwargs) -> OperationCycleResult:
        if isinstance(exc, (DecodeError, ConfigurationError, ChainRejection, UpstreamBadResponse)):
            return self._fail(exc, retryable=False, **kwargs)
        return self._fail(exc, retryable=True, **kwargs)

    async def tick(self) -> List[OperationCycleResult]:
        results: List[OperationCycleResult] = []
        self.state.ticks += 1
        advance(self.state, PHASE_EVALUATING)
        snapshot: Optional[ChainSnapshot] = None
        try:
            snapshot = await self.fetch_snapshot()
            maintenance = await self._maintain(snapshot)
            if maintenance is not None:
                results.append(maintenance)
            if maintenance is not None and maintenance.failed and snapshot.miner is None:
                logger.info("%s deploy skipped: miner account not created", self.wallet[:8])
            else:
                results.append(await self._deploy_branch(snapshot))
        except OperationCancelled as exc:
            results.append(self._fail(exc, retryable=True))
            return results
        except (DecodeError, ConfigurationError, ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
            results.append(self._classify(exc))
        finally:
            finish_cycle(self.state)

        if snapshot is not None and self._rewards_due():
            results.extend(await self._reward_cycle(snapshot))
        return results

    def _maintenance_failed(self, label: str, exc: BaseException, **kwargs) -> OperationCycleResult:
        # the deploy phase is untouched; the tick carries on
        self.state.consecutive_failures += 1
        retryable = not isinstance(exc, (ChainRejection, UpstreamBadResponse))
        reason = f"{label} {type(exc).__name__}: {exc}"
        return self._result(RESULT_FAILED, reason=reason, retryable=retryable, **kwargs)

    async def _maintain(self, snapshot: ChainSnapshot) -> Optional[OperationCycleResult]:
        miner = snapshot.miner
        if miner is None:
            # a dry run never creates the account, so one simulated bootstrap stands for all
            if not self.settings.mining_enabled or self.state.bootstrap_simulated:
                return None
            try:
                submission = await self.submitter.submit_instructions("bootstrap", [self.builder.bootstrap(self.wallet)])
            except (ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
                return self._maintenance_failed("bootstrap", exc)
            self.state.bootstrap_simulated = submission.simulated
            return self._result(
                RESULT_BOOTSTRAPPED,
                reason="miner account created",
                signature=submission.signature,
                simulated=submission.simulated,
            )
        if miner.needs_checkpoint and miner.round_id < snapshot.board.round_id:
            ix = self.builder.checkpoint(self.wallet, miner.round_id)
            try:
                submission = await self.submitter.submit_instructions("checkpoint", [ix])
            except (ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
                logger.warning("%s checkpoint of round %d failed; evaluating deploy anyway", self.wallet[:8], miner.round_id)
                return self._maintenance_failed("checkpoint", exc, round_id=miner.round_id)
            return self._result(
                RESULT_CHECKPOINTED,
                reason=f"round {miner.round_id} settled",
                round_id=miner.round_id,
                signature=submission.signature,
                simulated=submission.simulated,
            )
        return None

    def _remaining_balance(self, snapshot: ChainSnapshot) -> int:
        return max(0, snapshot.wallet_lamports - self.min_sol_balance)

    async def _deploy_branch(self, snapshot: ChainSnapshot) -> OperationCycleResult:
        round_id = snapshot.board.round_id
        if not self.settings.mining_enabled:
            return self._result(RESULT_SKIPPED_DISABLED, reason="MINING_ENABLED is off", round_id=round_id)
        if self.state.already_deployed(round_id):
            return self._result(RESULT_SKIPPED_ALREADY_DEPLOYED, reason="guard", round_id=round_id)
        miner = snapshot.miner
        if miner is not None and miner.round_id == round_id and sum(miner.deployed) > 0:
            self.state.last_deployed_round_id = round_id
            return self._result(RESULT_SKIPPED_ALREADY_DEPLOYED, reason="on-chain", round_id=round_id)
        round_state = snapshot.round
        if round_state is None:
            raise TransientNetworkError(f"round {round_id} account not available yet")

        remaining = self._remaining_balance(snapshot)
        plan = self.planner.plan(round_state.motherload, remaining)
        self._ensure_running()
        price = await self.price_oracle.price_in_sol()
        evaluation = self.evaluator.evaluate(round_state, plan.amount_per_round, price)
        if not evaluation.should_mine:
            return self._result(
                RESULT_SKIPPED_BELOW_THRESHOLD,
                reason=evaluation.reason,
                round_id=round_id,
                detail={"motherload_orb": round_state.motherload_orb, "ev_sol": evaluation.expected_value_sol},
            )

        decision = self.planner.decide(round_state.motherload, remaining, self.fee_estimator.max_fee_lamports("deploy"))
        if not decision.should_deploy:
            shortfall = BalanceInsufficient(plan.amount_per_round + self.fee_estimator.max_fee_lamports("deploy"), remaining)
            return self._result(RESULT_SKIPPED_INSUFFICIENT_BALANCE, reason=str(shortfall), round_id=round_id)

        amount = decision.amount_lamports
        advance(self.state, PHASE_DEPLOYING)
        ix = self.builder.deploy(self.wallet, amount)
        advance(self.state, PHASE_AWAITING_CONFIRMATION)
        try:
            submission = await self.submitter.submit_instructions("deploy", [ix])
        except (ChainRejection, TransientNetworkError) as exc:
            # the guard stays unset so the next tick re-reads the round
            return self._classify(exc, round_id=round_id, amount=amount)
        advance(self.state, PHASE_DEPLOYED)
        self.state.last_deployed_round_id = round_id
        self.state.consecutive_failures = 0
        return self._result(
            RESULT_DEPLOYED,
            reason=f"{from_base_units(amount):.6f} SOL across 25 squares, ~{decision.estimated_rounds} rounds left",
            round_id=round_id,
            amount=amount,
            signature=submission.signature,
            simulated=submission.simulated,
            detail={"ev_sol": evaluation.expected_value_sol, "orb_price_sol": price},
        )

    # rewards

    def _rewards_due(self) -> bool:
        interval = self.settings.rewards_check_interval_sec
        now = self.clock()
        if interval > 0 and self.state.last_rewards_check and now - self.state.last_rewards_check < interval:
            return False
        self.state.last_rewards_check = now
        return True

    def _claim_instructions(self, status: RewardStatus, force: bool = False):
        instructions = []
        labels = []
        if force or status.should_claim_sol:
            instructions.append(self.builder.claim_sol(self.wallet))
            labels.append("claim_sol")
        if (force and status.mining_orb > 0) or status.should_claim_orb:
            instructions.append(self.builder.claim_orb(self.wallet))
            labels.append("claim_orb")
        if (force and status.staking_orb > 0) or status.should_claim_yield:
            instructions.append(self.builder.claim_yield(self.wallet, status.staking_orb))
            labels.append("claim_yield")
        return instructions, labels

    async def _claim(self, status: RewardStatus, force: bool = False) -> OperationCycleResult:
        instructions, labels = self._claim_instructions(status, force=force)
        limit = sum(self.fee_estimator.compute_unit_limit(label) for label in labels)
        submission = await self.submitter.submit_instructions("claim", instructions, compute_unit_limit=limit)
        return self._result(
            RESULT_CLAIMED,
            reason="+".join(labels),
            amount=status.claimable_sol,
            signature=submission.signature,
            simulated=submission.simulated,
            detail={"sol": status.claimable_sol, "orb": status.claimable_orb},
        )

    async def _reward_cycle(self, snapshot: ChainSnapshot) -> List[OperationCycleResult]:
        results: List[OperationCycleResult] = []
        status = self.monitor.evaluate(snapshot.miner, snapshot.stake, snapshot.treasury, snapshot.wallet_orb)
        if status.should_claim:
            try:
                self._ensure_running()
                results.append(await self._claim(status))
            except OperationCancelled as exc:
                results.append(self._fail(exc, retryable=True))
                return results
            except (ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
                results.append(self._classify(exc))
        if status.should_swap and self.swap_service is not None:
            try:
                self._ensure_running()
                execution = await self.swap_service.swap_orb_to_sol(
                    status.swap_amount, self.submitter.keypair, self.submitter
                )
            except OperationCancelled as exc:
                results.append(self._fail(exc, retryable=True))
                return results
            except (ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
                results.append(self._classify(exc))
            else:
                if execution.executed:
                    results.append(
                        self._result(
                            RESULT_SWAPPED,
                            reason=f"{from_base_units(execution.in_amount):.4f} ORB",
                            amount=execution.out_amount,
                            signature=execution.signature,
                            simulated=execution.status == STATUS_SIMULATED,
                        )
                    )
                else:
                    logger.info("Swap not executed: %s", execution.message)
        return results

    async def claim_all(self) -> OperationCycleResult:
        """Claim every reward kind now, regardless of thresholds."""
        try:
            snapshot = await self.fetch_snapshot()
            status = self.monitor.evaluate(snapshot.miner, snapshot.stake, snapshot.treasury, snapshot.wallet_orb)
            return await self._claim(status, force=True)
        except OperationCancelled as exc:
            return self._fail(exc, retryable=True)
        except (DecodeError, ConfigurationError, ChainRejection, TransientNetworkError, UpstreamBadResponse) as exc:
            return self._classify(exc)


__all__ = ["ChainSnapshot", "OperationLoop", "PriceOracle"]
