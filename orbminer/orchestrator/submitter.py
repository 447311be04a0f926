from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from orbminer.chain.gateway import ChainGateway
from orbminer.core.exceptions import ChainRejection, OperationCancelled, RetriesExhausted, TransientNetworkError
from orbminer.core.http import backoff_delay
from orbminer.mining.fees import FeeEstimate, PriorityFeeEstimator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    label: str
    signature: Optional[str]
    simulated: bool = False
    attempts: int = 0
    slot: Optional[int] = None
    fee: Optional[FeeEstimate] = None


class TransactionSubmitter:
    """Signs, sends and confirms transactions for one wallet.

    Transient failures and confirmation timeouts are retried with a fresh blockhash
    on every attempt; on-chain failures are raised immediately as ``ChainRejection``.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        keypair: Keypair,
        fee_estimator: PriorityFeeEstimator,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        confirm_timeout: float = 60.0,
        dry_run: bool = False,
        shutdown: Optional[asyncio.Event] = None,
    ) -> None:
        self.gateway = gateway
        self.keypair = keypair
        self.fee_estimator = fee_estimator
        self.max_retries = max(0, int(max_retries))
        self.backoff_base = max(0.0, backoff_base)
        self.backoff_max = max(backoff_max, self.backoff_base)
        self.confirm_timeout = confirm_timeout
        self.dry_run = dry_run
        self.shutdown = shutdown or asyncio.Event()

    @property
    def wallet(self) -> str:
        return str(self.keypair.pubkey())

    def _check_shutdown(self, label: str) -> None:
        if self.shutdown.is_set():
            raise OperationCancelled(f"{label} abandoned: shutdown requested")

    def _sign(self, instructions: List[Instruction], blockhash: str) -> bytes:
        recent = Hash.from_string(blockhash)
        message = Message.new_with_blockhash(instructions, self.keypair.pubkey(), recent)
        return bytes(Transaction([self.keypair], message, recent))

    async def submit_instructions(
        self,
        label: str,
        instructions: Sequence[Instruction],
        compute_unit_limit: Optional[int] = None,
    ) -> SubmissionResult:
        if self.dry_run:
            for ix in instructions:
                logger.info("[dry-run] %s %s data=%s", label, ix.program_id, bytes(ix.data).hex())
            return SubmissionResult(label, None, simulated=True)

        self._check_shutdown(label)
        fee = await self.fee_estimator.estimate(label)
        if compute_unit_limit is not None:
            fee = FeeEstimate(fee.compute_unit_price, int(compute_unit_limit))
        budget = [
            set_compute_unit_limit(fee.compute_unit_limit),
            set_compute_unit_price(fee.compute_unit_price),
        ]
        payload = budget + list(instructions)

        async def build() -> bytes:
            blockhash = await self.gateway.get_latest_blockhash()
            return self._sign(payload, blockhash)

        return await self._send(label, build, fee)

    async def submit_signed(self, label: str, tx_bytes: bytes) -> SubmissionResult:
        if self.dry_run:
            logger.info("[dry-run] %s signed transaction of %d bytes", label, len(tx_bytes))
            return SubmissionResult(label, None, simulated=True)

        async def build() -> bytes:
            return bytes(tx_bytes)

        return await self._send(label, build, None)

    async def _send(
        self,
        label: str,
        build: Callable[[], Awaitable[bytes]],
        fee: Optional[FeeEstimate],
    ) -> SubmissionResult:
        last_error: Optional[BaseException] = None
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            self._check_shutdown(label)
            try:
                raw = await build()
                self._check_shutdown(label)
                signature = await self.gateway.submit(raw)
                self._check_shutdown(label)
                status = await self.gateway.confirm(signature, self.confirm_timeout)
            except TransientNetworkError as exc:
                last_error = exc
                logger.warning("%s attempt %d/%d failed: %s", label, attempt + 1, attempts, exc)
            else:
                if status.confirmed:
                    logger.info("%s confirmed: %s", label, signature)
                    return SubmissionResult(label, signature, attempts=attempt + 1, slot=status.slot, fee=fee)
                if status.failed:
                    raise ChainRejection(f"{label} failed on chain: {status.error}", error=status.error, signature=signature)
                last_error = TransientNetworkError(f"{label} not confirmed within {self.confirm_timeout}s ({signature})")
                logger.warning("%s attempt %d/%d timed out: %s", label, attempt + 1, attempts, signature)
            if attempt < self.max_retries:
                await self._sleep(backoff_delay(attempt, self.backoff_base, self.backoff_max), label)

        raise RetriesExhausted(f"{label} gave up after {attempts} attempts", attempts=attempts, last_error=last_error)

    async def _sleep(self, delay: float, label: str) -> None:
        try:
            await asyncio.wait_for(self.shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled(f"{label} abandoned: shutdown requested")


__all__ = ["SubmissionResult", "TransactionSubmitter"]
