import asyncio

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.gateway import CONFIRMED, FAILED, TIMED_OUT, ConfirmationStatus, MockChainGateway
from orbminer.chain.instructions import InstructionBuilder
from orbminer.config import get_config
from orbminer.core.exceptions import ChainRejection, OperationCancelled, RetriesExhausted, TransientNetworkError
from orbminer.mining.fees import PriorityFeeEstimator
from orbminer.orchestrator.submitter import TransactionSubmitter

COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"


def _setup(max_retries: int = 3, dry_run: bool = False):
    addresses = ProgramAddresses.from_config(get_config())
    gateway = MockChainGateway(program_id=addresses.program_id, prioritization_fees=[1000, 2000])
    keypair = Keypair()
    submitter = TransactionSubmitter(
        gateway,
        keypair,
        PriorityFeeEstimator(gateway),
        max_retries=max_retries,
        backoff_base=0.0,
        backoff_max=0.0,
        confirm_timeout=1.0,
        dry_run=dry_run,
    )
    ix = InstructionBuilder(addresses).claim_sol(str(keypair.pubkey()))
    return gateway, submitter, ix


@pytest.mark.asyncio
async def test_confirmed_on_first_attempt():
    gateway, submitter, ix = _setup()
    result = await submitter.submit_instructions("claim_sol", [ix])
    assert result.signature
    assert result.attempts == 1
    assert result.simulated is False
    sent = gateway.submitted[0]
    assert sent.fee_payer == submitter.wallet
    programs = [program for program, _ in sent.instructions]
    assert programs[:2] == [COMPUTE_BUDGET_PROGRAM, COMPUTE_BUDGET_PROGRAM]
    assert sent.instructions[2][1] == b"\x03"


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_fresh_blockhash():
    gateway, submitter, ix = _setup()
    gateway.script(TransientNetworkError("Blockhash not found"), ConfirmationStatus(TIMED_OUT), ConfirmationStatus(CONFIRMED, slot=9))
    result = await submitter.submit_instructions("claim_sol", [ix])
    assert result.attempts == 3
    assert result.slot == 9
    assert gateway.calls.count("get_latest_blockhash") == 3


@pytest.mark.asyncio
async def test_retries_exhausted():
    gateway, submitter, ix = _setup(max_retries=2)
    gateway.script(*[TransientNetworkError("node is behind") for _ in range(3)])
    with pytest.raises(RetriesExhausted) as excinfo:
        await submitter.submit_instructions("claim_sol", [ix])
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_error, TransientNetworkError)
    assert gateway.calls.count("submit") == 3


@pytest.mark.asyncio
async def test_chain_rejection_is_not_retried():
    gateway, submitter, ix = _setup()
    gateway.script(ConfirmationStatus(FAILED, error={"InstructionError": [2, {"Custom": 1}]}))
    with pytest.raises(ChainRejection) as excinfo:
        await submitter.submit_instructions("claim_sol", [ix])
    assert excinfo.value.signature
    assert excinfo.value.error == {"InstructionError": [2, {"Custom": 1}]}
    assert gateway.calls.count("submit") == 1


@pytest.mark.asyncio
async def test_dry_run_never_submits():
    gateway, submitter, ix = _setup(dry_run=True)
    result = await submitter.submit_instructions("claim_sol", [ix])
    assert result.simulated is True
    assert result.signature is None
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_shutdown_abandons_before_submit():
    gateway, submitter, ix = _setup()
    submitter.shutdown.set()
    with pytest.raises(OperationCancelled):
        await submitter.submit_instructions("claim_sol", [ix])
    assert "submit" not in gateway.calls


@pytest.mark.asyncio
async def test_shutdown_during_backoff():
    gateway, submitter, ix = _setup()
    submitter.backoff_base = 5.0
    submitter.backoff_max = 5.0
    gateway.script(TransientNetworkError("node is behind"))

    async def _stop_soon():
        await asyncio.sleep(0.05)
        submitter.shutdown.set()

    stopper = asyncio.create_task(_stop_soon())
    with pytest.raises(OperationCancelled):
        await submitter.submit_instructions("claim_sol", [ix])
    await stopper
    assert gateway.calls.count("submit") == 1


@pytest.mark.asyncio
async def test_presigned_transaction_is_sent_as_is():
    gateway, submitter, ix = _setup()
    blockhash = Hash.default()
    message = Message.new_with_blockhash([ix], submitter.keypair.pubkey(), blockhash)
    tx = Transaction([submitter.keypair], message, blockhash)
    result = await submitter.submit_signed("swap", bytes(tx))
    assert result.signature == str(tx.signatures[0])
    assert result.fee is None
    # no compute budget is added to a transaction that is already signed
    assert len(gateway.submitted[0].instructions) == 1
