import json
from pathlib import Path

import httpx
import pytest
from solders.keypair import Keypair

from mock_api.server import ORB_PRICE_SOL, app, reset_state
from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.codec import to_base_units
from orbminer.chain.rpc import RpcHttpClient, RpcSettings, SolanaRpcGateway
from orbminer.composition import build_loop
from orbminer.jupiter.provider import JupiterHttpClient, JupiterProvider, JupiterSettings
from orbminer.orchestrator.cycle_log import CycleLogger
from orbminer.orchestrator.state_machine import (
    RESULT_CHECKPOINTED,
    RESULT_CLAIMED,
    RESULT_DEPLOYED,
    RESULT_FAILED,
    RESULT_SWAPPED,
)

BASE = "http://mock"


def _wire(async_client: httpx.AsyncClient, cfg):
    addresses = ProgramAddresses.from_config(cfg)
    rpc = SolanaRpcGateway(
        addresses.program_id,
        RpcSettings(rpc_url=BASE, api_key="", rps=100, timeout=5, live=True),
        http_client=RpcHttpClient(async_client=async_client, rps=100, max_retries=0),
        poll_interval=0.01,
    )
    jupiter = JupiterProvider(
        JupiterSettings(
            api_key="",
            base_url=BASE,
            quote_path="/swap/v1/quote",
            swap_path="/swap/v1/swap",
            rps=100,
            live=True,
        ),
        http_client=JupiterHttpClient(async_client=async_client, rps=100, max_retries=0),
    )
    return rpc, jupiter


async def _seed(async_client: httpx.AsyncClient, wallet: str, **values) -> None:
    resp = await async_client.post("/admin/seed_wallet", json={"wallet": wallet, **values})
    resp.raise_for_status()


@pytest.mark.asyncio
async def test_e2e_mock_rpc(tmp_path: Path, cfg, settings):
    reset_state()
    keypair = Keypair()
    wallet = str(keypair.pubkey())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE) as async_client:
        await _seed(async_client, wallet, sol=2.0, orb=8.0, rewards_sol=0.2, rewards_orb=1.5, staked_orb=10.0)
        rpc, jupiter = _wire(async_client, cfg)
        cycle_log = CycleLogger(base_dir=tmp_path)
        loop = build_loop(settings, cfg, rpc, keypair, jupiter, recorder=cycle_log)

        first = await loop.tick()
        assert [result.kind for result in first] == [RESULT_DEPLOYED, RESULT_CLAIMED, RESULT_SWAPPED]
        assert all(result.signature for result in first)

        resp = await async_client.post("/admin/advance_round", json={})
        resp.raise_for_status()
        second = await loop.tick()
        assert [result.kind for result in second] == [RESULT_CHECKPOINTED, RESULT_DEPLOYED, RESULT_SWAPPED]
        cycle_log.write_summary()
        cycle_log.close()

    metrics = app.state.metrics
    assert metrics["send_transaction"] == 6
    assert metrics["jupiter_quote"] == 4
    assert metrics["jupiter_swap"] == 2

    program = app.state.program
    miner = program.get("miner", program.addresses.miner(wallet))
    assert miner.round_id == program.round_id
    assert miner.checkpoint_id == program.round_id - 1
    # everything above the ORB floor, claimed ORB included, was swapped to SOL
    assert program.token_balances[(wallet, program.addresses.orb_mint)] == to_base_units(5.0)
    swapped_sol = int(to_base_units(3.0) * ORB_PRICE_SOL) + int(to_base_units(1.35) * ORB_PRICE_SOL)
    assert program.balances[wallet] == to_base_units(2.0) - 2 * to_base_units(0.01) + to_base_units(0.2) + swapped_sol

    summary = json.loads((cycle_log.run_dir / "run_summary.json").read_text(encoding="utf-8"))
    assert summary["results"][RESULT_DEPLOYED] == 2
    assert summary["deployed_lamports"] == 2 * to_base_units(0.01)


@pytest.mark.asyncio
async def test_e2e_transient_send_failure_is_retried(cfg, settings):
    reset_state()
    keypair = Keypair()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE) as async_client:
        await _seed(async_client, str(keypair.pubkey()), sol=2.0)
        resp = await async_client.post(
            "/admin/fail_next",
            json={"method": "sendTransaction", "code": -32002, "message": "Transaction simulation failed: Blockhash not found"},
        )
        resp.raise_for_status()
        rpc, jupiter = _wire(async_client, cfg)
        loop = build_loop(settings, cfg, rpc, keypair, jupiter)

        results = await loop.tick()

    assert [result.kind for result in results] == [RESULT_DEPLOYED]
    assert app.state.metrics["send_transaction"] == 2


@pytest.mark.asyncio
async def test_e2e_program_rejection_is_fatal(cfg, settings):
    reset_state()
    keypair = Keypair()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE) as async_client:
        await _seed(async_client, str(keypair.pubkey()), sol=2.0)
        resp = await async_client.post(
            "/admin/fail_next",
            json={
                "method": "sendTransaction",
                "code": -32002,
                "message": "Transaction simulation failed: Error processing Instruction 2: custom program error: 0x1",
            },
        )
        resp.raise_for_status()
        rpc, jupiter = _wire(async_client, cfg)
        loop = build_loop(settings, cfg, rpc, keypair, jupiter)

        results = await loop.tick()

    assert [result.kind for result in results] == [RESULT_FAILED]
    assert results[0].retryable is False
    assert loop.state.last_deployed_round_id is None
    assert app.state.metrics["send_transaction"] == 1
