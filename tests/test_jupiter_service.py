import base64

import pytest
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from orbminer.chain.codec import ORB_BASE_UNITS
from orbminer.core.exceptions import UpstreamBadResponse
from orbminer.jupiter.provider import MockJupiterProvider, build_unsigned_swap_transaction
from orbminer.jupiter.service import (
    STATUS_SIMULATED,
    STATUS_SKIPPED,
    STATUS_SUBMITTED,
    JupiterSwapService,
    OrbPriceOracle,
    QuoteParams,
    sign_swap_transaction,
)
from orbminer.orchestrator.submitter import SubmissionResult

ORB = "orebyr4mDiPDVgnfqvF5xiu5gKnh94Szuz8dqgNqdJn"
WSOL = "So11111111111111111111111111111111111111112"


class _Sink:
    def __init__(self, simulated: bool = False) -> None:
        self.simulated = simulated
        self.sent = []

    async def submit_signed(self, label, tx_bytes):
        self.sent.append((label, tx_bytes))
        signature = None if self.simulated else str(VersionedTransaction.from_bytes(tx_bytes).signatures[0])
        return SubmissionResult(label, signature, simulated=self.simulated)


@pytest.mark.asyncio
async def test_quote_scales_with_amount():
    provider = MockJupiterProvider()
    service = JupiterSwapService(provider, ORB, WSOL)
    quote = await service.get_quote(QuoteParams(ORB, WSOL, amount=4 * ORB_BASE_UNITS, slippage_bps=50))
    assert quote.in_units == 4 * ORB_BASE_UNITS
    assert quote.price == pytest.approx(0.0025)
    assert quote.min_out_units < quote.out_units
    assert provider.quotes[0]["input_mint"] == ORB


@pytest.mark.asyncio
async def test_price_oracle_returns_sol_per_orb():
    oracle = OrbPriceOracle(MockJupiterProvider(), ORB, WSOL)
    assert await oracle.price_in_sol() == pytest.approx(0.0025)


@pytest.mark.asyncio
async def test_price_oracle_degrades_to_zero():
    oracle = OrbPriceOracle(MockJupiterProvider(error_mode="quote"), ORB, WSOL)
    assert await oracle.price_in_sol() == 0.0


@pytest.mark.asyncio
async def test_swap_is_signed_by_wallet_and_submitted():
    keypair = Keypair()
    sink = _Sink()
    service = JupiterSwapService(MockJupiterProvider(), ORB, WSOL)
    result = await service.swap_orb_to_sol(3 * ORB_BASE_UNITS, keypair, sink)
    assert result.status == STATUS_SUBMITTED
    assert result.executed
    assert result.in_amount == 3 * ORB_BASE_UNITS
    assert result.out_amount == int(3 * ORB_BASE_UNITS * 0.0025)
    label, raw = sink.sent[0]
    assert label == "swap"
    tx = VersionedTransaction.from_bytes(raw)
    assert tx.message.account_keys[0] == keypair.pubkey()
    assert result.signature == str(tx.signatures[0])


@pytest.mark.asyncio
async def test_swap_dry_run_is_simulated():
    service = JupiterSwapService(MockJupiterProvider(), ORB, WSOL)
    result = await service.swap_orb_to_sol(ORB_BASE_UNITS, Keypair(), _Sink(simulated=True))
    assert result.status == STATUS_SIMULATED
    assert result.signature is None


@pytest.mark.asyncio
async def test_swap_skipped_below_price_floor():
    sink = _Sink()
    service = JupiterSwapService(MockJupiterProvider(), ORB, WSOL, min_price_sol=0.01)
    result = await service.swap_orb_to_sol(ORB_BASE_UNITS, Keypair(), sink)
    assert result.status == STATUS_SKIPPED
    assert not result.executed
    assert sink.sent == []


@pytest.mark.asyncio
async def test_swap_build_error_surfaces():
    service = JupiterSwapService(MockJupiterProvider(error_mode="swap"), ORB, WSOL)
    with pytest.raises(UpstreamBadResponse):
        await service.swap_orb_to_sol(ORB_BASE_UNITS, Keypair(), _Sink())


def test_sign_rejects_garbage():
    with pytest.raises(UpstreamBadResponse):
        sign_swap_transaction(base64.b64encode(b"\x00\x01\x02").decode(), Keypair())


def test_unsigned_swap_has_empty_signature_slot():
    keypair = Keypair()
    raw = base64.b64decode(build_unsigned_swap_transaction(str(keypair.pubkey())))
    tx = VersionedTransaction.from_bytes(raw)
    assert len(tx.signatures) == 1
    signed = VersionedTransaction.from_bytes(sign_swap_transaction(base64.b64encode(raw).decode(), keypair))
    assert signed.signatures[0] != tx.signatures[0]
