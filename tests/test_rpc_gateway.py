import base64
import json

import httpx
import pytest

from orbminer.chain.gateway import CONFIRMED, FAILED, TIMED_OUT
from orbminer.chain.rpc import RpcHttpClient, RpcSettings, SolanaRpcGateway, classify_rpc_error, is_transient_rpc_error
from orbminer.chain.schemas import RpcErrorBody
from orbminer.core.exceptions import (
    ChainRejection,
    ProviderMisconfigured,
    TransientNetworkError,
    UpstreamBadResponse,
)

PROGRAM_ID = "boreXQWsKpsJz5RR9BMtN8Vk4ndAk23sutj8spWYhwk"
WALLET = "577HqbrnKM4micsY52rW8j6i9W8SmzV3FprfBCDneNpF"


def _gateway(results):
    """Gateway whose node answers each method from ``results`` (a value or a callable)."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        answer = results[body["method"]]
        payload = answer(body) if callable(answer) else answer
        if "error" in payload:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": payload["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": payload["result"]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    http = RpcHttpClient(async_client=client, rps=100, max_retries=0)
    settings = RpcSettings(rpc_url="http://node", api_key="", rps=100, timeout=5, live=True)
    return SolanaRpcGateway(PROGRAM_ID, settings, http_client=http, poll_interval=0.01), seen


@pytest.mark.asyncio
async def test_get_account_decodes_base64():
    data = bytes(range(40))
    gateway, seen = _gateway(
        {
            "getAccountInfo": {
                "result": {
                    "context": {"slot": 1},
                    "value": {
                        "data": [base64.b64encode(data).decode(), "base64"],
                        "lamports": 10,
                        "owner": PROGRAM_ID,
                        "executable": False,
                        "rentEpoch": 0,
                    },
                }
            }
        }
    )
    assert await gateway.get_account(WALLET) == data
    assert seen[0]["params"][1]["encoding"] == "base64"


@pytest.mark.asyncio
async def test_missing_account_is_none():
    gateway, _ = _gateway({"getAccountInfo": {"result": {"context": {"slot": 1}, "value": None}}})
    assert await gateway.get_account(WALLET) is None


@pytest.mark.asyncio
async def test_token_balance_sums_accounts():
    def accounts(body):
        info = {"mint": body["params"][1]["mint"], "owner": WALLET, "tokenAmount": {"amount": "250", "decimals": 9}}
        entry = {"pubkey": WALLET, "account": {"data": {"parsed": {"info": info, "type": "account"}}}}
        return {"result": {"context": {"slot": 1}, "value": [entry, entry]}}

    gateway, _ = _gateway({"getTokenAccountsByOwner": accounts})
    assert await gateway.get_token_balance(WALLET, PROGRAM_ID) == 500


@pytest.mark.asyncio
async def test_blockhash_and_fees():
    gateway, _ = _gateway(
        {
            "getLatestBlockhash": {
                "result": {"context": {"slot": 1}, "value": {"blockhash": "abc", "lastValidBlockHeight": 9}}
            },
            "getRecentPrioritizationFees": {
                "result": [{"slot": 1, "prioritizationFee": 0}, {"slot": 2, "prioritizationFee": 1500}]
            },
        }
    )
    assert await gateway.get_latest_blockhash() == "abc"
    assert await gateway.get_recent_prioritization_fees() == [0, 1500]


@pytest.mark.asyncio
async def test_send_transaction_errors_are_classified():
    gateway, _ = _gateway(
        {"sendTransaction": {"error": {"code": -32002, "message": "Transaction simulation failed: Blockhash not found"}}}
    )
    with pytest.raises(TransientNetworkError):
        await gateway.submit(b"\x01" * 64)

    gateway, _ = _gateway(
        {
            "sendTransaction": {
                "error": {
                    "code": -32002,
                    "message": "Transaction simulation failed: Error processing Instruction 2",
                    "data": {"err": {"InstructionError": [2, {"Custom": 1}]}},
                }
            }
        }
    )
    with pytest.raises(ChainRejection) as excinfo:
        await gateway.submit(b"\x01" * 64)
    assert excinfo.value.error == {"InstructionError": [2, {"Custom": 1}]}


@pytest.mark.asyncio
async def test_confirm_statuses():
    confirmed, _ = _gateway(
        {
            "getSignatureStatuses": {
                "result": {"context": {"slot": 5}, "value": [{"slot": 5, "err": None, "confirmationStatus": "confirmed"}]}
            }
        }
    )
    status = await confirmed.confirm("sig", timeout=1.0)
    assert status.status == CONFIRMED
    assert status.slot == 5

    failed, _ = _gateway(
        {
            "getSignatureStatuses": {
                "result": {"context": {"slot": 5}, "value": [{"slot": 5, "err": {"InstructionError": [0, "X"]}}]}
            }
        }
    )
    assert (await failed.confirm("sig", timeout=1.0)).status == FAILED

    pending, seen = _gateway({"getSignatureStatuses": {"result": {"context": {"slot": 5}, "value": [None]}}})
    assert (await pending.confirm("sig", timeout=0.05)).status == TIMED_OUT
    assert len(seen) >= 2


@pytest.mark.asyncio
async def test_unexpected_payload_is_bad_response():
    gateway, _ = _gateway({"getBalance": {"result": {"context": {"slot": 1}}}})
    with pytest.raises(UpstreamBadResponse):
        await gateway.get_balance(WALLET)


def test_transient_rpc_errors():
    assert is_transient_rpc_error(RpcErrorBody(code=-32005, message="Node is behind by 40 slots"))
    assert is_transient_rpc_error(RpcErrorBody(code=-32002, message="x", data={"err": "BlockhashNotFound"}))
    assert not is_transient_rpc_error(RpcErrorBody(code=-32602, message="invalid params"))
    assert isinstance(classify_rpc_error("getBalance", RpcErrorBody(code=-32602, message="bad")), UpstreamBadResponse)


def test_live_rpc_requires_url(monkeypatch):
    monkeypatch.setenv("SOLANA_RPC_LIVE", "1")
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    with pytest.raises(ProviderMisconfigured):
        RpcSettings.from_env()
