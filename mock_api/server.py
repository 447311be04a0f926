from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from solders.hash import Hash

from mock_api.data_seed import SimulatedProgram
from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.gateway import decode_transaction
from orbminer.config import get_config
from orbminer.core.exceptions import DecodeError
from orbminer.jupiter.provider import build_unsigned_swap_transaction

# Quoted SOL per ORB, in base units of each.
ORB_PRICE_SOL = 0.0025

app = FastAPI()


def _fresh_state() -> Dict[str, Any]:
    return {
        "program": SimulatedProgram(ProgramAddresses.from_config(get_config())),
        "statuses": {},
        "slot": 300_000_000,
        "metrics": {"rpc": 0, "send_transaction": 0, "jupiter_quote": 0, "jupiter_swap": 0},
        "rpc_failures": [],
        "pending_swaps": {},
    }


def reset_state() -> None:
    for key, value in _fresh_state().items():
        setattr(app.state, key, value)


reset_state()


class RpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    id: Optional[int] = None
    method: str
    params: List[Any] = []


class SeedWalletRequest(BaseModel):
    wallet: str
    sol: float = 2.0
    orb: float = 0.0
    with_miner: bool = True
    rewards_sol: float = 0.0
    rewards_orb: float = 0.0
    staked_orb: float = 0.0


class AdvanceRoundRequest(BaseModel):
    motherload_orb: Optional[float] = None


class FailNextRequest(BaseModel):
    method: str
    code: int = -32005
    message: str = "Node is behind"
    count: int = 1


class SwapRequest(BaseModel):
    quoteResponse: Dict[str, Any]
    userPublicKey: str
    wrapAndUnwrapSol: bool = True
    dynamicComputeUnitLimit: bool = True
    prioritizationFeeLamports: Optional[int] = None


def _context() -> Dict[str, int]:
    return {"slot": app.state.slot}


def _ok(request_id: Optional[int], result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Optional[int], code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _get_account_info(params: List[Any]) -> Dict[str, Any]:
    program: SimulatedProgram = app.state.program
    raw = program.accounts.get(params[0])
    if raw is None:
        return {"context": _context(), "value": None}
    return {
        "context": _context(),
        "value": {
            "data": [base64.b64encode(raw).decode("ascii"), "base64"],
            "lamports": 1_000_000 + len(raw) * 6_960,
            "owner": program.addresses.program_id,
            "executable": False,
            "rentEpoch": 0,
        },
    }


def _get_token_accounts(params: List[Any]) -> Dict[str, Any]:
    program: SimulatedProgram = app.state.program
    owner = params[0]
    mint = (params[1] or {}).get("mint", program.addresses.orb_mint)
    amount = program.token_balances.get((owner, mint))
    if amount is None:
        return {"context": _context(), "value": []}
    info = {
        "mint": mint,
        "owner": owner,
        "tokenAmount": {"amount": str(amount), "decimals": 9, "uiAmount": amount / 1e9},
    }
    return {
        "context": _context(),
        "value": [
            {
                "pubkey": program.addresses.associated_token(owner, mint),
                "account": {"data": {"parsed": {"info": info, "type": "account"}, "program": "spl-token"}},
            }
        ],
    }


def _settle_swap(wallet: str, decoded) -> None:
    program: SimulatedProgram = app.state.program
    swap = app.state.pending_swaps.pop(wallet, None)
    if swap is None or decoded.program_data(program.addresses.program_id):
        return
    in_amount, out_amount = swap
    key = (wallet, program.addresses.orb_mint)
    program.token_balances[key] = max(0, program.token_balances.get(key, 0) - in_amount)
    program.balances[wallet] = program.balances.get(wallet, 0) + out_amount


def _send_transaction(request_id: Optional[int], params: List[Any]) -> Dict[str, Any]:
    try:
        decoded = decode_transaction(base64.b64decode(params[0]))
    except (DecodeError, ValueError) as exc:
        return _error(request_id, -32602, f"invalid transaction: {exc}")
    app.state.slot += 1
    app.state.program.apply(decoded)
    _settle_swap(decoded.fee_payer, decoded)
    app.state.statuses[decoded.signature] = {
        "slot": app.state.slot,
        "confirmations": None,
        "err": None,
        "confirmationStatus": "confirmed",
    }
    return _ok(request_id, decoded.signature)


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "round_id": app.state.program.round_id}


@app.post("/")
async def json_rpc(request: RpcRequest) -> Dict[str, Any]:
    app.state.metrics["rpc"] += 1
    if request.method == "sendTransaction":
        app.state.metrics["send_transaction"] += 1
    params = request.params
    for failure in list(app.state.rpc_failures):
        if failure["method"] == request.method:
            failure["count"] -= 1
            if failure["count"] <= 0:
                app.state.rpc_failures.remove(failure)
            return _error(request.id, failure["code"], failure["message"])

    if request.method == "getAccountInfo":
        return _ok(request.id, _get_account_info(params))
    if request.method == "getBalance":
        return _ok(request.id, {"context": _context(), "value": app.state.program.balances.get(params[0], 0)})
    if request.method == "getTokenAccountsByOwner":
        return _ok(request.id, _get_token_accounts(params))
    if request.method == "getLatestBlockhash":
        blockhash = str(Hash.hash(app.state.slot.to_bytes(8, "little")))
        return _ok(
            request.id,
            {"context": _context(), "value": {"blockhash": blockhash, "lastValidBlockHeight": app.state.slot + 150}},
        )
    if request.method == "sendTransaction":
        return _send_transaction(request.id, params)
    if request.method == "getSignatureStatuses":
        statuses = [app.state.statuses.get(signature) for signature in params[0]]
        return _ok(request.id, {"context": _context(), "value": statuses})
    if request.method == "getRecentPrioritizationFees":
        fees = [{"slot": app.state.slot - i, "prioritizationFee": fee} for i, fee in enumerate([0, 1500, 3000, 6000])]
        return _ok(request.id, fees)
    return _error(request.id, -32601, "Method not found")


@app.post("/admin/seed_wallet")
async def seed_wallet(request: SeedWalletRequest) -> Dict[str, Any]:
    app.state.program.seed_wallet(
        request.wallet,
        sol=request.sol,
        orb=request.orb,
        with_miner=request.with_miner,
        rewards_sol=request.rewards_sol,
        rewards_orb=request.rewards_orb,
        staked_orb=request.staked_orb,
    )
    return {"wallet": request.wallet, "round_id": app.state.program.round_id}


@app.post("/admin/advance_round")
async def advance_round(request: AdvanceRoundRequest) -> Dict[str, Any]:
    return {"round_id": app.state.program.advance_round(request.motherload_orb)}


@app.post("/admin/fail_next")
async def fail_next(request: FailNextRequest) -> Dict[str, Any]:
    app.state.rpc_failures.append(request.model_dump())
    return {"queued": len(app.state.rpc_failures)}


@app.get("/admin/metrics")
async def metrics() -> Dict[str, int]:
    return dict(app.state.metrics)


@app.get("/swap/v1/quote")
async def jupiter_quote(
    inputMint: str,
    outputMint: str,
    amount: int,
    slippageBps: int = 50,
    swapMode: str = "ExactIn",
) -> Dict[str, Any]:
    app.state.metrics["jupiter_quote"] += 1
    if amount <= 0:
        raise HTTPException(status_code=400, detail="amount must be positive")
    program: SimulatedProgram = app.state.program
    if inputMint != program.addresses.orb_mint:
        return {"error": "Could not find any route"}
    out_amount = int(amount * ORB_PRICE_SOL)
    return {
        "inputMint": inputMint,
        "outputMint": outputMint,
        "inAmount": str(amount),
        "outAmount": str(out_amount),
        "otherAmountThreshold": str(out_amount * (10_000 - slippageBps) // 10_000),
        "swapMode": swapMode,
        "slippageBps": slippageBps,
        "priceImpactPct": "0.001",
        "routePlan": [],
        "contextSlot": app.state.slot,
    }


@app.post("/swap/v1/swap")
async def jupiter_swap(request: SwapRequest) -> Dict[str, Any]:
    app.state.metrics["jupiter_swap"] += 1
    quote = request.quoteResponse
    app.state.pending_swaps[request.userPublicKey] = (int(quote.get("inAmount", 0)), int(quote.get("outAmount", 0)))
    return {
        "swapTransaction": build_unsigned_swap_transaction(request.userPublicKey),
        "lastValidBlockHeight": app.state.slot + 150,
        "prioritizationFeeLamports": request.prioritizationFeeLamports or 0,
    }
