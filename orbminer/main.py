from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import socket
import subprocess
import sys
import tempfile
import time
from contextlib import AsyncExitStack
from pathlib import Path
from typing import List, Optional

import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from solders.keypair import Keypair

from orbminer.chain.addresses import ProgramAddresses
from orbminer.chain.codec import from_base_units
from orbminer.composition import CHAIN_CHOICES, build_gateway, build_loop, load_keypair, resolve_chain_choice
from orbminer.config import DEPLOYMENT_STRATEGIES, BotSettings, get_config, repo_root
from orbminer.core.exceptions import ConfigurationError, ProviderMisconfigured
from orbminer.jupiter.provider import get_jupiter_provider
from orbminer.orchestrator.cycle_log import CycleLogger
from orbminer.orchestrator.runner import OperationLoop
from orbminer.orchestrator.state_machine import OperationCycleResult

logger = logging.getLogger("orbminer")
console = Console()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _settings_from_args(args: argparse.Namespace) -> BotSettings:
    settings = BotSettings.from_config(get_config())
    overrides = {}
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    if getattr(args, "strategy", None):
        overrides["strategy"] = args.strategy
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
        settings.validate()
    return settings


def _runs_dir(cfg) -> Path:
    path = Path(cfg.get("runs_dir", "runs"))
    return path if path.is_absolute() else repo_root() / path


def _load_signer(args: argparse.Namespace, settings: BotSettings, chain: str) -> Keypair:
    path = getattr(args, "keypair", None) or settings.signer_keypair_path
    if path:
        return load_keypair(path)
    if chain == "mock":
        keypair = Keypair()
        logger.info("No SIGNER_KEYPAIR_PATH set; using throwaway wallet %s", keypair.pubkey())
        return keypair
    raise ConfigurationError("SIGNER_KEYPAIR_PATH is required for the rpc gateway")


def _install_signal_handlers(loop: OperationLoop) -> None:
    if sys.platform == "win32":
        return
    running = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        running.add_signal_handler(sig, loop.request_shutdown)


async def run_session(
    args: argparse.Namespace,
    command: str,
    ticks: Optional[int] = None,
    base_dir: Optional[Path] = None,
) -> List[OperationCycleResult]:
    cfg = get_config()
    settings = _settings_from_args(args)
    chain = resolve_chain_choice(getattr(args, "chain", None))
    keypair = _load_signer(args, settings, chain)
    wallet = str(keypair.pubkey())
    addresses = ProgramAddresses.from_config(cfg)
    cycle_log = None if command == "status" else CycleLogger(base_dir=base_dir or _runs_dir(cfg))
    results: List[OperationCycleResult] = []
    try:
        async with AsyncExitStack() as stack:
            gateway = await stack.enter_async_context(build_gateway(chain, addresses, settings, wallet=wallet))
            provider = await stack.enter_async_context(get_jupiter_provider())
            loop = build_loop(settings, cfg, gateway, keypair, provider, recorder=cycle_log)
            if command == "status":
                snapshot = await loop.fetch_snapshot()
                _print_status(loop, snapshot)
            elif command == "claim":
                results.append(await loop.claim_all())
            else:
                _install_signal_handlers(loop)
                logger.info(
                    "Mining as %s (strategy=%s, dry_run=%s, chain=%s)", wallet, settings.strategy, settings.dry_run, chain
                )
                results.extend(await loop.run(max_ticks=ticks))
    finally:
        if cycle_log is not None:
            cycle_log.summarize()
            path = cycle_log.write_summary()
            console.print(f"Cycle log: {cycle_log.path}\nSummary: {path}")
            cycle_log.close()
    return results


def _print_status(loop: OperationLoop, snapshot) -> None:
    status = loop.monitor.evaluate(snapshot.miner, snapshot.stake, snapshot.treasury, snapshot.wallet_orb)
    table = Table(title=f"ORB miner status: {loop.wallet}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Round", str(snapshot.board.round_id))
    if snapshot.round is not None:
        table.add_row("Motherload (ORB)", f"{snapshot.round.motherload_orb:.4f}")
        table.add_row("Miners (est.)", str(snapshot.round.unique_miner_count))
        table.add_row("Round deployed (SOL)", f"{from_base_units(snapshot.round.total_deployed):.4f}")
    table.add_row("Wallet SOL", f"{from_base_units(snapshot.wallet_lamports):.6f}")
    table.add_row("Wallet ORB", f"{from_base_units(snapshot.wallet_orb):.4f}")
    table.add_row("Miner account", "yes" if snapshot.miner is not None else "no")
    if snapshot.miner is not None:
        table.add_row("Miner round / checkpoint", f"{snapshot.miner.round_id} / {snapshot.miner.checkpoint_id}")
    table.add_row("Claimable SOL", f"{from_base_units(status.claimable_sol):.6f}")
    table.add_row("Claimable ORB (mining)", f"{from_base_units(status.mining_orb):.4f}")
    table.add_row("Claimable ORB (staking)", f"{from_base_units(status.staking_orb):.4f}")
    table.add_row("Claim due", str(status.should_claim))
    table.add_row("Swap due", str(status.should_swap))
    console.print(table)


def _probe_server(base_url: str) -> int | None:
    try:
        resp = httpx.get(f"{base_url}/health", timeout=1)
        return resp.status_code
    except httpx.HTTPError:
        return None


def _tail_file(path: Path, max_lines: int = 20) -> str:
    if not path.exists():
        return ""
    with path.open("r", encoding="utf-8", errors="ignore") as handle:
        lines = handle.readlines()[-max_lines:]
    return "".join(lines).strip()


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for_server(base_url: str, timeout_sec: int = 15, proc: subprocess.Popen | None = None, log_path: Path | None = None) -> None:
    deadline = time.time() + timeout_sec
    last_status = None
    while time.time() < deadline:
        if proc and proc.poll() is not None:
            break
        last_status = _probe_server(base_url)
        if last_status == 200:
            return
        time.sleep(0.5)
    if proc and proc.poll() is not None:
        message = f"Mock API server exited with code {proc.returncode}"
    elif last_status is not None:
        message = f"Mock API server not ready (HTTP {last_status} from {base_url}/health)"
    else:
        message = "Mock API server did not start in time"
    if log_path:
        tail = _tail_file(log_path)
        if tail:
            message = f"{message}\nMock API log tail:\n{tail}"
    raise RuntimeError(message)


async def mock_e2e_session(base_url: str, ticks: int, base_dir: Optional[Path] = None) -> List[OperationCycleResult]:
    """Run a few ticks against the mock server, advancing the round between ticks."""
    cfg = get_config()
    settings = dataclasses.replace(BotSettings.from_config(cfg), dry_run=False)
    keypair = Keypair()
    wallet = str(keypair.pubkey())
    addresses = ProgramAddresses.from_config(cfg)
    cycle_log = CycleLogger(base_dir=base_dir or _runs_dir(cfg))
    results: List[OperationCycleResult] = []
    async with httpx.AsyncClient(base_url=base_url, timeout=5) as admin:
        seed = await admin.post(
            "/admin/seed_wallet",
            json={"wallet": wallet, "sol": 2.0, "orb": 8.0, "rewards_sol": 0.2, "rewards_orb": 1.5, "staked_orb": 10.0},
        )
        seed.raise_for_status()
        async with AsyncExitStack() as stack:
            gateway = await stack.enter_async_context(build_gateway("rpc", addresses, settings))
            provider = await stack.enter_async_context(get_jupiter_provider())
            loop = build_loop(settings, cfg, gateway, keypair, provider, recorder=cycle_log)
            for _ in range(ticks):
                results.extend(await loop.tick())
                advanced = await admin.post("/admin/advance_round", json={})
                advanced.raise_for_status()
    cycle_log.summarize()
    cycle_log.write_summary()
    cycle_log.close()
    console.print(f"Mock E2E run complete. Cycle log: {cycle_log.path}")
    return results


def cmd_mock_e2e(ticks: int) -> None:
    cfg = get_config(refresh=True)
    base_url = cfg.get("mock_api_base", "http://127.0.0.1:18090")
    port = int(base_url.rsplit(":", 1)[-1])
    status = _probe_server(base_url)
    if status is not None:
        port = _find_free_port()
        base_url = f"http://127.0.0.1:{port}"
        console.print(f"Mock API port busy (HTTP {status}); using {base_url}.")

    root = repo_root()
    env = os.environ.copy()
    env["PYTHONPATH"] = f"{root}{os.pathsep}{env.get('PYTHONPATH', '')}"
    log_file = tempfile.NamedTemporaryFile(prefix="mock_api_", suffix=".log", delete=False)
    log_path = Path(log_file.name)
    log_file.close()
    log_handle = log_path.open("w", encoding="utf-8")

    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "mock_api.server:app", "--host", "127.0.0.1", "--port", str(port)],
        stdout=log_handle,
        stderr=subprocess.STDOUT,
        cwd=str(root),
        env=env,
    )
    success = False
    try:
        _wait_for_server(base_url, proc=proc, log_path=log_path)
        os.environ.update(
            {
                "SOLANA_RPC_URL": base_url,
                "SOLANA_RPC_LIVE": "1",
                "JUPITER_BASE_URL": base_url,
                "JUPITER_LIVE": "1",
            }
        )
        asyncio.run(mock_e2e_session(base_url, ticks))
        success = True
    finally:
        log_handle.close()
        proc.terminate()
        proc.wait(timeout=5)
        if success and log_path.exists():
            log_path.unlink()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ORB lottery mining agent")
    parser.add_argument("command", choices=["run", "status", "claim", "mock-e2e"], help="Command to run")
    parser.add_argument("--ticks", type=int, default=None, help="Stop after N ticks (run, mock-e2e)")
    parser.add_argument("--dry-run", action="store_true", help="Log intended transactions without sending them")
    parser.add_argument("--strategy", choices=DEPLOYMENT_STRATEGIES, default=None, help="Deployment amount strategy")
    parser.add_argument("--chain", choices=CHAIN_CHOICES, default=None, help="Chain gateway (rpc|mock)")
    parser.add_argument("--keypair", type=str, default=None, help="Keypair JSON path (overrides SIGNER_KEYPAIR_PATH)")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.ticks is not None and args.ticks <= 0:
        parser.error("--ticks must be positive")
    configure_logging(args.log_level)

    try:
        if args.command == "mock-e2e":
            cmd_mock_e2e(args.ticks or 5)
        else:
            asyncio.run(run_session(args, args.command, ticks=args.ticks))
    except (ConfigurationError, ProviderMisconfigured) as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
