import argparse
import asyncio
import json
from pathlib import Path

import pytest
from solders.keypair import Keypair

from orbminer.composition import load_keypair, resolve_chain_choice
from orbminer.core.exceptions import ConfigurationError
from orbminer.main import _build_parser, main, run_session
from orbminer.orchestrator.state_machine import RESULT_DEPLOYED


def test_invalid_strategy_choice() -> None:
    parser = _build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["run", "--strategy", "yolo"])


def test_invalid_chain_choice() -> None:
    parser = _build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["run", "--chain", "devnett"])


def test_non_positive_ticks_rejected() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["run", "--ticks", "0"])
    assert excinfo.value.code == 2


def test_keypair_loading(tmp_path: Path) -> None:
    keypair = Keypair()
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))), encoding="utf-8")
    assert load_keypair(path).pubkey() == keypair.pubkey()

    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_keypair(bad)
    with pytest.raises(ConfigurationError):
        load_keypair(tmp_path / "missing.json")


def test_chain_choice_resolution(monkeypatch) -> None:
    monkeypatch.delenv("ORBMINER_CHAIN", raising=False)
    monkeypatch.delenv("SOLANA_RPC_LIVE", raising=False)
    assert resolve_chain_choice() == "mock"
    assert resolve_chain_choice("RPC") == "rpc"
    monkeypatch.setenv("ORBMINER_CHAIN", "rpc")
    assert resolve_chain_choice() == "rpc"
    with pytest.raises(ValueError):
        resolve_chain_choice("devnet")


def test_rpc_without_keypair_is_configuration_error(monkeypatch) -> None:
    monkeypatch.delenv("SIGNER_KEYPAIR_PATH", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main(["status", "--chain", "rpc"])
    assert excinfo.value.code == 1


def test_mock_session_runs_one_tick(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("SIGNER_KEYPAIR_PATH", raising=False)
    monkeypatch.delenv("JUPITER_LIVE", raising=False)
    args = argparse.Namespace(dry_run=False, strategy="manual", chain="mock", keypair=None)

    results = asyncio.run(run_session(args, "run", ticks=1, base_dir=tmp_path))
    assert RESULT_DEPLOYED in [result.kind for result in results]
    summaries = list(tmp_path.glob("*/run_summary.json"))
    assert len(summaries) == 1
    assert json.loads(summaries[0].read_text(encoding="utf-8"))["results"][RESULT_DEPLOYED] == 1
