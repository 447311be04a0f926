import dataclasses

import pytest
from solders.keypair import Keypair

from mock_api.data_seed import SimulatedProgram
from orbminer.chain.addresses import ProgramAddresses
from orbminer.composition import build_loop
from orbminer.config import BotSettings, get_config
from orbminer.jupiter.provider import MockJupiterProvider


@pytest.fixture
def cfg():
    return get_config(refresh=True)


@pytest.fixture
def settings(cfg):
    base = BotSettings.from_config(cfg)
    return dataclasses.replace(
        base,
        mining_enabled=True,
        dry_run=False,
        strategy="manual",
        manual_amount_per_round=0.01,
        motherload_threshold=50.0,
        min_sol_balance=0.1,
        claim_strategy="auto",
        auto_swap_enabled=True,
        rewards_check_interval_sec=0.0,
        check_round_interval_sec=0.01,
        backoff_base_sec=0.0,
        backoff_max_sec=0.0,
        deploy_max_retries=2,
    )


@pytest.fixture
def program(cfg):
    return SimulatedProgram(ProgramAddresses.from_config(cfg))


@pytest.fixture
def make_loop(cfg, settings, program):
    """Build an OperationLoop for a fresh wallet on the shared simulated program."""

    def _make(gateway=None, keypair=None, recorder=None, **overrides):
        keypair = keypair or Keypair()
        loop_settings = dataclasses.replace(settings, **overrides) if overrides else settings
        return build_loop(
            loop_settings,
            cfg,
            gateway if gateway is not None else program.gateway(),
            keypair,
            MockJupiterProvider(),
            recorder=recorder,
        )

    return _make
