"""
Shared fixtures: settings and an in-memory Stacks API.
"""

import pytest

from substack_keeper.core.config import Settings
from substack_keeper.core.exceptions import BroadcastError
from .fakes import DEVNET_CONTRACTS, DEVNET_DEPLOYER_KEY, FakeStacksApi


@pytest.fixture
def keeper_settings():
    return Settings(
        _env_file=None,
        stacks_network="testnet",
        keeper_private_key=DEVNET_DEPLOYER_KEY,
        check_interval=10,
        batch_size=10,
        min_profit=1000,
        max_plans=100,
        **DEVNET_CONTRACTS,
    )


@pytest.fixture
def keyless_settings():
    return Settings(_env_file=None, keeper_private_key="")


@pytest.fixture
def fake_api():
    return FakeStacksApi()


@pytest.fixture
def broadcast_rejection():
    return BroadcastError("transaction rejected", reason="BadNonce")
