"""
Test charge submission: signing, nonce tracking and batch limits.
"""

import struct

import pytest

from substack_keeper.core.config import Settings
from substack_keeper.core.exceptions import ConfigurationError, StacksAPIError
from substack_keeper.services.stacks.transaction import POST_CONDITION_MODE_ALLOW
from substack_keeper.services.transaction_submitter import MAX_BATCH_CHARGES, TransactionSubmitter
from substack_keeper.services.types import ChargeRequest

from .fakes import DEVNET_DEPLOYER_ADDRESS, DEVNET_DEPLOYER_KEY, subscriber_address


def nonce_of(raw: bytes) -> int:
    return struct.unpack(">Q", raw[27:35])[0]


def fee_of(raw: bytes) -> int:
    return struct.unpack(">Q", raw[35:43])[0]


def batch_length_of(raw: bytes) -> int:
    # The single argument is a list: type id 0x0b then a u32 length
    marker = raw.index(b"batch-execute-charges") + len(b"batch-execute-charges")
    args_count = struct.unpack(">I", raw[marker:marker + 4])[0]
    assert args_count == 1
    assert raw[marker + 4] == 0x0B
    return struct.unpack(">I", raw[marker + 5:marker + 9])[0]


@pytest.fixture
def submitter(fake_api, keeper_settings):
    return TransactionSubmitter(fake_api, keeper_settings)


def test_sender_address_derived_from_key(submitter):
    assert submitter.sender_address == DEVNET_DEPLOYER_ADDRESS


@pytest.mark.asyncio
async def test_execute_charge_broadcasts_signed_call(submitter, fake_api):
    result = await submitter.execute_charge(subscriber_address(1), 3)

    assert result.success
    assert result.txid == f"{1:064x}"
    assert result.nonce == 7
    assert fake_api.nonce_requests == [DEVNET_DEPLOYER_ADDRESS]

    raw = fake_api.broadcasts[0]
    assert b"execute-charge" in raw
    assert b"subscription-engine" in raw
    assert nonce_of(raw) == 7
    assert fee_of(raw) == 10000
    assert raw[110] == POST_CONDITION_MODE_ALLOW


@pytest.mark.asyncio
async def test_sequential_charges_use_consecutive_nonces(submitter, fake_api):
    # Node still reports the confirmed nonce after the first broadcast
    await submitter.execute_charge(subscriber_address(1), 1)
    await submitter.execute_charge(subscriber_address(2), 1)

    assert [nonce_of(raw) for raw in fake_api.broadcasts] == [7, 8]


@pytest.mark.asyncio
async def test_node_nonce_wins_when_ahead(submitter, fake_api):
    await submitter.execute_charge(subscriber_address(1), 1)
    fake_api.nonce = 20
    await submitter.execute_charge(subscriber_address(2), 1)

    assert [nonce_of(raw) for raw in fake_api.broadcasts] == [7, 20]


@pytest.mark.asyncio
async def test_broadcast_rejection_is_failure(submitter, fake_api, broadcast_rejection):
    fake_api.broadcast_errors.append(broadcast_rejection)

    result = await submitter.execute_charge(subscriber_address(1), 1)

    assert not result.success
    assert result.txid is None
    assert "BadNonce" in result.error


@pytest.mark.asyncio
async def test_failed_broadcast_does_not_advance_nonce(submitter, fake_api, broadcast_rejection):
    fake_api.broadcast_errors.append(broadcast_rejection)

    await submitter.execute_charge(subscriber_address(1), 1)
    await submitter.execute_charge(subscriber_address(2), 1)

    assert [nonce_of(raw) for raw in fake_api.broadcasts] == [7]


@pytest.mark.asyncio
async def test_nonce_lookup_failure_is_failure(submitter, fake_api):
    async def broken(principal):
        raise StacksAPIError("unreachable")
    fake_api.get_next_nonce = broken

    result = await submitter.execute_charge(subscriber_address(1), 1)

    assert not result.success
    assert fake_api.broadcasts == []


@pytest.mark.asyncio
async def test_invalid_subscriber_is_failure(submitter, fake_api):
    result = await submitter.execute_charge("bogus", 1)

    assert not result.success
    assert fake_api.broadcasts == []
    assert fake_api.nonce_requests == []
    assert result.nonce is None


@pytest.mark.asyncio
async def test_default_engine_contract_is_signable(fake_api):
    config = Settings(_env_file=None, keeper_private_key=DEVNET_DEPLOYER_KEY)
    submitter = TransactionSubmitter(fake_api, config)

    result = await submitter.execute_charge(subscriber_address(1), 1)

    assert result.success, result.error
    assert len(fake_api.broadcasts) == 1
    assert config.engine.name.encode() in fake_api.broadcasts[0]


@pytest.mark.asyncio
async def test_execute_charge_without_key_raises(fake_api, keyless_settings):
    submitter = TransactionSubmitter(fake_api, keyless_settings)

    with pytest.raises(ConfigurationError):
        await submitter.execute_charge(subscriber_address(1), 1)
    assert fake_api.nonce_requests == []


@pytest.mark.asyncio
async def test_batch_of_zero_makes_no_network_call(submitter, fake_api):
    assert await submitter.execute_batch_charges([]) is None
    assert fake_api.nonce_requests == []
    assert fake_api.broadcasts == []


@pytest.mark.asyncio
async def test_batch_without_key_raises(fake_api, keyless_settings):
    submitter = TransactionSubmitter(fake_api, keyless_settings)
    with pytest.raises(ConfigurationError):
        await submitter.execute_batch_charges([])


@pytest.mark.asyncio
async def test_batch_submits_all_when_within_limit(submitter, fake_api):
    charges = [ChargeRequest(subscriber_address(i), i) for i in range(1, 4)]

    result = await submitter.execute_batch_charges(charges)

    assert result.success
    assert len(fake_api.broadcasts) == 1
    assert batch_length_of(fake_api.broadcasts[0]) == 3


@pytest.mark.asyncio
async def test_batch_truncates_to_first_ten_in_order(submitter, fake_api):
    charges = [ChargeRequest(subscriber_address(i), i) for i in range(1, 15)]

    result = await submitter.execute_batch_charges(charges)

    assert result.success
    raw = fake_api.broadcasts[0]
    assert batch_length_of(raw) == MAX_BATCH_CHARGES

    # Plan ids 1..10 are present in order; 11..14 are not
    encoded_ids = []
    cursor = 0
    while True:
        cursor = raw.find(b"\x07plan-id", cursor)
        if cursor < 0:
            break
        value_start = cursor + len(b"\x07plan-id") + 1
        encoded_ids.append(int.from_bytes(raw[value_start:value_start + 16], "big"))
        cursor = value_start
    assert encoded_ids == list(range(1, 11))
