"""
Test read-only chain queries and their fail-closed defaults.
"""

import pytest

from substack_keeper.core.exceptions import StacksAPIError, ReadOnlyCallError
from substack_keeper.services.chain_query import ChainQueryAdapter
from substack_keeper.services.stacks.clarity import (
    bool_cv,
    err_cv,
    list_cv,
    ok_cv,
    principal_cv,
    string_ascii_cv,
    uint_cv,
)

from .fakes import MERCHANT, subscriber_address


ALICE = subscriber_address(1)
BOB = subscriber_address(2)


@pytest.fixture
def queries(fake_api, keeper_settings):
    return ChainQueryAdapter(fake_api, keeper_settings)


@pytest.mark.asyncio
async def test_block_height(queries, fake_api):
    fake_api.block_height = 123456
    assert await queries.get_current_block_height() == 123456


@pytest.mark.asyncio
async def test_block_height_failure_returns_zero(queries, fake_api):
    fake_api.block_height_error = StacksAPIError("timeout")

    result = await queries.fetch_current_block_height()

    assert result.failed
    assert result.value == 0
    assert await queries.get_current_block_height() == 0


@pytest.mark.asyncio
async def test_total_plans(queries, fake_api):
    fake_api.set_total_plans(4)
    assert await queries.get_total_plans() == 4


@pytest.mark.asyncio
async def test_total_plans_accepts_ok_response(queries, fake_api):
    fake_api.set_result("get-total-plans", result=ok_cv(uint_cv(2)))
    assert await queries.get_total_plans() == 2


@pytest.mark.asyncio
async def test_total_plans_failure_is_distinguishable_from_zero(queries, fake_api):
    fake_api.set_total_plans(0)
    genuine = await queries.fetch_total_plans()

    fake_api.set_result("get-total-plans", result=ReadOnlyCallError("get-total-plans", "boom"))
    failed = await queries.fetch_total_plans()

    assert genuine.ok and genuine.value == 0
    assert failed.failed and failed.value == 0
    assert "boom" in failed.error


@pytest.mark.asyncio
async def test_get_plan(queries, fake_api):
    fake_api.add_plan(1, amount=250_000, subscribers=[(ALICE, True, 250_000, True)])

    plan = await queries.get_plan(1)

    assert plan.id == 1
    assert plan.merchant == MERCHANT
    assert plan.amount == 250_000
    assert plan.interval_blocks == 144
    assert plan.active is True
    assert plan.subscriber_count == 1


@pytest.mark.asyncio
async def test_missing_plan_is_absent(queries):
    result = await queries.fetch_plan(99)
    assert result.ok
    assert result.value is None


@pytest.mark.asyncio
async def test_malformed_plan_is_absent(queries, fake_api):
    fake_api.set_result("get-plan", 1, result=string_ascii_cv("garbage"))

    result = await queries.fetch_plan(1)

    assert result.failed
    assert await queries.get_plan(1) is None


@pytest.mark.asyncio
async def test_plan_subscribers_in_chain_order(queries, fake_api):
    fake_api.set_result("get-plan-subscribers", 1, result=list_cv([principal_cv(BOB), principal_cv(ALICE)]))
    assert await queries.get_plan_subscribers(1) == [BOB, ALICE]


@pytest.mark.asyncio
async def test_plan_subscribers_failure_is_empty(queries):
    assert await queries.get_plan_subscribers(5) == []


@pytest.mark.asyncio
async def test_is_charge_due(queries, fake_api):
    fake_api.set_result("is-charge-due", ALICE, 1, result=bool_cv(True))
    fake_api.set_result("is-charge-due", BOB, 1, result=bool_cv(False))

    assert await queries.is_charge_due(ALICE, 1) is True
    assert await queries.is_charge_due(BOB, 1) is False


@pytest.mark.asyncio
async def test_is_charge_due_fails_closed(queries, fake_api):
    fake_api.set_result("is-charge-due", ALICE, 1, result=StacksAPIError("connection reset"))

    result = await queries.fetch_is_charge_due(ALICE, 1)

    assert result.failed
    assert result.value is False


@pytest.mark.asyncio
async def test_is_charge_due_err_response_fails_closed(queries, fake_api):
    fake_api.set_result("is-charge-due", ALICE, 1, result=err_cv(uint_cv(404)))
    assert await queries.is_charge_due(ALICE, 1) is False


@pytest.mark.asyncio
async def test_is_charge_due_invalid_principal_fails_closed(queries, fake_api):
    assert await queries.is_charge_due("not-an-address", 1) is False
    assert fake_api.calls_for("is-charge-due") == []


@pytest.mark.asyncio
async def test_get_subscription(queries, fake_api):
    fake_api.add_plan(1, amount=500, subscribers=[(ALICE, True, 400, True)])

    subscription = await queries.get_subscription(ALICE, 1)

    assert subscription.subscriber == ALICE
    assert subscription.plan_id == 1
    assert subscription.active is True
    assert subscription.plan_amount == 400
    assert subscription.plan_interval == 144


@pytest.mark.asyncio
async def test_missing_subscription_is_absent(queries):
    assert await queries.get_subscription(BOB, 1) is None


@pytest.mark.asyncio
async def test_get_balance(queries, fake_api):
    fake_api.set_result("get-balance", ALICE, result=uint_cv(7_500_000))
    assert await queries.get_balance(ALICE) == 7_500_000


@pytest.mark.asyncio
async def test_get_balance_failure_is_zero(queries):
    result = await queries.fetch_balance(ALICE)
    assert result.failed
    assert result.value == 0
