"""
Read-only queries against the deployed subscription contracts.

Every query fails closed: transport, node and decoding errors are logged and
mapped to a fixed default (0 / False / [] / None). The ``fetch_*`` methods
return a ``QueryResult`` so a failure stays distinguishable from a genuine
zero; the ``get_*`` methods return only the value.
"""

from typing import Any, Awaitable, Callable, List, Optional

import structlog

from substack_keeper.core.config import Settings, settings as default_settings
from substack_keeper.core.exceptions import ConfigurationError
from substack_keeper.services.stacks.api_client import StacksApiClient
from substack_keeper.services.stacks.clarity import principal_cv, uint_cv, unwrap
from .types import Plan, QueryResult, Subscription


logger = structlog.get_logger(__name__)


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected integer, got {type(value).__name__}")
    return value


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected bool, got {type(value).__name__}")
    return value


class ChainQueryAdapter:
    """Stateless read-only view of plans, subscriptions and vault balances."""

    def __init__(self, api: StacksApiClient, config: Optional[Settings] = None):
        self.api = api
        self.config = config or default_settings
        self.logger = logger.bind(service="chain_query")

    async def _guard(self, query: str, default: Any, call: Callable[[], Awaitable[Any]], **context) -> QueryResult:
        try:
            return QueryResult.success(await call())
        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.warning("Chain query failed", query=query, error=str(e), **context)
            return QueryResult.failure(default, str(e))

    async def _read(self, contract, function_name: str, args) -> Any:
        result = await self.api.call_read_only(contract, function_name, args)
        return unwrap(result)

    # --- block height -----------------------------------------------------

    async def fetch_current_block_height(self) -> QueryResult[int]:
        return await self._guard("block_height", 0, self.api.get_block_height)

    async def get_current_block_height(self) -> int:
        return (await self.fetch_current_block_height()).value

    # --- plans ------------------------------------------------------------

    async def fetch_total_plans(self) -> QueryResult[int]:
        async def call():
            return _as_int(await self._read(self.config.plans, "get-total-plans", []))
        return await self._guard("get-total-plans", 0, call)

    async def get_total_plans(self) -> int:
        return (await self.fetch_total_plans()).value

    async def fetch_plan(self, plan_id: int) -> QueryResult[Optional[Plan]]:
        async def call():
            raw = await self._read(self.config.plans, "get-plan", [uint_cv(plan_id)])
            if raw is None:
                return None
            return Plan(
                id=plan_id,
                merchant=raw["merchant"],
                amount=_as_int(raw["amount"]),
                interval_blocks=_as_int(raw["interval-blocks"]),
                active=_as_bool(raw["active"]),
                subscriber_count=_as_int(raw["subscriber-count"]),
            )
        return await self._guard("get-plan", None, call, plan_id=plan_id)

    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        return (await self.fetch_plan(plan_id)).value

    # --- engine -----------------------------------------------------------

    async def fetch_plan_subscribers(self, plan_id: int) -> QueryResult[List[str]]:
        async def call():
            raw = await self._read(self.config.engine, "get-plan-subscribers", [uint_cv(plan_id)])
            if not isinstance(raw, list):
                return []
            return [str(item) for item in raw]
        return await self._guard("get-plan-subscribers", [], call, plan_id=plan_id)

    async def get_plan_subscribers(self, plan_id: int) -> List[str]:
        return (await self.fetch_plan_subscribers(plan_id)).value

    async def fetch_is_charge_due(self, subscriber: str, plan_id: int) -> QueryResult[bool]:
        async def call():
            raw = await self._read(
                self.config.engine, "is-charge-due", [principal_cv(subscriber), uint_cv(plan_id)]
            )
            return raw is True
        return await self._guard("is-charge-due", False, call, subscriber=subscriber, plan_id=plan_id)

    async def is_charge_due(self, subscriber: str, plan_id: int) -> bool:
        return (await self.fetch_is_charge_due(subscriber, plan_id)).value

    async def fetch_subscription(self, subscriber: str, plan_id: int) -> QueryResult[Optional[Subscription]]:
        async def call():
            raw = await self._read(
                self.config.engine, "get-subscription", [principal_cv(subscriber), uint_cv(plan_id)]
            )
            if raw is None:
                return None
            return Subscription(
                subscriber=subscriber,
                plan_id=plan_id,
                active=_as_bool(raw["active"]),
                plan_amount=_as_int(raw["plan-amount"]),
                plan_interval=_as_int(raw["plan-interval"]),
            )
        return await self._guard("get-subscription", None, call, subscriber=subscriber, plan_id=plan_id)

    async def get_subscription(self, subscriber: str, plan_id: int) -> Optional[Subscription]:
        return (await self.fetch_subscription(subscriber, plan_id)).value

    # --- vault ------------------------------------------------------------

    async def fetch_balance(self, principal: str) -> QueryResult[int]:
        async def call():
            return _as_int(await self._read(self.config.vault, "get-balance", [principal_cv(principal)]))
        return await self._guard("get-balance", 0, call, principal=principal)

    async def get_balance(self, principal: str) -> int:
        return (await self.fetch_balance(principal)).value
