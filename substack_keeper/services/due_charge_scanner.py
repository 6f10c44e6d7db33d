"""
Due-charge scanner.

Walks plans 1..min(total, max_plans), keeps active plans with subscribers,
and emits a candidate for every active subscription the engine reports as
due. Candidates carry the subscription's recorded amount, not the live plan
price.
"""

import asyncio
from typing import List, Optional

import structlog

from substack_keeper.core.config import Settings, settings as default_settings
from .chain_query import ChainQueryAdapter
from .types import DueCharge, ScanStats


logger = structlog.get_logger(__name__)


class DueChargeScanner:
    """Builds the candidate charge set for one keeper cycle."""

    def __init__(self, queries: ChainQueryAdapter, config: Optional[Settings] = None):
        self.queries = queries
        self.config = config or default_settings
        self.logger = logger.bind(service="due_charge_scanner")
        self.stats = ScanStats()

    def _record_failure(self, message: str):
        self.stats.query_failures += 1
        self.stats.errors.append(message)

    async def _scan_subscriber(self, subscriber: str, plan_id: int) -> Optional[DueCharge]:
        self.stats.subscribers_checked += 1

        due = await self.queries.fetch_is_charge_due(subscriber, plan_id)
        if due.failed:
            # Excluded this cycle; the next cycle re-reads it
            self._record_failure(f"is-charge-due {subscriber} plan {plan_id}: {due.error}")
            return None
        if not due.value:
            return None

        subscription = await self.queries.fetch_subscription(subscriber, plan_id)
        if subscription.failed:
            self._record_failure(f"get-subscription {subscriber} plan {plan_id}: {subscription.error}")
            return None
        if subscription.value is None or not subscription.value.active:
            self.logger.debug(
                "Due charge without active subscription",
                subscriber=subscriber,
                plan_id=plan_id
            )
            return None

        return DueCharge(
            subscriber=subscriber,
            plan_id=plan_id,
            amount=subscription.value.plan_amount,
        )

    async def _scan_plan(self, plan_id: int) -> List[DueCharge]:
        plan = await self.queries.fetch_plan(plan_id)
        if plan.failed:
            self._record_failure(f"get-plan {plan_id}: {plan.error}")

        if plan.value is None or not plan.value.active or plan.value.subscriber_count == 0:
            self.stats.plans_skipped += 1
            return []

        self.stats.plans_scanned += 1

        subscribers = await self.queries.fetch_plan_subscribers(plan_id)
        if subscribers.failed:
            self._record_failure(f"get-plan-subscribers {plan_id}: {subscribers.error}")

        charges = []
        for subscriber in subscribers.value:
            charge = await self._scan_subscriber(subscriber, plan_id)
            if charge is not None:
                charges.append(charge)
        return charges

    async def find_due_charges(self) -> List[DueCharge]:
        """
        Scan the chain for due charges.

        Returns:
            Candidates ordered by plan id, then by the engine's subscriber order
        """
        self.stats = ScanStats()

        total = await self.queries.fetch_total_plans()
        if total.failed:
            self._record_failure(f"get-total-plans: {total.error}")
        self.stats.total_plans = total.value

        last_plan = min(total.value, self.config.max_plans)
        plan_ids = range(1, last_plan + 1)

        if self.config.scan_concurrency > 1:
            semaphore = asyncio.Semaphore(self.config.scan_concurrency)

            async def bounded(plan_id: int) -> List[DueCharge]:
                async with semaphore:
                    return await self._scan_plan(plan_id)

            per_plan = await asyncio.gather(*(bounded(plan_id) for plan_id in plan_ids))
        else:
            per_plan = [await self._scan_plan(plan_id) for plan_id in plan_ids]

        due_charges = [charge for charges in per_plan for charge in charges]
        self.stats.due_found = len(due_charges)

        if total.value > self.config.max_plans:
            self.logger.info(
                "Plan scan capped",
                total_plans=total.value,
                max_plans=self.config.max_plans
            )
        if self.stats.query_failures:
            self.logger.warning(
                "Scan finished with query failures",
                query_failures=self.stats.query_failures,
                first_errors=self.stats.errors[:5]
            )

        self.logger.info(
            "Scan complete",
            plans_scanned=self.stats.plans_scanned,
            plans_skipped=self.stats.plans_skipped,
            subscribers_checked=self.stats.subscribers_checked,
            due_found=self.stats.due_found
        )
        return due_charges
