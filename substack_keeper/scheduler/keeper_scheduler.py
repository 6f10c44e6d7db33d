"""
Keeper cycle scheduler.

This service provides:
- A keeper cycle on a fixed interval, with the first cycle at start
- Single-flight execution (overlapping ticks are dropped, not queued)
- Profit-threshold filtering and batch-size capping of due charges
- Sequential charge submission from the operator account
- Status reporting for monitoring
"""

import asyncio
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
from enum import Enum
import structlog

from substack_keeper.core.config import Settings, settings as default_settings
from substack_keeper.services.chain_query import ChainQueryAdapter
from substack_keeper.services.due_charge_scanner import DueChargeScanner
from substack_keeper.services.transaction_submitter import TransactionSubmitter
from substack_keeper.services.types import CycleReport, DueCharge


logger = structlog.get_logger(__name__)

KEEPER_FEE_BPS = 20  # 0.2%
BPS_DENOMINATOR = 10000


def calculate_keeper_fee(amount: int) -> int:
    """Keeper fee paid by the engine for executing a charge of ``amount``."""
    return (amount * KEEPER_FEE_BPS) // BPS_DENOMINATOR


def filter_profitable(charges: List[DueCharge], min_profit: int) -> List[DueCharge]:
    """Keep charges whose keeper fee reaches ``min_profit``, preserving order."""
    return [c for c in charges if calculate_keeper_fee(c.amount) >= min_profit]


def format_stx(micro_stx: int) -> str:
    return f"{micro_stx / 1_000_000:.6f}"


class SchedulerStatus(Enum):
    """Status of the keeper scheduler."""
    STOPPED = "stopped"
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    skipped_ticks: int = 0
    charges_executed: int = 0
    charges_failed: int = 0
    uptime_start: Optional[datetime] = None


class KeeperScheduler:
    """
    Runs keeper cycles on a fixed wall-clock interval.

    A cycle holds ``_cycle_lock`` for its whole duration; a tick that finds
    the lock held is logged and dropped. The lock is released on every exit
    path, so a failed cycle never blocks the next tick.
    """

    def __init__(
        self,
        queries: ChainQueryAdapter,
        submitter: TransactionSubmitter,
        scanner: Optional[DueChargeScanner] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.queries = queries
        self.submitter = submitter
        self.scanner = scanner or DueChargeScanner(queries, self.config)
        self.logger = logger.bind(service="keeper_scheduler")

        self.interval_seconds = self.config.check_interval * 60

        # State
        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=datetime.now(timezone.utc))
        self.last_report: Optional[CycleReport] = None
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._scheduler_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

        self.logger.info(
            "Keeper scheduler initialized",
            check_interval_minutes=self.config.check_interval,
            batch_size=self.config.batch_size,
            min_profit=self.config.min_profit,
            max_plans=self.config.max_plans
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    @property
    def is_running_cycle(self) -> bool:
        return self._cycle_lock.locked()

    async def start(self):
        """Start the scheduler loop; the first cycle fires immediately."""
        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning(
                "Scheduler already running",
                current_status=self.status.value
            )
            return

        self._stop_event.clear()
        self.status = SchedulerStatus.IDLE
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

        self.logger.info(
            "Keeper scheduler started",
            interval_seconds=self.interval_seconds
        )

    async def stop(self):
        """Stop the scheduler. An in-flight cycle is allowed to finish."""
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping keeper scheduler")
        self._stop_event.set()

        if self._scheduler_task and not self._scheduler_task.done():
            await self._scheduler_task

        if self._cycle_task and not self._cycle_task.done():
            self.logger.info("Waiting for in-flight cycle to finish")
            await self._cycle_task

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Keeper scheduler stopped")

    def request_stop(self):
        """Ask the loop to exit without waiting; safe to call from a signal handler."""
        self._stop_event.set()

    async def wait_closed(self):
        """Block until the scheduler loop exits."""
        if self._scheduler_task:
            await self._scheduler_task

    async def _scheduler_loop(self):
        """Fire a cycle every interval until stopped."""
        self.logger.info("Scheduler loop started")

        while not self._stop_event.is_set():
            self.stats.next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
            self._tick()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Scheduler loop stopped")

    def _tick(self):
        # Cycles run as their own task so a long cycle never delays the timer
        if self.is_running_cycle:
            self.stats.skipped_ticks += 1
            self.logger.warning("Previous cycle still running, skipping tick")
            return
        self._cycle_task = asyncio.create_task(self.run_cycle())

    async def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one keeper cycle.

        Returns:
            The cycle report, or None when another cycle was already running
        """
        if self._cycle_lock.locked():
            self.stats.skipped_ticks += 1
            self.logger.warning("Previous cycle still running, skipping")
            return None

        async with self._cycle_lock:
            previous_status = self.status
            self.status = SchedulerStatus.RUNNING
            report = CycleReport(started_at=datetime.now(timezone.utc))
            self.stats.total_cycles += 1

            try:
                await self._execute_cycle(report)
                self.stats.successful_cycles += 1
            except Exception as e:
                report.error = str(e)
                self.stats.failed_cycles += 1
                self.logger.exception("Cycle failed", error=str(e))
            finally:
                report.finished_at = datetime.now(timezone.utc)
                self.stats.last_run = report.finished_at
                self.stats.charges_executed += report.executed
                self.stats.charges_failed += report.failed
                self.last_report = report
                if self.status == SchedulerStatus.RUNNING:
                    self.status = previous_status

        return report

    async def _execute_cycle(self, report: CycleReport):
        self.logger.info("=== Starting keeper cycle ===")

        report.block_height = await self.queries.get_current_block_height()
        self.logger.info("Current block height", block_height=report.block_height)

        due_charges = await self.scanner.find_due_charges()
        report.scan_stats = self.scanner.stats
        report.candidates = len(due_charges)
        self.logger.info("Found due charges", count=report.candidates)

        if not due_charges:
            self.logger.info("=== Cycle complete (no charges) ===")
            return

        profitable = filter_profitable(due_charges, self.config.min_profit)
        report.profitable = len(profitable)
        self.logger.info(
            "Charges above profit threshold",
            count=report.profitable,
            min_profit=self.config.min_profit
        )

        batch = profitable[:self.config.batch_size]
        if len(profitable) > len(batch):
            self.logger.info(
                "Charges deferred by batch size",
                deferred=len(profitable) - len(batch),
                batch_size=self.config.batch_size
            )

        # Sequential: every submission signs from the same operator account
        for charge in batch:
            report.attempted += 1
            self.logger.info(
                "Executing charge",
                subscriber=charge.subscriber,
                plan_id=charge.plan_id,
                amount=charge.amount,
                keeper_fee=calculate_keeper_fee(charge.amount)
            )
            try:
                result = await self.submitter.execute_charge(charge.subscriber, charge.plan_id)
            except Exception as e:
                report.failed += 1
                self.logger.error(
                    "Charge execution failed",
                    subscriber=charge.subscriber,
                    plan_id=charge.plan_id,
                    error=str(e)
                )
                continue

            if result.success:
                report.executed += 1
                report.txids.append(result.txid)
                self.logger.info("Charge submitted", plan_id=charge.plan_id, txid=result.txid)
            else:
                report.failed += 1
                self.logger.error(
                    "Charge execution failed",
                    subscriber=charge.subscriber,
                    plan_id=charge.plan_id,
                    error=result.error
                )

        self.logger.info(
            "=== Cycle complete ===",
            executed=report.executed,
            attempted=report.attempted
        )

    async def trigger_manual_run(self) -> Optional[CycleReport]:
        """Manually trigger a cycle through the same single-flight guard."""
        self.logger.info("Manual keeper cycle triggered")
        return await self.run_cycle()

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        uptime_seconds = (datetime.now(timezone.utc) - self.stats.uptime_start).total_seconds()
        return {
            "status": self.status.value,
            "cycle_in_progress": self.is_running_cycle,
            "uptime_seconds": uptime_seconds,
            "stats": asdict(self.stats),
            "last_report": asdict(self.last_report) if self.last_report else None,
            "next_run": self.stats.next_run.isoformat() if self.stats.next_run else None,
            "configuration": {
                "network": self.config.stacks_network,
                "check_interval_minutes": self.config.check_interval,
                "batch_size": self.config.batch_size,
                "min_profit": self.config.min_profit,
                "max_plans": self.config.max_plans,
            },
        }
