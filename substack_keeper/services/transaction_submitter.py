"""
Transaction submitter for keeper charge executions.
Signs and broadcasts engine contract calls with the operator key.
"""

import asyncio
from typing import Callable, List, Optional, Sequence

import structlog

from substack_keeper.core.config import Settings, StacksConfig, settings as default_settings
from substack_keeper.core.exceptions import ConfigurationError
from substack_keeper.services.stacks.api_client import StacksApiClient
from substack_keeper.services.stacks.clarity import ClarityValue, charge_tuples, principal_cv, uint_cv
from substack_keeper.services.stacks.transaction import (
    POST_CONDITION_MODE_ALLOW,
    StacksPrivateKey,
    make_contract_call,
)
from .types import ChargeRequest, SubmissionResult


logger = structlog.get_logger(__name__)

MAX_BATCH_CHARGES = 10


class TransactionSubmitter:
    """
    Submits ``execute-charge`` and ``batch-execute-charges`` calls.

    Submissions share one signing identity, so they are serialized through a
    lock and the next nonce is tracked locally between broadcasts.
    """

    def __init__(self, api: StacksApiClient, config: Optional[Settings] = None):
        self.api = api
        self.config = config or default_settings
        self.network_params = StacksConfig.get_network_params(self.config)
        self.logger = logger.bind(service="transaction_submitter")

        self._key: Optional[StacksPrivateKey] = None
        self._next_nonce: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def key(self) -> StacksPrivateKey:
        """Operator key, parsed on first use."""
        if not self.config.has_signing_key:
            raise ConfigurationError("Keeper private key not configured")
        if self._key is None:
            self._key = StacksPrivateKey(self.config.keeper_private_key)
        return self._key

    @property
    def sender_address(self) -> str:
        return self.key.address(self.network_params["address_version"])

    async def _reserve_nonce(self) -> int:
        node_nonce = await self.api.get_next_nonce(self.sender_address)
        if self._next_nonce is not None and self._next_nonce > node_nonce:
            return self._next_nonce
        return node_nonce

    async def _submit(self, function_name: str, build_args: Callable[[], List[ClarityValue]], **context) -> SubmissionResult:
        key = self.key
        engine = self.config.engine

        async with self._lock:
            nonce = None
            try:
                # Encode arguments before spending a nonce lookup on them
                function_args = build_args()
                nonce = await self._reserve_nonce()
                transaction = make_contract_call(
                    key=key,
                    network_params=self.network_params,
                    contract_address=engine.address,
                    contract_name=engine.name,
                    function_name=function_name,
                    function_args=function_args,
                    nonce=nonce,
                    fee=self.config.tx_fee,
                    post_condition_mode=POST_CONDITION_MODE_ALLOW,
                )
                txid = await self.api.broadcast(transaction.serialize())
            except ConfigurationError:
                raise
            except Exception as e:
                self.logger.error(
                    "Charge transaction failed",
                    function_name=function_name,
                    nonce=nonce,
                    error=str(e),
                    **context
                )
                return SubmissionResult(success=False, error=str(e), nonce=nonce)

            self._next_nonce = nonce + 1

        self.logger.info(
            "Charge transaction broadcast",
            function_name=function_name,
            txid=txid,
            nonce=nonce,
            **context
        )
        return SubmissionResult(success=True, txid=txid, nonce=nonce)

    async def execute_charge(self, subscriber: str, plan_id: int) -> SubmissionResult:
        """
        Execute one due charge.

        Raises:
            ConfigurationError: no operator key configured
        """
        return await self._submit(
            "execute-charge",
            lambda: [principal_cv(subscriber), uint_cv(plan_id)],
            subscriber=subscriber,
            plan_id=plan_id,
        )

    async def execute_batch_charges(self, charges: Sequence[ChargeRequest]) -> Optional[SubmissionResult]:
        """
        Execute up to ``MAX_BATCH_CHARGES`` charges in one transaction.

        Charges beyond the limit are dropped, keeping input order. An empty
        input performs no network call and returns ``None``.

        Raises:
            ConfigurationError: no operator key configured
        """
        self.key  # fail fast on a missing key, even for an empty batch
        if not charges:
            return None

        if len(charges) > MAX_BATCH_CHARGES:
            self.logger.warning(
                "Batch truncated",
                supplied=len(charges),
                submitted=MAX_BATCH_CHARGES
            )
            charges = list(charges)[:MAX_BATCH_CHARGES]

        return await self._submit(
            "batch-execute-charges",
            lambda: [charge_tuples([(c.subscriber, c.plan_id) for c in charges])],
            charges=len(charges),
        )
