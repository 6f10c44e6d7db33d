"""
Stacks API client for interacting with a Stacks node / Hiro API.
Provides block height, read-only contract calls, nonces and broadcasting.
"""

import asyncio
import json
from typing import List, Optional

import aiohttp
import structlog

from substack_keeper.core.config import Settings, StacksConfig, ContractId, settings as default_settings
from substack_keeper.core.exceptions import StacksAPIError, ReadOnlyCallError, BroadcastError
from .clarity import ClarityValue, deserialize


logger = structlog.get_logger(__name__)


class StacksApiClient:
    """
    Async HTTP client for the Stacks API.

    One aiohttp session is shared by all requests and created on first use.
    Every method raises a ``StacksError`` subclass on failure; recovering to
    safe defaults is the caller's decision.
    """

    def __init__(self, config: Optional[Settings] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or default_settings
        self.base_url = StacksConfig.get_api_url(self.config)
        self.timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        self._session = session
        self._owns_session = session is None
        self.logger = logger.bind(service="stacks_api_client", api_url=self.base_url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the underlying HTTP session."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            self.logger.debug("Stacks API session closed")

    async def _request_json(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, **kwargs) as response:
                text = await response.text()
                if response.status >= 400:
                    raise StacksAPIError(
                        f"HTTP {response.status} from {path}",
                        {"status": response.status, "body": text[:500]}
                    )
                return json.loads(text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StacksAPIError(
                f"Request to {path} failed: {e.__class__.__name__}",
                {"error": str(e)}
            )
        except json.JSONDecodeError:
            raise StacksAPIError(f"Invalid JSON from {path}")

    async def get_block_height(self) -> int:
        """Height of the most recent block."""
        data = await self._request_json("GET", "/extended/v1/block", params={"limit": "1"})
        try:
            results = data.get("results") or []
            return int(results[0]["height"]) if results else 0
        except (AttributeError, KeyError, TypeError, ValueError):
            raise StacksAPIError("Unexpected block list payload")

    async def call_read_only(
        self,
        contract: ContractId,
        function_name: str,
        args: List[ClarityValue],
        sender: Optional[str] = None,
    ) -> ClarityValue:
        """
        Evaluate a read-only contract function.

        Args:
            contract: Contract to call
            function_name: Clarity function name
            args: Ordered Clarity arguments
            sender: Principal to evaluate as (defaults to the contract deployer)

        Returns:
            The decoded Clarity result
        """
        path = f"/v2/contracts/call-read/{contract.address}/{contract.name}/{function_name}"
        body = {
            "sender": sender or contract.address,
            "arguments": [arg.to_hex() for arg in args],
        }
        data = await self._request_json("POST", path, json=body)

        if not isinstance(data, dict):
            raise StacksAPIError("Unexpected read-only call payload")
        if not data.get("okay"):
            raise ReadOnlyCallError(function_name, str(data.get("cause", "unknown")))
        return deserialize(data.get("result", ""))

    async def get_next_nonce(self, principal: str) -> int:
        """Next nonce the node would accept for ``principal``."""
        data = await self._request_json("GET", f"/extended/v1/address/{principal}/nonces")
        try:
            return int(data["possible_next_nonce"])
        except (KeyError, TypeError, ValueError):
            raise StacksAPIError("Unexpected nonce payload", {"principal": principal})

    async def broadcast(self, raw_transaction: bytes) -> str:
        """
        Broadcast a serialized transaction.

        Returns:
            Transaction id reported by the node

        Raises:
            BroadcastError: the node rejected the transaction
            StacksAPIError: transport failure
        """
        url = f"{self.base_url}/v2/transactions"
        headers = {"Content-Type": "application/octet-stream"}
        try:
            async with self._get_session().post(url, data=raw_transaction, headers=headers) as response:
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StacksAPIError(
                f"Broadcast request failed: {e.__class__.__name__}",
                {"error": str(e)}
            )

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = text.strip()

        if isinstance(payload, dict) and "error" in payload:
            raise BroadcastError(
                str(payload["error"]),
                reason=payload.get("reason"),
                txid=payload.get("txid"),
            )
        if response.status >= 400 or not isinstance(payload, str) or not payload:
            raise BroadcastError(f"HTTP {response.status}", reason=str(payload)[:500])

        return payload
