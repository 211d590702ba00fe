"""
JSON-RPC transport for contract reads.

Every read is an ``eth_call`` against ``settings.RPC_URL``. Several reads can
be sent as one JSON-RPC batch (array) request; items in a batch succeed or
fail independently, so one reverting call never sinks its neighbours.
"""

import itertools
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx
from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from utils.logger import get_logger
from utils.rate_limiter import RateLimiter, rate_limiter
from utils.retry import UpstreamError

logger = get_logger("chain_rpc")

# Provider-specific "slow down" codes (Infura/Alchemy -32005, QuickNode -32029)
RATE_LIMIT_ERROR_CODES = frozenset({-32005, -32029, 429})
# Execution reverted: deterministic, retrying cannot help
REVERT_ERROR_CODES = frozenset({3})


class RpcError(UpstreamError):
    """Transport or remote failure of a JSON-RPC request."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.code = code

    @property
    def reverted(self) -> bool:
        if self.code in REVERT_ERROR_CODES:
            return True
        return "execution reverted" in str(self).lower()

    @property
    def retryable(self) -> bool:
        return not self.reverted


class RpcRateLimitError(RpcError):
    @property
    def rate_limited(self) -> bool:
        return True


def _error_from_payload(error: Any) -> RpcError:
    if not isinstance(error, dict):
        return RpcError(f"RPC error: {error}")
    code = error.get("code")
    message = str(error.get("message") or "RPC error")
    if code in RATE_LIMIT_ERROR_CODES:
        return RpcRateLimitError(message, code=code)
    return RpcError(message, code=code if isinstance(code, int) else None)


def _argument_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [part.strip() for part in inner.split(",") if part.strip()]


@dataclass(frozen=True)
class ContractCall:
    """A single view-function call: target, signature, arguments, return types."""

    to: str
    signature: str
    args: tuple = ()
    output_types: tuple[str, ...] = ()

    def encode(self) -> str:
        selector = function_signature_to_4byte_selector(self.signature)
        arg_types = _argument_types(self.signature)
        payload = abi_encode(arg_types, list(self.args)) if arg_types else b""
        return "0x" + (selector + payload).hex()

    def decode(self, result: Any) -> tuple:
        if not isinstance(result, str) or not result.startswith("0x"):
            raise ValueError(f"Unexpected eth_call result: {result!r}")
        raw = bytes.fromhex(result[2:])
        if not raw and self.output_types:
            raise ValueError("Empty eth_call result")
        return tuple(abi_decode(list(self.output_types), raw))


@dataclass
class CallResult:
    """Outcome of one call inside a batch."""

    success: bool
    value: tuple = field(default_factory=tuple)
    error: Optional[str] = None


class ChainRpcClient:
    """Async JSON-RPC client for read-only contract calls."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._limiter = limiter or rate_limiter
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _request(self, call: ContractCall, request_id: int) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "eth_call",
            "params": [{"to": call.to, "data": call.encode()}, "latest"],
        }

    async def _post(self, payload: Any) -> Any:
        await self._limiter.acquire("rpc")
        client = await self._get_client()
        response = await client.post(self.rpc_url, json=payload)

        if response.status_code == 429:
            raise RpcRateLimitError("RPC rate limit exceeded", status_code=429)
        if response.status_code >= 400:
            raise RpcError(
                f"RPC HTTP {response.status_code}", status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise RpcError(f"Malformed RPC response: {e}") from e

    async def call(self, call: ContractCall) -> tuple:
        """Single ``eth_call``; raises RpcError on any failure."""
        body = await self._post(self._request(call, next(self._ids)))
        if not isinstance(body, dict):
            raise RpcError(f"Unexpected RPC payload type: {type(body).__name__}")
        if body.get("error") is not None:
            raise _error_from_payload(body["error"])
        try:
            return call.decode(body.get("result"))
        except (DecodingError, ValueError) as e:
            raise RpcError(f"Failed to decode {call.signature}: {e}") from e

    async def batch_call(self, calls: Sequence[ContractCall]) -> list[CallResult]:
        """Send ``calls`` as one JSON-RPC batch.

        Returns one CallResult per call, in input order. Reverts, missing
        items and undecodable results become failed CallResults. A batch in
        which the provider rate-limits any item raises RpcRateLimitError so
        the whole batch is backed off and retried.
        """
        if not calls:
            return []

        ids = [next(self._ids) for _ in calls]
        payload = [self._request(call, request_id) for call, request_id in zip(calls, ids)]
        body = await self._post(payload)

        if isinstance(body, dict) and body.get("error") is not None:
            raise _error_from_payload(body["error"])
        if not isinstance(body, list):
            raise RpcError(f"Unexpected RPC batch payload type: {type(body).__name__}")

        by_id = {item.get("id"): item for item in body if isinstance(item, dict)}
        results: list[CallResult] = []
        for call, request_id in zip(calls, ids):
            item = by_id.get(request_id)
            if item is None:
                results.append(CallResult(success=False, error="missing from batch response"))
                continue
            if item.get("error") is not None:
                error = _error_from_payload(item["error"])
                if error.rate_limited:
                    raise error
                results.append(CallResult(success=False, error=str(error)))
                continue
            try:
                results.append(CallResult(success=True, value=call.decode(item.get("result"))))
            except (DecodingError, ValueError) as e:
                results.append(CallResult(success=False, error=str(e)))

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.debug("RPC batch partial failure", size=len(calls), failed=failed)
        return results
