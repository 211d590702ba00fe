"""
Wallet address -> Farcaster profile resolution via Neynar.

Addresses are looked up in batches through the bulk-by-address endpoint. A
batch that still fails after retries is logged and skipped; its addresses
fall back to a shortened address as display name.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from models.leaderboard import IdentityRecord
from services.identity_cache import IdentityCacheService
from utils.logger import identity_logger as logger
from utils.rate_limiter import RateLimiter, rate_limiter
from utils.retry import RetryConfig, UpstreamError, retry_async

BULK_BY_ADDRESS_PATH = "/v2/farcaster/user/bulk-by-address"
ADDRESS_TYPES = "custody_address,verified_address"


class IdentityServiceError(UpstreamError):
    """Identity lookup returned something we cannot use."""


class NeynarClient:
    """Minimal async client for the Neynar v2 user lookup API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.neynar.com",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def fetch_users_by_address(self, addresses: list[str]) -> dict[str, list[dict[str, Any]]]:
        """Map of lower-cased address -> users linked to it.

        Raises httpx.HTTPStatusError on non-2xx responses other than 404,
        which Neynar returns when none of the addresses has a profile.
        """
        if not addresses:
            return {}

        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}{BULK_BY_ADDRESS_PATH}",
            params={"addresses": ",".join(addresses), "address_types": ADDRESS_TYPES},
            headers={"x-api-key": self.api_key, "accept": "application/json"},
        )
        if response.status_code == 404:
            return {}
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise IdentityServiceError(f"Malformed identity response: {e}") from e
        if not isinstance(data, dict):
            raise IdentityServiceError(
                f"Unexpected identity payload type: {type(data).__name__}"
            )
        return {
            str(address).lower(): users
            for address, users in data.items()
            if isinstance(users, list)
        }


def _chunks(items: list, size: int) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class IdentityEnricher:
    def __init__(
        self,
        client: NeynarClient,
        cache: IdentityCacheService,
        *,
        batch_size: int = 25,
        retry_config: Optional[RetryConfig] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.cache = cache
        self.batch_size = max(1, batch_size)
        self.retry_config = retry_config or RetryConfig()
        self._limiter = limiter or rate_limiter
        self._sleep = sleep

    async def resolve(self, addresses: Iterable[str]) -> dict[str, IdentityRecord]:
        """Identity for every requested address.

        Cached identities are reused; only the rest are fetched. Addresses
        nobody could resolve get a fallback record, which is not cached.
        """
        wanted: list[str] = []
        for address in addresses:
            key = address.lower()
            if key not in wanted:
                wanted.append(key)

        identities = self.cache.get_many(wanted)
        to_fetch = self.cache.missing(wanted)
        if to_fetch:
            fetched = await self.fetch(to_fetch)
            await self.cache.bulk_set(fetched)
            identities.update(fetched)

        for address in wanted:
            if address not in identities:
                identities[address] = IdentityRecord.fallback(address)
        return identities

    async def fetch(self, addresses: list[str]) -> dict[str, IdentityRecord]:
        """Look up ``addresses`` batch by batch; failed batches are skipped."""
        resolved: dict[str, IdentityRecord] = {}
        failed_batches = 0

        for batch_index, batch in enumerate(_chunks(addresses, self.batch_size), start=1):

            async def _lookup(batch=batch):
                await self._limiter.acquire("neynar_bulk_users")
                return await self.client.fetch_users_by_address(batch)

            try:
                users_by_address = await retry_async(
                    _lookup,
                    self.retry_config,
                    description=f"identity batch {batch_index}",
                    sleep=self._sleep,
                )
            except Exception as e:
                failed_batches += 1
                logger.warning(
                    "Identity batch failed",
                    batch=batch_index,
                    size=len(batch),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            for address in batch:
                for user in users_by_address.get(address) or []:
                    identity = IdentityRecord.from_neynar_user(address, user)
                    if identity is not None:
                        resolved[address] = identity
                        break

        logger.info(
            "Identities fetched",
            requested=len(addresses),
            resolved=len(resolved),
            failed_batches=failed_batches,
        )
        return resolved
