import sys
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.leaderboard import IdentityRecord  # noqa: E402
from services.identity import IdentityEnricher, IdentityServiceError, NeynarClient  # noqa: E402
from utils.rate_limiter import RateLimiter  # noqa: E402
from utils.retry import RetryConfig  # noqa: E402

from conftest import ADDRESS_A, ADDRESS_B, ADDRESS_C  # noqa: E402


def _addr(n: int) -> str:
    return "0x" + format(n, "040x")


def _user(name: str, fid: int) -> dict:
    return {"username": name, "fid": fid, "pfp_url": f"https://img.test/{name}.png"}


class FakeNeynar:
    """Records batches; per-batch responses or exceptions in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.batches: list[list[str]] = []

    async def fetch_users_by_address(self, addresses):
        self.batches.append(list(addresses))
        response = self.responses.pop(0) if self.responses else {}
        if isinstance(response, Exception):
            raise response
        return response


def _enricher(client, cache, recording_sleep, **kwargs) -> IdentityEnricher:
    kwargs.setdefault("retry_config", RetryConfig(max_attempts=1))
    return IdentityEnricher(
        client,
        cache,
        limiter=RateLimiter(limits={}),
        sleep=recording_sleep,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# NeynarClient (wire level)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_neynar_client_sends_bulk_lookup():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["api_key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={ADDRESS_A.upper().replace("0X", "0x"): [_user("alice", 1)]})

    client = NeynarClient(
        "secret", "https://neynar.test/", transport=httpx.MockTransport(handler)
    )
    users = await client.fetch_users_by_address([ADDRESS_A, ADDRESS_B])

    assert seen["url"].path == "/v2/farcaster/user/bulk-by-address"
    assert seen["url"].params["addresses"] == f"{ADDRESS_A},{ADDRESS_B}"
    assert seen["url"].params["address_types"] == "custody_address,verified_address"
    assert seen["api_key"] == "secret"
    assert users == {ADDRESS_A: [_user("alice", 1)]}
    await client.close()


@pytest.mark.asyncio
async def test_neynar_client_treats_404_as_no_users():
    client = NeynarClient(
        "secret", transport=httpx.MockTransport(lambda request: httpx.Response(404, json={}))
    )

    assert await client.fetch_users_by_address([ADDRESS_A]) == {}


@pytest.mark.asyncio
async def test_neynar_client_raises_for_rate_limit():
    client = NeynarClient(
        "secret", transport=httpx.MockTransport(lambda request: httpx.Response(429, json={}))
    )

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        await client.fetch_users_by_address([ADDRESS_A])

    assert excinfo.value.response.status_code == 429


@pytest.mark.asyncio
async def test_neynar_client_rejects_non_object_payload():
    client = NeynarClient(
        "secret", transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[1, 2]))
    )

    with pytest.raises(IdentityServiceError):
        await client.fetch_users_by_address([ADDRESS_A])


# ---------------------------------------------------------------------------
# IdentityEnricher
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_resolve_splits_into_batches_of_25(memory_identity_cache, recording_sleep):
    addresses = [_addr(i + 1) for i in range(60)]
    client = FakeNeynar()

    await _enricher(client, memory_identity_cache, recording_sleep).resolve(addresses)

    assert [len(batch) for batch in client.batches] == [25, 25, 10]


@pytest.mark.asyncio
async def test_resolve_uses_first_user_and_falls_back_for_unknown(
    memory_identity_cache, recording_sleep
):
    client = FakeNeynar({ADDRESS_A: [_user("alice", 1), _user("alt", 2)]})

    identities = await _enricher(client, memory_identity_cache, recording_sleep).resolve(
        [ADDRESS_A, ADDRESS_B]
    )

    assert identities[ADDRESS_A].display_name == "alice"
    assert identities[ADDRESS_A].external_id == "1"
    assert identities[ADDRESS_A].avatar_url == "https://img.test/alice.png"
    assert identities[ADDRESS_B].display_name == "0xbbbb...bbbb"
    assert identities[ADDRESS_B].external_id == "nil"
    assert identities[ADDRESS_B].avatar_url is None


@pytest.mark.asyncio
async def test_failed_batch_is_skipped(memory_identity_cache, recording_sleep):
    addresses = [_addr(i + 1) for i in range(30)]
    client = FakeNeynar(
        httpx.ConnectError("down"),
        {addresses[26]: [_user("late", 27)]},
    )

    identities = await _enricher(
        client, memory_identity_cache, recording_sleep, batch_size=25
    ).resolve(addresses)

    assert len(identities) == 30
    assert identities[addresses[0]].resolved is False
    assert identities[addresses[26]].display_name == "late"


@pytest.mark.asyncio
async def test_rate_limited_batch_is_retried_with_floor(memory_identity_cache, recording_sleep):
    request = httpx.Request("GET", "https://neynar.test")
    limited = httpx.HTTPStatusError(
        "429", request=request, response=httpx.Response(429, request=request)
    )
    client = FakeNeynar(limited, {ADDRESS_A: [_user("alice", 1)]})

    identities = await _enricher(
        client,
        memory_identity_cache,
        recording_sleep,
        retry_config=RetryConfig(max_attempts=3, base_delay=2.0, rate_limit_floor=10.0),
    ).resolve([ADDRESS_A])

    assert identities[ADDRESS_A].display_name == "alice"
    assert recording_sleep.delays == [10.0]


@pytest.mark.asyncio
async def test_cached_identities_are_not_refetched(memory_identity_cache, recording_sleep):
    await memory_identity_cache.bulk_set(
        {ADDRESS_A: IdentityRecord(address=ADDRESS_A, display_name="alice", external_id="1")}
    )
    client = FakeNeynar({ADDRESS_C: [_user("carol", 3)]})

    identities = await _enricher(client, memory_identity_cache, recording_sleep).resolve(
        [ADDRESS_A, ADDRESS_C]
    )

    assert client.batches == [[ADDRESS_C]]
    assert identities[ADDRESS_A].display_name == "alice"
    assert memory_identity_cache.get(ADDRESS_C).display_name == "carol"


@pytest.mark.asyncio
async def test_fallback_identities_are_not_cached(memory_identity_cache, recording_sleep):
    client = FakeNeynar({}, {})
    enricher = _enricher(client, memory_identity_cache, recording_sleep)

    await enricher.resolve([ADDRESS_B])
    await enricher.resolve([ADDRESS_B])

    assert client.batches == [[ADDRESS_B], [ADDRESS_B]]
    assert memory_identity_cache.get(ADDRESS_B) is None


@pytest.mark.asyncio
async def test_malformed_users_are_ignored(memory_identity_cache, recording_sleep):
    client = FakeNeynar({ADDRESS_A: [{"fid": 5}, "junk", _user("alice", 1)]})

    identities = await _enricher(client, memory_identity_cache, recording_sleep).resolve(
        [ADDRESS_A]
    )

    assert identities[ADDRESS_A].display_name == "alice"


@pytest.mark.asyncio
async def test_rate_limiter_is_acquired_per_batch(memory_identity_cache, recording_sleep):
    limiter = RateLimiter(limits={})
    limiter.acquire = AsyncMock(return_value=0.0)
    enricher = IdentityEnricher(
        FakeNeynar(),
        memory_identity_cache,
        batch_size=2,
        limiter=limiter,
        retry_config=RetryConfig(max_attempts=1),
        sleep=recording_sleep,
    )

    await enricher.resolve([_addr(i + 1) for i in range(5)])

    assert limiter.acquire.await_count == 3
    limiter.acquire.assert_awaited_with("neynar_bulk_users")
